# fare_negotiation/services/negotiation/push_relay.py
"""
Ретрансляция push-кадров между экземплярами сервиса через Redis Pub/Sub.

Движок публикует кадр в канал negotiation:push:{session_id};
подписчик каждого экземпляра передаёт его своему локальному хабу.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from redis.asyncio.client import PubSub

from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_error, log_info, log_warning
from fare_negotiation.infra.redis_client import RedisClient
from fare_negotiation.services.negotiation.push_hub import PushHub

CHANNEL_PREFIX = "negotiation:push:"


class RedisPushRelay:
    """
    Издатель и подписчик push-кадров.
    Если Redis недоступен при публикации, кадр доставляется только локальному хабу.
    """

    def __init__(self, redis: RedisClient, hub: PushHub) -> None:
        """
        Args:
            redis: Клиент Redis
            hub: Локальный push-хаб экземпляра
        """
        self._redis = redis
        self._hub = hub
        self._pubsub: PubSub | None = None
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def pattern(self) -> str:
        return f"{self._redis.namespace}:{CHANNEL_PREFIX}*"

    # =========================================================================
    # ПУБЛИКАЦИЯ (SessionPush)
    # =========================================================================

    async def publish(self, session_id: str, frame: dict[str, Any]) -> int:
        return await self._relay(session_id, {"action": "publish", "frame": frame})

    async def close(self, session_id: str) -> None:
        await self._relay(session_id, {"action": "close"})

    async def remove_actor(self, session_id: str, actor_id: str) -> int:
        return await self._relay(session_id, {"action": "remove_actor", "actor_id": actor_id})

    async def _relay(self, session_id: str, payload: dict[str, Any]) -> int:
        message = json.dumps({"session_id": session_id, **payload}, ensure_ascii=False)
        try:
            return await self._redis.publish(f"{CHANNEL_PREFIX}{session_id}", message)
        except Exception as e:
            await log_warning(
                f"Ретрансляция push через Redis недоступна, доставка только локально: {e}",
                extra={"session_id": session_id},
            )
            return await self._dispatch(session_id, payload)

    # =========================================================================
    # ПОДПИСКА
    # =========================================================================

    async def start(self) -> None:
        """Запустить подписчика."""
        if self._running:
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.psubscribe(self.pattern)
        self._running = True
        self._task = asyncio.create_task(self._listen())
        await log_info(f"Ретранслятор push подписан на {self.pattern}", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Остановить подписчика."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

    async def _listen(self) -> None:
        """Слушать сообщения из Redis."""
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                await self._process_message(message)
            except asyncio.CancelledError:
                break
            except Exception as e:
                await log_error(f"Ошибка подписчика push-ретранслятора: {e}")
                await asyncio.sleep(1)

    async def _process_message(self, message: dict[str, Any]) -> None:
        """Обработать сообщение из Redis."""
        if message.get("type") not in ("message", "pmessage"):
            return

        data = message.get("data", "")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            payload = json.loads(data)
            session_id = payload["session_id"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            await log_warning(f"Некорректное сообщение ретрансляции: {e}")
            return

        await self._dispatch(session_id, payload)

    async def _dispatch(self, session_id: str, payload: dict[str, Any]) -> int:
        match payload.get("action"):
            case "publish":
                return await self._hub.publish(session_id, payload.get("frame") or {})
            case "close":
                await self._hub.close(session_id)
                return 0
            case "remove_actor":
                return await self._hub.remove_actor(session_id, str(payload.get("actor_id")))
            case other:
                await log_warning(f"Неизвестное действие ретрансляции: {other}")
                return 0

# fare_negotiation/core/negotiation/cache.py
"""
Кэш снапшотов сессий в Redis.
Производное представление: при любом сбое кэш пропускается, источник истины — хранилище.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_error, log_info
from fare_negotiation.core.negotiation.models import SessionSnapshot
from fare_negotiation.infra.redis_client import RedisClient


class SnapshotCache:
    """Снапшоты сессий по ключу negotiation:snapshot:{session_id}."""

    def __init__(
        self,
        redis: RedisClient,
        grace_ttl: int = 60,
        terminal_ttl: int = 300,
    ) -> None:
        """
        Args:
            redis: Клиент Redis
            grace_ttl: Запас TTL сверх дедлайна живой сессии (секунды)
            terminal_ttl: TTL снапшота терминальной сессии (секунды)
        """
        self._redis = redis
        self._grace_ttl = grace_ttl
        self._terminal_ttl = terminal_ttl

    @staticmethod
    def _key(session_id: str) -> str:
        return f"negotiation:snapshot:{session_id}"

    def _ttl_for(self, snapshot: SessionSnapshot, now_ts: float | None) -> int:
        if snapshot.is_terminal or now_ts is None:
            return self._terminal_ttl
        remaining = int(snapshot.deadline_at.timestamp() - now_ts)
        return max(remaining, 0) + self._grace_ttl

    async def get(self, session_id: str) -> Optional[SessionSnapshot]:
        """Снапшот из кэша или None (промах или недоступный Redis)."""
        try:
            return await self._redis.get_model(self._key(session_id), SessionSnapshot)
        except Exception as e:
            await log_error(f"Ошибка чтения снапшота {session_id}: {e}", extra={"session_id": session_id})
            return None

    async def put(self, snapshot: SessionSnapshot, now_ts: float | None = None) -> bool:
        """
        Записывает снапшот, если в кэше нет той же или более новой версии.
        Если запись не удалась, ключ удаляется, чтобы не оставить устаревшее значение.

        Returns:
            True если снапшот записан
        """
        key = self._key(snapshot.session_id)
        try:
            return await self._redis.set_model_if_newer(
                key,
                snapshot,
                snapshot.version,
                ttl=self._ttl_for(snapshot, now_ts),
            )
        except Exception as e:
            await log_error(
                f"Ошибка записи снапшота {snapshot.session_id} v{snapshot.version}: {e}",
                extra={"session_id": snapshot.session_id},
            )
            await self.evict(snapshot.session_id)
            return False

    async def evict(self, session_id: str) -> None:
        try:
            await self._redis.delete(self._key(session_id))
        except Exception as e:
            await log_error(f"Не удалось удалить снапшот {session_id}: {e}", extra={"session_id": session_id})

    async def fetch(
        self,
        session_id: str,
        loader: Callable[[], Awaitable[Optional[SessionSnapshot]]],
        now_ts: float | None = None,
    ) -> Optional[SessionSnapshot]:
        """
        Снапшот из кэша, при промахе — из хранилища через loader с заполнением кэша.
        Если пока шло чтение, в кэш записали более новую версию, возвращается она.
        """
        cached = await self.get(session_id)
        if cached is not None:
            return cached

        snapshot = await loader()
        if snapshot is None:
            return None

        if not await self.put(snapshot, now_ts):
            newer = await self.get(session_id)
            if newer is not None and newer.version > snapshot.version:
                return newer
            return snapshot

        await log_info(
            f"Снапшот {session_id} восстановлен из хранилища (v{snapshot.version})",
            type_msg=TypeMsg.DEBUG,
            extra={"session_id": session_id},
        )
        return snapshot

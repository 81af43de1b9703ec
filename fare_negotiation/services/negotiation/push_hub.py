# fare_negotiation/services/negotiation/push_hub.py
"""
Push-хаб торга.
Одна группа рассылки на живую сессию; кадры {type, version, session}.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_debug, log_info, log_warning
from fare_negotiation.core.negotiation.errors import NegotiationError
from fare_negotiation.core.negotiation.models import Actor, SessionSnapshot
from fare_negotiation.core.negotiation.participants import ParticipantGuard


class PushHandle(Protocol):
    """Транспорт подписчика (WebSocket)."""

    async def send_json(self, data: Any, mode: str = "text") -> None:
        ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        ...


@dataclass
class Subscription:
    """Подписка на сессию."""
    handle: PushHandle
    actor: Actor
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Один писатель на подписку
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class _Group:
    """Группа рассылки одной сессии."""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    subscriptions: dict[int, Subscription] = field(default_factory=dict)
    last_version: int = 0


def snapshot_frame(snapshot: SessionSnapshot) -> dict[str, Any]:
    """Первый кадр после подписки."""
    return {
        "type": "snapshot",
        "version": snapshot.version,
        "session": snapshot.model_dump(mode="json"),
    }


class PushHub:
    """
    Менеджер push-подписок торга.

    Поддерживает:
    - Подписку с проверкой участника и отправкой текущего снапшота
    - Рассылку кадра всем подписчикам сессии с удалением сбойных
    - Отбрасывание повторных и устаревших кадров по version
    - Закрытие группы при терминальном переходе
    """

    def __init__(self, guard: ParticipantGuard, write_timeout: float = 10.0) -> None:
        self._guard = guard
        self._write_timeout = write_timeout
        self._groups: dict[str, _Group] = {}

        # Для статистики
        self._frames_sent: int = 0
        self._handles_dropped: int = 0

    @property
    def active_groups(self) -> int:
        return len(self._groups)

    def _group(self, session_id: str) -> _Group:
        group = self._groups.get(session_id)
        if group is None:
            group = _Group()
            self._groups[session_id] = group
        return group

    async def subscribe(self, session_id: str, actor: Actor, handle: PushHandle) -> SessionSnapshot | None:
        """
        Проверяет участника, отправляет снапшот и регистрирует handle.
        После регистрации версия сверяется с хранилищем: пропущенный переход
        досылается кадром-снапшотом, по терминальной сессии группа закрывается.

        Returns:
            Отправленный снапшот; None, если первый кадр не доставлен и handle закрыт

        Raises:
            SessionNotFound, SessionTerminal, SessionExpired, NotParticipant
        """
        snapshot = await self._guard.authorize_subscription(session_id, actor)
        subscription = Subscription(handle=handle, actor=actor)

        group = self._group(session_id)
        async with group.lock:
            # Кадры рассылки не обгонят снапшот: группа заблокирована до регистрации
            delivered = await self._send(subscription, snapshot_frame(snapshot))
            if delivered:
                group.subscriptions[id(handle)] = subscription
            elif not group.subscriptions and self._groups.get(session_id) is group:
                del self._groups[session_id]

        if not delivered:
            self._handles_dropped += 1
            await self._close_handle(handle)
            await log_warning(
                f"Снапшот торга {session_id} не доставлен {actor.role.value}:{actor.id}, подписка отменена",
                extra={"session_id": session_id},
            )
            return None

        await log_info(
            f"Подписка {actor.role.value}:{actor.id} на торг {session_id}",
            type_msg=TypeMsg.DEBUG,
            extra={"session_id": session_id},
        )
        await self._catch_up(session_id, snapshot)
        return snapshot

    async def unsubscribe(self, session_id: str, handle: PushHandle) -> bool:
        """Удаляет handle из группы. Пустая группа удаляется."""
        group = self._groups.get(session_id)
        if group is None:
            return False
        async with group.lock:
            removed = group.subscriptions.pop(id(handle), None) is not None
            if not group.subscriptions and self._groups.get(session_id) is group:
                del self._groups[session_id]
        return removed

    async def remove_actor(self, session_id: str, actor_id: str) -> int:
        """Отписывает все handle пользователя (отказ непривязанного водителя)."""
        group = self._groups.get(session_id)
        if group is None:
            return 0
        async with group.lock:
            removed = [
                key for key, sub in group.subscriptions.items() if sub.actor.id == actor_id
            ]
            handles = [group.subscriptions.pop(key).handle for key in removed]
            if not group.subscriptions and self._groups.get(session_id) is group:
                del self._groups[session_id]

        for handle in handles:
            await self._close_handle(handle)
        return len(handles)

    async def publish(self, session_id: str, frame: dict[str, Any]) -> int:
        """
        Рассылает кадр подписчикам сессии.
        Блокировка держится только на время снятия копии набора подписок.

        Returns:
            Количество успешно отправленных кадров
        """
        group = self._groups.get(session_id)
        if group is None:
            return 0

        version = frame.get("version")
        async with group.lock:
            if isinstance(version, int):
                if version <= group.last_version:
                    await log_debug(
                        f"Кадр v{version} торга {session_id} уже разослан",
                        extra={"session_id": session_id},
                    )
                    return 0
                group.last_version = version
            targets = list(group.subscriptions.items())

        if not targets:
            return 0

        results = await asyncio.gather(*(self._send(sub, frame) for _, sub in targets))
        failed = [key for (key, _), ok in zip(targets, results) if not ok]

        if failed:
            async with group.lock:
                for key in failed:
                    group.subscriptions.pop(key, None)
            self._handles_dropped += len(failed)
            await log_warning(
                f"Торг {session_id}: отключено подписчиков после ошибки записи: {len(failed)}",
                extra={"session_id": session_id},
            )

        sent = len(targets) - len(failed)
        self._frames_sent += sent
        return sent

    async def reply(self, session_id: str, handle: PushHandle, frame: dict[str, Any]) -> bool:
        """Ответ одному подписчику (pong) через его писателя."""
        group = self._groups.get(session_id)
        subscription = group.subscriptions.get(id(handle)) if group is not None else None
        if subscription is None:
            return False
        return await self._send(subscription, frame)

    async def close(self, session_id: str) -> None:
        """Закрывает группу сессии и все её handle."""
        group = self._groups.pop(session_id, None)
        if group is None:
            return
        async with group.lock:
            handles = [sub.handle for sub in group.subscriptions.values()]
            group.subscriptions.clear()

        for handle in handles:
            await self._close_handle(handle)
        await log_info(
            f"Push-группа торга {session_id} закрыта ({len(handles)} подписчиков)",
            type_msg=TypeMsg.DEBUG,
            extra={"session_id": session_id},
        )

    async def close_all(self) -> None:
        """Закрывает все группы (остановка сервиса)."""
        for session_id in list(self._groups):
            await self.close(session_id)

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "active_groups": len(self._groups),
            "active_handles": sum(len(g.subscriptions) for g in self._groups.values()),
            "frames_sent": self._frames_sent,
            "handles_dropped": self._handles_dropped,
        }

    async def _catch_up(self, session_id: str, sent: SessionSnapshot) -> None:
        """Досылает переход, закоммиченный между чтением снапшота и регистрацией."""
        try:
            latest = await self._guard.load_stored_snapshot(session_id)
        except NegotiationError as e:
            await log_warning(
                f"Не удалось сверить снапшот торга {session_id} с хранилищем: {e.code}",
                extra={"session_id": session_id},
            )
            return
        if latest is None or latest.version <= sent.version:
            return

        await self.publish(session_id, snapshot_frame(latest))
        if latest.is_terminal:
            await self.close(session_id)

    async def _send(self, subscription: Subscription, frame: dict[str, Any]) -> bool:
        try:
            async with subscription.send_lock:
                await asyncio.wait_for(subscription.handle.send_json(frame), timeout=self._write_timeout)
            return True
        except Exception as e:
            await log_debug(f"Ошибка записи в push-канал {subscription.actor.id}: {e!r}")
            return False

    async def _close_handle(self, handle: PushHandle) -> None:
        try:
            await handle.close()
        except Exception as e:
            await log_debug(f"Push-канал уже закрыт: {e!r}")

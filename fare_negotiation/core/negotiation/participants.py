# fare_negotiation/core/negotiation/participants.py
"""
Проверка участников торга.
Общая для движка и push-хаба: кто может читать сессию и подписываться на неё.
"""

from __future__ import annotations

from typing import Optional, Union

from fare_negotiation.common.clock import Clock, SystemClock
from fare_negotiation.common.constants import BindingStatus, SessionStatus, TypeMsg
from fare_negotiation.common.logger import log_info
from fare_negotiation.core.negotiation.cache import SnapshotCache
from fare_negotiation.core.negotiation.errors import (
    NotParticipant,
    SessionExpired,
    SessionNotFound,
    SessionTerminal,
)
from fare_negotiation.core.negotiation.models import Actor, Session, SessionSnapshot, SessionView
from fare_negotiation.core.negotiation.repository import SessionRepository

SessionLike = Union[Session, SessionSnapshot]


def terminal_error(status: SessionStatus) -> SessionTerminal | SessionExpired:
    """Ошибка для действия над терминальной сессией."""
    if status is SessionStatus.EXPIRED:
        return SessionExpired(status=status.value)
    return SessionTerminal(status=status.value)


class ParticipantGuard:
    """
    Правила доступа:
    - пассажир видит только свои сессии;
    - водитель видит сессию, к которой привязан, либо ещё не привязанную
      сессию, если он от неё не отказывался.
    """

    def __init__(
        self,
        repository: SessionRepository,
        cache: SnapshotCache,
        clock: Clock | None = None,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._clock = clock or SystemClock()

    async def authorize_view(self, session: SessionLike, actor: Actor) -> None:
        """
        Raises:
            NotParticipant: Пользователь не участник сессии
        """
        session_id = session.id if isinstance(session, Session) else session.session_id

        if actor.is_rider:
            if session.rider_id != actor.id:
                raise NotParticipant(session_id=session_id)
            return

        if session.driver_id is not None:
            if session.driver_id != actor.id:
                raise NotParticipant(session_id=session_id)
            return

        status = await self._repository.get_participant_status(session_id, actor.id)
        if status is BindingStatus.REJECTED:
            raise NotParticipant("Водитель отказался от этого торга", session_id=session_id)

    async def load_stored_snapshot(self, session_id: str) -> Optional[SessionSnapshot]:
        """Снапшот прямо из хранилища, минуя кэш."""
        loaded = await self._repository.load(session_id)
        if loaded is None:
            return None
        session, offers = loaded
        return SessionView.from_session(session, offers).to_snapshot()

    async def load_snapshot(self, session_id: str) -> Optional[SessionSnapshot]:
        """Снапшот из кэша, при промахе — из хранилища."""
        return await self._cache.fetch(
            session_id,
            lambda: self.load_stored_snapshot(session_id),
            now_ts=self._clock.now().timestamp(),
        )

    async def authorize_subscription(self, session_id: str, actor: Actor) -> SessionSnapshot:
        """
        Проверяет право подписки на push-канал и возвращает текущий снапшот.
        Непривязанный водитель записывается как присоединившийся.

        Raises:
            SessionNotFound, SessionTerminal, SessionExpired, NotParticipant
        """
        snapshot = await self.load_snapshot(session_id)
        if snapshot is None:
            raise SessionNotFound(session_id=session_id)
        if snapshot.is_terminal:
            raise terminal_error(snapshot.status)

        await self.authorize_view(snapshot, actor)

        if actor.is_driver and snapshot.driver_id is None:
            await self._repository.add_participant(session_id, actor, self._clock.now())
            await log_info(
                f"Водитель {actor.id} присоединился к торгу {session_id}",
                type_msg=TypeMsg.DEBUG,
                extra={"session_id": session_id},
            )
        return snapshot

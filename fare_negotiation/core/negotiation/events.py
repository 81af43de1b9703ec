# fare_negotiation/core/negotiation/events.py
"""
События переходов сессии торга.
Один конверт для push-кадров и для шины событий.
"""

from __future__ import annotations

from typing import Any

from fare_negotiation.common.constants import SessionEventType
from fare_negotiation.core.negotiation.models import SessionSnapshot
from fare_negotiation.shared.events.base import DomainEvent, EventMetadata


class NegotiationEvent(DomainEvent):
    """Событие: сессия перешла в новое состояние (routing key negotiation.<type>)."""

    type: SessionEventType
    version: int
    session: SessionSnapshot

    @classmethod
    def build(
        cls,
        event_type: SessionEventType,
        snapshot: SessionSnapshot,
        correlation_id: str | None = None,
    ) -> "NegotiationEvent":
        return cls(
            event_type=event_type.subject,
            metadata=EventMetadata(correlation_id=correlation_id),
            type=event_type,
            version=snapshot.version,
            session=snapshot,
        )

    @property
    def session_id(self) -> str:
        return self.session.session_id

    def to_frame(self) -> dict[str, Any]:
        """Push-кадр {type, version, session}."""
        return {
            "type": self.type.value,
            "version": self.version,
            "session": self.session.model_dump(mode="json"),
        }

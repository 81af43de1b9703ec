# fare_negotiation/core/negotiation/__init__.py
"""
Домен торга о стоимости поездки.
Модели, хранилище, кэш снапшотов и движок сессий.
"""

from fare_negotiation.core.negotiation.models import (
    Actor,
    Coordinates,
    Offer,
    Quote,
    Session,
    SessionSnapshot,
    SessionView,
)
from fare_negotiation.core.negotiation.engine import NegotiationPolicy, SessionEngine
from fare_negotiation.core.negotiation.repository import SessionRepository
from fare_negotiation.core.negotiation.cache import SnapshotCache
from fare_negotiation.core.negotiation.participants import ParticipantGuard
from fare_negotiation.core.negotiation.events import NegotiationEvent

__all__ = [
    "Actor",
    "Coordinates",
    "Offer",
    "Quote",
    "Session",
    "SessionSnapshot",
    "SessionView",
    "NegotiationPolicy",
    "SessionEngine",
    "SessionRepository",
    "SnapshotCache",
    "ParticipantGuard",
    "NegotiationEvent",
]

# fare_negotiation/core/negotiation/state_machine.py
"""
Машина состояний сессии торга.
"""

from __future__ import annotations

from fare_negotiation.common.constants import SessionStatus
from fare_negotiation.core.negotiation.errors import InvalidTransition


class SessionStateMachine:
    """
    Допустимые переходы:
    - proposed → countered, accepted, withdrawn, expired
    - countered → countered, accepted, rejected, withdrawn, expired
    - accepted, rejected, withdrawn, expired — терминальные
    """

    VALID_TRANSITIONS: dict[SessionStatus, list[SessionStatus]] = {
        SessionStatus.PROPOSED: [
            SessionStatus.COUNTERED,
            SessionStatus.ACCEPTED,
            SessionStatus.WITHDRAWN,
            SessionStatus.EXPIRED,
        ],
        SessionStatus.COUNTERED: [
            SessionStatus.COUNTERED,
            SessionStatus.ACCEPTED,
            SessionStatus.REJECTED,
            SessionStatus.WITHDRAWN,
            SessionStatus.EXPIRED,
        ],
        SessionStatus.ACCEPTED: [],
        SessionStatus.REJECTED: [],
        SessionStatus.WITHDRAWN: [],
        SessionStatus.EXPIRED: [],
    }

    @classmethod
    def can_transition(cls, from_status: SessionStatus, to_status: SessionStatus) -> bool:
        """Проверяет, допустим ли переход."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: SessionStatus, to_status: SessionStatus) -> None:
        """Проверяет переход и выбрасывает исключение при ошибке."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransition(
                f"Недопустимый переход: {from_status.value} → {to_status.value}",
                from_status=from_status.value,
                to_status=to_status.value,
            )

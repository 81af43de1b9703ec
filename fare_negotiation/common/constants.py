# fare_negotiation/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ParticipantRole(str, Enum):
    """Роль участника торга (она же автор оферты)."""
    RIDER = "rider"
    DRIVER = "driver"


class SessionStatus(str, Enum):
    """Статусы сессии торга."""
    PROPOSED = "proposed"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        """Терминальный статус не допускает дальнейших изменений."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SessionStatus.ACCEPTED,
    SessionStatus.REJECTED,
    SessionStatus.WITHDRAWN,
    SessionStatus.EXPIRED,
})

ACTIVE_STATUSES = (SessionStatus.PROPOSED, SessionStatus.COUNTERED)


class SessionEventType(str, Enum):
    """Типы событий сессии (push-кадры и сообщения шины)."""
    CREATED = "created"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"

    @property
    def subject(self) -> str:
        """Routing key в шине событий."""
        return f"negotiation.{self.value}"


class BindingStatus(str, Enum):
    """Статусы привязки участника к сессии."""
    JOINED = "joined"
    BOUND = "bound"
    REJECTED = "rejected"


# Автор служебных переходов (истечение по таймеру)
SYSTEM_ACTOR_ID = "system"

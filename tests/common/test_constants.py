# tests/common/test_constants.py
"""
Тесты для модуля констант.
"""

from fare_negotiation.common.constants import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BindingStatus,
    ParticipantRole,
    SessionEventType,
    SessionStatus,
    TypeMsg,
)


class TestTypeMsg:
    """Тесты для enum TypeMsg."""

    def test_type_msg_values(self) -> None:
        assert [t.value for t in TypeMsg] == ["debug", "info", "warning", "error", "critical"]

    def test_type_msg_is_str_enum(self) -> None:
        assert isinstance(TypeMsg.INFO, str)


class TestParticipantRole:
    """Тесты для enum ParticipantRole."""

    def test_from_value(self) -> None:
        assert ParticipantRole("driver") is ParticipantRole.DRIVER


class TestSessionStatus:
    """Тесты для enum SessionStatus."""

    def test_active_and_terminal_partition(self) -> None:
        """Каждый статус либо активный, либо терминальный."""
        assert set(ACTIVE_STATUSES) | TERMINAL_STATUSES == set(SessionStatus)
        assert not set(ACTIVE_STATUSES) & TERMINAL_STATUSES

    def test_event_type_for_every_terminal_status(self) -> None:
        for status in TERMINAL_STATUSES:
            assert SessionEventType(status.value).subject == f"negotiation.{status.value}"


class TestBindingStatus:
    def test_values(self) -> None:
        assert {b.value for b in BindingStatus} == {"joined", "bound", "rejected"}

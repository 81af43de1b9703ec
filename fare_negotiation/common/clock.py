# fare_negotiation/common/clock.py
"""
Абстракция часов.
Движок торга получает время только через Clock, что делает дедлайны детерминированными в тестах.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Источник текущего времени (UTC, timezone-aware)."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """
    Системные часы.
    Не возвращают значение меньше ранее выданного, даже если системное время откатили назад.
    """

    def __init__(self) -> None:
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        with self._lock:
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
        return current


class ManualClock:
    """Часы с ручным управлением (для тестов и воспроизведения сценариев)."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Сдвигает время вперёд и возвращает новое значение."""
        if seconds < 0:
            raise ValueError("Часы не могут идти назад")
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, value: datetime) -> None:
        if value < self._now:
            raise ValueError("Часы не могут идти назад")
        self._now = value

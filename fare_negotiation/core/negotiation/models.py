# fare_negotiation/core/negotiation/models.py
"""
Модели данных торга.
"""

from __future__ import annotations

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fare_negotiation.common.constants import ParticipantRole, SessionStatus

CENT = Decimal("0.01")


def round_amount(value: float) -> float:
    """Сумма с точностью хранения NUMERIC(12,2), округление как у PostgreSQL."""
    if not math.isfinite(value):
        return value
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


class Actor(BaseModel):
    """Аутентифицированный участник запроса."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="ID пользователя")
    role: ParticipantRole = Field(..., description="Роль в торге")

    @property
    def is_rider(self) -> bool:
        return self.role is ParticipantRole.RIDER

    @property
    def is_driver(self) -> bool:
        return self.role is ParticipantRole.DRIVER


class Coordinates(BaseModel):
    """Точка на карте."""

    lat: float = Field(..., description="Широта")
    lng: float = Field(..., description="Долгота")


class Quote(BaseModel):
    """Ответ сервиса ценообразования: базовая цена и границы торга."""

    baseline: float = Field(..., gt=0, description="Базовая цена")
    floor: float = Field(..., gt=0, description="Минимально допустимая цена")
    ceiling: float = Field(..., gt=0, description="Максимально допустимая цена")
    currency: str = Field(..., min_length=3, max_length=3, description="Валюта тарифа")
    ttl_seconds: Optional[int] = Field(None, gt=0, description="Подсказка времени жизни торга")

    @model_validator(mode="after")
    def check_window(self) -> "Quote":
        """Окно торга упорядочено: floor <= baseline <= ceiling."""
        if not self.floor <= self.baseline <= self.ceiling:
            raise ValueError(
                f"Некорректное окно цены: floor={self.floor} baseline={self.baseline} ceiling={self.ceiling}"
            )
        return self


class Offer(BaseModel):
    """Одна ценовая оферта. Никогда не изменяется после записи."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID оферты")
    session_id: str = Field(..., description="UUID сессии")
    ordinal: int = Field(..., ge=1, description="Порядковый номер в сессии")
    originator: ParticipantRole = Field(..., description="Сторона, сделавшая оферту")
    actor_id: str = Field(..., description="ID автора оферты")
    amount: float = Field(..., gt=0, description="Сумма")
    currency: str = Field(..., description="Валюта")
    created_at: datetime = Field(..., description="Время создания")


class Session(BaseModel):
    """Строка сессии торга."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID сессии")
    rider_id: str = Field(..., description="ID пассажира")
    driver_id: Optional[str] = Field(None, description="ID привязанного водителя")

    pickup: Coordinates
    drop: Coordinates
    ride_type_id: str = Field(..., description="Тип поездки")

    currency: str = Field(..., description="Валюта, фиксируется при создании")
    baseline: float = Field(..., description="Базовая цена от ценообразования")
    floor: float = Field(..., description="Нижняя граница торга")
    ceiling: float = Field(..., description="Верхняя граница торга")

    status: SessionStatus = Field(SessionStatus.PROPOSED, description="Статус")
    current_offer_id: Optional[str] = Field(None, description="UUID текущей оферты")
    last_originator: Optional[ParticipantRole] = Field(None, description="Автор текущей оферты")

    created_at: datetime
    deadline_at: datetime
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    version: int = Field(1, ge=1, description="Счётчик версий для CAS")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired_at(self, now: datetime) -> bool:
        """Дедлайн наступил (для нетерминальной сессии)."""
        return not self.is_terminal and now >= self.deadline_at


class SessionSnapshot(BaseModel):
    """
    Компактное состояние сессии для кэша и push-кадров.
    Достаточно для проверки участника и отрисовки клиентом без полной истории.
    """

    session_id: str
    rider_id: str
    driver_id: Optional[str] = None
    status: SessionStatus
    current_offer: Optional[Offer] = None
    floor: float
    ceiling: float
    currency: str
    deadline_at: datetime
    version: int

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class SessionView(Session):
    """Сессия вместе с упорядоченной историей оферт."""

    offers: list[Offer] = Field(default_factory=list)
    current_offer: Optional[Offer] = None

    @classmethod
    def from_session(cls, session: Session, offers: list[Offer]) -> "SessionView":
        ordered = sorted(offers, key=lambda o: o.ordinal)
        current = next((o for o in ordered if o.id == session.current_offer_id), None)
        return cls(**session.model_dump(), offers=ordered, current_offer=current)

    def to_session(self) -> Session:
        return Session(**self.model_dump(exclude={"offers", "current_offer"}))

    def to_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.id,
            rider_id=self.rider_id,
            driver_id=self.driver_id,
            status=self.status,
            current_offer=self.current_offer,
            floor=self.floor,
            ceiling=self.ceiling,
            currency=self.currency,
            deadline_at=self.deadline_at,
            version=self.version,
        )


# =============================================================================
# HTTP DTO
# =============================================================================

class CreateSessionRequest(BaseModel):
    """Запрос пассажира на открытие торга."""

    pickup: Coordinates
    drop: Coordinates
    ride_type_id: str = Field(..., min_length=1)
    initial_amount: float = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class CounterRequest(BaseModel):
    """Встречное предложение."""

    amount: float = Field(..., gt=0)

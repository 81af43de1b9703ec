# fare_negotiation/core/negotiation/pricing.py
"""
Клиент сервиса ценообразования.
Торг спрашивает у него только базовую цену, границы и подсказку TTL.
"""

from __future__ import annotations

from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_error, log_info
from fare_negotiation.core.negotiation.errors import (
    InvalidGeography,
    PricingUnavailable,
    UnknownRideType,
)
from fare_negotiation.core.negotiation.models import Coordinates, Quote, round_amount


class PricingOracle(Protocol):
    """Источник котировок для открытия торга."""

    async def quote(self, pickup: Coordinates, drop: Coordinates, ride_type_id: str) -> Quote:
        ...


class FareEstimateResponse(BaseModel):
    """Ответ POST /api/v1/pricing/estimate."""

    estimated_fare: float = Field(..., gt=0)
    minimum_fare: float = Field(0.0, ge=0)
    currency: str
    surge_multiplier: float = 1.0
    distance_km: Optional[float] = None
    estimated_minutes: Optional[int] = None
    ttl_seconds: Optional[int] = Field(None, gt=0)


def build_quote(
    estimate: FareEstimateResponse,
    min_multiplier: float,
    max_multiplier: float,
) -> Quote:
    """
    Окно справедливой цены вокруг оценки.
    floor = max(minimum_fare, оценка × min), ceiling = max(floor, оценка × max).
    Базовая цена прижимается к окну: минимальный тариф выше оценки поднимает и её.
    """
    floor = round_amount(max(estimate.minimum_fare, estimate.estimated_fare * min_multiplier))
    ceiling = round_amount(max(floor, estimate.estimated_fare * max_multiplier))
    baseline = min(max(round_amount(estimate.estimated_fare), floor), ceiling)
    return Quote(
        baseline=baseline,
        floor=floor,
        ceiling=ceiling,
        currency=estimate.currency.upper(),
        ttl_seconds=estimate.ttl_seconds,
    )


class HttpPricingOracle:
    """HTTP клиент pricing_service."""

    ESTIMATE_PATH = "/api/v1/pricing/estimate"

    def __init__(
        self,
        base_url: str,
        timeout: float = 3.0,
        min_multiplier: float = 0.7,
        max_multiplier: float = 1.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._min_multiplier = min_multiplier
        self._max_multiplier = max_multiplier
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self.client.aclose()

    async def quote(self, pickup: Coordinates, drop: Coordinates, ride_type_id: str) -> Quote:
        """
        Запрашивает оценку стоимости и строит окно торга.

        Raises:
            UnknownRideType: Тип поездки неизвестен (404)
            InvalidGeography: Сервис отверг координаты (400/422)
            PricingUnavailable: Таймаут, сетевой сбой, 5xx или некорректный ответ
        """
        payload = {
            "pickup": {"latitude": pickup.lat, "longitude": pickup.lng},
            "destination": {"latitude": drop.lat, "longitude": drop.lng},
            "ride_type_id": ride_type_id,
        }

        try:
            response = await self.client.post(self.ESTIMATE_PATH, json=payload)
        except httpx.TimeoutException as e:
            await log_error(f"Таймаут запроса к pricing_service: {e}")
            raise PricingUnavailable("Сервис ценообразования не ответил вовремя") from e
        except httpx.HTTPError as e:
            await log_error(f"Ошибка запроса к pricing_service: {e}")
            raise PricingUnavailable() from e

        if response.status_code == 404:
            raise UnknownRideType(ride_type_id=ride_type_id)
        if response.status_code in (400, 422):
            raise InvalidGeography(details=response.text[:200])

        try:
            response.raise_for_status()
            estimate = FareEstimateResponse.model_validate(response.json())
        except (httpx.HTTPStatusError, ValidationError, ValueError) as e:
            await log_error(f"Некорректный ответ pricing_service ({response.status_code}): {e}")
            raise PricingUnavailable() from e

        quote = build_quote(estimate, self._min_multiplier, self._max_multiplier)
        await log_info(
            f"Котировка {ride_type_id}: {quote.baseline} {quote.currency} [{quote.floor}; {quote.ceiling}]",
            type_msg=TypeMsg.DEBUG,
        )
        return quote


def create_pricing_oracle() -> HttpPricingOracle:
    """Создаёт клиент по настройкам из конфигурации."""
    from fare_negotiation.config import settings

    return HttpPricingOracle(
        base_url=settings.pricing.PRICING_SERVICE_URL,
        timeout=settings.pricing.PRICING_TIMEOUT_SECONDS,
        min_multiplier=settings.pricing.MIN_PRICE_MULTIPLIER,
        max_multiplier=settings.pricing.MAX_PRICE_MULTIPLIER,
    )

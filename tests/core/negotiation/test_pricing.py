# tests/core/negotiation/test_pricing.py
"""
Тесты клиента сервиса ценообразования.
"""

from __future__ import annotations

import json

import httpx
import pytest
from pydantic import ValidationError

from fare_negotiation.core.negotiation.errors import InvalidGeography, PricingUnavailable, UnknownRideType
from fare_negotiation.core.negotiation.models import Coordinates, Quote
from fare_negotiation.core.negotiation.pricing import (
    FareEstimateResponse,
    HttpPricingOracle,
    build_quote,
    create_pricing_oracle,
)

PICKUP = Coordinates(lat=50.45, lng=30.52)
DROP = Coordinates(lat=50.40, lng=30.65)

ESTIMATE = {
    "estimated_fare": 60.0,
    "minimum_fare": 30.0,
    "currency": "usd",
    "surge_multiplier": 1.0,
    "distance_km": 8.4,
    "estimated_minutes": 17,
}


def _oracle(handler) -> HttpPricingOracle:
    client = httpx.AsyncClient(base_url="http://pricing", transport=httpx.MockTransport(handler))
    return HttpPricingOracle("http://pricing", min_multiplier=0.7, max_multiplier=1.5, client=client)


class TestBuildQuote:
    """Тесты расчёта окна торга."""

    def test_window_around_estimate(self) -> None:
        quote = build_quote(FareEstimateResponse(**ESTIMATE), 0.7, 1.5)

        assert quote.baseline == 60.0
        assert quote.floor == 42.0
        assert quote.ceiling == 90.0
        assert quote.currency == "USD"
        assert quote.ttl_seconds is None

    def test_minimum_fare_raises_floor(self) -> None:
        estimate = FareEstimateResponse(**{**ESTIMATE, "minimum_fare": 50.0})

        quote = build_quote(estimate, 0.7, 1.5)
        assert quote.floor == 50.0

    def test_ceiling_never_below_floor(self) -> None:
        estimate = FareEstimateResponse(**{**ESTIMATE, "minimum_fare": 95.0})

        quote = build_quote(estimate, 0.7, 1.5)
        assert quote.floor == quote.ceiling == 95.0

    def test_baseline_raised_to_minimum_fare(self) -> None:
        """Минимальный тариф выше оценки: окно не нарушает floor <= baseline <= ceiling."""
        estimate = FareEstimateResponse(estimated_fare=5.0, minimum_fare=8.0, currency="usd")

        quote = build_quote(estimate, 0.7, 1.5)

        assert (quote.floor, quote.baseline, quote.ceiling) == (8.0, 8.0, 8.0)

    def test_inconsistent_window_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Quote(baseline=5.0, floor=8.0, ceiling=8.0, currency="USD")

    def test_ttl_hint_passed_through(self) -> None:
        quote = build_quote(FareEstimateResponse(**{**ESTIMATE, "ttl_seconds": 90}), 0.7, 1.5)
        assert quote.ttl_seconds == 90


class TestHttpPricingOracle:
    """Тесты HTTP клиента pricing_service."""

    @pytest.mark.asyncio
    async def test_quote_success(self) -> None:
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=ESTIMATE)

        oracle = _oracle(handler)
        quote = await oracle.quote(PICKUP, DROP, "economy")
        await oracle.close()

        assert captured["path"] == "/api/v1/pricing/estimate"
        assert captured["body"] == {
            "pickup": {"latitude": 50.45, "longitude": 30.52},
            "destination": {"latitude": 50.40, "longitude": 30.65},
            "ride_type_id": "economy",
        }
        assert (quote.floor, quote.ceiling, quote.currency) == (42.0, 90.0, "USD")

    @pytest.mark.asyncio
    async def test_unknown_ride_type(self) -> None:
        oracle = _oracle(lambda request: httpx.Response(404, json={"detail": "not found"}))

        with pytest.raises(UnknownRideType):
            await oracle.quote(PICKUP, DROP, "helicopter")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 422])
    async def test_rejected_geography(self, status: int) -> None:
        oracle = _oracle(lambda request: httpx.Response(status, json={"detail": "bad coordinates"}))

        with pytest.raises(InvalidGeography):
            await oracle.quote(PICKUP, DROP, "economy")

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        oracle = _oracle(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(PricingUnavailable):
            await oracle.quote(PICKUP, DROP, "economy")

    @pytest.mark.asyncio
    async def test_malformed_body(self) -> None:
        oracle = _oracle(lambda request: httpx.Response(200, json={"price": "cheap"}))

        with pytest.raises(PricingUnavailable):
            await oracle.quote(PICKUP, DROP, "economy")

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        oracle = _oracle(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(PricingUnavailable):
            await oracle.quote(PICKUP, DROP, "economy")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Таймаут оракула — PricingUnavailable."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        oracle = _oracle(handler)

        with pytest.raises(PricingUnavailable):
            await oracle.quote(PICKUP, DROP, "economy")

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        oracle = _oracle(handler)

        with pytest.raises(PricingUnavailable):
            await oracle.quote(PICKUP, DROP, "economy")

    @pytest.mark.asyncio
    async def test_create_from_settings(self) -> None:
        from fare_negotiation.config import settings

        oracle = create_pricing_oracle()

        assert oracle.base_url == settings.pricing.PRICING_SERVICE_URL
        assert oracle.timeout == settings.pricing.PRICING_TIMEOUT_SECONDS
        await oracle.close()

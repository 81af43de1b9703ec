# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
Хранилище, Redis и сервис ценообразования заменены реализациями в памяти.
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from fare_negotiation.common.clock import ManualClock
from fare_negotiation.common.constants import (
    ACTIVE_STATUSES,
    BindingStatus,
    ParticipantRole,
    SessionStatus,
)
from fare_negotiation.core.negotiation.cache import SnapshotCache
from fare_negotiation.core.negotiation.engine import NegotiationPolicy, SessionEngine
from fare_negotiation.core.negotiation.errors import StoreUnavailable, VersionMismatch
from fare_negotiation.core.negotiation.models import Actor, Coordinates, Offer, Quote, Session
from fare_negotiation.core.negotiation.participants import ParticipantGuard
from fare_negotiation.services.negotiation.push_hub import PushHub


# =============================================================================
# РЕАЛИЗАЦИИ В ПАМЯТИ
# =============================================================================

class InMemorySessionRepository:
    """
    Хранилище сессий в памяти с теми же контрактами, что SessionRepository.
    Проверка версии и запись выполняются без точек переключения между ними,
    поэтому CAS атомарен относительно других задач event loop.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, Session] = {}
        self.offers: dict[str, list[Offer]] = {}
        self.participants: dict[tuple[str, str], BindingStatus] = {}
        self.unavailable = False
        self.load_delay = 0.0
        self.load_calls = 0
        self.cas_failures = 0

    def _check(self, operation: str) -> None:
        if self.unavailable:
            raise StoreUnavailable(operation=operation)

    async def create(self, session: Session, offer: Offer) -> None:
        await asyncio.sleep(0)
        self._check("create")
        # CHECK (floor_fare <= baseline_fare AND baseline_fare <= ceiling_fare)
        assert session.floor <= session.baseline <= session.ceiling, "нарушено ограничение окна цены"
        self.sessions[session.id] = session.model_copy(deep=True)
        self.offers[session.id] = [offer.model_copy()]
        self.participants[(session.id, session.rider_id)] = BindingStatus.BOUND

    async def append_offer(
        self,
        session_id: str,
        expected_version: int,
        offer: Offer,
        new_status: SessionStatus,
        new_deadline: datetime,
        bind_driver_id: Optional[str] = None,
    ) -> int:
        await asyncio.sleep(0)
        self._check("append_offer")
        row = self.sessions.get(session_id)
        if row is None or row.version != expected_version or row.status not in ACTIVE_STATUSES:
            self.cas_failures += 1
            raise VersionMismatch(session_id, expected_version)

        row.status = new_status
        row.deadline_at = new_deadline
        row.current_offer_id = offer.id
        row.last_originator = offer.originator
        row.driver_id = row.driver_id or bind_driver_id
        row.version += 1
        self.offers[session_id].append(offer.model_copy())
        if bind_driver_id is not None:
            self.participants[(session_id, bind_driver_id)] = BindingStatus.BOUND
        return row.version

    async def terminate(
        self,
        session_id: str,
        expected_version: int,
        terminal_status: SessionStatus,
        actor_id: str,
        now: datetime,
        bind_driver_id: Optional[str] = None,
    ) -> int:
        await asyncio.sleep(0)
        self._check("terminate")
        row = self.sessions.get(session_id)
        if row is None or row.version != expected_version or row.status not in ACTIVE_STATUSES:
            self.cas_failures += 1
            raise VersionMismatch(session_id, expected_version)

        row.status = terminal_status
        row.closed_at = now
        row.closed_by = actor_id
        row.driver_id = row.driver_id or bind_driver_id
        row.version += 1
        if bind_driver_id is not None:
            self.participants[(session_id, bind_driver_id)] = BindingStatus.BOUND
        return row.version

    async def load(self, session_id: str) -> Optional[tuple[Session, list[Offer]]]:
        self.load_calls += 1
        if self.load_delay:
            await asyncio.sleep(self.load_delay)
        else:
            await asyncio.sleep(0)
        self._check("load")
        row = self.sessions.get(session_id)
        if row is None:
            return None
        return row.model_copy(deep=True), [o.model_copy() for o in self.offers[session_id]]

    async def scan_expiring(self, before: datetime, limit: int = 500) -> list[str]:
        self._check("scan_expiring")
        due = sorted(
            (s for s in self.sessions.values() if s.status in ACTIVE_STATUSES and s.deadline_at <= before),
            key=lambda s: s.deadline_at,
        )
        return [s.id for s in due[:limit]]

    async def list_active_ids(self, actor: Actor) -> list[str]:
        if actor.is_rider:
            matches = [s for s in self.sessions.values() if s.rider_id == actor.id]
        else:
            matches = [s for s in self.sessions.values() if s.driver_id == actor.id]
        return [s.id for s in matches if s.status in ACTIVE_STATUSES]

    async def count_active_for_rider(self, rider_id: str) -> int:
        return sum(1 for s in self.sessions.values() if s.rider_id == rider_id and s.status in ACTIVE_STATUSES)

    async def count_active_for_driver(self, driver_id: str) -> int:
        return sum(1 for s in self.sessions.values() if s.driver_id == driver_id and s.status in ACTIVE_STATUSES)

    async def get_participant_status(self, session_id: str, actor_id: str) -> Optional[BindingStatus]:
        return self.participants.get((session_id, actor_id))

    async def add_participant(self, session_id: str, actor: Actor, now: datetime) -> None:
        self.participants.setdefault((session_id, actor.id), BindingStatus.JOINED)

    async def mark_participant_rejected(self, session_id: str, actor: Actor, now: datetime) -> None:
        if self.participants.get((session_id, actor.id)) is not BindingStatus.BOUND:
            self.participants[(session_id, actor.id)] = BindingStatus.REJECTED

    def row(self, session_id: str) -> Session:
        return self.sessions[session_id]


class InMemoryRedis:
    """Подмена RedisClient: типизированные ключи, TTL и журнал публикаций."""

    def __init__(self, namespace: str = "test") -> None:
        self.namespace = namespace
        self.store: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.published: list[tuple[str, str]] = []
        self.fail = False

    def _guard(self) -> None:
        if self.fail:
            raise ConnectionError("redis down")

    async def get_model(self, key: str, model_class: Any) -> Any:
        self._guard()
        data = self.store.get(key)
        return model_class.model_validate_json(data) if data is not None else None

    async def set_model(self, key: str, model: Any, ttl: Optional[int] = None) -> bool:
        self._guard()
        self.store[key] = model.model_dump_json()
        self.ttls[key] = ttl
        return True

    async def set_model_if_newer(self, key: str, model: Any, version: int, ttl: Optional[int] = None) -> bool:
        self._guard()
        current = self.store.get(key)
        if current is not None and json.loads(current).get("version", 0) >= version:
            return False
        return await self.set_model(key, model, ttl)

    async def delete(self, key: str) -> int:
        self._guard()
        return 1 if self.store.pop(key, None) is not None else 0

    async def publish(self, channel: str, message: str) -> int:
        self._guard()
        self.published.append((channel, message))
        return 1


class FakePricingOracle:
    """Сервис ценообразования с заранее заданной котировкой."""

    def __init__(self, quote: Optional[Quote] = None) -> None:
        self.quote_value = quote or Quote(baseline=60.0, floor=40.0, ceiling=100.0, currency="USD")
        self.error: Optional[BaseException] = None
        self.delay = 0.0
        self.calls = 0

    async def quote(self, pickup: Coordinates, drop: Coordinates, ride_type_id: str) -> Quote:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.quote_value


class FakeHandle:
    """Push-канал подписчика: копит кадры, может падать на записи."""

    def __init__(self, name: str = "handle") -> None:
        self.name = name
        self.frames: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.fail = False
        self.delay = 0.0

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("socket closed")
        self.frames.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = True
        self.close_code = code

    @property
    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]


# =============================================================================
# ФИКСТУРЫ ДОМЕНА
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def repository() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def pricing() -> FakePricingOracle:
    return FakePricingOracle()


@pytest.fixture
def cache(fake_redis: InMemoryRedis) -> SnapshotCache:
    return SnapshotCache(fake_redis, grace_ttl=60, terminal_ttl=300)


@pytest.fixture
def guard(repository: InMemorySessionRepository, cache: SnapshotCache, clock: ManualClock) -> ParticipantGuard:
    return ParticipantGuard(repository, cache, clock)


@pytest.fixture
def hub(guard: ParticipantGuard) -> PushHub:
    return PushHub(guard, write_timeout=0.5)


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий: публикация всегда подтверждена."""
    bus = AsyncMock()
    bus.publish.return_value = True
    return bus


@pytest.fixture
def policy() -> NegotiationPolicy:
    return NegotiationPolicy(
        default_ttl_seconds=120,
        deadline_increment_seconds=30,
        max_lifetime_seconds=600,
        max_cas_retries=3,
        request_timeout_seconds=2.0,
        event_publish_timeout_seconds=0.5,
        sweep_batch_size=500,
    )


@pytest.fixture
def engine(
    repository: InMemorySessionRepository,
    cache: SnapshotCache,
    pricing: FakePricingOracle,
    guard: ParticipantGuard,
    mock_event_bus: AsyncMock,
    hub: PushHub,
    clock: ManualClock,
    policy: NegotiationPolicy,
) -> SessionEngine:
    return SessionEngine(
        repository=repository,
        cache=cache,
        pricing=pricing,
        guard=guard,
        event_bus=mock_event_bus,
        push=hub,
        clock=clock,
        policy=policy,
    )


@pytest.fixture
def rider() -> Actor:
    return Actor(id="rider-1", role=ParticipantRole.RIDER)


@pytest.fixture
def driver() -> Actor:
    return Actor(id="driver-1", role=ParticipantRole.DRIVER)


@pytest.fixture
def other_driver() -> Actor:
    return Actor(id="driver-2", role=ParticipantRole.DRIVER)


@pytest.fixture
def pickup() -> Coordinates:
    return Coordinates(lat=50.4501, lng=30.5234)


@pytest.fixture
def drop() -> Coordinates:
    return Coordinates(lat=50.4021, lng=30.6528)


@pytest.fixture
def open_session(engine: SessionEngine, rider: Actor, pickup: Coordinates, drop: Coordinates):
    """Фабрика: открывает торг пассажира со стартовой суммой."""
    async def _open(amount: float = 50.0, actor: Actor | None = None):
        return await engine.create(actor or rider, pickup, drop, "economy", amount)

    return _open


@pytest.fixture
def handle_factory():
    """Фабрика push-каналов."""
    def _make(name: str = "handle") -> FakeHandle:
        return FakeHandle(name)

    return _make

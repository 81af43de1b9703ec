# fare_negotiation/services/negotiation/dependencies.py
"""
Dependency Injection для Negotiation Service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_info

if TYPE_CHECKING:
    from fare_negotiation.common.clock import Clock
    from fare_negotiation.core.negotiation.engine import SessionEngine
    from fare_negotiation.core.negotiation.pricing import PricingOracle
    from fare_negotiation.infra.database import DatabaseManager
    from fare_negotiation.infra.event_bus import EventBus
    from fare_negotiation.infra.redis_client import RedisClient
    from fare_negotiation.services.negotiation.push_hub import PushHub
    from fare_negotiation.services.negotiation.push_relay import RedisPushRelay


@dataclass
class NegotiationComponents:
    """Собранный движок и его push-доставка."""
    engine: "SessionEngine"
    push_hub: "PushHub"
    push_relay: "RedisPushRelay | None"
    pricing: "PricingOracle"


# Синглтоны для сервисов
_components: NegotiationComponents | None = None


def build_components(
    db: "DatabaseManager",
    redis: "RedisClient",
    event_bus: "EventBus | None",
    pricing: "PricingOracle | None" = None,
    clock: "Clock | None" = None,
) -> NegotiationComponents:
    """
    Собирает движок торга по настройкам: хранилище, кэш, проверку участников,
    push-хаб и (если включена) ретрансляцию через Redis.
    """
    from fare_negotiation.config import settings
    from fare_negotiation.common.clock import SystemClock
    from fare_negotiation.core.negotiation.cache import SnapshotCache
    from fare_negotiation.core.negotiation.engine import NegotiationPolicy, SessionEngine
    from fare_negotiation.core.negotiation.participants import ParticipantGuard
    from fare_negotiation.core.negotiation.pricing import create_pricing_oracle
    from fare_negotiation.core.negotiation.repository import SessionRepository
    from fare_negotiation.services.negotiation.push_hub import PushHub
    from fare_negotiation.services.negotiation.push_relay import RedisPushRelay

    clock = clock or SystemClock()
    pricing = pricing or create_pricing_oracle()

    repository = SessionRepository(db)
    cache = SnapshotCache(
        redis,
        grace_ttl=settings.redis_ttl.SNAPSHOT_GRACE_TTL,
        terminal_ttl=settings.redis_ttl.TERMINAL_SNAPSHOT_TTL,
    )
    guard = ParticipantGuard(repository, cache, clock)
    hub = PushHub(guard, write_timeout=settings.negotiation.NEGOTIATION_PUSH_WRITE_TIMEOUT_SECONDS)

    relay = None
    if settings.negotiation.NEGOTIATION_PUSH_RELAY_ENABLED:
        relay = RedisPushRelay(redis, hub)

    engine = SessionEngine(
        repository=repository,
        cache=cache,
        pricing=pricing,
        guard=guard,
        event_bus=event_bus,
        push=relay or hub,
        clock=clock,
        policy=NegotiationPolicy.from_settings(settings.negotiation),
    )
    return NegotiationComponents(engine=engine, push_hub=hub, push_relay=relay, pricing=pricing)


async def init_dependencies(
    db: "DatabaseManager",
    redis: "RedisClient",
    event_bus: "EventBus | None",
    pricing: "PricingOracle | None" = None,
    clock: "Clock | None" = None,
) -> NegotiationComponents:
    """Инициализировать зависимости при старте приложения."""
    global _components
    _components = build_components(db, redis, event_bus, pricing, clock)

    if _components.push_relay is not None:
        await _components.push_relay.start()

    await log_info("Зависимости сервиса торга инициализированы", type_msg=TypeMsg.INFO)
    return _components


def get_engine() -> "SessionEngine":
    """Получить движок торга."""
    if _components is None:
        raise RuntimeError("Движок торга не инициализирован. Вызовите init_dependencies()")
    return _components.engine


def get_push_hub() -> "PushHub":
    """Получить локальный push-хаб."""
    if _components is None:
        raise RuntimeError("Push-хаб не инициализирован. Вызовите init_dependencies()")
    return _components.push_hub


async def close_components(components: NegotiationComponents) -> None:
    """Останавливает ретранслятор, закрывает push-группы и HTTP клиент ценообразования."""
    if components.push_relay is not None:
        await components.push_relay.stop()
    await components.push_hub.close_all()

    close = getattr(components.pricing, "close", None)
    if close is not None:
        await close()


async def cleanup_dependencies() -> None:
    """Очистить ресурсы при остановке приложения."""
    global _components

    if _components is not None:
        await close_components(_components)
    _components = None

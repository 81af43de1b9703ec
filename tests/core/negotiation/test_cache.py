# tests/core/negotiation/test_cache.py
"""
Тесты кэша снапшотов.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from fare_negotiation.common.constants import SessionStatus
from fare_negotiation.core.negotiation.cache import SnapshotCache
from fare_negotiation.core.negotiation.models import SessionSnapshot


@pytest.fixture
def snapshot(clock) -> SessionSnapshot:
    return SessionSnapshot(
        session_id="s-1",
        rider_id="rider-1",
        status=SessionStatus.PROPOSED,
        floor=40.0,
        ceiling=100.0,
        currency="USD",
        deadline_at=clock.now() + timedelta(seconds=120),
        version=1,
    )


class TestSnapshotCache:
    """Тесты для SnapshotCache."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, cache, fake_redis, snapshot, clock) -> None:
        assert await cache.put(snapshot, clock.now().timestamp()) is True

        assert "negotiation:snapshot:s-1" in fake_redis.store
        cached = await cache.get("s-1")
        assert cached == snapshot

    @pytest.mark.asyncio
    async def test_live_ttl_covers_deadline_and_grace(self, cache, fake_redis, snapshot, clock) -> None:
        await cache.put(snapshot, clock.now().timestamp())
        assert fake_redis.ttls["negotiation:snapshot:s-1"] == 180

    @pytest.mark.asyncio
    async def test_overdue_ttl_is_grace(self, cache, fake_redis, snapshot, clock) -> None:
        clock.advance(500)
        await cache.put(snapshot, clock.now().timestamp())
        assert fake_redis.ttls["negotiation:snapshot:s-1"] == 60

    @pytest.mark.asyncio
    async def test_terminal_ttl(self, cache, fake_redis, snapshot, clock) -> None:
        terminal = snapshot.model_copy(update={"status": SessionStatus.ACCEPTED, "version": 2})

        await cache.put(terminal, clock.now().timestamp())
        assert fake_redis.ttls["negotiation:snapshot:s-1"] == 300

    @pytest.mark.asyncio
    async def test_get_miss(self, cache) -> None:
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_redis_failure_is_a_miss(self, cache, fake_redis, snapshot) -> None:
        """Недоступный Redis не ломает чтение."""
        fake_redis.fail = True

        assert await cache.get("s-1") is None
        assert await cache.put(snapshot) is False

    @pytest.mark.asyncio
    async def test_evict(self, cache, fake_redis, snapshot) -> None:
        await cache.put(snapshot)
        await cache.evict("s-1")

        assert fake_redis.store == {}

    @pytest.mark.asyncio
    async def test_fetch_hit_skips_loader(self, cache, snapshot) -> None:
        await cache.put(snapshot)

        async def loader():
            raise AssertionError("loader не должен вызываться")

        assert await cache.fetch("s-1", loader) == snapshot

    @pytest.mark.asyncio
    async def test_fetch_miss_repopulates(self, cache, fake_redis, snapshot, clock) -> None:
        calls = []

        async def loader():
            calls.append(1)
            return snapshot

        assert await cache.fetch("s-1", loader, now_ts=clock.now().timestamp()) == snapshot
        assert await cache.fetch("s-1", loader) == snapshot
        assert calls == [1]
        assert fake_redis.ttls["negotiation:snapshot:s-1"] == 180

    @pytest.mark.asyncio
    async def test_fetch_missing_session(self, cache, fake_redis) -> None:
        async def loader():
            return None

        assert await cache.fetch("s-1", loader) is None
        assert fake_redis.store == {}

    def test_custom_ttls(self, fake_redis, snapshot) -> None:
        cache = SnapshotCache(fake_redis, grace_ttl=5, terminal_ttl=10)
        now_ts = snapshot.deadline_at.timestamp() - 20

        assert cache._ttl_for(snapshot, now_ts) == 25
        assert cache._ttl_for(snapshot, None) == 10


class TestVersionGuard:
    """Запись снапшота не откатывает кэш к старой версии."""

    @pytest.mark.asyncio
    async def test_put_skips_older_version(self, cache, snapshot) -> None:
        newer = snapshot.model_copy(update={"status": SessionStatus.COUNTERED, "version": 2})

        assert await cache.put(newer) is True
        assert await cache.put(snapshot) is False
        assert await cache.put(newer) is False

        assert (await cache.get("s-1")).version == 2

    @pytest.mark.asyncio
    async def test_fetch_returns_commit_made_during_load(self, cache, snapshot) -> None:
        """Коммит v2 пока читалась v1: в кэше и в ответе остаётся v2."""
        accepted = snapshot.model_copy(
            update={"status": SessionStatus.ACCEPTED, "driver_id": "driver-1", "version": 2}
        )

        async def loader():
            await cache.put(accepted)
            return snapshot

        result = await cache.fetch("s-1", loader)

        assert result == accepted
        assert await cache.get("s-1") == accepted

    @pytest.mark.asyncio
    async def test_fetch_without_redis_returns_loaded(self, cache, fake_redis, snapshot) -> None:
        fake_redis.fail = True

        async def loader():
            return snapshot

        assert await cache.fetch("s-1", loader) == snapshot

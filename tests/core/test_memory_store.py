# tests/core/test_memory_store.py
"""
Тесты хранилища позиций и треков в памяти.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from src.core.tracking.retention import RetentionPolicy
from src.core.tracking.store import KeyedLock, MemoryLocationStore
from src.shared.models.location_dto import PositionRecord, TrailPoint


def make_record(clock, track_id: str = "TRK-ABC", lat: float = 55.75, **kwargs) -> PositionRecord:
    return PositionRecord(track_id=track_id, lat=lat, lng=37.61, timestamp=clock(), **kwargs)


def make_point(clock, lat: float = 55.75) -> TrailPoint:
    return TrailPoint(lat=lat, lng=37.61, timestamp=clock())


class TestKeyedLock:
    """Тесты блокировок по ключу."""

    @pytest.mark.asyncio
    async def test_lock_removed_after_release(self) -> None:
        locks = KeyedLock()
        async with locks.acquire("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_same_key_serializes(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.acquire("track"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLock()
        inside = asyncio.Event()

        async def holder() -> None:
            async with locks.acquire("a"):
                await asyncio.wait_for(inside.wait(), timeout=1)

        async def other() -> None:
            async with locks.acquire("b"):
                inside.set()

        await asyncio.gather(holder(), other())


class TestPositions:
    """Тесты операций с позициями."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, memory_store, clock) -> None:
        await memory_store.upsert_position(make_record(clock, speed=3.5))

        record = await memory_store.get_position("TRK-ABC")

        assert record is not None
        assert record.lat == 55.75
        assert record.speed == 3.5
        assert record.is_active is True

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, memory_store, clock) -> None:
        await memory_store.upsert_position(make_record(clock, lat=10.0))
        await memory_store.upsert_position(make_record(clock, lat=20.0))

        assert (await memory_store.get_position("TRK-ABC")).lat == 20.0
        assert await memory_store.count_positions() == 1

    @pytest.mark.asyncio
    async def test_get_unknown(self, memory_store) -> None:
        assert await memory_store.get_position("nope") is None

    @pytest.mark.asyncio
    async def test_returned_record_is_a_copy(self, memory_store, clock) -> None:
        await memory_store.upsert_position(make_record(clock))
        record = await memory_store.get_position("TRK-ABC")
        record.lat = 0.0

        assert (await memory_store.get_position("TRK-ABC")).lat == 55.75

    @pytest.mark.asyncio
    async def test_set_active(self, memory_store, clock) -> None:
        await memory_store.upsert_position(make_record(clock))

        record = await memory_store.set_active("TRK-ABC", False)

        assert record.is_active is False
        assert await memory_store.count_positions(is_active=True) == 0
        assert await memory_store.count_positions(is_active=False) == 1

    @pytest.mark.asyncio
    async def test_set_active_unknown(self, memory_store) -> None:
        assert await memory_store.set_active("nope", False) is None

    @pytest.mark.asyncio
    async def test_exists(self, memory_store, clock) -> None:
        assert not await memory_store.exists("TRK-ABC")
        await memory_store.upsert_position(make_record(clock))
        assert await memory_store.exists("TRK-ABC")


class TestTrails:
    """Тесты операций с треками."""

    @pytest.mark.asyncio
    async def test_append_creates_trail(self, memory_store, clock) -> None:
        trail = await memory_store.append_trail_point("TRK-ABC", make_point(clock))

        assert len(trail.points) == 1
        assert trail.last_updated == clock()
        assert await memory_store.count_trails() == 1

    @pytest.mark.asyncio
    async def test_trail_capped_at_max_points(self, memory_store, clock) -> None:
        """1500 точек → хранится 1000 последних в порядке добавления."""
        for i in range(1500):
            clock.advance(seconds=1)
            await memory_store.append_trail_point("TRK-ABC", make_point(clock, lat=i / 100))

        trail = await memory_store.get_trail_record("TRK-ABC")

        assert len(trail.points) == 1000
        assert trail.points[0].lat == 5.0
        assert trail.points[-1].lat == 14.99
        timestamps = [p.timestamp for p in trail.points]
        assert timestamps == sorted(timestamps)

    @pytest.mark.asyncio
    async def test_old_points_trimmed_on_append(self, memory_store, clock) -> None:
        await memory_store.append_trail_point("TRK-ABC", make_point(clock))
        clock.advance(hours=25)
        trail = await memory_store.append_trail_point("TRK-ABC", make_point(clock))

        assert len(trail.points) == 1
        assert trail.points[0].timestamp == clock()

    @pytest.mark.asyncio
    async def test_get_trail_window(self, memory_store, clock) -> None:
        await memory_store.append_trail_point("TRK-ABC", make_point(clock))
        clock.advance(hours=3)
        await memory_store.append_trail_point("TRK-ABC", make_point(clock))

        assert len(await memory_store.get_trail("TRK-ABC")) == 1
        assert len(await memory_store.get_trail("TRK-ABC", since=timedelta(hours=4))) == 2
        assert len(await memory_store.get_trail("TRK-ABC", since=None)) == 2

    @pytest.mark.asyncio
    async def test_get_trail_unknown(self, memory_store) -> None:
        assert await memory_store.get_trail("nope") == []

    @pytest.mark.asyncio
    async def test_concurrent_appends_lose_nothing(self, memory_store, clock) -> None:
        await asyncio.gather(*(
            memory_store.append_trail_point("TRK-ABC", make_point(clock, lat=float(i)))
            for i in range(50)
        ))

        trail = await memory_store.get_trail_record("TRK-ABC")
        assert sorted(p.lat for p in trail.points) == [float(i) for i in range(50)]

    @pytest.mark.asyncio
    async def test_late_point_inserted_by_time(self, memory_store, clock) -> None:
        early = make_point(clock, lat=1.0)
        clock.advance(seconds=10)
        await memory_store.append_trail_point("TRK-ABC", make_point(clock, lat=2.0))

        trail = await memory_store.append_trail_point("TRK-ABC", early)

        assert [p.lat for p in trail.points] == [1.0, 2.0]
        assert trail.last_updated == clock()


class TestRecordUpdate:
    """Тесты приёма координат одной операцией."""

    @pytest.mark.asyncio
    async def test_writes_position_and_point(self, memory_store, clock) -> None:
        record = await memory_store.record_update("TRK-ABC", 10.0, 20.0, speed=2.0)

        assert record.timestamp == clock()
        assert (await memory_store.get_position("TRK-ABC")).speed == 2.0
        trail = await memory_store.get_trail_record("TRK-ABC")
        assert trail.points[0].timestamp == record.timestamp

    @pytest.mark.asyncio
    async def test_concurrent_updates_keep_trail_ordered(self, memory_store, clock) -> None:
        async def update(i: int) -> None:
            await asyncio.sleep(0)
            clock.advance(milliseconds=1)
            await memory_store.record_update("TRK-ABC", float(i % 90), 0.0)

        await asyncio.gather(*(update(i) for i in range(30)))

        trail = await memory_store.get_trail_record("TRK-ABC")
        timestamps = [p.timestamp for p in trail.points]
        assert len(timestamps) == 30
        assert timestamps == sorted(timestamps)
        assert (await memory_store.get_position("TRK-ABC")).timestamp == timestamps[-1]


class TestCleanup:
    """Тесты удаления устаревших записей."""

    @pytest.mark.asyncio
    async def test_delete_stale_before(self, memory_store, clock) -> None:
        await memory_store.upsert_position(make_record(clock, track_id="old"))
        await memory_store.append_trail_point("old", make_point(clock))
        clock.advance(hours=25)
        await memory_store.upsert_position(make_record(clock, track_id="fresh"))
        await memory_store.append_trail_point("fresh", make_point(clock))

        cutoff = clock() - timedelta(hours=24)
        result = await memory_store.delete_stale_before(cutoff, cutoff)

        assert result.deleted_locations == 1
        assert result.deleted_paths == 1
        assert await memory_store.get_position("old") is None
        assert await memory_store.get_position("fresh") is not None

    @pytest.mark.asyncio
    async def test_record_at_cutoff_survives(self, memory_store, clock) -> None:
        await memory_store.upsert_position(make_record(clock))

        result = await memory_store.delete_stale_before(clock(), clock())

        assert result.deleted_locations == 0

    @pytest.mark.asyncio
    async def test_trim_expired_points(self, clock) -> None:
        store = MemoryLocationStore(RetentionPolicy(point_max_age=timedelta(hours=1)), clock=clock)
        await store.append_trail_point("TRK-ABC", make_point(clock))
        clock.advance(minutes=30)
        await store.append_trail_point("TRK-ABC", make_point(clock))
        clock.advance(minutes=45)

        removed = await store.trim_expired_points()

        assert removed == 1
        assert len((await store.get_trail_record("TRK-ABC")).points) == 1

    @pytest.mark.asyncio
    async def test_delete_track(self, memory_store, clock) -> None:
        await memory_store.upsert_position(make_record(clock))
        await memory_store.append_trail_point("TRK-ABC", make_point(clock))

        result = await memory_store.delete_track("TRK-ABC")

        assert (result.deleted_locations, result.deleted_paths) == (1, 1)
        assert not await memory_store.exists("TRK-ABC")
        assert await memory_store.get_trail("TRK-ABC") == []

    @pytest.mark.asyncio
    async def test_ping(self, memory_store) -> None:
        assert await memory_store.ping() is True

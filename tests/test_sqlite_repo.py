import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from weatherhub.domain.errors import StorageError
from weatherhub.domain.models import Reading
from weatherhub.storage.sqlite_repo import SQLiteRepository

T0 = datetime(2024, 11, 20, 12, 0, tzinfo=timezone.utc)


def test_store_and_query_newest_first(tmp_path) -> None:
    repo = SQLiteRepository(str(tmp_path / "w.db"))

    async def scenario():
        await repo.init()
        for i in range(5):
            await repo.store(Reading(rain_analog=i, rain_digital=1, temperature=20.0 + i, timestamp=T0 + timedelta(minutes=i)))
        everything = await repo.query_readings(limit=50)
        window = await repo.query_readings(
            start_ts=(T0 + timedelta(minutes=1)).isoformat(),
            end_ts=(T0 + timedelta(minutes=3)).isoformat(),
        )
        top = await repo.query_readings(limit=2)
        return everything, window, top

    everything, window, top = asyncio.run(scenario())

    assert [r.rain_analog for r in everything] == [4, 3, 2, 1, 0]
    assert [r.rain_analog for r in window] == [3, 2, 1]
    assert [r.rain_analog for r in top] == [4, 3]
    assert everything[-1].timestamp == T0
    assert everything[-1].pressure is None


def test_init_is_idempotent(tmp_path) -> None:
    repo = SQLiteRepository(str(tmp_path / "w.db"))

    async def scenario():
        await repo.init()
        await repo.store(Reading(rain_analog=1, timestamp=T0))
        await repo.init()
        return await repo.query_readings()

    assert len(asyncio.run(scenario())) == 1


def test_unstamped_reading_is_refused(tmp_path) -> None:
    repo = SQLiteRepository(str(tmp_path / "w.db"))

    async def scenario():
        await repo.init()
        await repo.store(Reading(rain_analog=1))

    with pytest.raises(StorageError):
        asyncio.run(scenario())


def test_store_without_table_raises_storage_error(tmp_path) -> None:
    repo = SQLiteRepository(str(tmp_path / "w.db"))

    with pytest.raises(StorageError):
        asyncio.run(repo.store(Reading(rain_analog=1, timestamp=T0)))


def test_integer_too_large_for_sqlite_is_storage_error(tmp_path) -> None:
    repo = SQLiteRepository(str(tmp_path / "w.db"))

    async def scenario():
        await repo.init()
        await repo.store(Reading(rain_analog=10 ** 20, timestamp=T0))

    with pytest.raises(StorageError):
        asyncio.run(scenario())

import asyncio
import json
from datetime import date, datetime, timezone

import pytest

from tests.fakes import YieldingKeyValueStore
from watermark_proxy.statistics import STATISTICS_KEY, StatisticsStore, last_seven_days


def test_get_initializes_and_persists_empty_record(statistics, kv):
    stats = asyncio.run(statistics.get())

    assert stats.total_runs == 0
    assert stats.successful_runs == 0
    assert stats.failed_runs == 0
    assert stats.daily_stats == {}
    assert stats.last_run_timestamp == "2026-10-18T09:30:00+00:00"
    assert asyncio.run(kv.get(STATISTICS_KEY)) is not None


def test_get_is_idempotent(statistics):
    first = asyncio.run(statistics.get())
    second = asyncio.run(statistics.get())

    assert first == second


def test_record_is_stored_with_camel_case_keys(statistics, kv):
    asyncio.run(statistics.increment_daily("total"))

    stored = json.loads(asyncio.run(kv.get(STATISTICS_KEY)))
    assert set(stored) == {"totalRuns", "successfulRuns", "failedRuns", "lastRunTimestamp", "dailyStats"}
    assert stored["dailyStats"] == {"2026-10-18": {"total": 1, "successful": 0, "failed": 0}}


def test_record_without_daily_stats_is_tolerated(statistics, kv):
    legacy = {"totalRuns": 4, "successfulRuns": 3, "failedRuns": 1, "lastRunTimestamp": "2024-01-01T00:00:00Z"}
    asyncio.run(kv.put(STATISTICS_KEY, json.dumps(legacy)))

    stats = asyncio.run(statistics.get())
    assert stats.total_runs == 4
    assert stats.daily_stats == {}

    stats = asyncio.run(statistics.increment_daily("failed"))
    assert stats.daily_stats["2026-10-18"].failed == 1


def test_increment_counter(statistics):
    asyncio.run(statistics.increment_counter("totalRuns"))
    asyncio.run(statistics.increment_counter("totalRuns"))
    stats = asyncio.run(statistics.increment_counter("failedRuns"))

    assert stats.total_runs == 2
    assert stats.failed_runs == 1
    assert stats.successful_runs == 0


def test_increment_unknown_counter_rejected(statistics):
    with pytest.raises(ValueError):
        asyncio.run(statistics.increment_counter("bogusRuns"))
    with pytest.raises(ValueError):
        asyncio.run(statistics.increment_daily("bogus"))


def test_touch_timestamp_uses_clock(statistics, clock):
    asyncio.run(statistics.get())
    clock.now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    stats = asyncio.run(statistics.touch_timestamp())
    assert stats.last_run_timestamp == "2026-10-19T12:00:00+00:00"


def test_daily_rollover_creates_separate_entries(statistics, clock):
    asyncio.run(statistics.record_received())
    clock.now = datetime(2026, 10, 20, 8, 0, tzinfo=timezone.utc)
    asyncio.run(statistics.record_received())

    stats = asyncio.run(statistics.get())
    assert stats.daily_stats["2026-10-18"].total == 1
    assert stats.daily_stats["2026-10-20"].total == 1
    assert "2026-10-19" not in stats.daily_stats
    assert stats.total_runs == 2


def test_record_helpers_update_counter_groups(statistics):
    asyncio.run(statistics.record_received())
    asyncio.run(statistics.record_success())
    asyncio.run(statistics.record_received())
    asyncio.run(statistics.record_failure())

    stats = asyncio.run(statistics.get())
    assert (stats.total_runs, stats.successful_runs, stats.failed_runs) == (2, 1, 1)
    today = stats.daily_stats["2026-10-18"]
    assert (today.total, today.successful, today.failed) == (2, 1, 1)


def test_concurrent_increments_in_one_process_are_not_lost(statistics):
    async def hammer():
        await asyncio.gather(*(statistics.increment_counter("totalRuns") for _ in range(20)))
        return await statistics.get()

    assert asyncio.run(hammer()).total_runs == 20


def test_last_seven_days_most_recent_first():
    days = last_seven_days(date(2026, 3, 2))

    assert days == [
        "2026-03-02",
        "2026-03-01",
        "2026-02-28",
        "2026-02-27",
        "2026-02-26",
        "2026-02-25",
        "2026-02-24",
    ]


def test_first_read_does_not_overwrite_concurrent_increment(clock):
    statistics = StatisticsStore(YieldingKeyValueStore(), clock=clock)

    async def race():
        await asyncio.gather(statistics.get(), statistics.increment_counter("totalRuns"), statistics.get())
        return await statistics.get()

    assert asyncio.run(race()).total_runs == 1

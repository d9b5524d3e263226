import asyncio
import json
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from watermark_proxy.kv import KeyValueStore
from watermark_proxy.schemas import DailyStats, Statistics

logger = logging.getLogger(__name__)

STATISTICS_KEY = "statistics"

COUNTERS = {
    "totalRuns": "total_runs",
    "successfulRuns": "successful_runs",
    "failedRuns": "failed_runs",
}
DAILY_FIELDS = ("total", "successful", "failed")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def last_seven_days(today: date) -> list[str]:
    return [(today - timedelta(days=offset)).isoformat() for offset in range(7)]


class StatisticsStore:
    """Usage counters kept as one JSON record under a single key.

    Every mutation reads the whole record, changes one field and writes it
    back. The lock only orders mutations issued from this process; writers
    in other processes sharing the same backend can still lose updates.
    """

    def __init__(self, kv: KeyValueStore, clock: Callable[[], datetime] = _utc_now) -> None:
        self._kv = kv
        self._clock = clock
        self._lock = asyncio.Lock()

    def today(self) -> date:
        return self._clock().date()

    async def _read(self) -> Statistics | None:
        raw = await self._kv.get(STATISTICS_KEY)
        if raw is None:
            return None
        return Statistics.model_validate(json.loads(raw))

    async def _write(self, stats: Statistics) -> None:
        await self._kv.put(STATISTICS_KEY, stats.model_dump_json(by_alias=True))

    async def _load(self) -> Statistics:
        stats = await self._read()
        if stats is None:
            stats = Statistics(last_run_timestamp=self._clock().isoformat())
            await self._write(stats)
            logger.info("Initialized statistics record")
        return stats

    async def get(self) -> Statistics:
        stats = await self._read()
        if stats is not None:
            return stats
        # Initializing is a write; it must not land between a mutation's read and write.
        async with self._lock:
            return await self._load()

    async def _mutate(self, change: Callable[[Statistics], None]) -> Statistics:
        async with self._lock:
            stats = await self._load()
            change(stats)
            await self._write(stats)
            return stats

    async def increment_counter(self, name: str) -> Statistics:
        if name not in COUNTERS:
            raise ValueError(f"Unknown counter: {name}")
        attribute = COUNTERS[name]

        def change(stats: Statistics) -> None:
            setattr(stats, attribute, getattr(stats, attribute) + 1)

        return await self._mutate(change)

    async def touch_timestamp(self) -> Statistics:
        def change(stats: Statistics) -> None:
            stats.last_run_timestamp = self._clock().isoformat()

        return await self._mutate(change)

    async def increment_daily(self, field: str) -> Statistics:
        if field not in DAILY_FIELDS:
            raise ValueError(f"Unknown daily field: {field}")
        day = self.today().isoformat()

        def change(stats: Statistics) -> None:
            entry = stats.daily_stats.setdefault(day, DailyStats())
            setattr(entry, field, getattr(entry, field) + 1)

        return await self._mutate(change)

    async def record_received(self) -> None:
        await self.increment_counter("totalRuns")
        await self.touch_timestamp()
        await self.increment_daily("total")

    async def record_success(self) -> None:
        await self.increment_counter("successfulRuns")
        await self.increment_daily("successful")

    async def record_failure(self) -> None:
        await self.increment_counter("failedRuns")
        await self.increment_daily("failed")

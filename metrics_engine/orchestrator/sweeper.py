"""
Adaptive Metrics Cache — Retention Sweeper
────────────────────────────────────────────
Deletes price samples older than the retention window and cache rows
whose expiry has already passed.

Idempotent and safe to overlap with itself. The two halves run
independently: a failure in one is logged and the other still runs.
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Callable, List

from metrics_engine.cache.cache_store import CacheStore, utcnow
from metrics_engine.config import RETENTION_DAYS
from metrics_engine.history.timeseries import TimeSeriesStore

log = logging.getLogger("amc.sweeper")


@dataclass
class SweepReport:
    cutoff:                str
    samples_removed:       int = 0
    cache_entries_removed: int = 0
    errors:                List[str] = field(default_factory=list)
    duration_s:            float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return asdict(self)


class RetentionSweeper:

    def __init__(
        self,
        cache: CacheStore,
        history: TimeSeriesStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cache    = cache
        self.history  = history
        self._clock   = clock

    async def sweep(self, retention_days: int = RETENTION_DAYS) -> SweepReport:
        if retention_days < 0:
            raise ValueError(f"retention_days must be >= 0, got {retention_days}")

        t_start = time.monotonic()
        now     = self._clock()
        cutoff  = now - timedelta(days=retention_days)
        report  = SweepReport(cutoff=cutoff.isoformat())

        try:
            report.samples_removed = await self.history.delete_before(cutoff)
        except Exception as e:
            log.error(f"Price history cleanup failed: {e}")
            report.errors.append(f"history: {e}")

        try:
            report.cache_entries_removed = await self.cache.delete_expired(now)
        except Exception as e:
            log.error(f"Cache cleanup failed: {e}")
            report.errors.append(f"cache: {e}")

        report.duration_s = round(time.monotonic() - t_start, 3)
        log.info(
            f"Sweep done in {report.duration_s}s — {report.samples_removed} samples, "
            f"{report.cache_entries_removed} cache rows removed (retention={retention_days}d)"
        )
        return report

"""
Adaptive Metrics Cache — Background Collector
═══════════════════════════════════════════════

Keeps the cache and price history warm without waiting for requests.

  collect       every N ms    fetch_token_metrics() → volatility → next N
  cleanup       every 24h     retention sweep

The collection interval follows the market:
  - after each successful run the interval policy recommends a cadence;
    if it moved, the job is rescheduled and the cache TTL follows it.
  - after COLLECTOR_MAX_ERRORS consecutive failures the interval doubles,
    capped at COLLECTOR_MAX_BACKOFF_MS. One success resets the count.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from metrics_engine.api.metrics_endpoint import AdaptiveMetricsCache
from metrics_engine.config import (
    CLEANUP_EVERY_HOURS,
    COLLECTOR_BASE_INTERVAL_MS,
    COLLECTOR_MAX_BACKOFF_MS,
    COLLECTOR_MAX_ERRORS,
    RETENTION_DAYS,
)

log = logging.getLogger("amc.scheduler")

COLLECT_JOB_ID = "collect_token_metrics"
CLEANUP_JOB_ID = "cleanup_old_data"
GRACE_S        = 30


class MetricsCollector:

    def __init__(
        self,
        amc: AdaptiveMetricsCache,
        base_interval_ms: int = COLLECTOR_BASE_INTERVAL_MS,
        max_errors: int = COLLECTOR_MAX_ERRORS,
        max_backoff_ms: int = COLLECTOR_MAX_BACKOFF_MS,
        retention_days: int = RETENTION_DAYS,
        cleanup_every_hours: int = CLEANUP_EVERY_HOURS,
    ):
        self.amc                 = amc
        self.max_errors          = max_errors
        self.max_backoff_ms      = max_backoff_ms
        self.retention_days      = retention_days
        self.cleanup_every_hours = cleanup_every_hours
        self.current_interval_ms = base_interval_ms
        self.consecutive_errors  = 0
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # ── Jobs ──────────────────────────────────────────────────
    async def collect(self) -> None:
        pending: Optional[int] = None
        try:
            result = await self.amc.fetch_token_metrics()
            if result.changed:
                log.info(f"Token metrics updated (from cache: {result.from_cache})")
            self.consecutive_errors = 0

            recommended = await self.amc.determine_poll_interval(self.amc.token_address)
            # cache TTL and job cadence are synced independently
            if recommended != self.amc.fetcher.get_poll_interval():
                self.amc.fetcher.set_poll_interval(recommended)
            if recommended != self.current_interval_ms:
                pending = recommended
        except Exception as e:
            self.consecutive_errors += 1
            log.error(f"Collection failed ({self.consecutive_errors}/{self.max_errors}): {e}")
            if self.consecutive_errors >= self.max_errors:
                pending = min(self.current_interval_ms * 2, self.max_backoff_ms)
                log.warning(f"Too many errors, backing off to {pending}ms")

        if pending is not None and pending != self.current_interval_ms:
            self._apply_interval(pending)

    async def cleanup(self) -> None:
        try:
            report = await self.amc.cleanup_old_data(self.retention_days)
            if report.ok:
                log.info("Old data cleaned up")
            else:
                log.warning(f"Cleanup finished with errors: {report.errors}")
        except Exception as e:
            log.error(f"Cleanup error: {e}")

    def _apply_interval(self, interval_ms: int) -> None:
        self.current_interval_ms = interval_ms
        if self.is_running:
            self._scheduler.reschedule_job(COLLECT_JOB_ID, trigger=self._collect_trigger())
        log.info(f"Collection interval set to {interval_ms}ms")

    def _collect_trigger(self) -> IntervalTrigger:
        return IntervalTrigger(seconds=self.current_interval_ms / 1000)

    # ── Lifecycle ─────────────────────────────────────────────
    async def start(self) -> None:
        if self.is_running:
            log.warning("Collector already running — ignoring start call")
            return

        log.info("Starting background data collection...")
        await self.collect()

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.collect,
            trigger=self._collect_trigger(),
            id=COLLECT_JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=GRACE_S,
        )
        self._scheduler.add_job(
            self.cleanup,
            trigger=IntervalTrigger(hours=self.cleanup_every_hours),
            id=CLEANUP_JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=GRACE_S,
        )
        self._scheduler.start()
        log.info(f"Collector live — every {self.current_interval_ms}ms, cleanup every {self.cleanup_every_hours}h")

    def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        log.info("Collector stopped")

    def get_status(self) -> dict:
        return {
            "is_running":  self.is_running,
            "interval_ms": self.current_interval_ms,
            "errors":      self.consecutive_errors,
        }

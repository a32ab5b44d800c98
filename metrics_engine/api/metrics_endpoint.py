"""
Adaptive Metrics Cache — Public Facade
────────────────────────────────────────
Everything the HTTP layer and the background collector call:

  fetch_token_metrics()                      → cached/fresh metrics for the configured token
  get_historical_prices(token, timeframe)    → chart samples, oldest first
  determine_poll_interval(token)             → volatility → tier → ms
  cleanup_old_data(retention_days)           → retention sweep

One instance per process, built in the app lifespan and injected.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import httpx

from metrics_engine.cache.cache_store import CacheStore, MemoryCacheStore, RedisCacheStore, utcnow
from metrics_engine.cache.interval_config import DEFAULT_POLL_INTERVAL_MS, DEFAULT_TIMEFRAME, TIMEFRAMES
from metrics_engine.config import REQUEST_TIMEOUT, RETENTION_DAYS, TOKEN_ADDRESS, token_cache_key, token_endpoint
from metrics_engine.history.history_writer import HistoryWriter
from metrics_engine.history.timeseries import (
    MemoryTimeSeriesStore, PriceSample, RedisTimeSeriesStore, TimeSeriesStore,
)
from metrics_engine.models.token_metrics import TokenMetricsResult, parse_metrics
from metrics_engine.orchestrator.fetcher import SmartFetcher
from metrics_engine.orchestrator.interval_policy import IntervalPolicy
from metrics_engine.orchestrator.sweeper import RetentionSweeper, SweepReport
from metrics_engine.orchestrator.volatility import VolatilityEstimator

log = logging.getLogger("amc.api")


def bucket_samples(samples: List[PriceSample], bucket_ms: int) -> List[PriceSample]:
    """Keep the last sample in each bucket_ms-wide bucket."""
    buckets = {}
    for s in samples:
        bucket = int(s.timestamp.timestamp() * 1000) // bucket_ms
        buckets[bucket] = s
    return [buckets[b] for b in sorted(buckets)]


class AdaptiveMetricsCache:

    def __init__(
        self,
        cache_store: CacheStore,
        history_store: TimeSeriesStore,
        client: httpx.AsyncClient,
        policy: Optional[IntervalPolicy] = None,
        token_address: str = TOKEN_ADDRESS,
        endpoint: Optional[str] = None,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        timeout: float = REQUEST_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
        await_history: bool = False,
    ):
        self.token_address = token_address
        self.endpoint      = endpoint or token_endpoint(token_address)
        self.cache_key     = token_cache_key(token_address)
        self.cache_store   = cache_store
        self.history_store = history_store
        self.policy        = policy or IntervalPolicy()
        self._clock        = clock

        self.history    = HistoryWriter(history_store, clock=clock)
        self.fetcher    = SmartFetcher(
            cache_store, self.history, client,
            poll_interval_ms=poll_interval_ms, timeout=timeout,
            clock=clock, await_history=await_history,
        )
        self.volatility = VolatilityEstimator(history_store, clock=clock)
        self.sweeper    = RetentionSweeper(cache_store, history_store, clock=clock)

    @classmethod
    def build(cls, redis, client: httpx.AsyncClient, **kwargs) -> "AdaptiveMetricsCache":
        """Redis-backed stores when a connection is available, in-memory otherwise."""
        clock = kwargs.get("clock", utcnow)
        if redis is not None:
            return cls(RedisCacheStore(redis, clock=clock), RedisTimeSeriesStore(redis), client, **kwargs)
        return cls(MemoryCacheStore(clock=clock), MemoryTimeSeriesStore(), client, **kwargs)

    # ── Metrics ───────────────────────────────────────────────
    async def fetch_token_metrics(self, timeout: Optional[float] = None) -> TokenMetricsResult:
        """Raises MetricsUnavailableError only when nothing at all can be served."""
        result = await self.fetcher.fetch_with_change_detection(
            self.endpoint, self.cache_key,
            timeout=timeout, token_address=self.token_address,
        )
        return TokenMetricsResult(
            data=result.data,
            metrics=parse_metrics(result.data),
            from_cache=result.from_cache,
            changed=result.changed,
        )

    # ── History ───────────────────────────────────────────────
    async def get_historical_prices(
        self,
        token_address: str,
        timeframe: str = DEFAULT_TIMEFRAME,
        downsample: bool = False,
    ) -> List[dict]:
        lookback_ms, bucket_ms = TIMEFRAMES.get(timeframe, TIMEFRAMES[DEFAULT_TIMEFRAME])
        start = self._clock() - timedelta(milliseconds=lookback_ms)
        try:
            samples = await self.history_store.range(token_address, start)
        except Exception as e:
            log.warning(f"{token_address}: history read failed ({timeframe}): {e}")
            return []

        samples = sorted(samples, key=lambda s: s.timestamp)
        if downsample:
            samples = bucket_samples(samples, bucket_ms)
        return [s.chart_point() for s in samples]

    # ── Cadence ───────────────────────────────────────────────
    async def estimate_volatility(self, token_address: str) -> float:
        return await self.volatility.estimate(token_address)

    async def determine_poll_interval(self, token_address: str) -> int:
        volatility = await self.volatility.estimate(token_address)
        return self.policy.recommend_interval(volatility)

    # ── Retention ─────────────────────────────────────────────
    async def cleanup_old_data(self, retention_days: int = RETENTION_DAYS) -> SweepReport:
        return await self.sweeper.sweep(retention_days)

    # ── Lifecycle ─────────────────────────────────────────────
    async def close(self) -> None:
        await self.fetcher.drain()

    def status(self) -> dict:
        return {
            "token_address":    self.token_address,
            "endpoint":         self.endpoint,
            "cache_key":        self.cache_key,
            "poll_interval_ms": self.fetcher.get_poll_interval(),
            "last_known_keys":  self.fetcher.last_known_keys(),
            "policy":           self.policy.summary(),
            "backend":          type(self.cache_store).__name__,
        }

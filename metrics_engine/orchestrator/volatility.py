"""
Adaptive Metrics Cache — Volatility Estimator
───────────────────────────────────────────────
Mean absolute percentage price change between consecutive samples
over the trailing window (default one hour, most recent 100 samples).

Advisory only. Any failure reads as 0.0, which the interval policy
maps to the slowest ("stale") tier.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Sequence

from metrics_engine.cache.cache_store import utcnow
from metrics_engine.cache.interval_config import VOLATILITY_MAX_SAMPLES, VOLATILITY_WINDOW_MINUTES
from metrics_engine.history.timeseries import TimeSeriesStore

log = logging.getLogger("amc.volatility")


def mean_abs_pct_change(prices: Sequence[float]) -> float:
    """Pairs starting from a zero price are skipped; fewer than 2 usable prices → 0.0."""
    changes: List[float] = []
    for prev, cur in zip(prices, prices[1:]):
        if prev == 0:
            continue
        changes.append(abs((cur - prev) / prev) * 100)
    if not changes:
        return 0.0
    return sum(changes) / len(changes)


class VolatilityEstimator:

    def __init__(
        self,
        store: TimeSeriesStore,
        window_minutes: int = VOLATILITY_WINDOW_MINUTES,
        max_samples: int = VOLATILITY_MAX_SAMPLES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store          = store
        self.window         = timedelta(minutes=window_minutes)
        self.max_samples    = max_samples
        self._clock         = clock

    async def estimate(self, token_address: str) -> float:
        try:
            samples = await self.store.range(token_address, self._clock() - self.window)
        except Exception as e:
            log.warning(f"{token_address}: volatility read failed: {e}")
            return 0.0

        if len(samples) < 2:
            return 0.0

        # don't trust insertion order
        samples = sorted(samples, key=lambda s: s.timestamp)[-self.max_samples:]
        volatility = mean_abs_pct_change([s.price for s in samples])
        log.debug(f"{token_address}: volatility {volatility:.3f}% over {len(samples)} samples")
        return volatility

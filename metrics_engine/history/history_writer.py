"""
Adaptive Metrics Cache — History Writer
─────────────────────────────────────────
Appends one normalised PriceSample when the delta detector says the
market actually moved. Best-effort: a failed write is logged and
dropped, it never reaches the metrics fetch path.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from metrics_engine.cache.cache_store import utcnow
from metrics_engine.config import HISTORY_SOURCE
from metrics_engine.history.timeseries import PriceSample, TimeSeriesStore
from metrics_engine.models.token_metrics import parse_metrics

log = logging.getLogger("amc.history")


class HistoryWriter:

    def __init__(
        self,
        store: TimeSeriesStore,
        source: str = HISTORY_SOURCE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store   = store
        self.source  = source
        self._clock  = clock

    async def record(self, token_address: str, payload: Any) -> Optional[PriceSample]:
        """Returns the written sample, or None if skipped or failed."""
        try:
            metrics = parse_metrics(payload)
            if metrics.price <= 0:
                log.debug(f"{token_address}: price {metrics.price} — history write skipped")
                return None

            sample = PriceSample(
                token_address=token_address,
                price=metrics.price,
                volume_24h=metrics.volume_24h,
                market_cap=metrics.market_cap,
                source=self.source,
                timestamp=self._clock(),
            )
            await self.store.append(sample)
            return sample
        except Exception as e:
            log.warning(f"{token_address}: history write failed: {e}")
            return None

"""
Adaptive Metrics Cache — Price History Store
──────────────────────────────────────────────
Append-only time series of price / volume / market-cap samples,
keyed by (token_address, timestamp).

Three operations, nothing else:
  append(sample)
  range(token, start, end)   → ascending by timestamp
  delete_before(cutoff)      → retention
"""

import bisect
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from metrics_engine.cache.redis_client import HISTORY_PREFIX, key_history

log = logging.getLogger("amc.timeseries")


@dataclass(frozen=True)
class PriceSample:
    token_address: str
    price:         float
    volume_24h:    float
    market_cap:    float
    source:        str
    timestamp:     datetime

    def to_dict(self) -> dict:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "PriceSample":
        return cls(
            token_address=d["token_address"],
            price=float(d.get("price") or 0),
            volume_24h=float(d.get("volume_24h") or 0),
            market_cap=float(d.get("market_cap") or 0),
            source=d.get("source") or "unknown",
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )

    def chart_point(self) -> dict:
        return {
            "timestamp": int(self.timestamp.timestamp() * 1000),
            "price":     self.price,
            "volume":    self.volume_24h,
        }


class TimeSeriesStore(ABC):

    @abstractmethod
    async def append(self, sample: PriceSample) -> None: ...

    @abstractmethod
    async def range(
        self,
        token_address: str,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> List[PriceSample]:
        """Samples with start < timestamp <= end, oldest first."""

    @abstractmethod
    async def delete_before(self, cutoff: datetime) -> int:
        """Drop every sample (any token) with timestamp < cutoff."""


# ══════════════════════════════════════════════════════════════
# IN-MEMORY
# ══════════════════════════════════════════════════════════════
class MemoryTimeSeriesStore(TimeSeriesStore):

    def __init__(self):
        self._series: Dict[str, List[PriceSample]] = {}

    async def append(self, sample: PriceSample) -> None:
        series = self._series.setdefault(sample.token_address, [])
        stamps = [s.timestamp for s in series]
        # retried writes can land out of order
        series.insert(bisect.bisect_right(stamps, sample.timestamp), sample)

    async def range(self, token_address, start, end=None) -> List[PriceSample]:
        return [
            s for s in self._series.get(token_address, [])
            if s.timestamp > start and (end is None or s.timestamp <= end)
        ]

    async def delete_before(self, cutoff: datetime) -> int:
        removed = 0
        for token, series in self._series.items():
            keep = [s for s in series if s.timestamp >= cutoff]
            removed += len(series) - len(keep)
            self._series[token] = keep
        return removed

    def count(self, token_address: Optional[str] = None) -> int:
        if token_address is not None:
            return len(self._series.get(token_address, []))
        return sum(len(s) for s in self._series.values())


# ══════════════════════════════════════════════════════════════
# REDIS
# ══════════════════════════════════════════════════════════════
def _score(ts: datetime) -> float:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.timestamp()


class RedisTimeSeriesStore(TimeSeriesStore):
    """Sorted set per token at price_history:<token>, score = epoch seconds."""

    def __init__(self, redis):
        self._redis = redis

    async def append(self, sample: PriceSample) -> None:
        member = json.dumps(sample.to_dict(), sort_keys=True)
        await self._redis.zadd(key_history(sample.token_address), {member: _score(sample.timestamp)})

    async def range(self, token_address, start, end=None) -> List[PriceSample]:
        max_score = "+inf" if end is None else _score(end)
        rows = await self._redis.zrangebyscore(
            key_history(token_address), f"({_score(start)}", max_score,
        )
        samples = []
        for raw in rows:
            try:
                samples.append(PriceSample.from_dict(json.loads(raw)))
            except (ValueError, KeyError) as e:
                log.warning(f"Skipping unreadable sample for {token_address}: {e}")
        samples.sort(key=lambda s: s.timestamp)
        return samples

    async def delete_before(self, cutoff: datetime) -> int:
        removed = 0
        async for key in self._redis.scan_iter(match=f"{HISTORY_PREFIX}*"):
            removed += await self._redis.zremrangebyscore(key, "-inf", f"({_score(cutoff)}")
        return removed

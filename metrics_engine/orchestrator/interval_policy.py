"""
Adaptive Metrics Cache — Polling Tiers
────────────────────────────────────────
Maps a volatility score to one of four polling intervals.

High   — volatility > 10%   → every 15s
Medium — 5% < v ≤ 10%       → every 30s
Low    — 1% < v ≤ 5%        → every 60s
Stale  — v ≤ 1% (or no data) → every 5 min

Thresholds and durations come from interval_config (environment) so
operators can retune without a rebuild.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

from metrics_engine.cache.interval_config import POLL_INTERVALS_MS, VOLATILITY_THRESHOLDS

log = logging.getLogger("amc.tiers")

TIER_ORDER = ("high_volatility", "medium_volatility", "low_volatility", "stale")


@dataclass(frozen=True)
class PollIntervals:
    high_volatility:   int = POLL_INTERVALS_MS["high_volatility"]
    medium_volatility: int = POLL_INTERVALS_MS["medium_volatility"]
    low_volatility:    int = POLL_INTERVALS_MS["low_volatility"]
    stale:             int = POLL_INTERVALS_MS["stale"]

    def __post_init__(self):
        durations = [getattr(self, t) for t in TIER_ORDER]
        if any(d <= 0 for d in durations):
            raise ValueError(f"Poll intervals must be positive: {durations}")
        if any(a >= b for a, b in zip(durations, durations[1:])):
            raise ValueError(f"Poll intervals must increase high → stale: {durations}")


@dataclass(frozen=True)
class VolatilityThresholds:
    high:   float = VOLATILITY_THRESHOLDS["high_volatility"]
    medium: float = VOLATILITY_THRESHOLDS["medium_volatility"]
    low:    float = VOLATILITY_THRESHOLDS["low_volatility"]

    def __post_init__(self):
        if not (self.high > self.medium > self.low >= 0):
            raise ValueError(
                f"Volatility thresholds must satisfy high > medium > low >= 0: "
                f"{self.high}, {self.medium}, {self.low}"
            )


@dataclass(frozen=True)
class IntervalPolicy:
    intervals:  PollIntervals = field(default_factory=PollIntervals)
    thresholds: VolatilityThresholds = field(default_factory=VolatilityThresholds)

    def tier_for(self, volatility: float) -> str:
        if volatility > self.thresholds.high:
            return "high_volatility"
        if volatility > self.thresholds.medium:
            return "medium_volatility"
        if volatility > self.thresholds.low:
            return "low_volatility"
        return "stale"

    def recommend_interval(self, volatility: float) -> int:
        """Polling interval in ms for the given mean abs % change."""
        return getattr(self.intervals, self.tier_for(volatility))

    def summary(self) -> Dict[str, dict]:
        return {
            "intervals_ms": {t: getattr(self.intervals, t) for t in TIER_ORDER},
            "thresholds":   {
                "high_volatility":   self.thresholds.high,
                "medium_volatility": self.thresholds.medium,
                "low_volatility":    self.thresholds.low,
            },
        }

"""
Adaptive Metrics Cache — Interval Configuration
─────────────────────────────────────────────────
Single source of truth for polling cadences and the volatility
thresholds that pick between them. All durations in milliseconds.
Organised by how fast the token is actually moving.
"""

import os

# ── Per-tier polling interval (ms) ────────────────────────────

POLL_INTERVALS_MS = {
    # Price swinging hard, poll fast
    "high_volatility":   int(os.getenv("POLL_HIGH_VOLATILITY_MS",   "15000")),   # 15s
    "medium_volatility": int(os.getenv("POLL_MEDIUM_VOLATILITY_MS", "30000")),   # 30s
    "low_volatility":    int(os.getenv("POLL_LOW_VOLATILITY_MS",    "60000")),   # 1m

    # Flat or no data, back right off
    "stale":             int(os.getenv("POLL_STALE_MS",             "300000")),  # 5m
}

# ── Volatility thresholds (mean abs % change) ────────────────
# Strictly greater than the threshold selects the tier.
VOLATILITY_THRESHOLDS = {
    "high_volatility":   float(os.getenv("VOLATILITY_HIGH_PCT",   "10")),
    "medium_volatility": float(os.getenv("VOLATILITY_MEDIUM_PCT", "5")),
    "low_volatility":    float(os.getenv("VOLATILITY_LOW_PCT",    "1")),
}

# ── Cache entry lifetime before the first interval decision ──
DEFAULT_POLL_INTERVAL_MS = int(os.getenv("DEFAULT_POLL_INTERVAL_MS", "30000"))

# ── Volatility window ─────────────────────────────────────────
VOLATILITY_WINDOW_MINUTES = int(os.getenv("VOLATILITY_WINDOW_MINUTES", "60"))
VOLATILITY_MAX_SAMPLES    = int(os.getenv("VOLATILITY_MAX_SAMPLES", "100"))

# ── Chart timeframes → (lookback ms, bucket ms) ──────────────
TIMEFRAMES = {
    "1h":  (60 * 60 * 1000,           60 * 1000),            # 1 minute buckets
    "24h": (24 * 60 * 60 * 1000,      5 * 60 * 1000),        # 5 minute buckets
    "7d":  (7 * 24 * 60 * 60 * 1000,  60 * 60 * 1000),       # 1 hour buckets
    "30d": (30 * 24 * 60 * 60 * 1000, 4 * 60 * 60 * 1000),   # 4 hour buckets
}
DEFAULT_TIMEFRAME = "24h"

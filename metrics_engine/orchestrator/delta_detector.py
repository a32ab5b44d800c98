"""
Adaptive Metrics Cache — Delta Detector
─────────────────────────────────────────
Compares the previous upstream payload against the new one.
Decides whether the market data has actually changed.
Prevents duplicate history rows (and zero-delta volatility noise).

Only the critical projection counts: price, 24h volume, market cap
(or FDV) and liquidity. Pair addresses, timestamps, labels and every
other field are ignored.
"""

import logging
from typing import Any, List, Optional

from metrics_engine.models.token_metrics import TokenMetrics, parse_metrics

log = logging.getLogger("amc.delta")

CRITICAL_FIELDS = ("price", "volume_24h", "market_cap", "liquidity")


def changed_fields(old: TokenMetrics, new: TokenMetrics) -> List[str]:
    """Critical fields whose normalised numeric value differs."""
    return [
        name for name, o, n in zip(CRITICAL_FIELDS, old.critical_projection(), new.critical_projection())
        if o != n
    ]


def detect_delta(old_payload: Optional[Any], new_payload: Any) -> bool:
    """
    Returns True if new_payload differs from old_payload on any critical field.
    No previous payload means first observation: always changed.
    """
    if old_payload is None:
        return True   # first observation

    changed = changed_fields(parse_metrics(old_payload), parse_metrics(new_payload))
    if changed:
        log.debug(f"Delta detected in fields: {changed}")
        return True
    return False

"""
Adaptive Metrics Cache — Token Metrics Model
──────────────────────────────────────────────
Canonical shape of one upstream market-data observation.

Upstream JSON is loosely typed and renames fields between providers
(priceUsd vs price, marketCap vs fdv, volume.h24 vs volume24h).
parse_metrics() is the ONE place those fallbacks live; the delta
detector, history writer and HTTP layer all read TokenMetrics.
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple


# ── Named fallback chains ─────────────────────────────────────
# Each entry is a path into the record; first parseable value wins.
PRICE_FIELDS        = (("priceUsd",), ("price",))
VOLUME_FIELDS       = (("volume", "h24"), ("volume24h",), ("volume",))
MARKET_CAP_FIELDS   = (("marketCap",), ("fdv",))
LIQUIDITY_FIELDS    = (("liquidity", "usd"), ("liquidity",))
PRICE_CHANGE_FIELDS = (("priceChange", "h24"), ("priceChange24h",))


@dataclass(frozen=True)
class TokenMetrics:
    price:            float = 0.0
    volume_24h:       float = 0.0
    market_cap:       float = 0.0
    liquidity:        float = 0.0
    price_change_24h: float = 0.0

    def critical_projection(self) -> Tuple[float, float, float, float]:
        """The fields whose change is economically meaningful."""
        return (self.price, self.volume_24h, self.market_cap, self.liquidity)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FetchResult:
    data:       Any
    from_cache: bool
    changed:    bool

    def to_dict(self) -> dict:
        return {"data": self.data, "fromCache": self.from_cache, "changed": self.changed}


@dataclass
class TokenMetricsResult:
    """What fetch_token_metrics() hands back: raw payload plus parsed view."""
    data:       Any
    metrics:    TokenMetrics
    from_cache: bool
    changed:    bool


def _parse_number(value: Any) -> Optional[float]:
    """Non-negative finite float, or None when value is not a usable number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(num) or math.isinf(num) or num < 0:
        return None
    return num


def to_number(value: Any) -> float:
    """Coerce an upstream scalar to a non-negative finite float, else 0.0."""
    num = _parse_number(value)
    return 0.0 if num is None else num


def _lookup(record: dict, path: Tuple[str, ...]) -> Any:
    node: Any = record
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _first_number(record: dict, chain) -> float:
    # a value that does not parse falls through to the next path
    for path in chain:
        num = _parse_number(_lookup(record, path))
        if num is not None:
            return num
    return 0.0


def extract_record(payload: Any) -> Optional[dict]:
    """
    DexScreener token endpoints wrap results in {"pairs": [...]}.
    Use the first pair when present, else treat the payload as the record.
    """
    if not isinstance(payload, dict):
        return None
    pairs = payload.get("pairs")
    if isinstance(pairs, list):
        if pairs and isinstance(pairs[0], dict):
            return pairs[0]
        return None
    return payload


def parse_metrics(payload: Any) -> TokenMetrics:
    record = extract_record(payload)
    if record is None:
        return TokenMetrics()
    return TokenMetrics(
        price            = _first_number(record, PRICE_FIELDS),
        volume_24h       = _first_number(record, VOLUME_FIELDS),
        market_cap       = _first_number(record, MARKET_CAP_FIELDS),
        liquidity        = _first_number(record, LIQUIDITY_FIELDS),
        price_change_24h = _signed_number(_first_present(record, PRICE_CHANGE_FIELDS)),
    )


def _first_present(record: dict, chain) -> Any:
    for path in chain:
        value = _lookup(record, path)
        if value is not None and not isinstance(value, (dict, list)):
            return value
    return None


def _signed_number(value: Any) -> float:
    # price change is the one field allowed to go negative
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num) or math.isinf(num):
        return 0.0
    return num


def metrics_response(result: TokenMetricsResult, poll_interval_ms: int, now_iso: str) -> Dict[str, Any]:
    """Shape a result the way /api/smart-metrics serves it."""
    m = result.metrics
    return {
        "price":                   m.price,
        "priceChange24h":          m.price_change_24h,
        "marketCap":               m.market_cap,
        "volume24h":               m.volume_24h,
        "liquidity":               m.liquidity,
        "fromCache":               result.from_cache,
        "changed":                 result.changed,
        "recommendedPollInterval": poll_interval_ms,
        "lastUpdated":             now_iso,
    }

from metrics_engine.models.token_metrics import parse_metrics
from metrics_engine.orchestrator.delta_detector import changed_fields, detect_delta

from conftest import dex_payload, pair


def test_first_observation_is_always_a_change():
    assert detect_delta(None, dex_payload()) is True


def test_identical_critical_fields_with_different_metadata():
    old = {"pairs": [pair(pairCreatedAt=1, url="a", labels=["v2"])]}
    new = {"pairs": [pair(pairCreatedAt=2, url="b", labels=["v3"])], "schemaVersion": "2"}
    assert detect_delta(old, new) is False


def test_any_price_move_is_a_change():
    assert detect_delta(dex_payload(price="0.00041"), dex_payload(price="0.000410001")) is True


def test_numeric_not_string_comparison():
    old = {"priceUsd": "0.00041", "volume": {"h24": "50000"}, "marketCap": 410000, "liquidity": {"usd": 12000}}
    new = {"priceUsd": 0.00041, "volume": {"h24": 50000.0}, "marketCap": "410000.00", "liquidity": {"usd": "12000"}}
    assert detect_delta(old, new) is False


def test_liquidity_and_fdv_fallback_participate():
    assert detect_delta(dex_payload(liquidity=12000), dex_payload(liquidity=12001)) is True
    assert detect_delta({"priceUsd": "1", "fdv": 10}, {"priceUsd": "1", "fdv": 11}) is True


def test_changed_fields_names_the_moved_fields():
    old = parse_metrics(dex_payload(price="1", volume=10))
    new = parse_metrics(dex_payload(price="2", volume=10))
    assert changed_fields(old, new) == ["price"]

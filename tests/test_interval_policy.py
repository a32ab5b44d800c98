import pytest

from metrics_engine.orchestrator.interval_policy import IntervalPolicy, PollIntervals, VolatilityThresholds

DEFAULTS = IntervalPolicy(PollIntervals(15000, 30000, 60000, 300000), VolatilityThresholds(10, 5, 1))


@pytest.mark.parametrize("volatility, expected", [
    (12, 15000),
    (7, 30000),
    (2, 60000),
    (0.5, 300000),
    (0, 300000),
])
def test_default_tiers(volatility, expected):
    assert DEFAULTS.recommend_interval(volatility) == expected


@pytest.mark.parametrize("volatility, tier", [
    (10, "medium_volatility"),
    (5, "low_volatility"),
    (1, "stale"),
    (10.0001, "high_volatility"),
])
def test_boundaries_are_exclusive(volatility, tier):
    assert DEFAULTS.tier_for(volatility) == tier


def test_nan_falls_to_stale():
    assert DEFAULTS.tier_for(float("nan")) == "stale"


def test_custom_tiers_and_thresholds():
    policy = IntervalPolicy(PollIntervals(1000, 2000, 3000, 4000), VolatilityThresholds(3, 2, 0.5))
    assert policy.recommend_interval(2.5) == 2000
    assert policy.summary()["intervals_ms"]["stale"] == 4000


def test_intervals_must_increase():
    with pytest.raises(ValueError):
        PollIntervals(30000, 15000, 60000, 300000)
    with pytest.raises(ValueError):
        PollIntervals(0, 15000, 60000, 300000)


def test_thresholds_must_decrease():
    with pytest.raises(ValueError):
        VolatilityThresholds(5, 10, 1)

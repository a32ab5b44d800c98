"""
Shared fixtures: a controllable clock, a scripted upstream behind
httpx.MockTransport, and an AdaptiveMetricsCache wired to in-memory stores.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from metrics_engine.api.metrics_endpoint import AdaptiveMetricsCache
from metrics_engine.cache.cache_store import MemoryCacheStore
from metrics_engine.history.timeseries import MemoryTimeSeriesStore, PriceSample

TOKEN = "TestToken1111111111111111111111111111111pump"
ENDPOINT = f"https://upstream.test/latest/dex/tokens/{TOKEN}"


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeUpstream:
    """Serves whatever was last set; records every request."""

    def __init__(self):
        self.requests = []
        self.status = 200
        self.payload = None
        self.headers = {}
        self.error = None

    def respond(self, payload=None, status=200, headers=None):
        self.payload = payload
        self.status = status
        self.headers = headers or {}
        self.error = None

    def fail(self, error):
        self.error = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.payload is None:
            return httpx.Response(self.status, headers=self.headers)
        return httpx.Response(self.status, json=self.payload, headers=self.headers)

    @property
    def calls(self) -> int:
        return len(self.requests)


def pair(price="0.00041", volume=50000, market_cap=410000, liquidity=12000, **extra):
    record = {
        "priceUsd": price,
        "volume": {"h24": volume},
        "marketCap": market_cap,
        "liquidity": {"usd": liquidity},
        "pairAddress": "PairAddr111",
    }
    record.update(extra)
    return record


def dex_payload(**kwargs):
    return {"schemaVersion": "1.0.0", "pairs": [pair(**kwargs)]}


def sample(price, at, token=TOKEN, volume=1000.0, market_cap=10000.0):
    return PriceSample(
        token_address=token, price=price, volume_24h=volume,
        market_cap=market_cap, source="test", timestamp=at,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))


@pytest.fixture
def cache_store(clock):
    return MemoryCacheStore(clock=clock)


@pytest.fixture
def history_store():
    return MemoryTimeSeriesStore()


@pytest.fixture
def amc(cache_store, history_store, client, clock):
    return AdaptiveMetricsCache(
        cache_store, history_store, client,
        token_address=TOKEN, endpoint=ENDPOINT,
        poll_interval_ms=30000, timeout=5, clock=clock,
        await_history=True,
    )

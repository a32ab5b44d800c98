import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from metrics_engine.cache.cache_store import MemoryCacheStore
from metrics_engine.history.history_writer import HistoryWriter
from metrics_engine.orchestrator.fetcher import MetricsUnavailableError, SmartFetcher

from conftest import ENDPOINT, TOKEN, dex_payload

KEY = f"token_metrics_{TOKEN}"


@pytest.fixture
def fetcher(cache_store, history_store, client, clock):
    history = HistoryWriter(history_store, clock=clock)
    return SmartFetcher(cache_store, history, client, poll_interval_ms=30000, timeout=5, clock=clock, await_history=True)


def fetch(fetcher, **kwargs):
    return asyncio.run(fetcher.fetch_with_change_detection(ENDPOINT, KEY, token_address=TOKEN, **kwargs))


def test_second_call_within_window_is_served_from_cache(fetcher, upstream, clock):
    upstream.respond(dex_payload())

    first = fetch(fetcher)
    clock.advance(seconds=29)
    second = fetch(fetcher)

    assert upstream.calls == 1
    assert (first.from_cache, first.changed) == (False, True)
    assert (second.from_cache, second.changed) == (True, False)
    assert second.data == first.data


def test_cache_entry_expires_after_poll_interval(fetcher, upstream, cache_store, clock):
    upstream.respond(dex_payload())
    fetch(fetcher)

    entry = asyncio.run(cache_store.get(KEY))
    assert entry.expires_at == clock() + timedelta(milliseconds=30000)

    clock.advance(seconds=31)
    fetch(fetcher)
    assert upstream.calls == 2


def test_unchanged_critical_fields_write_no_sample(fetcher, upstream, history_store, clock):
    upstream.respond({"pairs": [dict(dex_payload()["pairs"][0], pairCreatedAt=1)]})
    fetch(fetcher)
    clock.advance(minutes=1)
    upstream.respond({"pairs": [dict(dex_payload()["pairs"][0], pairCreatedAt=2)]})

    result = fetch(fetcher)

    assert result.from_cache is False
    assert result.changed is False
    assert history_store.count(TOKEN) == 1


def test_price_change_appends_exactly_one_sample(fetcher, upstream, history_store, clock):
    upstream.respond(dex_payload(price="0.00041"))
    fetch(fetcher)
    clock.advance(minutes=1)
    upstream.respond(dex_payload(price="0.00039"))

    result = fetch(fetcher)

    assert result.changed is True
    assert history_store.count(TOKEN) == 2


def test_zero_price_never_recorded(fetcher, upstream, history_store, clock):
    upstream.respond(dex_payload(price="0"))
    result = fetch(fetcher)

    assert result.changed is True
    assert history_store.count() == 0


def test_conditional_headers_and_304(fetcher, upstream, cache_store, clock):
    upstream.respond(dex_payload(), headers={"ETag": '"v1"', "Last-Modified": "Sun, 18 Oct 2026 11:59:00 GMT"})
    fetch(fetcher)

    clock.advance(minutes=1)
    upstream.respond(None, status=304)
    result = fetch(fetcher)

    sent = upstream.requests[-1].headers
    assert sent["if-none-match"] == '"v1"'
    assert sent["if-modified-since"] == "Sun, 18 Oct 2026 11:59:00 GMT"
    assert (result.from_cache, result.changed) == (True, False)
    assert result.data == dex_payload()

    entry = asyncio.run(cache_store.get(KEY))
    assert entry.expires_at == clock() + timedelta(milliseconds=30000)
    assert entry.etag == '"v1"'


def test_upstream_without_validators_still_works(fetcher, upstream, clock):
    upstream.respond(dex_payload())
    fetch(fetcher)
    clock.advance(minutes=1)
    fetch(fetcher)

    assert "if-none-match" not in upstream.requests[-1].headers
    assert upstream.calls == 2


@pytest.mark.parametrize("error", [
    httpx.ConnectTimeout("timed out"),
    httpx.ConnectError("connection refused"),
])
def test_expired_cache_served_when_upstream_fails(fetcher, upstream, clock, error):
    upstream.respond(dex_payload())
    fetch(fetcher)
    clock.advance(minutes=10)
    upstream.fail(error)

    result = fetch(fetcher)

    assert (result.from_cache, result.changed) == (True, False)
    assert result.data == dex_payload()


def test_server_error_and_bad_json_degrade_to_cache(fetcher, upstream, clock):
    upstream.respond(dex_payload())
    fetch(fetcher)

    clock.advance(minutes=10)
    upstream.respond({"error": "boom"}, status=502)
    assert fetch(fetcher).from_cache is True

    clock.advance(minutes=10)
    upstream.respond(None, status=200)
    assert fetch(fetcher).data == dex_payload()


def test_no_cache_and_upstream_down_raises(fetcher, upstream):
    upstream.fail(httpx.ReadTimeout("timed out"))
    with pytest.raises(MetricsUnavailableError):
        fetch(fetcher)


def test_304_without_entry_raises(fetcher, upstream):
    upstream.respond(None, status=304)
    with pytest.raises(MetricsUnavailableError):
        fetch(fetcher)


def test_cache_read_failure_falls_back_to_last_known(history_store, client, upstream, clock):
    cache = MemoryCacheStore(clock=clock)
    fetcher = SmartFetcher(cache, HistoryWriter(history_store, clock=clock), client, clock=clock, await_history=True)
    upstream.respond(dex_payload())
    fetch(fetcher)

    cache.get = AsyncMock(side_effect=ConnectionError("redis down"))
    upstream.fail(httpx.ConnectError("refused"))
    result = fetch(fetcher)

    assert result.from_cache is True
    assert result.data == dex_payload()


def test_cache_write_failure_still_returns_data(history_store, client, upstream, clock):
    cache = MemoryCacheStore(clock=clock)
    cache.put = AsyncMock(side_effect=ConnectionError("redis down"))
    fetcher = SmartFetcher(cache, HistoryWriter(history_store, clock=clock), client, clock=clock, await_history=True)
    upstream.respond(dex_payload())

    result = fetch(fetcher)

    assert (result.from_cache, result.changed) == (False, True)
    assert history_store.count(TOKEN) == 1


def test_swept_cache_row_does_not_duplicate_history(fetcher, upstream, cache_store, history_store, clock):
    upstream.respond(dex_payload())
    fetch(fetcher)
    clock.advance(minutes=5)
    asyncio.run(cache_store.delete_expired())

    result = fetch(fetcher)

    assert result.changed is False
    assert history_store.count(TOKEN) == 1


def test_per_call_timeout_is_passed_through(fetcher, upstream):
    upstream.respond(dex_payload())
    fetch(fetcher, timeout=1.5)
    assert upstream.requests[-1].extensions["timeout"]["read"] == 1.5


def test_history_in_background_task(cache_store, history_store, client, upstream, clock):
    fetcher = SmartFetcher(cache_store, HistoryWriter(history_store, clock=clock), client, clock=clock)
    upstream.respond(dex_payload())

    async def run():
        result = await fetcher.fetch_with_change_detection(ENDPOINT, KEY, token_address=TOKEN)
        await fetcher.drain()
        return result

    assert asyncio.run(run()).changed is True
    assert history_store.count(TOKEN) == 1


def test_poll_interval_must_be_positive(fetcher):
    fetcher.set_poll_interval(15000)
    assert fetcher.get_poll_interval() == 15000
    with pytest.raises(ValueError):
        fetcher.set_poll_interval(0)

"""
Adaptive Metrics Cache — Smart Fetcher
────────────────────────────────────────
The only place upstream market-data calls are made.

  1. Fresh cache entry?        → serve it, no network
  2. Conditional GET           → If-None-Match / If-Modified-Since
  3. 304 Not Modified          → push expiry out, serve cached payload
  4. 200                       → delta check, overwrite cache, record history if changed
  5. Upstream/parse failure    → cached entry (even expired) → last known payload → raise

Slightly stale data always beats a hard failure. MetricsUnavailableError
is raised only when there is nothing at all to serve.

Concurrent calls for the same key are allowed: the worst case is two
upstream fetches and two complete overwrites of the same cache row.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, Callable, Dict, Optional, Set

import httpx

from metrics_engine.cache.cache_store import CacheEntry, CacheStore, utcnow
from metrics_engine.cache.interval_config import DEFAULT_POLL_INTERVAL_MS
from metrics_engine.config import REQUEST_TIMEOUT, UPSTREAM_HEADERS
from metrics_engine.history.history_writer import HistoryWriter
from metrics_engine.models.token_metrics import FetchResult
from metrics_engine.orchestrator.delta_detector import detect_delta

log = logging.getLogger("amc.fetcher")


class MetricsUnavailableError(RuntimeError):
    """No fresh fetch, no cache entry and no last known value."""


class UpstreamError(Exception):
    pass


def _parse_http_date(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        log.debug(f"Unparseable Last-Modified header: {raw!r}")
        return None


class SmartFetcher:

    def __init__(
        self,
        cache: CacheStore,
        history: HistoryWriter,
        client: httpx.AsyncClient,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        timeout: float = REQUEST_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
        await_history: bool = False,
    ):
        self.cache         = cache
        self.history       = history
        self.client        = client
        self.timeout       = timeout
        self.await_history = await_history
        self._clock        = clock
        self._poll_interval_ms = poll_interval_ms
        self._last_known: Dict[str, Any] = {}
        self._history_tasks: Set[asyncio.Task] = set()

    # ── Poll interval ("currentInterval") ────────────────────
    def get_poll_interval(self) -> int:
        return self._poll_interval_ms

    def set_poll_interval(self, interval_ms: int) -> None:
        if interval_ms <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval_ms}")
        if interval_ms != self._poll_interval_ms:
            log.info(f"Cache poll interval {self._poll_interval_ms}ms → {interval_ms}ms")
        self._poll_interval_ms = interval_ms

    def _next_expiry(self) -> datetime:
        return self._clock() + timedelta(milliseconds=self._poll_interval_ms)

    def last_known_keys(self) -> list:
        return sorted(self._last_known)

    # ── Main entry point ──────────────────────────────────────
    async def fetch_with_change_detection(
        self,
        endpoint: str,
        cache_key: str,
        timeout: Optional[float] = None,
        token_address: Optional[str] = None,
    ) -> FetchResult:
        """
        Fetch endpoint through the cache.
        When token_address is given and the data changed, a history sample is recorded.
        """
        entry = await self._read_cache(cache_key)

        if entry is not None and not entry.is_expired(self._clock()):
            log.debug(f"{cache_key}: cache hit")
            self._last_known[cache_key] = entry.payload
            return FetchResult(data=entry.payload, from_cache=True, changed=False)

        try:
            response = await self.client.get(
                endpoint,
                headers=self._conditional_headers(entry),
                timeout=timeout if timeout is not None else self.timeout,
            )

            if response.status_code == 304:
                if entry is None:
                    raise UpstreamError("304 Not Modified with no cached entry")
                await self._refresh_expiry(entry)
                log.debug(f"{cache_key}: 304 not modified")
                return FetchResult(data=entry.payload, from_cache=True, changed=False)

            response.raise_for_status()
            new_payload = response.json()

        except (httpx.HTTPError, ValueError, UpstreamError) as e:
            return self._degrade(cache_key, entry, e)

        previous = entry.payload if entry is not None else self._last_known.get(cache_key)
        changed  = detect_delta(previous, new_payload)

        await self._write_cache(
            cache_key, new_payload,
            etag=response.headers.get("etag"),
            last_modified=_parse_http_date(response.headers.get("last-modified")),
        )
        self._last_known[cache_key] = new_payload

        if changed and token_address:
            await self._record_history(token_address, new_payload)

        log.info(f"{cache_key}: fetched upstream (changed={changed})")
        return FetchResult(data=new_payload, from_cache=False, changed=changed)

    # ── Helpers ───────────────────────────────────────────────
    def _conditional_headers(self, entry: Optional[CacheEntry]) -> Dict[str, str]:
        headers = dict(UPSTREAM_HEADERS)
        if entry is None:
            return headers
        if entry.etag:
            headers["If-None-Match"] = entry.etag
        if entry.last_modified:
            headers["If-Modified-Since"] = format_datetime(entry.last_modified.astimezone(timezone.utc), usegmt=True)
        return headers

    async def _read_cache(self, cache_key: str) -> Optional[CacheEntry]:
        try:
            return await self.cache.get(cache_key)
        except Exception as e:
            log.warning(f"{cache_key}: cache read failed, treating as miss: {e}")
            return None

    async def _write_cache(self, cache_key, payload, etag=None, last_modified=None) -> None:
        try:
            await self.cache.put(
                cache_key, payload, self._next_expiry(),
                etag=etag, last_modified=last_modified,
            )
        except Exception as e:
            log.warning(f"{cache_key}: cache write failed: {e}")

    async def _refresh_expiry(self, entry: CacheEntry) -> None:
        try:
            await self.cache.extend(entry, self._next_expiry())
        except Exception as e:
            log.warning(f"{entry.cache_key}: cache expiry refresh failed: {e}")

    def _degrade(self, cache_key: str, entry: Optional[CacheEntry], error: Exception) -> FetchResult:
        if entry is not None:
            log.warning(f"{cache_key}: upstream failed ({error!r}) — serving cached data")
            return FetchResult(data=entry.payload, from_cache=True, changed=False)
        if cache_key in self._last_known:
            log.warning(f"{cache_key}: upstream failed ({error!r}) — serving last known data")
            return FetchResult(data=self._last_known[cache_key], from_cache=True, changed=False)
        log.error(f"{cache_key}: upstream failed and nothing cached: {error!r}")
        raise MetricsUnavailableError(f"No data available for {cache_key}") from error

    async def _record_history(self, token_address: str, payload: Any) -> None:
        if self.await_history:
            await self.history.record(token_address, payload)
            return
        task = asyncio.create_task(self.history.record(token_address, payload))
        self._history_tasks.add(task)
        task.add_done_callback(self._history_tasks.discard)

    async def drain(self) -> None:
        """Wait for any in-flight history writes (shutdown, tests)."""
        if self._history_tasks:
            await asyncio.gather(*list(self._history_tasks), return_exceptions=True)

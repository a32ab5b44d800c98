"""
Adaptive Metrics Cache — Cache Store
──────────────────────────────────────
Key/value store: cache key → last raw upstream payload, its HTTP
validators (ETag, Last-Modified) and an expiry timestamp.

One entry per key. put() is a full overwrite in a single write so a
reader never sees a payload paired with another fetch's validators.
Expired entries stay readable until the sweeper removes them: the
fetcher falls back to them when the upstream is down.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from metrics_engine.cache.redis_client import CACHE_PREFIX, key_cache

log = logging.getLogger("amc.cache")

Clock = Callable[[], datetime]

# Compare-and-delete: only removes the row if it still holds the value the sweep read.
_DELETE_IF_EQUAL = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _parse_iso(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


@dataclass(frozen=True)
class CacheEntry:
    cache_key:     str
    payload:       Any
    expires_at:    Optional[datetime]
    etag:          Optional[str] = None
    last_modified: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return (now or utcnow()) > self.expires_at

    def to_dict(self) -> dict:
        return {
            "cache_key":     self.cache_key,
            "payload":       self.payload,
            "etag":          self.etag,
            "last_modified": _iso(self.last_modified),
            "expires_at":    _iso(self.expires_at),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "CacheEntry":
        return cls(
            cache_key=d["cache_key"],
            payload=d.get("payload"),
            etag=d.get("etag"),
            last_modified=_parse_iso(d.get("last_modified")),
            expires_at=_parse_iso(d.get("expires_at")),
        )


class CacheStore(ABC):
    """Upsert-only cache of upstream responses. Storage errors propagate."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock

    @abstractmethod
    async def get(self, cache_key: str) -> Optional[CacheEntry]: ...

    @abstractmethod
    async def put(
        self,
        cache_key: str,
        payload: Any,
        expires_at: datetime,
        etag: Optional[str] = None,
        last_modified: Optional[datetime] = None,
    ) -> CacheEntry: ...

    @abstractmethod
    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Drop entries whose expiry has passed. Returns how many went."""

    def is_expired(self, entry: Optional[CacheEntry]) -> bool:
        if entry is None:
            return True
        return entry.is_expired(self._clock())

    async def extend(self, entry: CacheEntry, expires_at: datetime) -> CacheEntry:
        """Refresh an entry's expiry (304 Not Modified) without touching its payload."""
        return await self.put(
            entry.cache_key, entry.payload, expires_at,
            etag=entry.etag, last_modified=entry.last_modified,
        )


# ══════════════════════════════════════════════════════════════
# IN-MEMORY
# ══════════════════════════════════════════════════════════════
class MemoryCacheStore(CacheStore):

    def __init__(self, clock: Clock = utcnow):
        super().__init__(clock)
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, cache_key: str) -> Optional[CacheEntry]:
        return self._entries.get(cache_key)

    async def put(self, cache_key, payload, expires_at, etag=None, last_modified=None) -> CacheEntry:
        entry = CacheEntry(
            cache_key=cache_key, payload=payload, expires_at=expires_at,
            etag=etag, last_modified=last_modified,
        )
        self._entries[cache_key] = entry
        return entry

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def keys(self) -> List[str]:
        return list(self._entries.keys())


# ══════════════════════════════════════════════════════════════
# REDIS
# ══════════════════════════════════════════════════════════════
class RedisCacheStore(CacheStore):
    """
    One JSON document per key at api_cache:<cache_key>, written with a
    single SET. No Redis TTL; expiry is ours to enforce.
    """

    def __init__(self, redis, clock: Clock = utcnow):
        super().__init__(clock)
        self._redis = redis

    async def get(self, cache_key: str) -> Optional[CacheEntry]:
        raw = await self._redis.get(key_cache(cache_key))
        if not raw:
            return None
        return CacheEntry.from_dict(json.loads(raw))

    async def put(self, cache_key, payload, expires_at, etag=None, last_modified=None) -> CacheEntry:
        entry = CacheEntry(
            cache_key=cache_key, payload=payload, expires_at=expires_at,
            etag=etag, last_modified=last_modified,
        )
        await self._redis.set(key_cache(cache_key), json.dumps(entry.to_dict()))
        return entry

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        removed = 0
        async for key in self._redis.scan_iter(match=f"{CACHE_PREFIX}*"):
            raw = await self._redis.get(key)
            if not raw:
                continue
            try:
                entry = CacheEntry.from_dict(json.loads(raw))
            except (ValueError, KeyError) as e:
                log.warning(f"Dropping unreadable cache row {key}: {e}")
                removed += await self._delete_if_unchanged(key, raw)
                continue
            if entry.is_expired(now):
                removed += await self._delete_if_unchanged(key, raw)
        return removed

    async def _delete_if_unchanged(self, key, raw) -> int:
        # no-op if a fetch rewrote the row after it was read
        return int(await self._redis.eval(_DELETE_IF_EQUAL, 1, key, raw))

"""Short-term response cache with TTL and stale-but-usable reads.

Entries are keyed by a one-way hash of platform + credential. ``get`` returns
expired payloads as well; callers use ``get_info`` to prefer fresh entries and
only fall back to expired ones on the rate-limit path.
"""
import hashlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from ..schemas.analytics import SourceRecord


logger = logging.getLogger(__name__)


DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_STALE_RETENTION_SECONDS = 24 * 60 * 60


def cache_key(platform: str, access_token: str, scope: str = "posts") -> str:
    """Derive a cache key that never exposes the raw credential.

    Args:
        platform: Platform identifier
        access_token: Raw access token
        scope: Requested data scope ("posts" or "ads"); records fetched
            without ads must not satisfy a paid-tier read

    Returns:
        Key of the form ``insights:<platform>:<scope>:<sha256 hex>``
    """
    digest = hashlib.sha256(f"{platform}:{access_token}".encode("utf-8")).hexdigest()
    return f"insights:{platform}:{scope}:{digest}"


def encode_payload(record: SourceRecord) -> str:
    return record.model_dump_json()


def decode_payload(raw: str | bytes) -> SourceRecord:
    return SourceRecord.model_validate_json(raw)


@dataclass(frozen=True)
class CacheInfo:
    """Freshness of a cache entry at read time."""

    age_ms: int
    ttl_remaining_ms: int
    expired: bool


@dataclass(frozen=True)
class CacheEntry:
    """Stored payload with its write and expiry timestamps (epoch seconds)."""

    key: str
    payload: str
    written_at: float
    expires_at: float

    def info(self, now: float) -> CacheInfo:
        return CacheInfo(
            age_ms=max(0, int((now - self.written_at) * 1000)),
            ttl_remaining_ms=max(0, int((self.expires_at - now) * 1000)),
            expired=now >= self.expires_at,
        )


class ResponseCache(ABC):
    """Cache interface consumed by the orchestrator.

    Backends raise ``CacheUnavailableError`` when their store cannot be
    reached; the orchestrator treats that as a miss.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[SourceRecord]:
        """Return the cached record, expired or not, or None."""

    @abstractmethod
    async def get_info(self, key: str) -> Optional[CacheInfo]:
        """Return freshness info for the entry, or None if absent."""

    @abstractmethod
    async def set(
        self, key: str, record: SourceRecord, ttl_seconds: Optional[int] = None
    ) -> None:
        """Store a record with the given (or default) TTL."""


class InMemoryResponseCache(ResponseCache):
    """Process-local cache with lazy eviction on read/write.

    Expired entries stay readable for ``stale_retention_seconds`` past their
    expiry so the rate-limit fallback has something to serve.
    """

    def __init__(
        self,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        stale_retention_seconds: int = DEFAULT_STALE_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self.stale_retention_seconds = stale_retention_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_locked(self, now: float) -> None:
        cutoff = now - self.stale_retention_seconds
        dead = [key for key, entry in self._entries.items() if entry.expires_at < cutoff]
        for key in dead:
            del self._entries[key]
        if dead:
            logger.debug("Evicted %s cache entries", len(dead))

    def _read(self, key: str) -> tuple[Optional[CacheEntry], float]:
        now = self._clock()
        with self._lock:
            self._evict_locked(now)
            return self._entries.get(key), now

    async def get(self, key: str) -> Optional[SourceRecord]:
        entry, _ = self._read(key)
        if entry is None:
            return None
        return decode_payload(entry.payload)

    async def get_info(self, key: str) -> Optional[CacheInfo]:
        entry, now = self._read(key)
        if entry is None:
            return None
        return entry.info(now)

    async def set(
        self, key: str, record: SourceRecord, ttl_seconds: Optional[int] = None
    ) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        entry = CacheEntry(
            key=key,
            payload=encode_payload(record),
            written_at=now,
            expires_at=now + ttl,
        )
        with self._lock:
            self._evict_locked(now)
            self._entries[key] = entry

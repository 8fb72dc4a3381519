"""Redis-backed response cache for multi-process deployments."""
import json
import logging
import time
from typing import Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..errors import CacheUnavailableError
from ..schemas.analytics import SourceRecord
from .response_cache import (
    DEFAULT_STALE_RETENTION_SECONDS,
    DEFAULT_TTL_SECONDS,
    CacheEntry,
    CacheInfo,
    ResponseCache,
    decode_payload,
    encode_payload,
)


logger = logging.getLogger(__name__)


class RedisResponseCache(ResponseCache):
    """Stores cache entries as JSON envelopes in Redis.

    The Redis key TTL covers the fresh window plus the stale retention
    window, so expired entries remain available for the rate-limit fallback.
    Connection failures surface as ``CacheUnavailableError``.
    """

    KEY_PREFIX = "pulse:"

    def __init__(
        self,
        redis: Redis,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        stale_retention_seconds: int = DEFAULT_STALE_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize Redis cache.

        Args:
            redis: Injected redis.asyncio.Redis client
            default_ttl_seconds: Fresh window for entries
            stale_retention_seconds: Extra lifetime for stale reads
            clock: Epoch-seconds clock (injectable for tests)
        """
        self.redis = redis
        self.default_ttl_seconds = default_ttl_seconds
        self.stale_retention_seconds = stale_retention_seconds
        self._clock = clock

    def _redis_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def _load(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self.redis.get(self._redis_key(key))
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"Redis read failed: {exc}") from exc
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
            return CacheEntry(
                key=key,
                payload=envelope["payload"],
                written_at=float(envelope["written_at"]),
                expires_at=float(envelope["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            try:
                await self.redis.delete(self._redis_key(key))
            except (RedisError, OSError) as delete_exc:
                raise CacheUnavailableError(f"Redis delete failed: {delete_exc}") from delete_exc
            return None

    async def get(self, key: str) -> Optional[SourceRecord]:
        entry = await self._load(key)
        if entry is None:
            return None
        return decode_payload(entry.payload)

    async def get_info(self, key: str) -> Optional[CacheInfo]:
        entry = await self._load(key)
        if entry is None:
            return None
        return entry.info(self._clock())

    async def set(
        self, key: str, record: SourceRecord, ttl_seconds: Optional[int] = None
    ) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        envelope = {
            "payload": encode_payload(record),
            "written_at": now,
            "expires_at": now + ttl,
        }
        try:
            await self.redis.set(
                self._redis_key(key),
                json.dumps(envelope, separators=(",", ":")),
                ex=max(1, int(ttl + self.stale_retention_seconds)),
            )
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"Redis write failed: {exc}") from exc

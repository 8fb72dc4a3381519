"""Response cache backends."""
from .redis_cache import RedisResponseCache
from .response_cache import (
    CacheInfo,
    InMemoryResponseCache,
    ResponseCache,
    cache_key,
    decode_payload,
    encode_payload,
)

__all__ = [
    "CacheInfo",
    "InMemoryResponseCache",
    "RedisResponseCache",
    "ResponseCache",
    "cache_key",
    "decode_payload",
    "encode_payload",
]

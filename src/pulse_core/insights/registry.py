"""Wiring helpers that build engine components from settings."""
import logging
from typing import Optional

import aiohttp
from redis.asyncio import Redis

from ..adapters import (
    AmazonAdsAdapter,
    FacebookAdapter,
    InstagramAdapter,
    SourceAdapter,
    TikTokAdapter,
    TwitterAdapter,
)
from ..cache import InMemoryResponseCache, RedisResponseCache, ResponseCache
from ..config import EngineSettings, OAuthClientConfig
from ..fetch import ResilientFetchClient
from ..schemas.analytics import Platform


logger = logging.getLogger(__name__)


def build_fetch_client(
    session: aiohttp.ClientSession, settings: EngineSettings
) -> ResilientFetchClient:
    return ResilientFetchClient(
        session,
        base_delay=settings.retry_base_delay,
        rate_limit_max_delay=settings.rate_limit_max_delay,
        transient_max_delay=settings.transient_max_delay,
        request_timeout=settings.request_timeout_seconds,
    )


def build_adapters(
    client: ResilientFetchClient,
    settings: EngineSettings,
    amazon_app: Optional[OAuthClientConfig] = None,
) -> dict[Platform, SourceAdapter]:
    """Create one adapter per supported platform.

    Args:
        client: Shared fetch client
        settings: Engine settings (retry budget)
        amazon_app: Amazon LWA app credentials for the ClientId header

    Returns:
        Mapping of platform to adapter
    """
    retries = settings.max_retries
    adapters: list[SourceAdapter] = [
        FacebookAdapter(client, max_retries=retries),
        InstagramAdapter(client, max_retries=retries),
        TwitterAdapter(client, max_retries=retries),
        TikTokAdapter(client, max_retries=retries),
        AmazonAdsAdapter(
            client,
            max_retries=retries,
            client_id=amazon_app.client_id if amazon_app else None,
        ),
    ]
    return {adapter.platform: adapter for adapter in adapters}


def build_cache(
    settings: EngineSettings, redis: Optional[Redis] = None
) -> ResponseCache:
    """Create the configured response cache backend.

    Args:
        settings: Engine settings (backend, TTL, retention)
        redis: Existing Redis client; created from ``settings.redis_url`` if omitted

    Returns:
        ResponseCache instance
    """
    if settings.cache_backend == "redis":
        if redis is None:
            redis = Redis.from_url(settings.redis_url, decode_responses=False)
        logger.info("Using Redis response cache")
        return RedisResponseCache(
            redis,
            default_ttl_seconds=settings.cache_ttl_seconds,
            stale_retention_seconds=settings.cache_stale_retention_seconds,
        )

    logger.info("Using in-memory response cache")
    return InMemoryResponseCache(
        default_ttl_seconds=settings.cache_ttl_seconds,
        stale_retention_seconds=settings.cache_stale_retention_seconds,
    )

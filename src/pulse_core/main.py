"""Pulse FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiohttp
from fastapi import FastAPI

from .accounts.store import AccountStore
from .api.routes import router as api_router
from .cache import RedisResponseCache
from .config import EngineSettings
from .credentials.refresh import OAuthCredentialRefresher, oauth_clients_from_env
from .insights.orchestrator import InsightsOrchestrator
from .insights.registry import build_adapters, build_cache, build_fetch_client
from .insights.singleflight import SingleFlight
from .schemas.analytics import Platform


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the shared HTTP session, cache and orchestrator for the app."""
    settings = EngineSettings.from_env()
    store = AccountStore(settings.db_path)
    oauth_clients = oauth_clients_from_env()

    timeout = aiohttp.ClientTimeout(total=300, connect=30)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        client = build_fetch_client(session, settings)
        cache = build_cache(settings)
        refresher = OAuthCredentialRefresher(
            client,
            oauth_clients,
            on_refreshed=store.update_credential,
        )

        app.state.account_store = store
        app.state.single_flight = SingleFlight()
        app.state.orchestrator = InsightsOrchestrator(
            adapters=build_adapters(
                client, settings, amazon_app=oauth_clients.get(Platform.AMAZON)
            ),
            cache=cache,
            refresher=refresher,
            settings=settings,
        )

        logger.info(
            "Pulse started: cache=%s, db=%s, oauth_platforms=%s",
            settings.cache_backend,
            settings.db_path,
            ",".join(sorted(platform.value for platform in oauth_clients)),
        )

        try:
            yield
        finally:
            if isinstance(cache, RedisResponseCache):
                await cache.redis.aclose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Pulse API",
        version="0.1.0",
        description="Multi-platform social and ads insights aggregation",
        lifespan=lifespan,
    )

    app.include_router(api_router)

    return app


app = create_app()

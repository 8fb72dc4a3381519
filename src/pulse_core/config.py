"""Engine configuration loaded from environment variables."""
import logging
import os
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)


AVG_CPC_MODES = ("estimated", "actual")
CACHE_BACKENDS = ("memory", "redis")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = os.getenv(name, default).strip().lower()
    if raw not in choices:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default
    return raw


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for the fetch client, cache and orchestrator."""

    cache_ttl_seconds: int = 900
    cache_stale_retention_seconds: int = 86400
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"

    max_retries: int = 3
    retry_base_delay: float = 1.0
    rate_limit_max_delay: float = 30.0
    transient_max_delay: float = 10.0
    request_timeout_seconds: float = 30.0
    unit_timeout_seconds: float = 60.0

    avg_cpc_mode: str = "estimated"
    assumed_ctr: float = 0.025

    db_path: str = "data/pulse.db"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from PULSE_* environment variables."""
        return cls(
            cache_ttl_seconds=_env_int("PULSE_CACHE_TTL_SECONDS", 900),
            cache_stale_retention_seconds=_env_int(
                "PULSE_CACHE_STALE_RETENTION_SECONDS", 86400
            ),
            cache_backend=_env_choice("PULSE_CACHE_BACKEND", "memory", CACHE_BACKENDS),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            max_retries=_env_int("PULSE_MAX_RETRIES", 3),
            retry_base_delay=_env_float("PULSE_RETRY_BASE_DELAY", 1.0),
            request_timeout_seconds=_env_float("PULSE_REQUEST_TIMEOUT_SECONDS", 30.0),
            unit_timeout_seconds=_env_float("PULSE_UNIT_TIMEOUT_SECONDS", 60.0),
            avg_cpc_mode=_env_choice("PULSE_AVG_CPC_MODE", "estimated", AVG_CPC_MODES),
            assumed_ctr=_env_float("PULSE_ASSUMED_CTR", 0.025),
            db_path=os.getenv("PULSE_DB_PATH", "data/pulse.db"),
        )


@dataclass(frozen=True)
class OAuthClientConfig:
    """OAuth application credentials for one platform."""

    client_id: str
    client_secret: str


def oauth_client_from_env(id_var: str, secret_var: str) -> Optional[OAuthClientConfig]:
    client_id = os.getenv(id_var)
    client_secret = os.getenv(secret_var)
    if not client_id or not client_secret:
        return None
    return OAuthClientConfig(client_id=client_id, client_secret=client_secret)

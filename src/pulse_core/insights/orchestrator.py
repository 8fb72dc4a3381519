"""Aggregation orchestrator.

Fans out one unit of work per connected source, isolates every unit's
failure, and folds successful records into a single overview.

Unit lifecycle:
    PENDING -> FETCHING -> CACHE_HIT | UPSTREAM_OK | UPSTREAM_FAILED
            -> SUCCESS | STALE_FALLBACK | ERROR
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..adapters.base import SourceAdapter
from ..cache.response_cache import ResponseCache, cache_key
from ..config import EngineSettings
from ..credentials.refresh import CredentialRefresher
from ..errors import (
    ApiError,
    AuthError,
    CacheUnavailableError,
    ErrorKind,
    NetworkError,
    PlatformNotConnectedError,
    RateLimitError,
    SourceFetchError,
    TokenExpiredError,
)
from ..schemas.analytics import (
    Account,
    AggregatedOverview,
    InsightsReport,
    Platform,
    SourceCredential,
    SourceError,
    SourceRecord,
)
from .subscription import available_analytics_types, includes_ads_data


logger = logging.getLogger(__name__)


PLATFORM_LABELS = {
    Platform.FACEBOOK: "Facebook",
    Platform.INSTAGRAM: "Instagram",
    Platform.TWITTER: "X",
    Platform.TIKTOK: "TikTok",
    Platform.AMAZON: "Amazon",
}

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Data will refresh automatically."
TOKEN_EXPIRED_MESSAGE = "Authentication failed. Please reconnect your {label} account."

# Checked in order; the first positive value wins
FOLLOWER_FIELDS = ("fan_count", "followers_count", "follower_count")


class UnitState(str, Enum):
    """Terminal state of one source unit."""

    SUCCESS = "success"
    STALE_FALLBACK = "stale_fallback"
    ERROR = "error"


@dataclass
class UnitOutcome:
    """Result of one source unit: exactly one of record or error is set."""

    platform: Platform
    state: UnitState
    record: Optional[SourceRecord] = None
    error: Optional[SourceError] = None
    cache_hit: bool = False


def _followers(profile: dict[str, Any]) -> int:
    for field in FOLLOWER_FIELDS:
        value = profile.get(field)
        if isinstance(value, (int, float)) and value > 0:
            return int(value)
    return 0


def _public_details(details: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in details.items() if key != "body"}


def to_source_error(platform: Platform, exc: SourceFetchError) -> SourceError:
    """Convert a classified exception into the report's SourceError.

    Auth failures surface as ``token_expired`` because by the time they reach
    the report, refresh has already been tried or was unavailable.
    """
    if isinstance(exc, (AuthError, TokenExpiredError)):
        details = {"status": exc.status} if exc.status else {}
        return SourceError(
            platform=platform,
            kind=ErrorKind.TOKEN_EXPIRED,
            message=TOKEN_EXPIRED_MESSAGE.format(label=PLATFORM_LABELS[platform]),
            details=details,
        )

    if isinstance(exc, RateLimitError):
        return SourceError(
            platform=platform,
            kind=ErrorKind.RATE_LIMIT,
            message=RATE_LIMIT_MESSAGE,
            details=_public_details(exc.details),
        )

    return SourceError(
        platform=platform,
        kind=exc.kind,
        message=exc.message,
        details=_public_details(exc.details),
    )


def merge_outcomes(
    outcomes: list[UnitOutcome],
    include_ads: bool,
    avg_cpc_mode: str = "estimated",
    assumed_ctr: float = 0.025,
) -> tuple[
    AggregatedOverview,
    dict[Platform, SourceRecord],
    dict[Platform, SourceError],
    list[Platform],
]:
    """Fold unit outcomes into an overview plus per-platform maps.

    Pure function of the outcome list: totals depend only on each platform's
    final outcome, never on completion order.

    Args:
        outcomes: One outcome per source, in the account's source order
        include_ads: Subscription gate decision; ads are dropped when False
        avg_cpc_mode: "estimated" (spend / impressions * assumed_ctr) or
            "actual" (spend / ad clicks)
        assumed_ctr: Click-through rate used by the estimated CPC

    Returns:
        Tuple of (overview, records, errors, degraded platforms)
    """
    overview = AggregatedOverview()
    records: dict[Platform, SourceRecord] = {}
    errors: dict[Platform, SourceError] = {}
    degraded: list[Platform] = []
    has_ads = False

    for outcome in outcomes:
        if outcome.record is None:
            if outcome.error is not None:
                errors[outcome.platform] = outcome.error
            continue

        record = outcome.record
        if not include_ads and record.ads is not None:
            record = record.model_copy(update={"ads": None})

        records[outcome.platform] = record
        if outcome.state == UnitState.STALE_FALLBACK:
            degraded.append(outcome.platform)

        posts = record.posts
        overview.total_posts += posts.total_posts
        overview.total_engagement += posts.total_engagement
        overview.total_reach += posts.total_reach
        overview.total_impressions += posts.total_impressions
        overview.total_followers += _followers(record.profile)

        if record.ads is not None:
            has_ads = True
            overview.total_ad_spend += record.ads.total_spend
            overview.total_ad_clicks += record.ads.total_clicks
            overview.total_ad_impressions += record.ads.total_impressions

    if overview.total_reach > 0:
        overview.engagement_rate = overview.total_engagement * 100 / overview.total_reach

    if has_ads:
        if avg_cpc_mode == "actual":
            if overview.total_ad_clicks > 0:
                overview.avg_cpc = overview.total_ad_spend / overview.total_ad_clicks
        else:
            estimated_clicks = overview.total_impressions * assumed_ctr
            if estimated_clicks > 0:
                overview.avg_cpc = overview.total_ad_spend / estimated_clicks

        if overview.total_ad_impressions > 0:
            overview.avg_ctr = overview.total_ad_clicks * 100 / overview.total_ad_impressions

    return overview, records, errors, degraded


class InsightsOrchestrator:
    """Builds InsightsReports from an account's connected sources.

    Stateless per call; the injected cache is the only shared resource.
    """

    def __init__(
        self,
        adapters: dict[Platform, SourceAdapter],
        cache: ResponseCache,
        refresher: Optional[CredentialRefresher] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            adapters: Source adapter per platform
            cache: Response cache shared across cycles
            refresher: Optional credential refresh collaborator
            settings: Engine settings (defaults when omitted)
        """
        self.adapters = adapters
        self.cache = cache
        self.refresher = refresher
        self.settings = settings or EngineSettings()

    async def get_report(self, account: Account) -> InsightsReport:
        """Aggregate every connected source for an account.

        Never raises for upstream conditions; each failed source appears in
        ``report.errors`` instead.

        Args:
            account: Account with zero or more credentials

        Returns:
            InsightsReport with overview, records and errors
        """
        return await self._run_cycle(account, list(account.credentials))

    async def get_platform_report(
        self, account: Account, platform: Platform
    ) -> InsightsReport:
        """Aggregate a single connected platform.

        Args:
            account: Account owning the credential
            platform: Platform to fetch

        Returns:
            InsightsReport restricted to one platform

        Raises:
            PlatformNotConnectedError: If the account has no credential for it
        """
        credential = account.credential_for(platform)
        if credential is None:
            raise PlatformNotConnectedError(account.id, platform.value)
        return await self._run_cycle(account, [credential])

    async def _run_cycle(
        self, account: Account, credentials: list[SourceCredential]
    ) -> InsightsReport:
        include_ads = includes_ads_data(account.tier)

        if not credentials:
            logger.info("No connected sources for account=%s", account.id)
            return self._build_report(account, [], include_ads, credentials)

        logger.info(
            "Starting insights cycle: account=%s, tier=%s, sources=%s, include_ads=%s",
            account.id,
            account.tier.value,
            ",".join(credential.platform.value for credential in credentials),
            include_ads,
        )

        outcomes = await asyncio.gather(
            *(
                self._run_unit_guarded(account.id, credential, include_ads)
                for credential in credentials
            )
        )

        for outcome in outcomes:
            self._log_outcome(account.id, outcome)

        report = self._build_report(account, list(outcomes), include_ads, credentials)

        logger.info(
            "Insights cycle complete: account=%s, platforms=%s, succeeded=%s, "
            "failed=%s, degraded=%s, has_errors=%s",
            account.id,
            len(credentials),
            len(report.records),
            len(report.errors),
            len(report.degraded_platforms),
            report.has_errors,
        )
        return report

    def _build_report(
        self,
        account: Account,
        outcomes: list[UnitOutcome],
        include_ads: bool,
        credentials: list[SourceCredential],
    ) -> InsightsReport:
        overview, records, errors, degraded = merge_outcomes(
            outcomes,
            include_ads,
            avg_cpc_mode=self.settings.avg_cpc_mode,
            assumed_ctr=self.settings.assumed_ctr,
        )
        return InsightsReport(
            account_id=account.id,
            tier=account.tier,
            overview=overview,
            records=records,
            errors=errors,
            connected_platforms=[credential.platform for credential in credentials],
            available_analytics=available_analytics_types(account.tier),
            degraded_platforms=degraded,
        )

    async def _run_unit_guarded(
        self, account_id: str, credential: SourceCredential, include_ads: bool
    ) -> UnitOutcome:
        """Run one unit under its own timeout; never raises past this point."""
        platform = credential.platform
        timeout = self.settings.unit_timeout_seconds

        try:
            return await asyncio.wait_for(
                self._run_unit(account_id, credential, include_ads),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return self._error_outcome(
                platform,
                NetworkError(
                    f"{PLATFORM_LABELS[platform]} request timed out after {timeout:g}s",
                    details={"reason": "timeout", "timeoutSeconds": timeout},
                ),
            )
        except Exception as exc:
            logger.error(
                "Unexpected failure in source unit: account=%s, platform=%s",
                account_id,
                platform.value,
                exc_info=True,
            )
            return self._error_outcome(
                platform,
                ApiError(
                    f"Unexpected error fetching {PLATFORM_LABELS[platform]} analytics",
                    details={"exception": type(exc).__name__},
                ),
            )

    async def _run_unit(
        self, account_id: str, credential: SourceCredential, include_ads: bool
    ) -> UnitOutcome:
        platform = credential.platform

        adapter = self.adapters.get(platform)
        if adapter is None:
            return self._error_outcome(
                platform, ApiError(f"No adapter registered for {platform.value}")
            )

        if credential.is_expired():
            logger.info(
                "Skipping expired credential: account=%s, platform=%s",
                account_id,
                platform.value,
            )
            return self._error_outcome(
                platform, TokenExpiredError(f"{platform.value} credential expired")
            )

        scope = "ads" if include_ads else "posts"
        key = cache_key(platform.value, credential.access_token, scope)

        cached = await self._read_fresh(platform, key)
        if cached is not None:
            return UnitOutcome(
                platform=platform,
                state=UnitState.SUCCESS,
                record=cached,
                cache_hit=True,
            )

        try:
            record, used = await self._fetch_with_refresh(
                account_id, adapter, credential, include_ads
            )
        except RateLimitError as exc:
            stale = await self._read_stale(platform, key)
            if stale is not None:
                logger.warning(
                    "Rate limited, serving stale cache: account=%s, platform=%s, retry_after=%s",
                    account_id,
                    platform.value,
                    exc.retry_after,
                )
                return UnitOutcome(
                    platform=platform,
                    state=UnitState.STALE_FALLBACK,
                    record=stale,
                )
            return self._error_outcome(platform, exc)
        except SourceFetchError as exc:
            return self._error_outcome(platform, exc)

        if used is not credential:
            key = cache_key(platform.value, used.access_token, scope)
        await self._store(platform, key, record)

        return UnitOutcome(platform=platform, state=UnitState.SUCCESS, record=record)

    async def _read_fresh(self, platform: Platform, key: str) -> Optional[SourceRecord]:
        """Return an unexpired cached record; an unreachable cache is a miss."""
        try:
            info = await self.cache.get_info(key)
            if info is None or info.expired:
                return None
            cached = await self.cache.get(key)
        except CacheUnavailableError as exc:
            logger.warning(
                "Cache read failed, treating as miss: platform=%s, error=%s",
                platform.value,
                exc,
            )
            return None

        if cached is not None:
            logger.debug(
                "Cache hit: platform=%s, age_ms=%s, ttl_remaining_ms=%s",
                platform.value,
                info.age_ms,
                info.ttl_remaining_ms,
            )
        return cached

    async def _read_stale(self, platform: Platform, key: str) -> Optional[SourceRecord]:
        try:
            return await self.cache.get(key)
        except CacheUnavailableError as exc:
            logger.warning(
                "Cache read failed, no stale fallback: platform=%s, error=%s",
                platform.value,
                exc,
            )
            return None

    async def _store(self, platform: Platform, key: str, record: SourceRecord) -> None:
        try:
            await self.cache.set(key, record, self.settings.cache_ttl_seconds)
        except CacheUnavailableError as exc:
            logger.warning(
                "Cache write failed, record not cached: platform=%s, error=%s",
                platform.value,
                exc,
            )

    async def _fetch_with_refresh(
        self,
        account_id: str,
        adapter: SourceAdapter,
        credential: SourceCredential,
        include_ads: bool,
    ) -> tuple[SourceRecord, SourceCredential]:
        """Fetch a record, refreshing the credential once on auth failure.

        Returns:
            Tuple of (record, credential actually used)

        Raises:
            SourceFetchError: Classified failure after the optional retry
        """
        try:
            return await adapter.fetch_record(credential, include_ads), credential
        except AuthError:
            if self.refresher is None or not self.refresher.can_refresh(credential):
                raise

            logger.info(
                "Auth error, refreshing credential: account=%s, platform=%s, credential=%s",
                account_id,
                credential.platform.value,
                credential.id,
            )
            refreshed = await self.refresher.refresh(credential)
            return await adapter.fetch_record(refreshed, include_ads), refreshed

    @staticmethod
    def _error_outcome(platform: Platform, exc: SourceFetchError) -> UnitOutcome:
        return UnitOutcome(
            platform=platform,
            state=UnitState.ERROR,
            error=to_source_error(platform, exc),
        )

    @staticmethod
    def _log_outcome(account_id: str, outcome: UnitOutcome) -> None:
        if outcome.state == UnitState.ERROR:
            logger.warning(
                "Source failed: account=%s, platform=%s, kind=%s, message=%s",
                account_id,
                outcome.platform.value,
                outcome.error.kind.value,
                outcome.error.message,
            )
        else:
            logger.info(
                "Source ok: account=%s, platform=%s, state=%s, cache_hit=%s",
                account_id,
                outcome.platform.value,
                outcome.state.value,
                outcome.cache_hit,
            )

"""Base source adapter and shared normalization helpers.

Subclasses implement:
    - platform: Platform enum value
    - fetch_posts_analytics(): organic posts metrics
    - fetch_profile() / fetch_ads_analytics(): optional

Adapters raise only exceptions from ``pulse_core.errors``.
"""
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import SourceFetchError
from ..fetch.client import ResilientFetchClient
from ..schemas.analytics import (
    AdsRecord,
    Platform,
    PostsRecord,
    SourceCredential,
    SourceRecord,
    SpendPoint,
    TrendPoint,
)


logger = logging.getLogger(__name__)


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _safe_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class PostSample:
    """One upstream post reduced to the metrics we fold."""

    date: str
    engagement: float
    reach: float = 0.0
    impressions: float = 0.0


def summarize_posts(
    samples: list[PostSample],
    total_reach: Optional[float] = None,
    total_impressions: Optional[float] = None,
) -> PostsRecord:
    """Build a PostsRecord from per-post samples.

    Account-level reach/impressions, when the platform exposes them, take
    precedence over per-post sums.

    Args:
        samples: Per-post metrics
        total_reach: Account-level reach for the window
        total_impressions: Account-level impressions for the window

    Returns:
        Normalized posts record with a per-day engagement trend
    """
    total_posts = len(samples)
    if total_posts == 0:
        return PostsRecord()

    engagement = sum(sample.engagement for sample in samples)
    reach = total_reach if total_reach is not None else sum(s.reach for s in samples)
    impressions = (
        total_impressions
        if total_impressions is not None
        else sum(s.impressions for s in samples)
    )

    by_day: dict[str, dict[str, float]] = defaultdict(
        lambda: {"engagement": 0.0, "reach": 0.0, "impressions": 0.0}
    )
    for sample in samples:
        day = by_day[sample.date]
        day["engagement"] += sample.engagement
        day["reach"] += sample.reach
        day["impressions"] += sample.impressions

    trend = [TrendPoint(date=date, **values) for date, values in sorted(by_day.items())]

    return PostsRecord(
        total_posts=total_posts,
        avg_engagement=engagement / total_posts,
        avg_reach=reach / total_posts,
        avg_impressions=impressions / total_posts,
        engagement_trend=trend,
    )


def summarize_spend(points: list[SpendPoint], roas: Optional[float] = None) -> AdsRecord:
    """Fold daily ad delivery into an AdsRecord with derived rates."""
    spend = sum(point.spend for point in points)
    reach = sum(point.reach for point in points)
    impressions = sum(point.impressions for point in points)
    clicks = sum(point.clicks for point in points)

    return AdsRecord(
        total_spend=round(spend, 2),
        total_reach=reach,
        total_impressions=impressions,
        total_clicks=clicks,
        cpm=(spend / impressions * 1000) if impressions else 0.0,
        cpc=(spend / clicks) if clicks else 0.0,
        ctr=(clicks / impressions * 100) if impressions else 0.0,
        roas=roas,
        spend_trend=sorted(points, key=lambda point: point.date),
    )


class SourceAdapter(ABC):
    """Translates one platform's API into a normalized SourceRecord."""

    platform: Platform

    def __init__(self, client: ResilientFetchClient, max_retries: int = 3) -> None:
        """Initialize adapter.

        Args:
            client: Shared resilient fetch client
            max_retries: Retries per upstream call
        """
        self.client = client
        self.max_retries = max_retries

    async def _request(
        self,
        method: str,
        url: str,
        credential: SourceCredential,
        **kwargs: Any,
    ) -> Any:
        secrets = [credential.access_token, credential.refresh_token]
        return await self.client.call(
            method,
            url,
            max_retries=self.max_retries,
            secrets=secrets,
            **kwargs,
        )

    async def fetch_profile(self, credential: SourceCredential) -> dict[str, Any]:
        """Return profile-shaped fields (followers, names). Empty by default."""
        return {}

    @abstractmethod
    async def fetch_posts_analytics(
        self,
        credential: SourceCredential,
        profile: Optional[dict[str, Any]] = None,
    ) -> PostsRecord:
        """Fetch organic posts metrics."""

    async def fetch_ads_analytics(
        self, credential: SourceCredential
    ) -> Optional[AdsRecord]:
        """Fetch paid-campaign metrics. None when the platform has none."""
        return None

    async def fetch_record(
        self, credential: SourceCredential, include_ads: bool
    ) -> SourceRecord:
        """Fetch profile, posts and (when allowed) ads into one record.

        Ads failures degrade to a record without ads; profile and posts
        failures propagate.

        Args:
            credential: Credential for this platform
            include_ads: Subscription gate decision for this cycle

        Returns:
            Normalized SourceRecord

        Raises:
            SourceFetchError: Classified profile/posts failure
        """
        profile = await self.fetch_profile(credential)
        posts = await self.fetch_posts_analytics(credential, profile=profile)

        ads: Optional[AdsRecord] = None
        if include_ads:
            try:
                ads = await self.fetch_ads_analytics(credential)
            except SourceFetchError as exc:
                logger.warning(
                    "Ads analytics unavailable: platform=%s, kind=%s, error=%s",
                    self.platform.value,
                    exc.kind.value,
                    exc.message,
                )

        return SourceRecord(
            platform=self.platform,
            posts=posts,
            ads=ads,
            profile=profile,
        )

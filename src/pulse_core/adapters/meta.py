"""Meta Graph API adapters for Facebook Pages and Instagram Business accounts.

Both platforms share the Graph API transport and the Marketing API insights
endpoint for paid-campaign metrics.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from ..errors import NoBusinessAccountError
from ..schemas.analytics import (
    AdsRecord,
    Platform,
    PostsRecord,
    SourceCredential,
    SpendPoint,
)
from .base import (
    PostSample,
    SourceAdapter,
    _safe_float,
    _safe_int,
    summarize_posts,
    summarize_spend,
)


logger = logging.getLogger(__name__)


GRAPH_API_URL = "https://graph.facebook.com/v18.0"

INSTAGRAM_REMEDIATION = (
    "To view Instagram insights, convert your Instagram account to a Business "
    "account and connect it to a Facebook page."
)
INSTAGRAM_HELP_URL = "https://help.instagram.com/502981923235522"

AD_INSIGHT_FIELDS = [
    "spend",
    "reach",
    "impressions",
    "clicks",
    "purchase_roas",
]


def _day(timestamp: Optional[str]) -> str:
    """Reduce a Graph timestamp (2024-01-15T10:00:00+0000) to YYYY-MM-DD."""
    if not timestamp:
        return ""
    try:
        return datetime.strptime(timestamp, "%Y-%m-%dT%H:%M:%S%z").date().isoformat()
    except ValueError:
        return timestamp[:10]


def _summary_count(field: Optional[dict]) -> int:
    if not field:
        return 0
    return _safe_int(field.get("summary", {}).get("total_count")) or 0


def _sum_insight(rows: list[dict], metric: str) -> Optional[float]:
    for row in rows:
        if row.get("name") != metric:
            continue
        values = row.get("values", [])
        return float(sum(_safe_float(value.get("value")) or 0.0 for value in values))
    return None


class MetaGraphAdapter(SourceAdapter):
    """Shared Graph API plumbing for Facebook and Instagram."""

    MAX_PAGES = 5
    PAGE_LIMIT = "100"

    async def _graph_get(
        self,
        path: str,
        credential: SourceCredential,
        params: Optional[dict[str, Any]] = None,
    ) -> dict:
        query = dict(params or {})
        query["access_token"] = credential.access_token
        return await self._request("GET", f"{GRAPH_API_URL}/{path}", credential, params=query)

    async def _graph_collect(
        self,
        path: str,
        credential: SourceCredential,
        params: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Fetch a Graph edge, following ``paging.next`` up to MAX_PAGES."""
        result = await self._graph_get(path, credential, params)
        all_data: list[dict] = list(result.get("data", []))

        pages = 1
        while "paging" in result and "next" in result["paging"] and pages < self.MAX_PAGES:
            next_url = result["paging"]["next"]
            result = await self._request("GET", next_url, credential)
            all_data.extend(result.get("data", []))
            pages += 1

        return all_data

    async def _fetch_ad_spend(
        self,
        credential: SourceCredential,
        publisher_platform: Optional[str] = None,
    ) -> Optional[AdsRecord]:
        """Fetch last-30-day daily delivery for the linked ad account.

        Args:
            credential: Credential with ``ad_account_id`` in auxiliary
            publisher_platform: Keep only rows for this placement, if set

        Returns:
            AdsRecord, or None when no ad account is linked
        """
        ad_account_id = credential.auxiliary.get("ad_account_id")
        if not ad_account_id:
            return None

        ad_account_id = str(ad_account_id)
        if not ad_account_id.startswith("act_"):
            ad_account_id = f"act_{ad_account_id}"

        params = {
            "level": "account",
            "date_preset": "last_30d",
            "time_increment": "1",
            "fields": ",".join(AD_INSIGHT_FIELDS),
            "limit": "1000",
        }
        if publisher_platform:
            params["breakdowns"] = "publisher_platform"

        rows = await self._graph_collect(f"{ad_account_id}/insights", credential, params)

        points: list[SpendPoint] = []
        roas_values: list[float] = []
        for row in rows:
            if publisher_platform and row.get("publisher_platform") != publisher_platform:
                continue
            points.append(
                SpendPoint(
                    date=row.get("date_start", ""),
                    spend=_safe_float(row.get("spend")) or 0.0,
                    reach=_safe_int(row.get("reach")) or 0,
                    impressions=_safe_int(row.get("impressions")) or 0,
                    clicks=_safe_int(row.get("clicks")) or 0,
                )
            )
            for action in row.get("purchase_roas") or []:
                value = _safe_float(action.get("value"))
                if value is not None:
                    roas_values.append(value)

        roas = sum(roas_values) / len(roas_values) if roas_values else None

        logger.info(
            "Fetched %s ad insight rows for %s (%s)",
            len(points),
            ad_account_id,
            self.platform.value,
        )
        return summarize_spend(points, roas=roas)


class FacebookAdapter(MetaGraphAdapter):
    """Facebook Page posts, page insights and Meta ad spend."""

    platform = Platform.FACEBOOK

    def _page_id(self, credential: SourceCredential) -> str:
        return str(credential.auxiliary.get("page_id") or "me")

    async def fetch_profile(self, credential: SourceCredential) -> dict[str, Any]:
        data = await self._graph_get(
            self._page_id(credential),
            credential,
            {"fields": "id,name,fan_count,followers_count"},
        )
        return {
            "id": data.get("id"),
            "name": data.get("name"),
            "fan_count": _safe_int(data.get("fan_count")) or 0,
            "followers_count": _safe_int(data.get("followers_count")) or 0,
        }

    async def fetch_posts_analytics(
        self,
        credential: SourceCredential,
        profile: Optional[dict[str, Any]] = None,
    ) -> PostsRecord:
        page_id = self._page_id(credential)

        posts = await self._graph_collect(
            f"{page_id}/posts",
            credential,
            {
                "fields": "id,created_time,shares,reactions.summary(total_count),"
                "comments.summary(total_count)",
                "limit": self.PAGE_LIMIT,
            },
        )

        samples = []
        for post in posts:
            shares = _safe_int((post.get("shares") or {}).get("count")) or 0
            engagement = (
                _summary_count(post.get("reactions"))
                + _summary_count(post.get("comments"))
                + shares
            )
            samples.append(PostSample(date=_day(post.get("created_time")), engagement=engagement))

        insights = await self._graph_get(
            f"{page_id}/insights",
            credential,
            {
                "metric": "page_impressions_unique,page_impressions",
                "period": "day",
                "date_preset": "last_30d",
            },
        )
        rows = insights.get("data", [])

        logger.debug("Fetched %s Facebook posts for page %s", len(samples), page_id)
        return summarize_posts(
            samples,
            total_reach=_sum_insight(rows, "page_impressions_unique"),
            total_impressions=_sum_insight(rows, "page_impressions"),
        )

    async def fetch_ads_analytics(
        self, credential: SourceCredential
    ) -> Optional[AdsRecord]:
        return await self._fetch_ad_spend(credential, publisher_platform="facebook")


class InstagramAdapter(MetaGraphAdapter):
    """Instagram Business media, account insights and Meta ad spend.

    Requires ``business_account_id`` in the credential's auxiliary data;
    personal accounts have no insights API.
    """

    platform = Platform.INSTAGRAM

    def _business_account_id(self, credential: SourceCredential) -> str:
        business_account_id = credential.auxiliary.get("business_account_id")
        if not business_account_id:
            raise NoBusinessAccountError(
                "Instagram Business account required",
                remediation=INSTAGRAM_REMEDIATION,
                help_url=INSTAGRAM_HELP_URL,
            )
        return str(business_account_id)

    async def fetch_profile(self, credential: SourceCredential) -> dict[str, Any]:
        ig_id = self._business_account_id(credential)
        data = await self._graph_get(
            ig_id,
            credential,
            {"fields": "id,username,followers_count,media_count"},
        )
        return {
            "id": data.get("id"),
            "username": data.get("username"),
            "followers_count": _safe_int(data.get("followers_count")) or 0,
            "media_count": _safe_int(data.get("media_count")) or 0,
        }

    async def fetch_posts_analytics(
        self,
        credential: SourceCredential,
        profile: Optional[dict[str, Any]] = None,
    ) -> PostsRecord:
        ig_id = self._business_account_id(credential)

        media = await self._graph_collect(
            f"{ig_id}/media",
            credential,
            {
                "fields": "id,timestamp,like_count,comments_count,media_type",
                "limit": self.PAGE_LIMIT,
            },
        )
        samples = [
            PostSample(
                date=_day(item.get("timestamp")),
                engagement=(_safe_int(item.get("like_count")) or 0)
                + (_safe_int(item.get("comments_count")) or 0),
            )
            for item in media
        ]

        insights = await self._graph_get(
            f"{ig_id}/insights",
            credential,
            {"metric": "reach,impressions", "period": "day"},
        )
        rows = insights.get("data", [])

        return summarize_posts(
            samples,
            total_reach=_sum_insight(rows, "reach"),
            total_impressions=_sum_insight(rows, "impressions"),
        )

    async def fetch_ads_analytics(
        self, credential: SourceCredential
    ) -> Optional[AdsRecord]:
        return await self._fetch_ad_spend(credential, publisher_platform="instagram")

"""X (Twitter) API v2 adapter."""
import logging
from typing import Any, Optional

from ..errors import ApiError
from ..schemas.analytics import Platform, PostsRecord, SourceCredential
from .base import PostSample, SourceAdapter, _safe_int, summarize_posts


logger = logging.getLogger(__name__)


TWITTER_API_URL = "https://api.twitter.com/2"


class TwitterAdapter(SourceAdapter):
    """Recent tweets with public metrics for the authenticated user."""

    platform = Platform.TWITTER

    MAX_RESULTS = "100"

    def _headers(self, credential: SourceCredential) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential.access_token}"}

    async def fetch_profile(self, credential: SourceCredential) -> dict[str, Any]:
        result = await self._request(
            "GET",
            f"{TWITTER_API_URL}/users/me",
            credential,
            params={"user.fields": "public_metrics,username,name"},
            headers=self._headers(credential),
        )
        user = result.get("data")
        if not user:
            raise ApiError("X API returned no user for the token", details=result)

        metrics = user.get("public_metrics", {})
        return {
            "id": user.get("id"),
            "username": user.get("username"),
            "name": user.get("name"),
            "followers_count": _safe_int(metrics.get("followers_count")) or 0,
            "tweet_count": _safe_int(metrics.get("tweet_count")) or 0,
        }

    async def fetch_posts_analytics(
        self,
        credential: SourceCredential,
        profile: Optional[dict[str, Any]] = None,
    ) -> PostsRecord:
        user_id = (profile or {}).get("id") or credential.auxiliary.get("user_id")
        if not user_id:
            user_id = (await self.fetch_profile(credential))["id"]

        result = await self._request(
            "GET",
            f"{TWITTER_API_URL}/users/{user_id}/tweets",
            credential,
            params={
                "tweet.fields": "created_at,public_metrics",
                "max_results": self.MAX_RESULTS,
            },
            headers=self._headers(credential),
        )

        samples = []
        for tweet in result.get("data", []):
            metrics = tweet.get("public_metrics", {})
            engagement = sum(
                _safe_int(metrics.get(field)) or 0
                for field in ("like_count", "retweet_count", "reply_count", "quote_count")
            )
            impressions = _safe_int(metrics.get("impression_count")) or 0
            samples.append(
                PostSample(
                    date=(tweet.get("created_at") or "")[:10],
                    engagement=engagement,
                    reach=impressions,
                    impressions=impressions,
                )
            )

        logger.debug("Fetched %s tweets for user %s", len(samples), user_id)
        return summarize_posts(samples)

"""TikTok Display API v2 adapter.

TikTok reports most failures inside a 200 response as
``{"error": {"code": "...", "message": "..."}}``. ``check_envelope`` maps those
codes into the shared taxonomy and runs inside the fetch client, so an
envelope rate limit is retried like an HTTP 429.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..errors import ApiError, AuthError, RateLimitError
from ..schemas.analytics import Platform, PostsRecord, SourceCredential
from .base import PostSample, SourceAdapter, _safe_int, summarize_posts


logger = logging.getLogger(__name__)


TIKTOK_API_URL = "https://open.tiktokapis.com/v2"

AUTH_ERROR_CODES = frozenset({"access_token_invalid", "scope_not_authorized", "token_expired"})
RATE_LIMIT_ERROR_CODES = frozenset({"rate_limit_exceeded"})


def check_envelope(result: Any) -> None:
    """Raise the classified error for a non-ok TikTok envelope."""
    error = (result.get("error") if isinstance(result, dict) else None) or {}
    code = error.get("code", "ok")
    if code == "ok":
        return

    message = error.get("message") or code
    details = {"code": code, "logId": error.get("log_id")}
    if code in AUTH_ERROR_CODES:
        raise AuthError(f"TikTok authentication failed: {message}", details=details)
    if code in RATE_LIMIT_ERROR_CODES:
        raise RateLimitError(f"TikTok rate limit exceeded: {message}", details=details)
    raise ApiError(f"TikTok API error: {message}", details=details)


class TikTokAdapter(SourceAdapter):
    """Creator profile and recent video metrics."""

    platform = Platform.TIKTOK

    MAX_PAGES = 5
    PAGE_SIZE = 20
    USER_FIELDS = "open_id,username,display_name,follower_count,video_count,likes_count"
    VIDEO_FIELDS = "id,create_time,like_count,comment_count,share_count,view_count"

    def _headers(self, credential: SourceCredential) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential.access_token}"}

    async def fetch_profile(self, credential: SourceCredential) -> dict[str, Any]:
        result = await self._request(
            "GET",
            f"{TIKTOK_API_URL}/user/info/",
            credential,
            params={"fields": self.USER_FIELDS},
            headers=self._headers(credential),
            check_body=check_envelope,
        )
        user = (result.get("data") or {}).get("user", {})
        return {
            "id": user.get("open_id"),
            "username": user.get("username"),
            "name": user.get("display_name"),
            "follower_count": _safe_int(user.get("follower_count")) or 0,
            "video_count": _safe_int(user.get("video_count")) or 0,
        }

    async def fetch_posts_analytics(
        self,
        credential: SourceCredential,
        profile: Optional[dict[str, Any]] = None,
    ) -> PostsRecord:
        samples: list[PostSample] = []
        cursor: Optional[int] = None

        for _ in range(self.MAX_PAGES):
            body: dict[str, Any] = {"max_count": self.PAGE_SIZE}
            if cursor is not None:
                body["cursor"] = cursor

            result = await self._request(
                "POST",
                f"{TIKTOK_API_URL}/video/list/",
                credential,
                params={"fields": self.VIDEO_FIELDS},
                headers=self._headers(credential),
                json_body=body,
                check_body=check_envelope,
            )
            data = result.get("data") or {}

            for video in data.get("videos", []):
                created = _safe_int(video.get("create_time"))
                day = (
                    datetime.fromtimestamp(created, tz=timezone.utc).date().isoformat()
                    if created
                    else ""
                )
                views = _safe_int(video.get("view_count")) or 0
                samples.append(
                    PostSample(
                        date=day,
                        engagement=(_safe_int(video.get("like_count")) or 0)
                        + (_safe_int(video.get("comment_count")) or 0)
                        + (_safe_int(video.get("share_count")) or 0),
                        reach=views,
                        impressions=views,
                    )
                )

            if not data.get("has_more"):
                break
            cursor = _safe_int(data.get("cursor"))

        logger.debug("Fetched %s TikTok videos", len(samples))
        return summarize_posts(samples)

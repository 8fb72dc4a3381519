"""Pydantic models for accounts, per-source records and the aggregated report."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ..errors import ErrorKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionTier(str, Enum):
    """Billing tier of an account."""

    FREE = "FREE"
    PREMIUM_MONTHLY = "PREMIUM_MONTHLY"
    PREMIUM_YEARLY = "PREMIUM_YEARLY"


class Platform(str, Enum):
    """Upstream analytics providers."""

    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    TIKTOK = "tiktok"
    AMAZON = "amazon"


class SourceCredential(BaseModel):
    """Connected platform credential owned by an account."""

    id: str = Field(..., description="Credential identifier")
    platform: Platform
    access_token: str = Field(..., repr=False, description="Opaque access token (never logged)")
    refresh_token: Optional[str] = Field(None, repr=False, description="Optional refresh token")
    auxiliary: dict[str, Any] = Field(
        default_factory=dict,
        description="Per-platform extras (page_id, business_account_id, profile_id, ...)",
    )
    expires_at: Optional[datetime] = Field(None, description="Token expiry (UTC)")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the token is already known to be expired."""
        if self.expires_at is None:
            return False
        now = now or utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at


class Account(BaseModel):
    """Account holder with its connected sources."""

    id: str
    tier: SubscriptionTier = SubscriptionTier.FREE
    credentials: list[SourceCredential] = Field(default_factory=list)

    @field_validator("credentials")
    @classmethod
    def _one_credential_per_platform(
        cls, credentials: list[SourceCredential]
    ) -> list[SourceCredential]:
        seen: set[Platform] = set()
        for credential in credentials:
            if credential.platform in seen:
                raise ValueError(
                    f"duplicate credential for platform {credential.platform.value}"
                )
            seen.add(credential.platform)
        return credentials

    def credential_for(self, platform: Platform) -> Optional[SourceCredential]:
        for credential in self.credentials:
            if credential.platform == platform:
                return credential
        return None


class TrendPoint(BaseModel):
    """One day of post engagement."""

    date: str
    engagement: float = 0.0
    reach: float = 0.0
    impressions: float = 0.0


class SpendPoint(BaseModel):
    """One day of ad delivery."""

    date: str
    spend: float = 0.0
    reach: int = 0
    impressions: int = 0
    clicks: int = 0


class PostsRecord(BaseModel):
    """Normalized organic posts metrics for one source."""

    total_posts: int = 0
    avg_engagement: float = 0.0
    avg_reach: float = 0.0
    avg_impressions: float = 0.0
    engagement_trend: list[TrendPoint] = Field(default_factory=list)

    @property
    def total_engagement(self) -> float:
        return self.avg_engagement * self.total_posts

    @property
    def total_reach(self) -> float:
        return self.avg_reach * self.total_posts

    @property
    def total_impressions(self) -> float:
        return self.avg_impressions * self.total_posts


class AdsRecord(BaseModel):
    """Normalized paid-campaign metrics for one source."""

    total_spend: float = 0.0
    total_reach: int = 0
    total_impressions: int = 0
    total_clicks: int = 0
    cpm: float = 0.0
    cpc: float = 0.0
    ctr: float = 0.0
    roas: Optional[float] = None
    spend_trend: list[SpendPoint] = Field(default_factory=list)


class SourceRecord(BaseModel):
    """Per-source analytics record produced by one aggregation unit."""

    platform: Platform
    posts: PostsRecord = Field(default_factory=PostsRecord)
    ads: Optional[AdsRecord] = None
    profile: dict[str, Any] = Field(default_factory=dict)
    fetched_at: datetime = Field(default_factory=utcnow)


class SourceError(BaseModel):
    """Structured failure for one source."""

    platform: Platform
    kind: ErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class AggregatedOverview(BaseModel):
    """Totals folded from every successful source record."""

    total_posts: int = 0
    total_engagement: float = 0.0
    total_reach: float = 0.0
    total_impressions: float = 0.0
    total_followers: int = 0
    engagement_rate: float = 0.0
    total_ad_spend: float = 0.0
    total_ad_clicks: int = 0
    total_ad_impressions: int = 0
    avg_cpc: float = 0.0
    avg_ctr: float = 0.0


class InsightsReport(BaseModel):
    """Unified report handed to the report consumer."""

    account_id: str
    tier: SubscriptionTier
    overview: AggregatedOverview
    records: dict[Platform, SourceRecord] = Field(default_factory=dict)
    errors: dict[Platform, SourceError] = Field(default_factory=dict)
    connected_platforms: list[Platform] = Field(default_factory=list)
    available_analytics: list[str] = Field(default_factory=list)
    degraded_platforms: list[Platform] = Field(
        default_factory=list,
        description="Platforms served from an expired cache entry after rate limiting",
    )
    generated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

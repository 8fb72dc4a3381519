"""Amazon Ads API adapter.

Amazon has no organic posts; the posts record is always empty and the
interesting data comes from the Sponsored Products v3 async report.

Report flow:
    1. POST /reporting/reports -> reportId
    2. Poll GET /reporting/reports/{reportId} until COMPLETED
    3. Download the gzip JSON file from the returned url
"""
import asyncio
import gzip
import json
import logging
from datetime import date, timedelta
from time import monotonic
from typing import Any, Optional

from ..errors import ApiError
from ..fetch.client import ResilientFetchClient
from ..schemas.analytics import (
    AdsRecord,
    Platform,
    PostsRecord,
    SourceCredential,
    SpendPoint,
)
from .base import SourceAdapter, _safe_float, _safe_int, summarize_spend


logger = logging.getLogger(__name__)


AMAZON_ADS_API_URL = "https://advertising-api.amazon.com"
REPORT_CONTENT_TYPE = "application/vnd.createasyncreportrequest.v3+json"


class AmazonAdsAdapter(SourceAdapter):
    """Advertising profile and Sponsored Products campaign spend."""

    platform = Platform.AMAZON

    DEFAULT_POLL_INTERVAL = 2.0  # seconds
    DEFAULT_POLL_TIMEOUT = 45.0  # seconds
    REPORT_DAYS = 30

    def __init__(
        self,
        client: ResilientFetchClient,
        max_retries: int = 3,
        client_id: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> None:
        """Initialize Amazon Ads adapter.

        Args:
            client: Shared resilient fetch client
            max_retries: Retries per upstream call
            client_id: Login with Amazon client id (Amazon-Advertising-API-ClientId)
            poll_interval: Seconds between report status polls
            poll_timeout: Maximum seconds to wait for a report
        """
        super().__init__(client, max_retries=max_retries)
        self.client_id = client_id
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    def _headers(self, credential: SourceCredential) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {credential.access_token}"}
        if self.client_id:
            headers["Amazon-Advertising-API-ClientId"] = self.client_id
        profile_id = credential.auxiliary.get("profile_id")
        if profile_id:
            headers["Amazon-Advertising-API-Scope"] = str(profile_id)
        return headers

    async def fetch_profile(self, credential: SourceCredential) -> dict[str, Any]:
        profile_id = credential.auxiliary.get("profile_id")
        if not profile_id:
            return {}

        data = await self._request(
            "GET",
            f"{AMAZON_ADS_API_URL}/v2/profiles/{profile_id}",
            credential,
            headers=self._headers(credential),
        )
        account_info = data.get("accountInfo", {})
        return {
            "id": data.get("profileId"),
            "name": account_info.get("name"),
            "marketplace": account_info.get("marketplaceStringId"),
            "currency": data.get("currencyCode"),
        }

    async def fetch_posts_analytics(
        self,
        credential: SourceCredential,
        profile: Optional[dict[str, Any]] = None,
    ) -> PostsRecord:
        return PostsRecord()

    async def fetch_ads_analytics(
        self, credential: SourceCredential
    ) -> Optional[AdsRecord]:
        if not credential.auxiliary.get("profile_id"):
            return None

        report_id = await self._request_report(credential)
        url = await self._poll_report(credential, report_id)
        rows = await self._download_report(credential, url)

        by_day: dict[str, SpendPoint] = {}
        total_sales = 0.0
        for row in rows:
            day = row.get("date", "")
            point = by_day.setdefault(day, SpendPoint(date=day))
            point.spend += _safe_float(row.get("cost")) or 0.0
            point.impressions += _safe_int(row.get("impressions")) or 0
            point.clicks += _safe_int(row.get("clicks")) or 0
            total_sales += _safe_float(row.get("sales14d")) or 0.0

        points = list(by_day.values())
        spend = sum(point.spend for point in points)
        roas = total_sales / spend if spend else None

        logger.info("Fetched Amazon Ads report %s with %s rows", report_id, len(rows))
        return summarize_spend(points, roas=roas)

    async def _request_report(self, credential: SourceCredential) -> str:
        end = date.today()
        start = end - timedelta(days=self.REPORT_DAYS - 1)
        payload = {
            "name": f"pulse sp campaigns {start.isoformat()}",
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "configuration": {
                "adProduct": "SPONSORED_PRODUCTS",
                "groupBy": ["campaign"],
                "columns": ["date", "impressions", "clicks", "cost", "sales14d"],
                "reportTypeId": "spCampaigns",
                "timeUnit": "DAILY",
                "format": "GZIP_JSON",
            },
        }
        headers = self._headers(credential)
        headers["Content-Type"] = REPORT_CONTENT_TYPE

        data = await self._request(
            "POST",
            f"{AMAZON_ADS_API_URL}/reporting/reports",
            credential,
            headers=headers,
            data=json.dumps(payload),
        )
        report_id = data.get("reportId")
        if not report_id:
            raise ApiError("Amazon Ads report request returned no reportId", details=data)
        return report_id

    async def _poll_report(self, credential: SourceCredential, report_id: str) -> str:
        """Poll report status until COMPLETED and return the download url.

        Raises:
            ApiError: On FAILURE, a missing url, or poll timeout
        """
        start_time = monotonic()

        while True:
            elapsed = monotonic() - start_time
            if elapsed > self.poll_timeout:
                raise ApiError(
                    f"Amazon Ads report poll timeout after {elapsed:.1f}s for report={report_id}"
                )

            data = await self._request(
                "GET",
                f"{AMAZON_ADS_API_URL}/reporting/reports/{report_id}",
                credential,
                headers=self._headers(credential),
            )
            status = data.get("status")
            logger.debug("Report poll: status=%s, elapsed=%.1fs", status, elapsed)

            if status == "COMPLETED":
                url = data.get("url")
                if not url:
                    raise ApiError(f"Amazon Ads report COMPLETED but url missing: {report_id}")
                return url

            if status == "FAILURE":
                raise ApiError(
                    f"Amazon Ads report failed: {data.get('failureReason')}",
                    details={"reportId": report_id},
                )

            # PENDING / PROCESSING
            await asyncio.sleep(self.poll_interval)

    async def _download_report(
        self, credential: SourceCredential, url: str
    ) -> list[dict]:
        raw = await self._request("GET", url, credential, parse_json=False)
        try:
            rows = json.loads(gzip.decompress(raw))
        except (OSError, ValueError) as exc:
            raise ApiError(f"Unreadable Amazon Ads report: {exc}") from exc
        return rows if isinstance(rows, list) else []

"""Unit tests for platform source adapters (mocked fetch client)."""
import gzip
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.pulse_core.adapters import (
    AmazonAdsAdapter,
    FacebookAdapter,
    InstagramAdapter,
    TikTokAdapter,
    TwitterAdapter,
)
from src.pulse_core.adapters.base import PostSample, summarize_posts
from src.pulse_core.adapters.tiktok import check_envelope
from src.pulse_core.errors import (
    ApiError,
    AuthError,
    NoBusinessAccountError,
    RateLimitError,
)
from src.pulse_core.fetch.client import ResilientFetchClient
from src.pulse_core.schemas.analytics import Platform, SourceCredential


def _client(*responses):
    client = MagicMock()
    client.call = AsyncMock(side_effect=list(responses))
    return client


def _http_response(body, status=200):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.headers = {}
    mock_response.text.return_value = json.dumps(body)
    mock_response.__aenter__.return_value = mock_response
    return mock_response


def _credential(platform, **auxiliary):
    return SourceCredential(
        id=f"cred-{platform.value}",
        platform=platform,
        access_token="tok-123",
        auxiliary=auxiliary,
    )


FB_PAGE = {"id": "p1", "name": "Page", "fan_count": 1200, "followers_count": 1300}
FB_POSTS = {
    "data": [
        {
            "id": "1",
            "created_time": "2024-01-15T10:00:00+0000",
            "shares": {"count": 2},
            "reactions": {"summary": {"total_count": 10}},
            "comments": {"summary": {"total_count": 3}},
        },
        {
            "id": "2",
            "created_time": "2024-01-16T09:00:00+0000",
            "reactions": {"summary": {"total_count": 5}},
        },
    ]
}
FB_INSIGHTS = {
    "data": [
        {"name": "page_impressions_unique", "values": [{"value": 100}, {"value": 300}]},
        {"name": "page_impressions", "values": [{"value": 500}, {"value": 700}]},
    ]
}
META_ADS = {
    "data": [
        {
            "date_start": "2024-01-15",
            "publisher_platform": "facebook",
            "spend": "10.50",
            "reach": "100",
            "impressions": "1000",
            "clicks": "20",
            "purchase_roas": [{"action_type": "omni_purchase", "value": "3.0"}],
        },
        {
            "date_start": "2024-01-15",
            "publisher_platform": "instagram",
            "spend": "5",
            "impressions": "10",
            "clicks": "1",
        },
    ]
}


def test_summarize_posts_prefers_account_level_reach():
    samples = [
        PostSample(date="2024-01-02", engagement=4, reach=10),
        PostSample(date="2024-01-01", engagement=6, reach=20),
        PostSample(date="2024-01-02", engagement=2, reach=5),
    ]

    record = summarize_posts(samples, total_reach=300.0)

    assert record.total_posts == 3
    assert record.avg_engagement == 4.0
    assert record.avg_reach == 100.0
    assert [point.date for point in record.engagement_trend] == ["2024-01-01", "2024-01-02"]
    assert record.engagement_trend[1].engagement == 6


def test_summarize_posts_empty():
    assert summarize_posts([]).total_posts == 0


@pytest.mark.asyncio
async def test_facebook_record_posts_and_profile():
    client = _client(FB_PAGE, FB_POSTS, FB_INSIGHTS)
    adapter = FacebookAdapter(client)

    record = await adapter.fetch_record(
        _credential(Platform.FACEBOOK, page_id="p1"), include_ads=False
    )

    assert record.platform == Platform.FACEBOOK
    assert record.profile["fan_count"] == 1200
    assert record.posts.total_posts == 2
    assert record.posts.avg_engagement == 10.0
    assert record.posts.avg_reach == 200.0
    assert record.posts.avg_impressions == 600.0
    assert record.ads is None
    assert client.call.await_count == 3

    args, kwargs = client.call.call_args_list[1]
    assert args == ("GET", "https://graph.facebook.com/v18.0/p1/posts")
    assert kwargs["params"]["access_token"] == "tok-123"
    assert "tok-123" in kwargs["secrets"]


@pytest.mark.asyncio
async def test_facebook_ads_filtered_to_facebook_placement():
    client = _client(FB_PAGE, FB_POSTS, FB_INSIGHTS, META_ADS)
    adapter = FacebookAdapter(client)

    record = await adapter.fetch_record(
        _credential(Platform.FACEBOOK, page_id="p1", ad_account_id="555"),
        include_ads=True,
    )

    assert record.ads.total_spend == 10.5
    assert record.ads.total_clicks == 20
    assert record.ads.total_impressions == 1000
    assert record.ads.cpc == pytest.approx(0.525)
    assert record.ads.ctr == pytest.approx(2.0)
    assert record.ads.roas == 3.0
    args, kwargs = client.call.call_args_list[3]
    assert args[1] == "https://graph.facebook.com/v18.0/act_555/insights"
    assert kwargs["params"]["breakdowns"] == "publisher_platform"


@pytest.mark.asyncio
async def test_facebook_follows_pagination():
    first_page = {
        "data": FB_POSTS["data"][:1],
        "paging": {"next": "https://graph.facebook.com/v18.0/p1/posts?after=abc"},
    }
    second_page = {"data": FB_POSTS["data"][1:]}
    client = _client(FB_PAGE, first_page, second_page, FB_INSIGHTS)
    adapter = FacebookAdapter(client)

    record = await adapter.fetch_record(
        _credential(Platform.FACEBOOK, page_id="p1"), include_ads=False
    )

    assert record.posts.total_posts == 2
    args, _ = client.call.call_args_list[2]
    assert args[1] == "https://graph.facebook.com/v18.0/p1/posts?after=abc"


@pytest.mark.asyncio
async def test_ads_failure_degrades_to_record_without_ads():
    client = _client(FB_PAGE, FB_POSTS, FB_INSIGHTS, ApiError("denied", status=400))
    adapter = FacebookAdapter(client)

    record = await adapter.fetch_record(
        _credential(Platform.FACEBOOK, page_id="p1", ad_account_id="555"),
        include_ads=True,
    )

    assert record.ads is None
    assert record.posts.total_posts == 2


@pytest.mark.asyncio
async def test_posts_failure_propagates():
    client = _client(FB_PAGE, RateLimitError("429"))
    adapter = FacebookAdapter(client)

    with pytest.raises(RateLimitError):
        await adapter.fetch_record(_credential(Platform.FACEBOOK), include_ads=False)


@pytest.mark.asyncio
async def test_instagram_without_business_account_raises():
    client = _client()
    adapter = InstagramAdapter(client)

    with pytest.raises(NoBusinessAccountError) as exc_info:
        await adapter.fetch_record(_credential(Platform.INSTAGRAM), include_ads=False)

    assert "Business account" in exc_info.value.details["message"]
    assert exc_info.value.details["helpUrl"] == "https://help.instagram.com/502981923235522"
    client.call.assert_not_awaited()


@pytest.mark.asyncio
async def test_instagram_media_and_insights():
    client = _client(
        {"id": "ig1", "username": "brand", "followers_count": 800, "media_count": 2},
        {
            "data": [
                {"id": "m1", "timestamp": "2024-01-15T10:00:00+0000", "like_count": 30, "comments_count": 2},
                {"id": "m2", "timestamp": "2024-01-15T12:00:00+0000", "like_count": 8},
            ]
        },
        {"data": [{"name": "reach", "values": [{"value": 1000}]}]},
    )
    adapter = InstagramAdapter(client)

    record = await adapter.fetch_record(
        _credential(Platform.INSTAGRAM, business_account_id="ig1"), include_ads=False
    )

    assert record.profile["followers_count"] == 800
    assert record.posts.total_posts == 2
    assert record.posts.avg_engagement == 20.0
    assert record.posts.avg_reach == 500.0
    assert len(record.posts.engagement_trend) == 1


@pytest.mark.asyncio
async def test_twitter_tweets_public_metrics():
    client = _client(
        {
            "data": {
                "id": "42",
                "username": "brand",
                "name": "Brand",
                "public_metrics": {"followers_count": 900, "tweet_count": 50},
            }
        },
        {
            "data": [
                {
                    "created_at": "2024-01-15T10:00:00.000Z",
                    "public_metrics": {
                        "like_count": 5,
                        "retweet_count": 2,
                        "reply_count": 1,
                        "quote_count": 0,
                        "impression_count": 400,
                    },
                }
            ]
        },
    )
    adapter = TwitterAdapter(client)

    record = await adapter.fetch_record(_credential(Platform.TWITTER), include_ads=True)

    assert record.profile["followers_count"] == 900
    assert record.posts.total_posts == 1
    assert record.posts.avg_engagement == 8.0
    assert record.posts.avg_reach == 400.0
    assert record.ads is None
    args, kwargs = client.call.call_args_list[1]
    assert args[1] == "https://api.twitter.com/2/users/42/tweets"
    assert kwargs["headers"]["Authorization"] == "Bearer tok-123"


@pytest.mark.asyncio
async def test_twitter_missing_user_is_api_error():
    adapter = TwitterAdapter(_client({"errors": [{"detail": "nope"}]}))

    with pytest.raises(ApiError):
        await adapter.fetch_record(_credential(Platform.TWITTER), include_ads=False)


@pytest.mark.asyncio
async def test_tiktok_paginates_video_list():
    ok = {"code": "ok", "message": ""}
    client = _client(
        {"data": {"user": {"open_id": "o1", "follower_count": 77}}, "error": ok},
        {
            "data": {
                "videos": [
                    {
                        "create_time": 1705312800,
                        "like_count": 10,
                        "comment_count": 2,
                        "share_count": 1,
                        "view_count": 1000,
                    }
                ],
                "cursor": 123,
                "has_more": True,
            },
            "error": ok,
        },
        {
            "data": {
                "videos": [{"create_time": 1705399200, "like_count": 1, "view_count": 50}],
                "has_more": False,
            },
            "error": ok,
        },
    )
    adapter = TikTokAdapter(client)

    record = await adapter.fetch_record(_credential(Platform.TIKTOK), include_ads=False)

    assert record.profile["follower_count"] == 77
    assert record.posts.total_posts == 2
    assert record.posts.avg_engagement == 7.0
    assert record.posts.avg_reach == 525.0
    assert [point.date for point in record.posts.engagement_trend] == [
        "2024-01-15",
        "2024-01-16",
    ]
    _, kwargs = client.call.call_args_list[2]
    assert kwargs["json_body"] == {"max_count": 20, "cursor": 123}


def test_tiktok_envelope_errors_mapped():
    check_envelope({"data": {}, "error": {"code": "ok", "message": ""}})

    with pytest.raises(AuthError):
        check_envelope({"error": {"code": "access_token_invalid", "message": "bad"}})

    with pytest.raises(RateLimitError) as exc_info:
        check_envelope({"error": {"code": "rate_limit_exceeded", "message": "slow"}})

    assert exc_info.value.details["retryAfter"] == 60.0

    with pytest.raises(ApiError):
        check_envelope({"error": {"code": "internal_error", "message": "boom"}})


@pytest.mark.asyncio
async def test_tiktok_requests_pass_envelope_check_to_client():
    ok = {"code": "ok", "message": ""}
    client = _client(
        {"data": {"user": {"open_id": "o1"}}, "error": ok},
        {"data": {"videos": [], "has_more": False}, "error": ok},
    )

    await TikTokAdapter(client).fetch_record(_credential(Platform.TIKTOK), include_ads=False)

    for call in client.call.call_args_list:
        assert call.kwargs["check_body"] is check_envelope


@pytest.mark.asyncio
async def test_tiktok_envelope_rate_limit_retried_by_fetch_client():
    """Test a rate limit inside a 200 body is retried and the next page used."""
    ok = {"code": "ok", "message": ""}
    session = MagicMock()
    session.request.side_effect = [
        _http_response({"data": {"user": {"open_id": "o1", "follower_count": 5}}, "error": ok}),
        _http_response({"error": {"code": "rate_limit_exceeded", "message": "slow"}}),
        _http_response(
            {
                "data": {"videos": [{"like_count": 4, "view_count": 10}], "has_more": False},
                "error": ok,
            }
        ),
    ]
    client = ResilientFetchClient(session, base_delay=0, jitter_ms=0)

    record = await TikTokAdapter(client).fetch_record(
        _credential(Platform.TIKTOK), include_ads=False
    )

    assert session.request.call_count == 3
    assert record.posts.total_posts == 1
    assert record.posts.avg_engagement == 4.0


def _gzip_rows(rows):
    return gzip.compress(json.dumps(rows).encode("utf-8"))


@pytest.mark.asyncio
async def test_amazon_report_flow():
    rows = [
        {"date": "2024-01-15", "impressions": 100, "clicks": 4, "cost": 2.0, "sales14d": 10.0},
        {"date": "2024-01-15", "impressions": 50, "clicks": 1, "cost": 1.0, "sales14d": 0},
        {"date": "2024-01-16", "impressions": 10, "clicks": 0, "cost": 0.5},
    ]
    client = _client(
        {
            "profileId": "p1",
            "accountInfo": {"name": "Shop", "marketplaceStringId": "ATVPDKIKX0DER"},
            "currencyCode": "USD",
        },
        {"reportId": "r1"},
        {"status": "PENDING"},
        {"status": "COMPLETED", "url": "https://s3.example.test/r1.gz"},
        _gzip_rows(rows),
    )
    adapter = AmazonAdsAdapter(client, client_id="amzn-client", poll_interval=0)

    record = await adapter.fetch_record(
        _credential(Platform.AMAZON, profile_id="p1"), include_ads=True
    )

    assert record.profile["name"] == "Shop"
    assert record.posts.total_posts == 0
    assert record.ads.total_spend == 3.5
    assert record.ads.total_clicks == 5
    assert record.ads.total_impressions == 160
    assert record.ads.roas == pytest.approx(10.0 / 3.5)
    assert [point.date for point in record.ads.spend_trend] == ["2024-01-15", "2024-01-16"]

    _, kwargs = client.call.call_args_list[1]
    assert kwargs["headers"]["Amazon-Advertising-API-Scope"] == "p1"
    assert kwargs["headers"]["Amazon-Advertising-API-ClientId"] == "amzn-client"
    _, kwargs = client.call.call_args_list[4]
    assert kwargs["parse_json"] is False


@pytest.mark.asyncio
async def test_amazon_report_failure_raises():
    client = _client({"status": "FAILURE", "failureReason": "bad config"})
    adapter = AmazonAdsAdapter(client, poll_interval=0)

    with pytest.raises(ApiError) as exc_info:
        await adapter._poll_report(_credential(Platform.AMAZON, profile_id="p1"), "r1")

    assert "bad config" in exc_info.value.message


@pytest.mark.asyncio
async def test_amazon_without_profile_skips_network():
    client = _client()
    adapter = AmazonAdsAdapter(client)

    record = await adapter.fetch_record(_credential(Platform.AMAZON), include_ads=True)

    assert record.ads is None
    assert record.profile == {}
    client.call.assert_not_awaited()

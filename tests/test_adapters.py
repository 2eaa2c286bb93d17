import json

import httpx
import pytest
import respx

from socialbridge.core.config import Settings
from socialbridge.core.errors import (
    ContentRejected,
    ExchangeFailed,
    InvalidGrant,
    PlatformNotConfigured,
    ProviderUnavailable,
    RateLimited,
    TemporarilyUnavailable,
    UnknownPlatform,
)
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters import get_adapter, list_available_platforms
from socialbridge.services.connections.adapters.base import AccessCredential, PublishPart, provider_error
from socialbridge.services.connections.adapters.facebook import FacebookAdapter
from socialbridge.services.connections.adapters.instagram import InstagramAdapter
from socialbridge.services.connections.adapters.linkedin import LinkedInAdapter
from socialbridge.services.connections.adapters.twitter import TwitterAdapter
from socialbridge.services.connections.adapters.youtube import YouTubeAdapter

CALLBACK = "http://localhost:8000/api/v1/connections/{}/callback"


def _token_params(request: httpx.Request) -> dict[str, str]:
    return {**dict(request.url.params), **dict(httpx.QueryParams(request.content.decode()))}


def test_content_rejected_is_unprocessable():
    error = ContentRejected("Tweet text exceeds 280 characters")
    assert error.status_code == 422
    assert error.retryable is False


def test_provider_error_maps_status_codes():
    throttled = provider_error(
        httpx.Response(429, headers={"retry-after": "7"}, json={"title": "Too Many Requests"})
    )
    assert isinstance(throttled, RateLimited)
    assert throttled.retry_after == 7.0

    outage = provider_error(httpx.Response(502, text="bad gateway"))
    assert isinstance(outage, ProviderUnavailable)
    assert outage.message == "HTTP 502"

    rejected = provider_error(httpx.Response(400, json={"error": "invalid_grant", "error_description": "expired"}))
    assert isinstance(rejected, ContentRejected)
    assert rejected.provider_code == "invalid_grant"
    assert rejected.message == "expired"


def test_provider_error_reads_google_reason():
    response = httpx.Response(
        403,
        json={"error": {"code": 403, "message": "Quota exceeded", "errors": [{"reason": "quotaExceeded"}]}},
    )

    error = provider_error(response)

    assert error.provider_code == "quotaExceeded"
    assert error.provider_status == 403


def test_provider_error_masks_tokens_in_messages():
    response = httpx.Response(400, json={"message": "Bad token EAAB1234567890abcdefghijklmnop in request"})

    error = provider_error(response)

    assert "EAAB1234567890" not in error.message
    assert "[REDACTED]" in error.message


@pytest.mark.asyncio
@respx.mock
async def test_graph_throttle_codes_are_rate_limits(settings, http_client):
    respx.get(host="graph.facebook.com", path="/v18.0/me").mock(
        return_value=httpx.Response(400, json={"error": {"message": "Application request limit reached", "code": 4}})
    )
    adapter = FacebookAdapter(settings=settings, http_client=http_client)

    with pytest.raises(RateLimited):
        await adapter.fetch_profile(AccessCredential(platform=Platform.FACEBOOK, access_secret="fb"))


@pytest.mark.asyncio
@respx.mock
async def test_graph_transient_errors_are_temporary(settings, http_client):
    respx.get(host="graph.facebook.com", path="/v18.0/me").mock(
        return_value=httpx.Response(
            400, json={"error": {"message": "Please retry", "code": 2, "is_transient": True}}
        )
    )
    adapter = FacebookAdapter(settings=settings, http_client=http_client)

    with pytest.raises(TemporarilyUnavailable):
        await adapter.fetch_profile(AccessCredential(platform=Platform.FACEBOOK, access_secret="fb"))


@pytest.mark.asyncio
@respx.mock
async def test_timeouts_become_provider_unavailable(settings, http_client):
    respx.get("https://api.linkedin.com/v2/userinfo").mock(side_effect=httpx.ReadTimeout("slow"))
    adapter = LinkedInAdapter(settings=settings, http_client=http_client)

    with pytest.raises(ProviderUnavailable):
        await adapter.fetch_profile(AccessCredential(platform=Platform.LINKEDIN, access_secret="li"))


@pytest.mark.asyncio
@respx.mock
async def test_rejected_refresh_is_invalid_grant(settings, http_client):
    respx.post("https://oauth2.googleapis.com/token").mock(
        return_value=httpx.Response(400, json={"error": "invalid_grant", "error_description": "Token has been revoked."})
    )
    adapter = YouTubeAdapter(settings=settings, http_client=http_client)

    with pytest.raises(InvalidGrant):
        await adapter.refresh("revoked")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "expected"),
    [(400, ExchangeFailed), (429, RateLimited), (503, ProviderUnavailable)],
)
@respx.mock
async def test_code_exchange_errors_keep_provider_status(settings, http_client, status_code, expected):
    route = respx.post("https://www.linkedin.com/oauth/v2/accessToken").mock(
        return_value=httpx.Response(status_code, json={"error": "invalid_request"})
    )
    adapter = LinkedInAdapter(settings=settings, http_client=http_client)

    with pytest.raises(expected) as excinfo:
        await adapter.exchange("li-code", CALLBACK.format("linkedin"))

    assert excinfo.value.provider_status == status_code
    sent = _token_params(route.calls.last.request)
    assert sent["grant_type"] == "authorization_code"
    assert sent["client_id"] == "li-client-id"


@pytest.mark.asyncio
@respx.mock
async def test_unreachable_token_endpoint_is_provider_unavailable(settings, http_client):
    respx.post("https://oauth2.googleapis.com/token").mock(side_effect=httpx.ConnectError("down"))
    adapter = YouTubeAdapter(settings=settings, http_client=http_client)

    with pytest.raises(ProviderUnavailable):
        await adapter.refresh("yt-refresh")


@pytest.mark.asyncio
@respx.mock
async def test_twitter_request_token_is_signed(settings, http_client):
    route = respx.post("https://api.twitter.com/oauth/request_token").mock(
        return_value=httpx.Response(
            200, text="oauth_token=req&oauth_token_secret=req-secret&oauth_callback_confirmed=true"
        )
    )
    adapter = TwitterAdapter(settings=settings, http_client=http_client)

    request = await adapter.generate_auth_url(CALLBACK.format("twitter"), "ignored")

    assert request.request_token == "req"
    assert request.request_secret == "req-secret"
    header = route.calls.last.request.headers["authorization"]
    assert header.startswith("OAuth ")
    assert 'oauth_consumer_key="tw-consumer-key"' in header
    assert 'oauth_signature_method="HMAC-SHA1"' in header
    assert "oauth_callback=" in header
    assert "oauth_signature=" in header


@pytest.mark.asyncio
@respx.mock
async def test_twitter_unconfirmed_callback_fails(settings, http_client):
    respx.post("https://api.twitter.com/oauth/request_token").mock(
        return_value=httpx.Response(
            200, text="oauth_token=req&oauth_token_secret=req-secret&oauth_callback_confirmed=false"
        )
    )
    adapter = TwitterAdapter(settings=settings, http_client=http_client)

    with pytest.raises(ExchangeFailed):
        await adapter.generate_auth_url(CALLBACK.format("twitter"), "ignored")


@pytest.mark.asyncio
async def test_twitter_rejects_long_tweets(settings, http_client):
    adapter = TwitterAdapter(settings=settings, http_client=http_client)
    credential = AccessCredential(platform=Platform.TWITTER, access_secret="a", access_token_secret="s")

    with pytest.raises(ContentRejected):
        await adapter.publish(credential, PublishPart(kind="post", text="x" * 281))


@pytest.mark.asyncio
async def test_facebook_authorize_url_targets_graph_version(settings, http_client):
    adapter = FacebookAdapter(settings=settings, http_client=http_client)

    request = await adapter.generate_auth_url(CALLBACK.format("facebook"), "state-1")

    url = httpx.URL(request.url)
    assert url.host == "www.facebook.com"
    assert url.path == "/v18.0/dialog/oauth"
    assert url.params["scope"].split()[:2] == ["email", "public_profile"]
    assert url.params["client_id"] == "fb-app-id"
    assert url.params["state"] == "state-1"


@pytest.mark.asyncio
@respx.mock
async def test_facebook_exchange_upgrades_to_long_lived_token(settings, http_client):
    route = respx.route(host="graph.facebook.com", path="/v18.0/oauth/access_token").mock(
        side_effect=[
            httpx.Response(200, json={"access_token": "short", "expires_in": 3600}),
            httpx.Response(200, json={"access_token": "long", "expires_in": 5183944}),
        ]
    )
    adapter = FacebookAdapter(settings=settings, http_client=http_client)

    grant = await adapter.exchange("fb-code", CALLBACK.format("facebook"))

    assert grant.access_secret == "long"
    assert grant.expires_in == 5183944
    assert _token_params(route.calls[0].request)["code"] == "fb-code"
    upgrade = _token_params(route.calls[1].request)
    assert upgrade["grant_type"] == "fb_exchange_token"
    assert upgrade["fb_exchange_token"] == "short"


@pytest.mark.asyncio
@respx.mock
async def test_facebook_page_post_uses_page_token(settings, http_client):
    respx.get(host="graph.facebook.com", path="/v18.0/me/accounts").mock(
        return_value=httpx.Response(200, json={"data": [{"id": "555", "name": "Shop", "access_token": "page-token"}]})
    )
    feed = respx.post(host="graph.facebook.com", path="/v18.0/555/feed").mock(
        return_value=httpx.Response(200, json={"id": "555_1"})
    )
    adapter = FacebookAdapter(settings=settings, http_client=http_client)
    credential = AccessCredential(platform=Platform.FACEBOOK, access_secret="user-token")

    item = await adapter.publish(credential, PublishPart(kind="page_post", text="Open today", page_id="555"))

    assert item.content_id == "555_1"
    assert feed.calls.last.request.url.params["access_token"] == "page-token"


@pytest.mark.asyncio
@respx.mock
async def test_instagram_exchange_stores_page_token(settings, http_client):
    respx.route(host="graph.facebook.com", path="/v20.0/oauth/access_token").mock(
        side_effect=[
            httpx.Response(200, json={"access_token": "short"}),
            httpx.Response(200, json={"access_token": "long-user", "expires_in": 5183944}),
        ]
    )
    respx.get(host="graph.facebook.com", path="/v20.0/me/accounts").mock(
        return_value=httpx.Response(
            200,
            json={
                "data": [
                    {"id": "p1", "access_token": "page-1"},
                    {"id": "p2", "access_token": "page-2", "instagram_business_account": {"id": "ig-9"}},
                ]
            },
        )
    )
    adapter = InstagramAdapter(settings=settings, http_client=http_client)

    grant = await adapter.exchange("ig-code", CALLBACK.format("instagram"))

    assert grant.access_secret == "page-2"
    assert grant.expires_in == 60 * 24 * 3600
    assert grant.extra == {"provider_user_id": "ig-9", "ig_account_id": "ig-9", "page_id": "p2"}


@pytest.mark.asyncio
@respx.mock
async def test_instagram_without_business_account_fails(settings, http_client):
    respx.route(host="graph.facebook.com", path="/v20.0/oauth/access_token").mock(
        return_value=httpx.Response(200, json={"access_token": "token"})
    )
    respx.get(host="graph.facebook.com", path="/v20.0/me/accounts").mock(
        return_value=httpx.Response(200, json={"data": [{"id": "p1", "access_token": "page-1"}]})
    )
    adapter = InstagramAdapter(settings=settings, http_client=http_client)

    with pytest.raises(ExchangeFailed):
        await adapter.exchange("ig-code", CALLBACK.format("instagram"))


@pytest.mark.asyncio
@respx.mock
async def test_instagram_image_post_creates_then_publishes(settings, http_client):
    media = respx.post(host="graph.facebook.com", path="/v20.0/ig-9/media").mock(
        return_value=httpx.Response(200, json={"id": "container-1"})
    )
    publish = respx.post(host="graph.facebook.com", path="/v20.0/ig-9/media_publish").mock(
        return_value=httpx.Response(200, json={"id": "media-1"})
    )
    adapter = InstagramAdapter(settings=settings, http_client=http_client)
    credential = AccessCredential(
        platform=Platform.INSTAGRAM, access_secret="page-2", extra={"ig_account_id": "ig-9"}
    )

    item = await adapter.publish(
        credential, PublishPart(kind="image_post", text="New drop", image_url="https://cdn.example.com/a.jpg")
    )

    assert item.content_id == "media-1"
    assert b"image_url=https" in media.calls.last.request.content
    assert b"creation_id=container-1" in publish.calls.last.request.content


@pytest.mark.asyncio
@respx.mock
async def test_youtube_visibility_update(settings, http_client):
    route = respx.put(host="www.googleapis.com", path="/youtube/v3/videos").mock(
        return_value=httpx.Response(200, json={"id": "vid-1", "status": {"privacyStatus": "public"}})
    )
    adapter = YouTubeAdapter(settings=settings, http_client=http_client)
    credential = AccessCredential(platform=Platform.YOUTUBE, access_secret="yt")

    item = await adapter.publish(
        credential, PublishPart(kind="video_visibility", video_id="vid-1", privacy_status="public")
    )

    assert item.url == "https://www.youtube.com/watch?v=vid-1"
    body = json.loads(route.calls.last.request.content)
    assert body == {"id": "vid-1", "status": {"privacyStatus": "public"}}


def test_registry_rejects_unknown_and_unconfigured_platforms():
    with pytest.raises(UnknownPlatform):
        get_adapter("myspace")
    with pytest.raises(PlatformNotConfigured):
        get_adapter("twitter", settings=Settings(twitter_consumer_key=None, twitter_consumer_secret=None))


def test_available_platforms_follow_configuration():
    settings = Settings(
        twitter_consumer_key=None,
        twitter_consumer_secret=None,
        google_client_id="g",
        google_client_secret="gs",
        linkedin_client_id=None,
        linkedin_client_secret=None,
        facebook_app_id=None,
        facebook_app_secret=None,
    )

    platforms = {item["platform"]: item for item in list_available_platforms(settings)}

    # YouTube falls back to the Google client.
    assert set(platforms) == {"google", "youtube"}
    assert platforms["google"]["supports_login"] is True
    assert platforms["youtube"]["publish_types"] == ["video_visibility"]

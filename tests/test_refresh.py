import asyncio
from datetime import timedelta

import httpx
import pytest
import respx

from socialbridge.core.errors import Expired, NotConnected, TemporarilyUnavailable
from socialbridge.core.security import decrypt_token
from socialbridge.db.base import utcnow
from socialbridge.db.models.credential import CredentialStatus, Platform
from socialbridge.services.connections.adapters.linkedin import LinkedInAdapter
from socialbridge.services.connections.adapters.twitter import TwitterAdapter
from socialbridge.services.connections.refresh import TokenRefresher
from socialbridge.services.connections.store import CredentialStore

LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"


def _refresher(session, settings, http_client, lock_registry, adapter_class=LinkedInAdapter) -> TokenRefresher:
    return TokenRefresher(
        CredentialStore(session),
        adapter_class(settings=settings, http_client=http_client),
        skew=timedelta(seconds=120),
        locks=lock_registry,
    )


@pytest.mark.asyncio
async def test_token_outside_skew_is_used_without_refresh(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(
        user, Platform.LINKEDIN, access="still-good", refresh="li-refresh", expires_at=utcnow() + timedelta(minutes=3)
    )

    with respx.mock(assert_all_called=False) as router:
        route = router.post(LINKEDIN_TOKEN_URL)
        credential = await _refresher(session, settings, http_client, lock_registry).ensure_fresh(user.id)

    assert credential.access_secret == "still-good"
    assert route.call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_token_inside_skew_is_refreshed_and_persisted(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(
        user, Platform.LINKEDIN, access="old-access", refresh="li-refresh", expires_at=utcnow() + timedelta(seconds=90)
    )
    route = respx.post(LINKEDIN_TOKEN_URL).mock(
        return_value=httpx.Response(
            200,
            json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 5184000},
        )
    )

    credential = await _refresher(session, settings, http_client, lock_registry).ensure_fresh(user.id)

    assert credential.access_secret == "new-access"
    assert route.call_count == 1
    assert b"grant_type=refresh_token" in route.calls.last.request.content
    assert b"refresh_token=li-refresh" in route.calls.last.request.content

    stored = await CredentialStore(session).get(user.id, Platform.LINKEDIN)
    assert decrypt_token(stored.access_secret) == "new-access"
    assert decrypt_token(stored.refresh_secret) == "new-refresh"
    assert stored.expires_at > utcnow() + timedelta(days=59)


@pytest.mark.asyncio
@respx.mock
async def test_refresh_keeps_refresh_secret_when_provider_omits_it(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(
        user, Platform.LINKEDIN, refresh="li-refresh", expires_at=utcnow() - timedelta(minutes=5)
    )
    respx.post(LINKEDIN_TOKEN_URL).mock(
        return_value=httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600})
    )

    await _refresher(session, settings, http_client, lock_registry).ensure_fresh(user.id)

    stored = await CredentialStore(session).get(user.id, Platform.LINKEDIN)
    assert decrypt_token(stored.refresh_secret) == "li-refresh"


@pytest.mark.asyncio
@respx.mock
async def test_rejected_refresh_marks_connection_expired(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(
        user, Platform.LINKEDIN, refresh="revoked", expires_at=utcnow() - timedelta(minutes=5)
    )
    route = respx.post(LINKEDIN_TOKEN_URL).mock(
        return_value=httpx.Response(400, json={"error": "invalid_grant", "error_description": "revoked"})
    )
    refresher = _refresher(session, settings, http_client, lock_registry)

    with pytest.raises(Expired):
        await refresher.ensure_fresh(user.id)

    stored = await CredentialStore(session).get(user.id, Platform.LINKEDIN)
    assert stored.status == CredentialStatus.EXPIRED

    # An expired connection is not refreshed again.
    with pytest.raises(Expired):
        await refresher.ensure_fresh(user.id)
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_transient_refresh_failure_leaves_connection_active(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(
        user, Platform.LINKEDIN, refresh="li-refresh", expires_at=utcnow() - timedelta(minutes=5)
    )
    respx.post(LINKEDIN_TOKEN_URL).mock(return_value=httpx.Response(503, json={"message": "down"}))

    with pytest.raises(TemporarilyUnavailable) as exc_info:
        await _refresher(session, settings, http_client, lock_registry).ensure_fresh(user.id)

    assert exc_info.value.retryable is True
    stored = await CredentialStore(session).get(user.id, Platform.LINKEDIN)
    assert stored.status == CredentialStatus.ACTIVE


@pytest.mark.asyncio
@respx.mock
async def test_refresh_response_without_access_token_is_temporary(
    session, user, settings, http_client, lock_registry, make_credential
):
    await make_credential(
        user, Platform.LINKEDIN, access="old-access", refresh="li-refresh", expires_at=utcnow() - timedelta(minutes=5)
    )
    respx.post(LINKEDIN_TOKEN_URL).mock(return_value=httpx.Response(200, json={"expires_in": 3600}))

    with pytest.raises(TemporarilyUnavailable):
        await _refresher(session, settings, http_client, lock_registry).ensure_fresh(user.id)

    stored = await CredentialStore(session).get(user.id, Platform.LINKEDIN)
    assert stored.status == CredentialStatus.ACTIVE
    assert decrypt_token(stored.access_secret) == "old-access"
    assert decrypt_token(stored.refresh_secret) == "li-refresh"


@pytest.mark.asyncio
async def test_expired_token_without_refresh_secret_is_expired(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(user, Platform.LINKEDIN, expires_at=utcnow() - timedelta(minutes=5))

    with pytest.raises(Expired):
        await _refresher(session, settings, http_client, lock_registry).ensure_fresh(user.id)

    stored = await CredentialStore(session).get(user.id, Platform.LINKEDIN)
    assert stored.status == CredentialStatus.EXPIRED


@pytest.mark.asyncio
async def test_oauth1_credentials_never_refresh(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(user, Platform.TWITTER, access="tw-access", token_secret="tw-secret")

    with respx.mock(assert_all_called=False) as router:
        route = router.route(host="api.twitter.com")
        credential = await _refresher(session, settings, http_client, lock_registry, TwitterAdapter).ensure_fresh(
            user.id
        )

    assert credential.access_secret == "tw-access"
    assert credential.access_token_secret == "tw-secret"
    assert route.call_count == 0


@pytest.mark.asyncio
async def test_missing_connection_is_not_connected(session, user, settings, http_client, lock_registry):
    with pytest.raises(NotConnected):
        await _refresher(session, settings, http_client, lock_registry).ensure_fresh(user.id)


@pytest.mark.asyncio
@respx.mock
async def test_concurrent_callers_share_one_refresh(session_maker, user, settings, http_client, lock_registry, make_credential):
    await make_credential(
        user, Platform.LINKEDIN, refresh="li-refresh", expires_at=utcnow() - timedelta(minutes=5)
    )
    route = respx.post(LINKEDIN_TOKEN_URL).mock(
        return_value=httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600})
    )

    async def caller():
        async with session_maker() as own_session:
            refresher = _refresher(own_session, settings, http_client, lock_registry)
            return await refresher.ensure_fresh(user.id)

    first, second = await asyncio.gather(caller(), caller())

    assert route.call_count == 1
    assert first.access_secret == second.access_secret == "new-access"


@pytest.mark.asyncio
@respx.mock
async def test_status_reports_expired_connection(session, user, settings, http_client, lock_registry, make_credential):
    await make_credential(
        user, Platform.LINKEDIN, refresh="revoked", expires_at=utcnow() - timedelta(minutes=5)
    )
    respx.post(LINKEDIN_TOKEN_URL).mock(return_value=httpx.Response(400, json={"error": "invalid_grant"}))

    status = await _refresher(session, settings, http_client, lock_registry).status(user.id)

    assert status.connected is False
    assert status.expired is True
    assert status.credential is not None


@pytest.mark.asyncio
async def test_status_for_active_and_missing_connections(session, user, settings, http_client, lock_registry, make_credential):
    refresher = _refresher(session, settings, http_client, lock_registry)
    assert (await refresher.status(user.id)).connected is False

    await make_credential(user, Platform.LINKEDIN, expires_at=utcnow() + timedelta(days=30))
    status = await refresher.status(user.id)
    assert status.connected is True
    assert status.credential.handle == "creator"

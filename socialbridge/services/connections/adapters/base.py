"""
Platform adapters.

Every provider sits behind one interface. The two families differ only in how
the authorization handshake runs: OAuth 1.0a fetches a request token before
redirecting and signs every call, OAuth 2.0 builds the authorize URL locally
and hands out bearer tokens that may expire and be refreshed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable

import httpx
from authlib.common.urls import url_decode
from authlib.oauth1 import ClientAuth
from httpx_oauth.exceptions import HTTPXOAuthError
from httpx_oauth.oauth2 import BaseOAuth2

from socialbridge.core.config import Settings, get_settings
from socialbridge.core.errors import (
    ConnectionFlowError,
    ContentRejected,
    ExchangeFailed,
    InvalidGrant,
    ProviderUnavailable,
    RateLimited,
)
from socialbridge.core.http import get_http_client, parse_retry_after
from socialbridge.core.security import redact_mapping
from socialbridge.db.base import utcnow
from socialbridge.db.models.credential import Platform

logger = logging.getLogger(__name__)


class AdapterFamily(str, Enum):
    OAUTH1 = "oauth1"
    OAUTH2 = "oauth2"


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    # OAuth 1.0a only: the handshake the orchestrator must remember
    request_token: str | None = None
    request_secret: str | None = None


@dataclass(frozen=True)
class TokenGrant:
    access_secret: str
    refresh_secret: str | None = None
    expires_in: int | None = None
    access_token_secret: str | None = None
    scope: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def expires_at(self, now: datetime | None = None) -> datetime | None:
        if not self.expires_in:
            return None
        return (now or utcnow()) + timedelta(seconds=int(self.expires_in))


@dataclass(frozen=True)
class ProfileSummary:
    provider_user_id: str
    handle: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    email: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AccessCredential:
    """Decrypted secrets needed to make one authenticated call."""

    platform: Platform
    access_secret: str
    access_token_secret: str | None = None
    provider_user_id: str | None = None
    expires_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_grant(cls, platform: Platform, grant: TokenGrant) -> "AccessCredential":
        return cls(
            platform=platform,
            access_secret=grant.access_secret,
            access_token_secret=grant.access_token_secret,
            provider_user_id=grant.extra.get("provider_user_id"),
            expires_at=grant.expires_at(),
            extra=dict(grant.extra),
        )

    def __repr__(self) -> str:
        return f"AccessCredential(platform={self.platform.value!r}, provider_user_id={self.provider_user_id!r})"


@dataclass(frozen=True)
class PublishPart:
    """One provider call worth of content. Threads are sent as several parts."""

    kind: str
    text: str | None = None
    media_ids: tuple[str, ...] = ()
    poll_options: tuple[str, ...] = ()
    poll_duration_minutes: int | None = None
    page_id: str | None = None
    link: str | None = None
    image_url: str | None = None
    video_id: str | None = None
    privacy_status: str | None = None
    in_reply_to: str | None = None


@dataclass(frozen=True)
class PublishedItem:
    content_id: str
    url: str | None = None


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    """Pull a provider error code and message out of the known error shapes."""
    fallback = f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return None, fallback
    if not isinstance(body, dict):
        return None, fallback

    error = body.get("error")
    # RFC 6749: {"error": "invalid_grant", "error_description": "..."}
    if isinstance(error, str):
        return error, body.get("error_description") or error
    # Graph API and Google APIs: {"error": {"message": ..., "code": ..., "errors": [...]}}
    if isinstance(error, dict):
        code = None
        reasons = error.get("errors")
        if isinstance(reasons, list) and reasons and isinstance(reasons[0], dict):
            code = reasons[0].get("reason")
        code = code or error.get("status") or error.get("type") or error.get("code")
        return (str(code) if code is not None else None), error.get("message") or fallback
    # Twitter v2: {"title": ..., "detail": ..., "type": ...} or {"errors": [{"message": ...}]}
    if "title" in body or "detail" in body:
        return body.get("title"), body.get("detail") or body.get("title") or fallback
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        first = errors[0]
        code = first.get("code") or first.get("title")
        return (str(code) if code is not None else None), first.get("message") or first.get("detail") or fallback
    # LinkedIn: {"message": ..., "serviceErrorCode": ..., "status": ...}
    if "message" in body:
        code = body.get("code") or body.get("serviceErrorCode")
        return (str(code) if code is not None else None), body["message"]
    return None, fallback


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def provider_error(
    response: httpx.Response,
    *,
    default: type[ConnectionFlowError] = ContentRejected,
) -> ConnectionFlowError:
    """Map a failed provider response onto the error taxonomy."""
    code, message = _error_details(response)
    status = response.status_code
    if status == 429:
        return RateLimited(
            message,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            provider_code=code,
            provider_status=status,
        )
    if status >= 500:
        return ProviderUnavailable(message, provider_code=code, provider_status=status)
    return default(message, provider_code=code, provider_status=status)


class PlatformAdapter(ABC):
    platform: Platform
    family: AdapterFamily
    display_name: str = ""
    supports_login: bool = False
    publish_kinds: frozenset[str] = frozenset()

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._http_client = http_client

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http_client or get_http_client()

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether client credentials for this platform are present."""

    @abstractmethod
    async def generate_auth_url(self, callback_url: str, state: str) -> AuthorizationRequest:
        """Build the URL the end user is redirected to for consent."""

    @abstractmethod
    async def fetch_profile(self, credential: AccessCredential) -> ProfileSummary:
        """Read the account behind ``credential``."""

    async def refresh(self, refresh_secret: str) -> TokenGrant:
        raise InvalidGrant(f"{self.display_name} credentials cannot be refreshed")

    def supports(self, kind: str) -> bool:
        return kind in self.publish_kinds

    def check_part(self, part: PublishPart) -> None:
        """Reject content the platform would refuse, before any part is sent."""

    async def publish(self, credential: AccessCredential, part: PublishPart) -> PublishedItem:
        raise ContentRejected(f"{self.display_name} does not support {part.kind} content")

    async def _send(
        self,
        method: str,
        url: str,
        *,
        error_class: type[ConnectionFlowError] = ContentRejected,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(f"{self.display_name} did not respond in time") from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailable(f"{self.display_name} could not be reached") from exc

        if response.is_error:
            error = self._provider_error(response, error_class)
            logger.warning(
                "%s %s %s failed with %s (%s)",
                self.platform.value,
                method,
                httpx.URL(url).path,
                response.status_code,
                error.provider_code,
            )
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("%s error body: %s", self.platform.value, redact_mapping(_response_body(response)))
            raise error
        return response

    def _provider_error(
        self,
        response: httpx.Response,
        error_class: type[ConnectionFlowError],
    ) -> ConnectionFlowError:
        return provider_error(response, default=error_class)


class Oauth1Adapter(PlatformAdapter):
    family = AdapterFamily.OAUTH1

    request_token_url: str
    authorize_url: str
    access_token_url: str

    @abstractmethod
    def consumer_credentials(self) -> tuple[str, str]:
        """Return ``(consumer_key, consumer_secret)``."""

    def _client_auth(
        self,
        *,
        token: str | None = None,
        token_secret: str | None = None,
        callback: str | None = None,
        verifier: str | None = None,
    ) -> ClientAuth:
        key, secret = self.consumer_credentials()
        return ClientAuth(
            key,
            client_secret=secret,
            token=token,
            token_secret=token_secret,
            redirect_uri=callback,
            verifier=verifier,
        )

    async def _signed_send(
        self,
        method: str,
        url: str,
        auth: ClientAuth,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        error_class: type[ConnectionFlowError] = ContentRejected,
    ) -> httpx.Response:
        request_url = str(httpx.URL(url, params=params)) if params else url
        headers = {"Content-Type": "application/json"} if json is not None else {}
        # JSON bodies are not part of the OAuth 1.0a signature base string.
        request_url, headers, _ = auth.prepare(method, request_url, headers, b"")
        return await self._send(method, request_url, headers=headers, json=json, error_class=error_class)

    async def generate_auth_url(self, callback_url: str, state: str) -> AuthorizationRequest:
        auth = self._client_auth(callback=callback_url)
        response = await self._signed_send("POST", self.request_token_url, auth, error_class=ExchangeFailed)
        values = self._parse_token_response(response)
        if values.get("oauth_callback_confirmed", "true") != "true":
            raise ExchangeFailed(f"{self.display_name} did not confirm the callback URL")
        request_token = values["oauth_token"]
        return AuthorizationRequest(
            url=str(httpx.URL(self.authorize_url, params={"oauth_token": request_token})),
            request_token=request_token,
            request_secret=values["oauth_token_secret"],
        )

    async def exchange(self, request_token: str, request_secret: str, verifier: str) -> TokenGrant:
        auth = self._client_auth(token=request_token, token_secret=request_secret, verifier=verifier)
        response = await self._signed_send("POST", self.access_token_url, auth, error_class=ExchangeFailed)
        values = self._parse_token_response(response)
        extra = {key: values[key] for key in ("user_id", "screen_name") if values.get(key)}
        if "user_id" in extra:
            extra["provider_user_id"] = extra["user_id"]
        return TokenGrant(
            access_secret=values["oauth_token"],
            access_token_secret=values["oauth_token_secret"],
            extra=extra,
        )

    def _parse_token_response(self, response: httpx.Response) -> dict[str, str]:
        try:
            values = dict(url_decode(response.text))
        except ValueError as exc:
            raise ExchangeFailed(f"{self.display_name} returned an unreadable token response") from exc
        if not values.get("oauth_token") or not values.get("oauth_token_secret"):
            raise ExchangeFailed(f"{self.display_name} token response is missing oauth_token")
        return values

    def _credential_auth(self, credential: AccessCredential) -> ClientAuth:
        return self._client_auth(token=credential.access_secret, token_secret=credential.access_token_secret)


class Oauth2Adapter(PlatformAdapter):
    family = AdapterFamily.OAUTH2

    scopes: tuple[str, ...] = ()
    authorize_extras: dict[str, str] = {}

    @abstractmethod
    def client_credentials(self) -> tuple[str, str]:
        """Return ``(client_id, client_secret)``."""

    @abstractmethod
    def oauth_client(self) -> BaseOAuth2:
        """Build the httpx-oauth client that runs the authorize, exchange and refresh legs."""

    def requested_scopes(self) -> list[str]:
        return list(self.scopes)

    async def generate_auth_url(self, callback_url: str, state: str) -> AuthorizationRequest:
        url = await self.oauth_client().get_authorization_url(
            callback_url,
            state=state,
            scope=self.requested_scopes(),
            extras_params=dict(self.authorize_extras) or None,
        )
        return AuthorizationRequest(url=url)

    async def exchange(self, code: str, callback_url: str) -> TokenGrant:
        token = await self._token_call(
            self.oauth_client().get_access_token(code, callback_url),
            error_class=ExchangeFailed,
        )
        return self._grant_from_payload(token)

    async def refresh(self, refresh_secret: str) -> TokenGrant:
        token = await self._token_call(
            self.oauth_client().refresh_token(refresh_secret),
            error_class=InvalidGrant,
        )
        grant = self._grant_from_payload(token)
        if grant.refresh_secret is None:
            # Providers that do not rotate refresh tokens omit them on refresh.
            grant = TokenGrant(
                access_secret=grant.access_secret,
                refresh_secret=refresh_secret,
                expires_in=grant.expires_in,
                scope=grant.scope,
                extra=grant.extra,
            )
        return grant

    async def _token_call(
        self,
        call: Awaitable[dict[str, Any]],
        *,
        error_class: type[ConnectionFlowError],
    ) -> dict[str, Any]:
        try:
            return await call
        except HTTPXOAuthError as exc:
            raise self._oauth_error(exc, error_class) from exc

    def _oauth_error(
        self,
        exc: HTTPXOAuthError,
        error_class: type[ConnectionFlowError],
    ) -> ConnectionFlowError:
        response = getattr(exc, "response", None)
        if response is None:
            logger.warning("%s token endpoint unreachable (%s)", self.platform.value, type(exc).__name__)
            return ProviderUnavailable(f"{self.display_name} could not be reached")
        logger.warning("%s token endpoint answered %s", self.platform.value, response.status_code)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s error body: %s", self.platform.value, redact_mapping(_response_body(response)))
        return self._provider_error(response, error_class)

    def _json(
        self,
        response: httpx.Response,
        *,
        error_class: type[ConnectionFlowError] = ExchangeFailed,
    ) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise error_class(f"{self.display_name} returned a non-JSON response") from exc
        if not isinstance(payload, dict):
            raise error_class(f"{self.display_name} returned an unexpected response")
        return payload

    def _grant_from_payload(self, payload: dict[str, Any]) -> TokenGrant:
        access_token = payload.get("access_token")
        if not access_token:
            raise ExchangeFailed(f"{self.display_name} token response is missing access_token")
        expires_in = payload.get("expires_in")
        return TokenGrant(
            access_secret=access_token,
            refresh_secret=payload.get("refresh_token"),
            expires_in=int(expires_in) if expires_in else None,
            scope=payload.get("scope"),
        )

    def _bearer(self, credential: AccessCredential) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential.access_secret}"}

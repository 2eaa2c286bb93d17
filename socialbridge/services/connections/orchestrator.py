"""
Connect flow orchestration.

    START -> AWAITING_CALLBACK -> EXCHANGING -> CONNECTED | FAILED

``start`` hands back the provider authorization URL. ``complete`` handles the
provider's redirect back and always produces a redirect for the end user,
either ``?<platform>=success`` or ``?<platform>=error&message=...``; it never
raises for flow failures and never guesses which user a callback belongs to.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from socialbridge.core.config import Settings, get_settings
from socialbridge.core.errors import (
    AuthenticationRequired,
    ConnectionFlowError,
    ExchangeFailed,
    InvalidReturnAddress,
    InvalidState,
    ProviderDenied,
)
from socialbridge.db.models.user import User
from socialbridge.services.auth.backend import get_jwt_strategy
from socialbridge.services.auth.users import get_or_create_user_by_email, get_user
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    AdapterFamily,
    PlatformAdapter,
    ProfileSummary,
    TokenGrant,
)
from socialbridge.services.connections.state_token import StateTokenCodec
from socialbridge.services.connections.store import CredentialStore

logger = logging.getLogger(__name__)


class ConnectionPhase(str, Enum):
    START = "start"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizationStart:
    authorization_url: str
    state: str


@dataclass(frozen=True)
class CallbackParams:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    oauth_token: str | None = None
    oauth_verifier: str | None = None
    denied: str | None = None


@dataclass
class ConnectionOutcome:
    platform: str
    phase: ConnectionPhase
    redirect_url: str
    user_id: uuid.UUID | None = None
    error: ConnectionFlowError | None = None


@dataclass
class _Attempt:
    return_address: str
    phase: ConnectionPhase = ConnectionPhase.AWAITING_CALLBACK
    user_id: uuid.UUID | None = None


def build_redirect(base: str, params: dict[str, str]) -> str:
    return str(httpx.URL(base).copy_merge_params(params))


def origin_of(url: str) -> tuple[str, str, int | None] | None:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.host:
        return None
    return parsed.scheme, parsed.host, parsed.port


class ConnectionOrchestrator:
    def __init__(
        self,
        session: AsyncSession,
        adapter: PlatformAdapter,
        *,
        settings: Settings | None = None,
        codec: StateTokenCodec | None = None,
        store: CredentialStore | None = None,
    ):
        self.session = session
        self.adapter = adapter
        self.settings = settings or get_settings()
        self.codec = codec or StateTokenCodec.from_settings(self.settings)
        self.store = store or CredentialStore(session)
        self.platform = adapter.platform

    @property
    def callback_url(self) -> str:
        return self.settings.callback_url(self.platform.value)

    def resolve_return_address(self, requested: str | None) -> str:
        if not requested:
            return self.settings.default_return_address
        allowed = {origin_of(self.settings.frontend_url)}
        allowed.update(origin_of(origin) for origin in self.settings.cors_origins)
        allowed.discard(None)
        if origin_of(requested) not in allowed:
            raise InvalidReturnAddress(f"Return address {requested} is not an allowed origin")
        return requested

    async def start(self, *, user: User | None, return_address: str | None = None) -> AuthorizationStart:
        """START -> AWAITING_CALLBACK."""
        return_address = self.resolve_return_address(return_address)
        if user is None and not self.adapter.supports_login:
            raise AuthenticationRequired(f"Sign in before connecting {self.adapter.display_name}")

        state = self.codec.issue(
            subject_user_id=str(user.id) if user is not None else None,
            return_address=return_address,
            platform=self.platform.value,
        )
        request = await self.adapter.generate_auth_url(self.callback_url, state)

        if self.adapter.family is AdapterFamily.OAUTH1:
            if not request.request_token or not request.request_secret:
                raise ExchangeFailed(f"{self.adapter.display_name} did not issue a request token")
            await self.store.begin_pending(
                user.id,
                self.platform,
                request_token=request.request_token,
                request_secret=request.request_secret,
                return_address=return_address,
            )

        logger.info(
            "Started %s connect flow for %s",
            self.platform.value,
            f"user {user.id}" if user is not None else "guest",
        )
        return AuthorizationStart(authorization_url=request.url, state=state)

    async def complete(self, params: CallbackParams) -> ConnectionOutcome:
        """AWAITING_CALLBACK -> EXCHANGING -> CONNECTED | FAILED."""
        attempt = _Attempt(return_address=self.settings.default_return_address)
        try:
            if self.adapter.family is AdapterFamily.OAUTH1:
                session_token = await self._complete_oauth1(params, attempt)
            else:
                session_token = await self._complete_oauth2(params, attempt)
        except ConnectionFlowError as exc:
            return self._failed(attempt, exc)
        except Exception:
            logger.exception("Unexpected error completing %s connect flow", self.platform.value)
            return self._failed(attempt, ExchangeFailed("Connection failed, please try again"))

        attempt.phase = ConnectionPhase.CONNECTED
        redirect_params = {self.platform.value: "success"}
        if session_token:
            redirect_params["token"] = session_token
        logger.info("Connected %s for user %s", self.platform.value, attempt.user_id)
        return ConnectionOutcome(
            platform=self.platform.value,
            phase=attempt.phase,
            redirect_url=build_redirect(attempt.return_address, redirect_params),
            user_id=attempt.user_id,
        )

    def _failed(self, attempt: _Attempt, error: ConnectionFlowError) -> ConnectionOutcome:
        logger.warning(
            "%s connect flow failed during %s: %s (%s)",
            self.platform.value,
            attempt.phase.value,
            error.code,
            error.message,
        )
        attempt.phase = ConnectionPhase.FAILED
        return ConnectionOutcome(
            platform=self.platform.value,
            phase=attempt.phase,
            redirect_url=build_redirect(
                attempt.return_address,
                {self.platform.value: "error", "message": error.message},
            ),
            user_id=attempt.user_id,
            error=error,
        )

    async def _complete_oauth2(self, params: CallbackParams, attempt: _Attempt) -> str | None:
        if params.error:
            attempt.return_address = self._peek_return_address(params.state) or attempt.return_address
            raise ProviderDenied(params.error_description or params.error)
        if not params.code or not params.state:
            raise InvalidState("Missing code or state parameter")

        payload = self.codec.verify(params.state, platform=self.platform.value)
        attempt.return_address = payload.return_address

        attempt.phase = ConnectionPhase.EXCHANGING
        grant = await self.adapter.exchange(params.code, self.callback_url)
        profile = await self.adapter.fetch_profile(AccessCredential.from_grant(self.platform, grant))

        if payload.subject_user_id:
            user = await self._subject_user(payload.subject_user_id)
        elif self.adapter.supports_login:
            if not profile.email:
                raise ExchangeFailed(f"{self.adapter.display_name} did not share an email address")
            user = await get_or_create_user_by_email(
                self.session, profile.email, display_name=profile.display_name
            )
        else:
            raise InvalidState("State token does not identify a user")

        attempt.user_id = user.id
        await self._persist(user.id, grant, profile)
        if self.adapter.supports_login:
            return await get_jwt_strategy().write_token(user)
        return None

    async def _complete_oauth1(self, params: CallbackParams, attempt: _Attempt) -> None:
        if params.denied:
            pending = await self.store.claim_pending(self.platform, params.denied)
            if pending is not None and pending.return_address:
                attempt.return_address = pending.return_address
            raise ProviderDenied(f"{self.adapter.display_name} authorization was denied")
        if not params.oauth_token or not params.oauth_verifier:
            raise ExchangeFailed("Missing oauth_token or oauth_verifier")

        pending = await self.store.claim_pending(self.platform, params.oauth_token)
        if pending is None:
            raise ExchangeFailed("Unknown or expired request token")
        if pending.return_address:
            attempt.return_address = pending.return_address
        attempt.user_id = pending.user_id

        attempt.phase = ConnectionPhase.EXCHANGING
        grant = await self.adapter.exchange(pending.request_token, pending.request_secret, params.oauth_verifier)
        profile = await self.adapter.fetch_profile(AccessCredential.from_grant(self.platform, grant))
        await self._persist(pending.user_id, grant, profile)
        return None

    def _peek_return_address(self, state: str | None) -> str | None:
        if not state:
            return None
        try:
            return self.codec.verify(state, platform=self.platform.value).return_address
        except InvalidState:
            return None

    async def _subject_user(self, subject_user_id: str) -> User:
        try:
            user_id = uuid.UUID(subject_user_id)
        except ValueError as exc:
            raise InvalidState("State token names an invalid user") from exc
        user = await get_user(self.session, user_id)
        if user is None:
            raise InvalidState("State token names an unknown user")
        return user

    async def _persist(self, user_id: uuid.UUID, grant: TokenGrant, profile: ProfileSummary) -> None:
        await self.store.upsert_active(user_id, self.platform, grant, profile)

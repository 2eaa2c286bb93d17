from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request, Response
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import RedirectResponse

from socialbridge.api.v1.deps import get_current_user, get_optional_user
from socialbridge.core.errors import ConnectionFlowError
from socialbridge.db.models.user import User
from socialbridge.db.session import get_async_session
from socialbridge.schemas.connection import (
    AccountSnapshot,
    AuthorizeRequest,
    AuthorizeResponse,
    AvailablePlatformResponse,
    ConnectionListResponse,
    ConnectionResponse,
    ConnectionStatusResponse,
    DisconnectResponse,
)
from socialbridge.schemas.publish import ErrorBody, PublishedPartResponse, PublishRequest, PublishResponse
from socialbridge.services.connections.adapters import get_adapter, list_available_platforms
from socialbridge.services.connections.orchestrator import (
    CallbackParams,
    ConnectionOrchestrator,
    build_redirect,
)
from socialbridge.services.connections.refresh import TokenRefresher
from socialbridge.services.connections.store import CredentialStore
from socialbridge.services.publishing.publisher import Publisher, PublishStatus

router = APIRouter()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


def _store(request: Request, session: AsyncSession) -> CredentialStore:
    settings = request.app.state.settings
    return CredentialStore(session, pending_ttl=timedelta(seconds=settings.pending_handshake_ttl_seconds))


def _refresher(request: Request, session: AsyncSession, platform: str) -> TokenRefresher:
    settings = request.app.state.settings
    return TokenRefresher(
        _store(request, session),
        get_adapter(platform, settings=settings, require_configured=False),
        skew=timedelta(seconds=settings.refresh_skew_seconds),
    )


def _error_body(error: ConnectionFlowError | None) -> ErrorBody | None:
    if error is None:
        return None
    return ErrorBody(**error.to_dict())


@router.get("/available", response_model=list[AvailablePlatformResponse])
async def list_available(request: Request):
    """List platforms configured on this server."""
    return list_available_platforms(request.app.state.settings)


@router.get("/", response_model=ConnectionListResponse)
async def list_connections(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    """List the current user's connections with their stored status."""
    credentials = await _store(request, session).list_for_user(user.id)
    return ConnectionListResponse(
        items=[ConnectionResponse.model_validate(c) for c in credentials if c.access_secret is not None]
    )


@router.post("/{platform}/authorize", response_model=AuthorizeResponse)
@limiter.limit("10/minute")
async def authorize(
    request: Request,
    platform: str,
    authorize_req: AuthorizeRequest | None = None,
    user: User | None = Depends(get_optional_user),
    session: AsyncSession = Depends(get_async_session),
):
    """Start a connect flow and return the provider authorization URL."""
    settings = request.app.state.settings
    adapter = get_adapter(platform, settings=settings)
    orchestrator = ConnectionOrchestrator(session, adapter, settings=settings, store=_store(request, session))
    start = await orchestrator.start(
        user=user,
        return_address=authorize_req.redirect_uri if authorize_req else None,
    )
    return AuthorizeResponse(authorization_url=start.authorization_url, state=start.state)


@router.get("/{platform}/callback")
async def callback(
    request: Request,
    platform: str,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
    oauth_token: str | None = Query(default=None),
    oauth_verifier: str | None = Query(default=None),
    denied: str | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
):
    """Handle the provider redirect; always answers with a redirect for the end user."""
    settings = request.app.state.settings
    try:
        adapter = get_adapter(platform, settings=settings)
    except ConnectionFlowError as exc:
        return RedirectResponse(
            url=build_redirect(settings.default_return_address, {platform: "error", "message": exc.message})
        )

    orchestrator = ConnectionOrchestrator(session, adapter, settings=settings, store=_store(request, session))
    outcome = await orchestrator.complete(
        CallbackParams(
            code=code,
            state=state,
            error=error,
            error_description=error_description,
            oauth_token=oauth_token,
            oauth_verifier=oauth_verifier,
            denied=denied,
        )
    )
    return RedirectResponse(url=outcome.redirect_url)


@router.get("/{platform}/status", response_model=ConnectionStatusResponse)
async def connection_status(
    request: Request,
    platform: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    """Report whether the platform is connected, refreshing the token if it is about to expire."""
    refresher = _refresher(request, session, platform)
    result = await refresher.status(user.id)
    return ConnectionStatusResponse(
        platform=refresher.adapter.platform,
        connected=result.connected,
        expired=result.expired,
        account=AccountSnapshot.model_validate(result.credential) if result.credential is not None else None,
    )


@router.delete("/{platform}", response_model=DisconnectResponse)
async def disconnect(
    request: Request,
    platform: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    """Disconnect a platform. Succeeds whether or not a connection existed."""
    adapter = get_adapter(platform, settings=request.app.state.settings, require_configured=False)
    await _store(request, session).delete(user.id, adapter.platform)
    return DisconnectResponse(success=True, platform=adapter.platform)


@router.post("/{platform}/publish", response_model=PublishResponse)
@limiter.limit("30/minute")
async def publish(
    request: Request,
    response: Response,
    platform: str,
    publish_req: PublishRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    """Publish content through a connected platform."""
    refresher = _refresher(request, session, platform)
    report = await Publisher(refresher, refresher.adapter).publish(user.id, publish_req)

    if report.status is PublishStatus.FAILED and report.error is not None:
        response.status_code = report.error.status_code

    return PublishResponse(
        success=report.success,
        status=report.status.value,
        platform=report.platform,
        type=report.kind,
        content_ids=report.content_ids,
        parts=[
            PublishedPartResponse(
                position=part.position,
                attempts=part.attempts,
                content_id=part.content_id,
                url=part.url,
                error=_error_body(part.error),
            )
            for part in report.parts
        ],
        error=_error_body(report.error),
    )

"""
Error taxonomy for connect, refresh and publish flows.

Every error carries a stable ``code``, a human readable ``message`` (never a
secret), whether a retry may succeed, and the HTTP status used when it
reaches the API surface. Rendered as::

    {"success": false, "error": {"code": ..., "message": ..., "retryable": ...}}
"""

from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from socialbridge.core.security import redact_text

logger = logging.getLogger(__name__)


class ConnectionFlowError(Exception):
    """Base error for everything that can go wrong talking to a platform."""

    code = "connection_error"
    retryable = False
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Connection flow failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        provider_code: str | None = None,
        provider_status: int | None = None,
    ):
        self.message = redact_text(message) or self.default_message
        self.provider_code = provider_code
        self.provider_status = provider_status
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class InvalidState(ConnectionFlowError):
    code = "invalid_state"
    default_message = "Invalid state parameter"


class ExpiredToken(InvalidState):
    default_message = "State token has expired"


class InvalidSignature(InvalidState):
    default_message = "State token signature is invalid"


class AudienceMismatch(InvalidState):
    default_message = "State token was issued for a different audience"


class InvalidReturnAddress(ConnectionFlowError):
    code = "invalid_return_address"
    default_message = "Return address is not allowed"


class AuthenticationRequired(ConnectionFlowError):
    code = "authentication_required"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class UnknownPlatform(ConnectionFlowError):
    code = "unknown_platform"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Unknown platform"


class PlatformNotConfigured(ConnectionFlowError):
    code = "platform_not_configured"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Platform is not configured on this server"


class ProviderDenied(ConnectionFlowError):
    code = "provider_denied"
    default_message = "Authorization was denied by the provider"


class ExchangeFailed(ConnectionFlowError):
    code = "exchange_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Could not exchange the authorization grant"


class InvalidGrant(ConnectionFlowError):
    code = "invalid_grant"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Refresh credential was rejected by the provider"


class NotConnected(ConnectionFlowError):
    code = "not_connected"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Platform is not connected"


class Expired(ConnectionFlowError):
    code = "expired"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Platform connection has expired, reconnect required"


class ProviderUnavailable(ConnectionFlowError):
    code = "provider_unavailable"
    retryable = True
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Provider is unavailable"


class TemporarilyUnavailable(ConnectionFlowError):
    code = "temporarily_unavailable"
    retryable = True
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Provider is temporarily unavailable, try again later"


class RateLimited(ConnectionFlowError):
    code = "rate_limited"
    retryable = True
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Provider rate limit exceeded"

    def __init__(self, message: str | None = None, *, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ContentRejected(ConnectionFlowError):
    code = "content_rejected"
    status_code = 422
    default_message = "Content was rejected by the provider"


def error_envelope(exc: ConnectionFlowError) -> dict:
    return {"success": False, "error": exc.to_dict()}


async def connection_error_handler(request: Request, exc: ConnectionFlowError) -> JSONResponse:
    logger.info(
        "Request %s %s failed: %s (%s)",
        request.method,
        request.url.path,
        exc.code,
        exc.message,
    )
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc),
        headers=headers,
    )

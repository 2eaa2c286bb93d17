"""
Signed state tokens for the OAuth redirect round trip.

A state token records who started a connect flow, where they should land
afterwards and which platform the flow belongs to. It is an HS256 JWT bound
to an issuer/audience pair and valid for at most 30 minutes; whoever holds it
can complete the flow it was issued for, so it is never logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from socialbridge.core.config import Settings, get_settings
from socialbridge.core.errors import AudienceMismatch, ExpiredToken, InvalidSignature

logger = logging.getLogger(__name__)

MAX_STATE_TTL_SECONDS = 30 * 60
ALGORITHM = "HS256"


@dataclass(frozen=True)
class StatePayload:
    subject_user_id: str | None
    return_address: str
    platform: str
    issued_at: datetime


class StateTokenCodec:
    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        ttl_seconds: int = MAX_STATE_TTL_SECONDS,
    ):
        if not secret:
            raise ValueError("State token secret must not be empty")
        if ttl_seconds <= 0 or ttl_seconds > MAX_STATE_TTL_SECONDS:
            raise ValueError(f"State token TTL must be between 1 and {MAX_STATE_TTL_SECONDS} seconds")
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "StateTokenCodec":
        settings = settings or get_settings()
        return cls(
            settings.secret_key,
            issuer=settings.state_token_issuer,
            audience=settings.state_token_audience,
            ttl_seconds=settings.state_token_ttl_seconds,
        )

    def issue(
        self,
        *,
        return_address: str,
        platform: str,
        subject_user_id: str | None = None,
        ttl_seconds: int | None = None,
        issued_at: datetime | None = None,
    ) -> str:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        if ttl <= 0 or ttl > MAX_STATE_TTL_SECONDS:
            raise ValueError(f"State token TTL must be between 1 and {MAX_STATE_TTL_SECONDS} seconds")

        iat = issued_at or datetime.now(timezone.utc)
        claims = {
            "iss": self.issuer,
            "aud": self.audience,
            "iat": iat,
            "exp": iat + timedelta(seconds=ttl),
            "ret": return_address,
            "plt": platform,
        }
        if subject_user_id is not None:
            claims["sub"] = str(subject_user_id)
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str, *, platform: str | None = None) -> StatePayload:
        """Decode ``token`` or raise an ``InvalidState`` subclass."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredToken() from exc
        except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as exc:
            raise AudienceMismatch() from exc
        except jwt.InvalidTokenError as exc:
            logger.debug("State token rejected: %s", type(exc).__name__)
            raise InvalidSignature() from exc

        token_platform = claims.get("plt")
        return_address = claims.get("ret")
        if not token_platform or not return_address:
            raise InvalidSignature("State token is missing required claims")
        if platform is not None and token_platform != platform:
            raise AudienceMismatch(f"State token was issued for {token_platform}, not {platform}")

        return StatePayload(
            subject_user_id=claims.get("sub"),
            return_address=return_address,
            platform=token_platform,
            issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
        )

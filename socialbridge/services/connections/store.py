"""
Credential store: one ``PlatformCredential`` row per (user, platform).

Writes are upserts; a later connect always overwrites an earlier one. OAuth
1.0a handshakes park their request token on the same row until the provider
calls back. Secrets are encrypted on the way in and only decrypted into an
``AccessCredential`` when a caller is about to use them.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from socialbridge.core.security import decrypt_token, encrypt_token
from socialbridge.db.base import utcnow
from socialbridge.db.models.credential import CredentialStatus, Platform, PlatformCredential
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    ProfileSummary,
    TokenGrant,
)

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL = timedelta(minutes=15)


@dataclass(frozen=True)
class PendingHandshake:
    user_id: uuid.UUID
    platform: Platform
    request_token: str
    request_secret: str
    return_address: str | None


class CredentialStore:
    def __init__(self, session: AsyncSession, *, pending_ttl: timedelta = DEFAULT_PENDING_TTL):
        self.session = session
        self.pending_ttl = pending_ttl

    async def get(self, user_id: uuid.UUID, platform: Platform) -> PlatformCredential | None:
        result = await self.session.execute(
            select(PlatformCredential)
            .where(
                PlatformCredential.user_id == user_id,
                PlatformCredential.platform == platform,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: uuid.UUID) -> list[PlatformCredential]:
        result = await self.session.execute(
            select(PlatformCredential)
            .where(PlatformCredential.user_id == user_id)
            .order_by(PlatformCredential.platform)
        )
        return list(result.scalars().all())

    async def _get_or_create(self, user_id: uuid.UUID, platform: Platform) -> PlatformCredential:
        credential = await self.get(user_id, platform)
        if credential is not None:
            return credential
        credential = PlatformCredential(
            user_id=user_id,
            platform=platform,
            status=CredentialStatus.PENDING,
        )
        self.session.add(credential)
        try:
            await self.session.flush()
        except IntegrityError:
            # A concurrent connect created the row first; update theirs instead.
            await self.session.rollback()
            credential = await self.get(user_id, platform)
            if credential is None:
                raise
        return credential

    async def upsert_active(
        self,
        user_id: uuid.UUID,
        platform: Platform,
        grant: TokenGrant,
        profile: ProfileSummary,
    ) -> PlatformCredential:
        """Store a completed connection, replacing whatever was there."""
        credential = await self._get_or_create(user_id, platform)
        now = utcnow()

        credential.access_secret = encrypt_token(grant.access_secret)
        credential.access_token_secret = (
            encrypt_token(grant.access_token_secret) if grant.access_token_secret else None
        )
        credential.refresh_secret = encrypt_token(grant.refresh_secret) if grant.refresh_secret else None
        credential.expires_at = grant.expires_at(now)
        credential.scope = grant.scope
        credential.extra = {
            **{k: v for k, v in grant.extra.items() if k != "provider_user_id"},
            **profile.extra,
        }
        credential.provider_user_id = profile.provider_user_id
        credential.handle = profile.handle
        credential.display_name = profile.display_name
        credential.avatar_url = profile.avatar_url
        credential.email = profile.email
        credential.status = CredentialStatus.ACTIVE
        credential.connected_at = now
        self._clear_pending_fields(credential)

        await self.session.commit()
        logger.info("Stored %s credential for user %s", platform.value, user_id)
        return credential

    async def begin_pending(
        self,
        user_id: uuid.UUID,
        platform: Platform,
        *,
        request_token: str,
        request_secret: str,
        return_address: str | None,
    ) -> PlatformCredential:
        credential = await self._get_or_create(user_id, platform)
        credential.pending_request_token = request_token
        credential.pending_request_secret = encrypt_token(request_secret)
        credential.pending_return_address = return_address
        credential.pending_started_at = utcnow()
        if credential.access_secret is None:
            credential.status = CredentialStatus.PENDING
        await self.session.commit()
        logger.info("Started %s handshake for user %s", platform.value, user_id)
        return credential

    async def claim_pending(self, platform: Platform, request_token: str) -> PendingHandshake | None:
        """Take the handshake parked under ``request_token``, clearing it either way."""
        if not request_token:
            return None
        result = await self.session.execute(
            select(PlatformCredential)
            .where(
                PlatformCredential.platform == platform,
                PlatformCredential.pending_request_token == request_token,
            )
            .execution_options(populate_existing=True)
        )
        credential = result.scalars().first()
        if credential is None:
            return None

        started_at = credential.pending_started_at
        stale = started_at is None or utcnow() - started_at > self.pending_ttl
        handshake = None
        if not stale and credential.pending_request_secret:
            handshake = PendingHandshake(
                user_id=credential.user_id,
                platform=platform,
                request_token=request_token,
                request_secret=decrypt_token(credential.pending_request_secret),
                return_address=credential.pending_return_address,
            )
        else:
            logger.info("Discarded stale %s handshake for user %s", platform.value, credential.user_id)

        await self._discard_pending(credential)
        return handshake

    async def _discard_pending(self, credential: PlatformCredential) -> None:
        self._clear_pending_fields(credential)
        if credential.access_secret is None:
            # Nothing but a handshake ever lived here.
            await self.session.delete(credential)
        await self.session.commit()

    @staticmethod
    def _clear_pending_fields(credential: PlatformCredential) -> None:
        credential.pending_request_token = None
        credential.pending_request_secret = None
        credential.pending_return_address = None
        credential.pending_started_at = None

    async def update_tokens(self, credential: PlatformCredential, grant: TokenGrant) -> PlatformCredential:
        """Write a refreshed grant through to the row."""
        credential.access_secret = encrypt_token(grant.access_secret)
        if grant.refresh_secret:
            credential.refresh_secret = encrypt_token(grant.refresh_secret)
        credential.expires_at = grant.expires_at()
        if grant.scope:
            credential.scope = grant.scope
        credential.status = CredentialStatus.ACTIVE
        await self.session.commit()
        logger.info("Refreshed %s credential for user %s", credential.platform.value, credential.user_id)
        return credential

    async def mark_expired(self, credential: PlatformCredential) -> None:
        credential.status = CredentialStatus.EXPIRED
        await self.session.commit()
        logger.info("Marked %s credential for user %s as expired", credential.platform.value, credential.user_id)

    async def delete(self, user_id: uuid.UUID, platform: Platform) -> bool:
        """Remove the connection. Returns whether anything was removed."""
        credential = await self.get(user_id, platform)
        if credential is None:
            return False
        await self.session.delete(credential)
        await self.session.commit()
        logger.info("Disconnected %s for user %s", platform.value, user_id)
        return True

    @staticmethod
    def to_access_credential(credential: PlatformCredential) -> AccessCredential:
        if credential.access_secret is None:
            raise ValueError("Credential has no access secret")
        return AccessCredential(
            platform=credential.platform,
            access_secret=decrypt_token(credential.access_secret),
            access_token_secret=(
                decrypt_token(credential.access_token_secret) if credential.access_token_secret else None
            ),
            provider_user_id=credential.provider_user_id,
            expires_at=credential.expires_at,
            extra=dict(credential.extra or {}),
        )

    @staticmethod
    def refresh_secret_of(credential: PlatformCredential) -> str | None:
        return decrypt_token(credential.refresh_secret) if credential.refresh_secret else None

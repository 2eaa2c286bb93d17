"""
Lazy token refresh, run before every authenticated provider call.

Decision order for a stored credential:

1. no row, or only a handshake in flight -> ``NotConnected``
2. OAuth 1.0a with an access token -> usable as is
3. OAuth 2.0 outside the skew window (or with no expiry) -> usable as is
4. refresh token present -> refresh, persist, return the new credential;
   ``InvalidGrant`` marks the row expired, transient failures and unreadable
   token responses surface as
   ``TemporarilyUnavailable``
5. otherwise -> mark expired and raise ``Expired``

Steps 3 to 5 run under a per-(user, platform) lock so concurrent callers do
not both spend the same refresh token.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from socialbridge.core.cache import AsyncLockRegistry, make_lock_registry
from socialbridge.core.errors import (
    ExchangeFailed,
    Expired,
    InvalidGrant,
    NotConnected,
    ProviderUnavailable,
    RateLimited,
    TemporarilyUnavailable,
)
from socialbridge.db.base import utcnow
from socialbridge.db.models.credential import CredentialStatus, PlatformCredential
from socialbridge.services.connections.adapters.base import AccessCredential, AdapterFamily, PlatformAdapter
from socialbridge.services.connections.store import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW = timedelta(seconds=120)

_refresh_locks = make_lock_registry(maxsize=10_000, ttl_seconds=600)


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    expired: bool = False
    credential: PlatformCredential | None = None


class TokenRefresher:
    def __init__(
        self,
        store: CredentialStore,
        adapter: PlatformAdapter,
        *,
        skew: timedelta = DEFAULT_REFRESH_SKEW,
        locks: AsyncLockRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.adapter = adapter
        self.skew = skew
        self.locks = locks or _refresh_locks
        self.clock = clock

    def _is_usable(self, credential: PlatformCredential) -> bool:
        if credential.access_secret is None or credential.status == CredentialStatus.EXPIRED:
            return False
        if self.adapter.family is AdapterFamily.OAUTH1:
            return True
        if credential.expires_at is None:
            return True
        return self.clock() < credential.expires_at - self.skew

    async def ensure_fresh(self, user_id: uuid.UUID) -> AccessCredential:
        platform = self.adapter.platform
        credential = await self.store.get(user_id, platform)
        if credential is None or credential.access_secret is None:
            raise NotConnected(f"{self.adapter.display_name} is not connected")
        if self._is_usable(credential):
            return self.store.to_access_credential(credential)
        if credential.status == CredentialStatus.EXPIRED:
            raise Expired(f"{self.adapter.display_name} connection has expired, reconnect required")

        lock = await self.locks.get((user_id, platform))
        async with lock:
            # Another caller may have refreshed while we waited.
            credential = await self.store.get(user_id, platform)
            if credential is None or credential.access_secret is None:
                raise NotConnected(f"{self.adapter.display_name} is not connected")
            if self._is_usable(credential):
                return self.store.to_access_credential(credential)
            if credential.status == CredentialStatus.EXPIRED:
                raise Expired(f"{self.adapter.display_name} connection has expired, reconnect required")
            return await self._refresh_locked(credential)

    async def _refresh_locked(self, credential: PlatformCredential) -> AccessCredential:
        platform = credential.platform.value
        refresh_secret = self.store.refresh_secret_of(credential)
        if not refresh_secret:
            await self.store.mark_expired(credential)
            raise Expired(f"{self.adapter.display_name} connection has expired, reconnect required")

        logger.info("Refreshing %s credential for user %s", platform, credential.user_id)
        try:
            grant = await self.adapter.refresh(refresh_secret)
        except InvalidGrant:
            logger.warning("%s refresh token rejected for user %s", platform, credential.user_id)
            await self.store.mark_expired(credential)
            raise Expired(f"{self.adapter.display_name} connection has expired, reconnect required")
        except (ExchangeFailed, ProviderUnavailable, RateLimited, TemporarilyUnavailable) as exc:
            logger.warning("%s refresh failed transiently for user %s: %s", platform, credential.user_id, exc.code)
            raise TemporarilyUnavailable(
                f"{self.adapter.display_name} is temporarily unavailable, try again later"
            ) from exc

        credential = await self.store.update_tokens(credential, grant)
        return self.store.to_access_credential(credential)

    async def status(self, user_id: uuid.UUID) -> ConnectionStatus:
        """Connection state after a live refresh-if-needed check."""
        try:
            await self.ensure_fresh(user_id)
        except NotConnected:
            return ConnectionStatus(connected=False)
        except Expired:
            credential = await self.store.get(user_id, self.adapter.platform)
            return ConnectionStatus(connected=False, expired=True, credential=credential)
        credential = await self.store.get(user_id, self.adapter.platform)
        return ConnectionStatus(connected=True, credential=credential)

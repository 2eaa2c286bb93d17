from __future__ import annotations

from httpx_oauth.clients.google import GoogleOAuth2

from socialbridge.core.errors import ExchangeFailed
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    Oauth2Adapter,
    ProfileSummary,
)
from socialbridge.services.connections.adapters.registry import register_adapter

GOOGLE_USERINFO_ENDPOINT = "https://openidconnect.googleapis.com/v1/userinfo"

# Offline access plus a forced consent screen so Google always returns a refresh token.
GOOGLE_OAUTH_EXTRAS = {
    "access_type": "offline",
    "prompt": "consent",
    "include_granted_scopes": "true",
}


class GoogleOAuthAdapter(Oauth2Adapter):
    authorize_extras = GOOGLE_OAUTH_EXTRAS

    def oauth_client(self) -> GoogleOAuth2:
        client_id, client_secret = self.client_credentials()
        return GoogleOAuth2(client_id, client_secret, scopes=list(self.scopes))


@register_adapter(Platform.GOOGLE)
class GoogleAdapter(GoogleOAuthAdapter):
    display_name = "Google"
    supports_login = True
    scopes = ("openid", "email", "profile")

    def is_configured(self) -> bool:
        return bool(self.settings.google_client_id and self.settings.google_client_secret)

    def client_credentials(self) -> tuple[str, str]:
        return self.settings.google_client_id or "", self.settings.google_client_secret or ""

    async def fetch_profile(self, credential: AccessCredential) -> ProfileSummary:
        response = await self._send(
            "GET",
            GOOGLE_USERINFO_ENDPOINT,
            headers=self._bearer(credential),
            error_class=ExchangeFailed,
        )
        data = self._json(response)
        if not data.get("sub"):
            raise ExchangeFailed("Google profile is missing the account id")
        return ProfileSummary(
            provider_user_id=str(data["sub"]),
            handle=data.get("email"),
            display_name=data.get("name"),
            avatar_url=data.get("picture"),
            email=data.get("email") if data.get("email_verified", True) else None,
        )

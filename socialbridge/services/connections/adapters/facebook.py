from __future__ import annotations

from typing import Any

import httpx
from httpx_oauth.clients.facebook import FacebookOAuth2

from socialbridge.core.errors import (
    ConnectionFlowError,
    ContentRejected,
    ExchangeFailed,
    InvalidGrant,
    RateLimited,
    TemporarilyUnavailable,
)
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    Oauth2Adapter,
    ProfileSummary,
    PublishedItem,
    PublishPart,
    TokenGrant,
    provider_error,
)
from socialbridge.services.connections.adapters.registry import register_adapter

# Graph API error codes that mean "slow down" rather than "bad request".
GRAPH_THROTTLE_CODES = frozenset({4, 17, 32, 341, 613})


class MetaGraphAdapter(Oauth2Adapter):
    """Shared plumbing for Graph API platforms: code exchange and long-lived token upgrade."""

    graph_version = "v18.0"

    @property
    def graph_base(self) -> str:
        return f"https://graph.facebook.com/{self.graph_version}"

    def oauth_client(self) -> FacebookOAuth2:
        client_id, client_secret = self.client_credentials()
        client = FacebookOAuth2(client_id, client_secret, scopes=list(self.scopes))
        # Dialog and token endpoints follow this adapter's Graph version.
        client.authorize_endpoint = f"https://www.facebook.com/{self.graph_version}/dialog/oauth"
        client.access_token_endpoint = f"{self.graph_base}/oauth/access_token"
        return client

    async def exchange(self, code: str, callback_url: str) -> TokenGrant:
        client = self.oauth_client()
        short_lived = self._grant_from_payload(
            await self._token_call(client.get_access_token(code, callback_url), error_class=ExchangeFailed)
        )
        long_lived = await self._token_call(
            client.get_long_lived_access_token(short_lived.access_secret),
            error_class=ExchangeFailed,
        )
        return self._grant_from_payload(long_lived)

    async def refresh(self, refresh_secret: str) -> TokenGrant:
        raise InvalidGrant(f"{self.display_name} tokens cannot be refreshed, reconnect the account")

    async def _graph(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        error_class: type[ConnectionFlowError] = ContentRejected,
    ) -> dict[str, Any]:
        query = {**(params or {}), "access_token": access_token}
        response = await self._send(
            method,
            f"{self.graph_base}/{path.lstrip('/')}",
            params=query,
            data=data,
            error_class=error_class,
        )
        return self._json(response, error_class=error_class)

    def _provider_error(
        self,
        response: httpx.Response,
        error_class: type[ConnectionFlowError],
    ) -> ConnectionFlowError:
        error = provider_error(response, default=error_class)
        try:
            body = response.json()
        except ValueError:
            return error
        graph_error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(graph_error, dict):
            return error
        if graph_error.get("code") in GRAPH_THROTTLE_CODES:
            return RateLimited(error.message, provider_code=error.provider_code, provider_status=response.status_code)
        if graph_error.get("is_transient"):
            return TemporarilyUnavailable(
                error.message, provider_code=error.provider_code, provider_status=response.status_code
            )
        return error


@register_adapter(Platform.FACEBOOK)
class FacebookAdapter(MetaGraphAdapter):
    display_name = "Facebook"
    publish_kinds = frozenset({"page_post"})
    scopes = (
        "email",
        "public_profile",
        "pages_show_list",
        "pages_read_engagement",
        "pages_manage_posts",
    )

    def is_configured(self) -> bool:
        return bool(self.settings.facebook_app_id and self.settings.facebook_app_secret)

    def client_credentials(self) -> tuple[str, str]:
        return self.settings.facebook_app_id or "", self.settings.facebook_app_secret or ""

    async def fetch_profile(self, credential: AccessCredential) -> ProfileSummary:
        data = await self._graph(
            "GET",
            "me",
            credential.access_secret,
            params={"fields": "id,name,email,picture.type(large)"},
            error_class=ExchangeFailed,
        )
        picture = ((data.get("picture") or {}).get("data") or {}).get("url")
        return ProfileSummary(
            provider_user_id=str(data["id"]),
            display_name=data.get("name"),
            avatar_url=picture,
            email=data.get("email"),
        )

    async def publish(self, credential: AccessCredential, part: PublishPart) -> PublishedItem:
        if part.kind != "page_post":
            return await super().publish(credential, part)
        if not part.page_id or not part.text:
            raise ContentRejected("A page id and a message are required")

        pages = await self._graph(
            "GET",
            "me/accounts",
            credential.access_secret,
            params={"fields": "id,name,access_token"},
        )
        page = next((p for p in pages.get("data") or [] if str(p.get("id")) == part.page_id), None)
        if page is None or not page.get("access_token"):
            raise ContentRejected("The connected account does not manage this page")

        data = {"message": part.text}
        if part.link:
            data["link"] = part.link
        result = await self._graph("POST", f"{part.page_id}/feed", page["access_token"], data=data)
        post_id = result.get("id")
        if not post_id:
            raise ContentRejected("Facebook did not return a post id")
        return PublishedItem(content_id=str(post_id), url=f"https://www.facebook.com/{post_id}")

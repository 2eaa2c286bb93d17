from __future__ import annotations

from datetime import timedelta

from socialbridge.core.errors import ContentRejected, ExchangeFailed
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    ProfileSummary,
    PublishedItem,
    PublishPart,
    TokenGrant,
)
from socialbridge.services.connections.adapters.facebook import MetaGraphAdapter
from socialbridge.services.connections.adapters.registry import register_adapter

# Page tokens derived from a long-lived user token live for about 60 days.
PAGE_TOKEN_LIFETIME = timedelta(days=60)
CAPTION_MAX_LENGTH = 2200


@register_adapter(Platform.INSTAGRAM)
class InstagramAdapter(MetaGraphAdapter):
    """Publishes through the Instagram business account linked to one of the user's pages."""

    display_name = "Instagram"
    graph_version = "v20.0"
    publish_kinds = frozenset({"image_post"})
    scopes = ("instagram_basic", "pages_show_list", "instagram_content_publish")

    def client_credentials(self) -> tuple[str, str]:
        client_id = self.settings.instagram_app_id or self.settings.facebook_app_id
        client_secret = self.settings.instagram_app_secret or self.settings.facebook_app_secret
        return client_id or "", client_secret or ""

    def is_configured(self) -> bool:
        client_id, client_secret = self.client_credentials()
        return bool(client_id and client_secret)

    async def exchange(self, code: str, callback_url: str) -> TokenGrant:
        user_grant = await super().exchange(code, callback_url)
        accounts = await self._graph(
            "GET",
            "me/accounts",
            user_grant.access_secret,
            params={
                "fields": "id,name,access_token,instagram_business_account{id,username,name,profile_picture_url}"
            },
            error_class=ExchangeFailed,
        )
        pages = accounts.get("data") or []
        if not pages:
            raise ExchangeFailed("No Facebook Pages found for this user")
        page = next((p for p in pages if p.get("instagram_business_account")), None)
        if page is None or not page.get("access_token"):
            raise ExchangeFailed("No Instagram business account is linked to your Facebook Pages")

        ig_account = page["instagram_business_account"]
        return TokenGrant(
            access_secret=page["access_token"],
            expires_in=int(PAGE_TOKEN_LIFETIME.total_seconds()),
            scope=user_grant.scope,
            extra={
                "provider_user_id": str(ig_account["id"]),
                "ig_account_id": str(ig_account["id"]),
                "page_id": str(page["id"]),
            },
        )

    async def fetch_profile(self, credential: AccessCredential) -> ProfileSummary:
        ig_account_id = credential.extra.get("ig_account_id")
        if not ig_account_id:
            raise ExchangeFailed("Instagram business account id is unknown")
        data = await self._graph(
            "GET",
            ig_account_id,
            credential.access_secret,
            params={"fields": "id,username,name,profile_picture_url"},
            error_class=ExchangeFailed,
        )
        return ProfileSummary(
            provider_user_id=str(data.get("id") or ig_account_id),
            handle=data.get("username"),
            display_name=data.get("name"),
            avatar_url=data.get("profile_picture_url"),
        )

    async def publish(self, credential: AccessCredential, part: PublishPart) -> PublishedItem:
        if part.kind != "image_post":
            return await super().publish(credential, part)
        if not part.image_url:
            raise ContentRejected("An image URL is required")
        if part.text and len(part.text) > CAPTION_MAX_LENGTH:
            raise ContentRejected(f"Caption exceeds {CAPTION_MAX_LENGTH} characters")
        ig_account_id = credential.extra.get("ig_account_id")
        if not ig_account_id:
            raise ContentRejected("Instagram business account is unknown, reconnect the account")

        container = await self._graph(
            "POST",
            f"{ig_account_id}/media",
            credential.access_secret,
            data={"image_url": part.image_url, "caption": part.text or ""},
        )
        container_id = container.get("id")
        if not container_id:
            raise ContentRejected("Instagram did not create a media container")
        published = await self._graph(
            "POST",
            f"{ig_account_id}/media_publish",
            credential.access_secret,
            data={"creation_id": container_id},
        )
        media_id = published.get("id")
        if not media_id:
            raise ContentRejected("Instagram did not return a media id")
        return PublishedItem(content_id=str(media_id))

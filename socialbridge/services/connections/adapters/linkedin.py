from __future__ import annotations

from httpx_oauth.clients.linkedin import LinkedInOAuth2

from socialbridge.core.errors import ContentRejected, ExchangeFailed
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    Oauth2Adapter,
    ProfileSummary,
    PublishedItem,
    PublishPart,
)
from socialbridge.services.connections.adapters.registry import register_adapter

LINKEDIN_API_BASE = "https://api.linkedin.com/v2"
LINKEDIN_POST_MAX_LENGTH = 3000


@register_adapter(Platform.LINKEDIN)
class LinkedInAdapter(Oauth2Adapter):
    display_name = "LinkedIn"
    supports_login = True
    publish_kinds = frozenset({"post"})

    def is_configured(self) -> bool:
        return bool(self.settings.linkedin_client_id and self.settings.linkedin_client_secret)

    def client_credentials(self) -> tuple[str, str]:
        return self.settings.linkedin_client_id or "", self.settings.linkedin_client_secret or ""

    def requested_scopes(self) -> list[str]:
        return list(self.settings.linkedin_scopes)

    def oauth_client(self) -> LinkedInOAuth2:
        client_id, client_secret = self.client_credentials()
        return LinkedInOAuth2(client_id, client_secret, scopes=self.requested_scopes())

    async def fetch_profile(self, credential: AccessCredential) -> ProfileSummary:
        response = await self._send(
            "GET",
            f"{LINKEDIN_API_BASE}/userinfo",
            headers=self._bearer(credential),
            error_class=ExchangeFailed,
        )
        data = self._json(response)
        member_id = data.get("sub")
        if not member_id:
            raise ExchangeFailed("LinkedIn profile is missing the member id")
        return ProfileSummary(
            provider_user_id=str(member_id),
            handle=data.get("email"),
            display_name=data.get("name"),
            avatar_url=data.get("picture"),
            email=data.get("email"),
            extra={"author_urn": f"urn:li:person:{member_id}"},
        )

    async def publish(self, credential: AccessCredential, part: PublishPart) -> PublishedItem:
        if part.kind != "post":
            return await super().publish(credential, part)
        if not part.text:
            raise ContentRejected("Post text is required")
        if len(part.text) > LINKEDIN_POST_MAX_LENGTH:
            raise ContentRejected(f"Post text exceeds {LINKEDIN_POST_MAX_LENGTH} characters")

        author = credential.extra.get("author_urn")
        if not author and credential.provider_user_id:
            author = f"urn:li:person:{credential.provider_user_id}"
        if not author:
            raise ContentRejected("LinkedIn author is unknown, reconnect the account")

        body = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": part.text},
                    "shareMediaCategory": "NONE",
                }
            },
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        response = await self._send(
            "POST",
            f"{LINKEDIN_API_BASE}/ugcPosts",
            json=body,
            headers={**self._bearer(credential), "X-Restli-Protocol-Version": "2.0.0"},
        )
        post_id = response.headers.get("x-restli-id")
        if not post_id and response.content:
            post_id = self._json(response, error_class=ContentRejected).get("id")
        if not post_id:
            raise ContentRejected("LinkedIn did not return a post id")
        return PublishedItem(content_id=str(post_id), url=f"https://www.linkedin.com/feed/update/{post_id}")

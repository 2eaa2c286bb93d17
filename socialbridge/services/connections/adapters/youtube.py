from __future__ import annotations

from socialbridge.core.errors import ContentRejected, ExchangeFailed
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    ProfileSummary,
    PublishedItem,
    PublishPart,
)
from socialbridge.services.connections.adapters.google import GoogleOAuthAdapter
from socialbridge.services.connections.adapters.registry import register_adapter

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
PRIVACY_STATUSES = frozenset({"public", "private", "unlisted"})


@register_adapter(Platform.YOUTUBE)
class YouTubeAdapter(GoogleOAuthAdapter):
    display_name = "YouTube"
    publish_kinds = frozenset({"video_visibility"})
    scopes = (
        "https://www.googleapis.com/auth/youtube.readonly",
        "https://www.googleapis.com/auth/youtube.upload",
        "https://www.googleapis.com/auth/youtube",
    )

    def client_credentials(self) -> tuple[str, str]:
        client_id = self.settings.youtube_client_id or self.settings.google_client_id
        client_secret = self.settings.youtube_client_secret or self.settings.google_client_secret
        return client_id or "", client_secret or ""

    def is_configured(self) -> bool:
        client_id, client_secret = self.client_credentials()
        return bool(client_id and client_secret)

    async def fetch_profile(self, credential: AccessCredential) -> ProfileSummary:
        response = await self._send(
            "GET",
            f"{YOUTUBE_API_BASE}/channels",
            params={"part": "snippet", "mine": "true"},
            headers=self._bearer(credential),
            error_class=ExchangeFailed,
        )
        items = self._json(response).get("items") or []
        if not items:
            raise ExchangeFailed("No YouTube channel found for this Google account")
        channel = items[0]
        snippet = channel.get("snippet") or {}
        thumbnail = ((snippet.get("thumbnails") or {}).get("default") or {}).get("url")
        return ProfileSummary(
            provider_user_id=str(channel["id"]),
            handle=snippet.get("customUrl"),
            display_name=snippet.get("title"),
            avatar_url=thumbnail,
            extra={"channel_id": str(channel["id"])},
        )

    async def publish(self, credential: AccessCredential, part: PublishPart) -> PublishedItem:
        if part.kind != "video_visibility":
            return await super().publish(credential, part)
        if not part.video_id or part.privacy_status not in PRIVACY_STATUSES:
            raise ContentRejected("A video id and a privacy status of public, private or unlisted are required")

        response = await self._send(
            "PUT",
            f"{YOUTUBE_API_BASE}/videos",
            params={"part": "status"},
            json={"id": part.video_id, "status": {"privacyStatus": part.privacy_status}},
            headers=self._bearer(credential),
        )
        video_id = str(self._json(response, error_class=ContentRejected).get("id") or part.video_id)
        return PublishedItem(content_id=video_id, url=f"https://www.youtube.com/watch?v={video_id}")

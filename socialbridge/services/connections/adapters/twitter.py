from __future__ import annotations

from typing import Any

from socialbridge.core.errors import ContentRejected
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    Oauth1Adapter,
    ProfileSummary,
    PublishedItem,
    PublishPart,
)
from socialbridge.services.connections.adapters.registry import register_adapter

TWITTER_API_BASE = "https://api.twitter.com"
TWEET_MAX_LENGTH = 280


@register_adapter(Platform.TWITTER)
class TwitterAdapter(Oauth1Adapter):
    display_name = "Twitter"
    publish_kinds = frozenset({"post", "thread", "poll"})

    request_token_url = f"{TWITTER_API_BASE}/oauth/request_token"
    authorize_url = f"{TWITTER_API_BASE}/oauth/authorize"
    access_token_url = f"{TWITTER_API_BASE}/oauth/access_token"

    def is_configured(self) -> bool:
        return bool(self.settings.twitter_consumer_key and self.settings.twitter_consumer_secret)

    def consumer_credentials(self) -> tuple[str, str]:
        return self.settings.twitter_consumer_key or "", self.settings.twitter_consumer_secret or ""

    async def fetch_profile(self, credential: AccessCredential) -> ProfileSummary:
        response = await self._signed_send(
            "GET",
            f"{TWITTER_API_BASE}/2/users/me",
            self._credential_auth(credential),
            params={"user.fields": "profile_image_url"},
        )
        data = response.json().get("data") or {}
        return ProfileSummary(
            provider_user_id=str(data.get("id") or credential.provider_user_id or ""),
            handle=data.get("username") or credential.extra.get("screen_name"),
            display_name=data.get("name"),
            avatar_url=data.get("profile_image_url"),
        )

    def check_part(self, part: PublishPart) -> None:
        if not part.text:
            raise ContentRejected("Tweet text is required")
        if len(part.text) > TWEET_MAX_LENGTH:
            raise ContentRejected(f"Tweet text exceeds {TWEET_MAX_LENGTH} characters")

    async def publish(self, credential: AccessCredential, part: PublishPart) -> PublishedItem:
        self.check_part(part)

        body: dict[str, Any] = {"text": part.text}
        if part.kind == "poll":
            body["poll"] = {
                "options": list(part.poll_options),
                "duration_minutes": part.poll_duration_minutes,
            }
        elif part.media_ids:
            body["media"] = {"media_ids": list(part.media_ids)}
        if part.in_reply_to:
            body["reply"] = {"in_reply_to_tweet_id": part.in_reply_to}

        response = await self._signed_send(
            "POST",
            f"{TWITTER_API_BASE}/2/tweets",
            self._credential_auth(credential),
            json=body,
        )
        tweet_id = str((response.json().get("data") or {}).get("id") or "")
        if not tweet_id:
            raise ContentRejected("Twitter did not return a tweet id")
        handle = credential.extra.get("screen_name")
        url = f"https://twitter.com/{handle}/status/{tweet_id}" if handle else None
        return PublishedItem(content_id=tweet_id, url=url)

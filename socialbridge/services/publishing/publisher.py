from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable

from socialbridge.core.errors import ConnectionFlowError, ContentRejected, ProviderUnavailable
from socialbridge.schemas.publish import PublishRequest
from socialbridge.services.connections.adapters.base import PlatformAdapter, PublishedItem, PublishPart
from socialbridge.services.connections.refresh import TokenRefresher
from socialbridge.services.publishing.retry import RetryEngine, RetryPolicy, get_retry_policy

logger = logging.getLogger(__name__)


class PublishStatus(str, Enum):
    PUBLISHED = "published"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class PartResult:
    position: int
    attempts: int
    content_id: str | None = None
    url: str | None = None
    error: ConnectionFlowError | None = None


@dataclass
class PublishReport:
    platform: str
    kind: str
    status: PublishStatus
    parts: list[PartResult] = field(default_factory=list)
    error: ConnectionFlowError | None = None

    @property
    def success(self) -> bool:
        return self.status is PublishStatus.PUBLISHED

    @property
    def content_ids(self) -> list[str]:
        return [part.content_id for part in self.parts if part.content_id]


def build_parts(request: PublishRequest) -> list[PublishPart]:
    """Split a publish request into provider calls, in order."""
    if request.type == "thread":
        return [
            PublishPart(kind="thread", text=text, media_ids=tuple(request.media_ids) if index == 0 else ())
            for index, text in enumerate(request.thread or [])
        ]
    if request.type == "poll":
        poll = request.poll
        return [
            PublishPart(
                kind="poll",
                text=request.text,
                poll_options=tuple(poll.options) if poll else (),
                poll_duration_minutes=poll.duration_minutes if poll else None,
            )
        ]
    return [
        PublishPart(
            kind=request.type,
            text=request.text,
            media_ids=tuple(request.media_ids),
            page_id=request.page_id,
            link=request.link,
            image_url=request.image_url,
            video_id=request.video_id,
            privacy_status=request.privacy_status,
        )
    ]


class Publisher:
    """Publishes content through one platform with per-part retries.

    Every attempt goes through the refresh decision first, so a token that
    expires between retries is refreshed before the next call. Parts after the
    first reply to the previous part. A part that fails for good stops the
    sequence; parts already published stay published.
    """

    def __init__(
        self,
        refresher: TokenRefresher,
        adapter: PlatformAdapter,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.refresher = refresher
        self.adapter = adapter
        self.engine = RetryEngine(policy or get_retry_policy(adapter.platform), sleep=sleep, rng=rng)

    async def publish(self, user_id: uuid.UUID, request: PublishRequest) -> PublishReport:
        platform = self.adapter.platform.value
        parts = build_parts(request)
        report = PublishReport(platform=platform, kind=request.type, status=PublishStatus.FAILED)

        if not self.adapter.supports(request.type):
            report.error = ContentRejected(f"{self.adapter.display_name} does not support {request.type} content")
            return report

        try:
            for part in parts:
                self.adapter.check_part(part)
        except ContentRejected as exc:
            logger.info("Rejected %s %s for user %s before sending: %s", platform, request.type, user_id, exc.message)
            report.error = exc
            return report

        previous_id: str | None = None
        for position, part in enumerate(parts):
            if previous_id:
                part = replace(part, in_reply_to=previous_id)
            label = f"{platform} {request.type} part {position + 1}/{len(parts)} for user {user_id}"
            try:
                result = await self.engine.run(lambda part=part: self._attempt(user_id, part), label=label)
            except ConnectionFlowError as exc:
                report.parts.append(PartResult(position=position, attempts=getattr(exc, "attempts", 1), error=exc))
                report.error = exc
                break
            except Exception as exc:
                # Transport errors that slipped past the adapter still count as provider outages.
                logger.exception("Unexpected error publishing %s", label)
                error = ProviderUnavailable(f"{self.adapter.display_name} request failed")
                report.parts.append(PartResult(position=position, attempts=getattr(exc, "attempts", 1), error=error))
                report.error = error
                break

            item: PublishedItem = result.value
            report.parts.append(
                PartResult(position=position, attempts=result.attempts, content_id=item.content_id, url=item.url)
            )
            previous_id = item.content_id

        published = len(report.content_ids)
        if report.error is None:
            report.status = PublishStatus.PUBLISHED
        elif published:
            report.status = PublishStatus.PARTIAL
        logger.info(
            "Published %s/%s %s parts on %s for user %s",
            published,
            len(parts),
            request.type,
            platform,
            user_id,
        )
        return report

    async def _attempt(self, user_id: uuid.UUID, part: PublishPart) -> PublishedItem:
        credential = await self.refresher.ensure_fresh(user_id)
        return await self.adapter.publish(credential, part)

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

THREAD_PART_MAX_LENGTH = 280

PublishType = Literal["post", "thread", "poll", "page_post", "image_post", "video_visibility"]


class PollSpec(BaseModel):
    options: list[str] = Field(min_length=2, max_length=4)
    duration_minutes: int = Field(ge=5, le=10080)

    @model_validator(mode="after")
    def _check_options(self) -> "PollSpec":
        for option in self.options:
            if not option.strip() or len(option) > 25:
                raise ValueError("Poll options must be 1 to 25 characters")
        return self


class PublishRequest(BaseModel):
    type: PublishType
    text: str | None = Field(default=None, max_length=3000)
    media_ids: list[str] = Field(default_factory=list, max_length=4)
    thread: list[str] | None = Field(default=None, min_length=1, max_length=25)
    poll: PollSpec | None = None
    page_id: str | None = None
    link: str | None = None
    image_url: str | None = None
    video_id: str | None = None
    privacy_status: Literal["public", "private", "unlisted"] | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "PublishRequest":
        missing: list[str] = []
        if self.type in {"post", "poll", "page_post"} and not (self.text and self.text.strip()):
            missing.append("text")
        if self.type == "thread":
            if not self.thread:
                missing.append("thread")
            elif any(not part.strip() for part in self.thread):
                raise ValueError("Thread parts must not be empty")
            elif any(len(part) > THREAD_PART_MAX_LENGTH for part in self.thread):
                raise ValueError(f"Thread parts must be at most {THREAD_PART_MAX_LENGTH} characters")
        if self.type == "poll" and self.poll is None:
            missing.append("poll")
        if self.type == "poll" and self.media_ids:
            raise ValueError("Polls cannot carry media")
        if self.type == "page_post" and not self.page_id:
            missing.append("page_id")
        if self.type == "image_post" and not self.image_url:
            missing.append("image_url")
        if self.type == "video_visibility":
            if not self.video_id:
                missing.append("video_id")
            if not self.privacy_status:
                missing.append("privacy_status")
        if missing:
            raise ValueError(f"{self.type} requires: {', '.join(missing)}")
        return self


class ErrorBody(BaseModel):
    code: str
    message: str
    retryable: bool


class PublishedPartResponse(BaseModel):
    position: int
    attempts: int
    content_id: str | None = None
    url: str | None = None
    error: ErrorBody | None = None


class PublishResponse(BaseModel):
    success: bool
    status: Literal["published", "partial", "failed"]
    platform: str
    type: str
    content_ids: list[str]
    parts: list[PublishedPartResponse]
    error: ErrorBody | None = None

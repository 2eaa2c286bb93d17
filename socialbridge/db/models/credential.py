from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialbridge.db.base import Base, utcnow

if TYPE_CHECKING:
    from socialbridge.db.models.user import User


class Platform(str, Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    GOOGLE = "google"
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"


class CredentialStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


class PlatformCredential(Base):
    """One linked account per user per platform. Secret columns hold Fernet ciphertext."""

    __tablename__ = "platform_credentials"
    __table_args__ = (UniqueConstraint("user_id", "platform", name="uq_platform_credentials_user_platform"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    platform: Mapped[Platform] = mapped_column(SQLEnum(Platform), nullable=False)
    status: Mapped[CredentialStatus] = mapped_column(
        SQLEnum(CredentialStatus), default=CredentialStatus.PENDING, nullable=False
    )

    # Profile snapshot
    provider_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    handle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Encrypted secrets
    access_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    connected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # OAuth 1.0a handshake in flight
    pending_request_token: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    pending_request_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    pending_return_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    pending_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="credentials")

    @property
    def is_connected(self) -> bool:
        return self.access_secret is not None

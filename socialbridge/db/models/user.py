from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from fastapi_users_db_sqlalchemy import SQLAlchemyBaseUserTableUUID
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialbridge.db.base import Base, utcnow

if TYPE_CHECKING:
    from socialbridge.db.models.credential import PlatformCredential


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    # fastapi-users provides id, email, hashed_password, is_active,
    # is_superuser and is_verified.
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    # Relationships
    credentials: Mapped[list["PlatformCredential"]] = relationship(
        "PlatformCredential", back_populates="user", cascade="all, delete-orphan"
    )

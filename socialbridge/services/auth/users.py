from __future__ import annotations

import logging
import secrets
import uuid
from typing import Optional

from fastapi import Depends, Request
from fastapi_users import BaseUserManager, UUIDIDMixin, exceptions
from fastapi_users_db_sqlalchemy import SQLAlchemyUserDatabase
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from socialbridge.core.config import get_settings
from socialbridge.db.models.user import User
from socialbridge.db.session import get_async_session
from socialbridge.schemas.user import UserCreate

logger = logging.getLogger(__name__)

_settings = get_settings()


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = _settings.secret_key
    verification_token_secret = _settings.secret_key

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("Created user %s", user.id)


def user_manager_for(session: AsyncSession) -> UserManager:
    return UserManager(SQLAlchemyUserDatabase(session, User))


async def get_user_db(session: AsyncSession = Depends(get_async_session)):
    yield SQLAlchemyUserDatabase(session, User)


async def get_user_manager(user_db: SQLAlchemyUserDatabase = Depends(get_user_db)):
    yield UserManager(user_db)


async def get_user(session: AsyncSession, user_id: uuid.UUID) -> User | None:
    return await SQLAlchemyUserDatabase(session, User).get(user_id)


async def get_or_create_user_by_email(
    session: AsyncSession,
    email: str,
    *,
    display_name: str | None = None,
) -> User:
    """Find the platform user owning ``email``, creating one on first sign-in.

    Users created here sign in through a provider only, so their password is
    random and never shown.
    """
    manager = user_manager_for(session)
    try:
        return await manager.get_by_email(email)
    except exceptions.UserNotExists:
        pass

    user_create = UserCreate(
        email=email.strip().lower(),
        password=secrets.token_urlsafe(32),
        display_name=display_name,
        is_verified=True,
    )
    try:
        return await manager.create(user_create)
    except (exceptions.UserAlreadyExists, IntegrityError):
        # A concurrent sign-in created the same user first.
        await session.rollback()
        return await manager.get_by_email(email)

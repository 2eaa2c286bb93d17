from __future__ import annotations

import uuid

from fastapi import Depends
from fastapi_users import FastAPIUsers
from sqlalchemy.ext.asyncio import AsyncSession

from socialbridge.core.config import get_settings
from socialbridge.core.errors import AuthenticationRequired
from socialbridge.db.models.user import User
from socialbridge.db.session import get_async_session
from socialbridge.services.auth.backend import auth_backend
from socialbridge.services.auth.users import get_user, get_user_manager

_settings = get_settings()

fastapi_users = FastAPIUsers[User, uuid.UUID](
    get_user_manager,
    [auth_backend],
)

current_optional_user = fastapi_users.current_user(active=True, optional=True)

# Development user - used when dev_mode is enabled
DEV_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
DEV_USER_EMAIL = "dev@example.com"


async def get_optional_user(
    user: User | None = Depends(current_optional_user),
    session: AsyncSession = Depends(get_async_session),
) -> User | None:
    """Resolve the caller from a bearer session token; dev mode falls back to the dev user."""
    if user is None and _settings.dev_mode:
        return await get_user(session, DEV_USER_ID)
    return user


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthenticationRequired()
    return user

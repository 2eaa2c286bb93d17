from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from socialbridge.api.v1.router import api_v1_router
from socialbridge.core.config import get_settings
from socialbridge.core.errors import ConnectionFlowError, connection_error_handler
from socialbridge.core.http import create_http_client, set_http_client
from socialbridge.core.logging import configure_logging
from socialbridge.db.session import engine, init_models

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    # Create database tables
    await init_models()

    # Create dev user if in dev mode
    if settings.dev_mode:
        from sqlalchemy import select
        from socialbridge.api.v1.deps import DEV_USER_EMAIL, DEV_USER_ID
        from socialbridge.db.models.user import User
        from socialbridge.db.session import async_session_maker

        async with async_session_maker() as session:
            result = await session.execute(select(User).where(User.id == DEV_USER_ID))
            dev_user = result.scalar_one_or_none()

            if not dev_user:
                dev_user = User(
                    id=DEV_USER_ID,
                    email=DEV_USER_EMAIL,
                    display_name="Dev User",
                    hashed_password="",
                    is_active=True,
                    is_verified=True,
                )
                session.add(dev_user)
                await session.commit()
                logger.info("Dev user created: %s (ID: %s)", dev_user.email, dev_user.id)

    # Setup HTTP client
    client = create_http_client(settings)
    set_http_client(client)

    try:
        yield
    finally:
        set_http_client(None)
        await client.aclose()
        await engine.dispose()


def create_app() -> FastAPI:
    settings = get_settings()

    # Setup rate limiter
    limiter = Limiter(key_func=get_remote_address)

    app = FastAPI(
        title="socialbridge api",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings in app state
    app.state.settings = settings

    # Add rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ConnectionFlowError, connection_error_handler)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(api_v1_router, prefix="/api/v1")
    return app


app = create_app()

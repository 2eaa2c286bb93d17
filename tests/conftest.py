import os

os.environ.setdefault("SOCIALBRIDGE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SOCIALBRIDGE_DEV_MODE", "false")
os.environ.setdefault("SOCIALBRIDGE_TWITTER_CONSUMER_KEY", "tw-consumer-key")
os.environ.setdefault("SOCIALBRIDGE_TWITTER_CONSUMER_SECRET", "tw-consumer-secret")
os.environ.setdefault("SOCIALBRIDGE_GOOGLE_CLIENT_ID", "google-client-id")
os.environ.setdefault("SOCIALBRIDGE_GOOGLE_CLIENT_SECRET", "google-client-secret")
os.environ.setdefault("SOCIALBRIDGE_LINKEDIN_CLIENT_ID", "li-client-id")
os.environ.setdefault("SOCIALBRIDGE_LINKEDIN_CLIENT_SECRET", "li-client-secret")
os.environ.setdefault("SOCIALBRIDGE_FACEBOOK_APP_ID", "fb-app-id")
os.environ.setdefault("SOCIALBRIDGE_FACEBOOK_APP_SECRET", "fb-app-secret")

from datetime import datetime  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from socialbridge.core.cache import make_lock_registry  # noqa: E402
from socialbridge.core.config import get_settings  # noqa: E402
from socialbridge.core.http import set_http_client  # noqa: E402
from socialbridge.core.security import encrypt_token  # noqa: E402
from socialbridge.db.base import Base  # noqa: E402
from socialbridge.db.models.credential import CredentialStatus, Platform, PlatformCredential  # noqa: E402
from socialbridge.db.models.user import User  # noqa: E402


@pytest.fixture
def settings():
    return get_settings()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "socialbridge.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def user(session):
    user = User(email="creator@example.com", display_name="Creator", hashed_password="")
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def http_client():
    client = httpx.AsyncClient(timeout=5.0)
    set_http_client(client)
    yield client
    set_http_client(None)
    await client.aclose()


@pytest.fixture
def lock_registry():
    return make_lock_registry(maxsize=100, ttl_seconds=60)


@pytest.fixture
def make_credential(session):
    async def _make(
        user,
        platform: Platform,
        *,
        access: str = "access-token",
        token_secret: str | None = None,
        refresh: str | None = None,
        expires_at: datetime | None = None,
        status: CredentialStatus = CredentialStatus.ACTIVE,
        extra: dict | None = None,
        provider_user_id: str = "provider-1",
    ) -> PlatformCredential:
        credential = PlatformCredential(
            user_id=user.id,
            platform=platform,
            status=status,
            provider_user_id=provider_user_id,
            handle="creator",
            access_secret=encrypt_token(access),
            access_token_secret=encrypt_token(token_secret) if token_secret else None,
            refresh_secret=encrypt_token(refresh) if refresh else None,
            expires_at=expires_at,
            extra=extra or {},
            connected_at=datetime(2026, 1, 1),
        )
        session.add(credential)
        await session.commit()
        return credential

    return _make

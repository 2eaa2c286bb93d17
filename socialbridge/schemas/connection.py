from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from socialbridge.db.models.credential import CredentialStatus, Platform


class AuthorizeRequest(BaseModel):
    redirect_uri: str | None = None


class AuthorizeResponse(BaseModel):
    authorization_url: str
    state: str


class AccountSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_user_id: str | None
    handle: str | None
    display_name: str | None
    avatar_url: str | None
    email: str | None
    connected_at: datetime | None
    expires_at: datetime | None


class ConnectionStatusResponse(BaseModel):
    platform: Platform
    connected: bool
    expired: bool = False
    account: AccountSnapshot | None = None


class ConnectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    platform: Platform
    status: CredentialStatus
    provider_user_id: str | None
    handle: str | None
    display_name: str | None
    avatar_url: str | None
    connected_at: datetime | None
    expires_at: datetime | None


class ConnectionListResponse(BaseModel):
    items: list[ConnectionResponse]


class AvailablePlatformResponse(BaseModel):
    platform: str
    name: str
    family: str
    supports_login: bool
    publish_types: list[str]


class DisconnectResponse(BaseModel):
    success: bool
    platform: Platform

from __future__ import annotations

from socialbridge.db.models.credential import CredentialStatus, Platform, PlatformCredential
from socialbridge.db.models.user import User

__all__ = [
    "User",
    "PlatformCredential",
    "Platform",
    "CredentialStatus",
]

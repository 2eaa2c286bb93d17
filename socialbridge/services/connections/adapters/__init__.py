from __future__ import annotations

# Import to register adapters
from socialbridge.services.connections.adapters import (  # noqa: F401
    facebook,
    google,
    instagram,
    linkedin,
    twitter,
    youtube,
)
from socialbridge.services.connections.adapters.base import (
    AccessCredential,
    AdapterFamily,
    AuthorizationRequest,
    Oauth1Adapter,
    Oauth2Adapter,
    PlatformAdapter,
    ProfileSummary,
    PublishedItem,
    PublishPart,
    TokenGrant,
)
from socialbridge.services.connections.adapters.registry import (
    get_adapter,
    get_adapter_class,
    list_available_platforms,
    register_adapter,
)

__all__ = [
    "AccessCredential",
    "AdapterFamily",
    "AuthorizationRequest",
    "Oauth1Adapter",
    "Oauth2Adapter",
    "PlatformAdapter",
    "ProfileSummary",
    "PublishedItem",
    "PublishPart",
    "TokenGrant",
    "get_adapter",
    "get_adapter_class",
    "list_available_platforms",
    "register_adapter",
]

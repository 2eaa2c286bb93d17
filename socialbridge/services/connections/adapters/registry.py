from __future__ import annotations

from typing import Type

import httpx

from socialbridge.core.config import Settings, get_settings
from socialbridge.core.errors import PlatformNotConfigured, UnknownPlatform
from socialbridge.db.models.credential import Platform
from socialbridge.services.connections.adapters.base import PlatformAdapter

# Registry mapping platforms to adapter classes
_adapter_registry: dict[Platform, Type[PlatformAdapter]] = {}


def register_adapter(platform: Platform):
    """Decorator to register a platform adapter."""

    def decorator(cls: Type[PlatformAdapter]):
        _adapter_registry[platform] = cls
        cls.platform = platform
        return cls

    return decorator


def get_adapter_class(platform: str | Platform) -> Type[PlatformAdapter] | None:
    """Get the adapter class for a platform name."""
    try:
        key = Platform(platform)
    except ValueError:
        return None
    return _adapter_registry.get(key)


def get_adapter(
    platform: str | Platform,
    *,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    require_configured: bool = True,
) -> PlatformAdapter:
    adapter_class = get_adapter_class(platform)
    if adapter_class is None:
        raise UnknownPlatform(f"Unknown platform: {platform}")
    adapter = adapter_class(settings=settings, http_client=http_client)
    if require_configured and not adapter.is_configured():
        raise PlatformNotConfigured(f"{adapter.display_name} is not configured on this server")
    return adapter


def list_available_platforms(settings: Settings | None = None) -> list[dict]:
    """List configured platforms with metadata."""
    settings = settings or get_settings()
    platforms = []
    for platform, adapter_class in _adapter_registry.items():
        adapter = adapter_class(settings=settings)
        if not adapter.is_configured():
            continue
        platforms.append(
            {
                "platform": platform.value,
                "name": adapter.display_name,
                "family": adapter.family.value,
                "supports_login": adapter.supports_login,
                "publish_types": sorted(adapter.publish_kinds),
            }
        )
    return platforms

from __future__ import annotations

# Import to register adapters
from socialbridge.services.connections import adapters  # noqa: F401

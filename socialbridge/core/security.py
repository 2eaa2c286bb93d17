from __future__ import annotations

import re
from typing import Any

from cryptography.fernet import Fernet

from socialbridge.core.config import get_settings

_settings = get_settings()
_fernet = Fernet(_settings.encryption_key.encode())

REDACTED_VALUE = "[REDACTED]"

_SECRET_KEY_HINTS = ("token", "secret", "password", "verifier", "authorization")

_SECRET_VALUE_PATTERNS = [
    re.compile(r"ya29\.[A-Za-z0-9_\-\.]+"),  # Google access tokens
    re.compile(r"1//[A-Za-z0-9_\-]{20,}"),  # Google refresh tokens
    re.compile(r"EAA[A-Za-z0-9]{20,}"),  # Meta tokens
    re.compile(r"AQ[A-Za-z0-9_\-]{40,}"),  # LinkedIn tokens
    re.compile(r"(?i)bearer\s+[A-Za-z0-9_\-\.=]+"),
    re.compile(r"(?i)(oauth_token(?:_secret)?|oauth_verifier|access_token|refresh_token|code)=[^&\s]+"),
]


def encrypt_token(token: str) -> str:
    """Encrypt a token string using Fernet."""
    return _fernet.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt an encrypted token string."""
    return _fernet.decrypt(encrypted_token.encode()).decode()


def redact_text(text: str | None) -> str:
    """Mask token-like substrings in free text taken from provider responses."""
    if not text:
        return ""
    redacted = text
    for pattern in _SECRET_VALUE_PATTERNS:
        redacted = pattern.sub(_mask_match, redacted)
    return redacted


def _mask_match(match: re.Match[str]) -> str:
    value = match.group(0)
    if "=" in value:
        key = value.split("=", 1)[0]
        return f"{key}={REDACTED_VALUE}"
    return REDACTED_VALUE


def redact_mapping(data: Any) -> Any:
    """Recursively mask values whose key looks like a secret."""
    if isinstance(data, dict):
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            if any(hint in str(key).lower() for hint in _SECRET_KEY_HINTS):
                cleaned[key] = REDACTED_VALUE
            else:
                cleaned[key] = redact_mapping(value)
        return cleaned
    if isinstance(data, list):
        return [redact_mapping(item) for item in data]
    if isinstance(data, str):
        return redact_text(data)
    return data

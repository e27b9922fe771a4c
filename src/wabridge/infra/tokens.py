"""Credential and identifier generation for devices.

- API keys: "wa_" + 40 hex chars (20 random bytes). Unique index in DB.
- Device tokens: "dev_" + 32 hex chars.
- Session IDs: "<prefix>_<unix seconds>_<4 digits>", readable in provider logs.
"""

import hashlib
import secrets
import time

API_KEY_PREFIX = "wa_"
DEVICE_TOKEN_PREFIX = "dev_"


def generate_token(length: int = 32) -> str:
    """Hex token from `length` random bytes."""
    return secrets.token_hex(length)


def generate_api_key() -> str:
    return API_KEY_PREFIX + generate_token(20)


def generate_device_token() -> str:
    return DEVICE_TOKEN_PREFIX + generate_token(16)


def generate_session_id(prefix: str = "wa") -> str:
    """Generate a provider session id, e.g. "wa_1760000000_4821"."""
    return f"{prefix}_{int(time.time())}_{secrets.randbelow(9000) + 1000}"


def hash_identifier(value: str) -> str:
    """Non-reversible short hash (first 16 chars of sha256) for file names and logs."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]

"""Authentication dependencies for the REST API.

Two credentials:
- Device API key (X-API-Key header, or Authorization: Bearer <key>):
  resolves the calling device. Retired devices never authenticate.
- Operator admin key (X-Admin-Key header) compared in constant time with
  ADMIN_API_KEY. Fail-closed: with ADMIN_API_KEY unset every operator
  request is rejected.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Depends, HTTPException, Request

from wabridge.infra.db import txn
from wabridge.infra.repositories import devices_repository
from wabridge.infra.repositories.devices_repository import Device
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import log_context, mask_api_key

logger = get_logger(__name__)

API_KEY_HEADER = "X-API-Key"
ADMIN_KEY_HEADER = "X-Admin-Key"


def extract_api_key(request: Request) -> str | None:
    """Device API key from X-API-Key, else from a Bearer Authorization header."""
    api_key = request.headers.get(API_KEY_HEADER, "").strip()
    if api_key:
        return api_key
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _get_device_by_api_key(api_key: str) -> Device | None:
    with txn() as cur:
        return devices_repository.get_active_device_by_api_key(cur, api_key)


def get_current_device(request: Request) -> Device:
    """FastAPI dependency: the device owning the presented API key.

    Raises:
        HTTPException: 401 if the key is missing or unknown.
    """
    api_key = extract_api_key(request)
    if not api_key:
        raise HTTPException(status_code=401, detail="API key required")

    device = _get_device_by_api_key(api_key)
    if device is None:
        logger.warning(
            "invalid api key",
            extra={"extra_fields": log_context(api_key=mask_api_key(api_key))},
        )
        raise HTTPException(status_code=401, detail="Invalid API key")
    return device


def require_admin(request: Request) -> None:
    """FastAPI dependency: operator endpoints.

    Raises:
        HTTPException: 401 if ADMIN_API_KEY is unset or the header mismatches.
    """
    expected = os.environ.get("ADMIN_API_KEY", "")
    if not expected:
        logger.error("ADMIN_API_KEY not configured - rejecting operator request")
        raise HTTPException(status_code=401, detail="Unauthorized")

    presented = request.headers.get(ADMIN_KEY_HEADER, "")
    if not presented or not hmac.compare_digest(presented, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


CurrentDeviceDep = Depends(get_current_device)
AdminDep = Depends(require_admin)

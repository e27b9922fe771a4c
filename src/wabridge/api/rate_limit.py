"""Per-client-IP sliding-window rate limit for the public REST API.

Each client gets a small JSON file (list of unix timestamps) under
RATE_LIMIT_DIR. Coarse and advisory: the lock below only serializes
requests inside one process.

Env vars:
- API_RATE_LIMIT: requests per window (default 100)
- RATE_LIMIT_WINDOW: window in seconds (default 60)
- RATE_LIMIT_DIR: storage directory (default: <tmp>/wabridge-rate-limit)
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from pathlib import Path

from fastapi import Depends, HTTPException, Request

from wabridge.infra.tokens import hash_identifier
from wabridge.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_WINDOW = 60

_lock = threading.Lock()


def _storage_dir() -> Path:
    configured = os.environ.get("RATE_LIMIT_DIR")
    if configured:
        return Path(configured)
    return Path(tempfile.gettempdir()) / "wabridge-rate-limit"


def _read_timestamps(path: Path) -> list[float]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return []
    if not isinstance(data, list):
        return []
    return [float(t) for t in data if isinstance(t, (int, float))]


def check_rate_limit(
    identifier: str,
    limit: int | None = None,
    window: int | None = None,
    now: float | None = None,
) -> bool:
    """Record one request for `identifier` if it is under the limit.

    Returns:
        True if the request is allowed, False if the window is full
        (a rejected request is not recorded).
    """
    if limit is None:
        limit = int(os.environ.get("API_RATE_LIMIT", str(DEFAULT_LIMIT)))
    if window is None:
        window = int(os.environ.get("RATE_LIMIT_WINDOW", str(DEFAULT_WINDOW)))
    if now is None:
        now = time.time()

    directory = _storage_dir()
    path = directory / f"rate_limit_{hash_identifier(identifier)}.json"

    with _lock:
        recent = [t for t in _read_timestamps(path) if now - t < window]
        if len(recent) >= limit:
            return False
        recent.append(now)
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(recent), encoding="utf-8")
    return True


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency: 429 once the client IP exhausts its window."""
    if not check_rate_limit(client_ip(request)):
        logger.warning(
            "rate limit exceeded",
            extra={"extra_fields": {"path": request.url.path}},
        )
        raise HTTPException(status_code=429, detail="Rate limit exceeded")


RateLimitDep = Depends(enforce_rate_limit)

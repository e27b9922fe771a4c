"""HTTP client for the provider (WhatsApp engine) REST API.

All calls are synchronous JSON over HTTP, authenticated with the
`x-api-key` header. Transport failures raise ProviderError; any HTTP
response (2xx or not) is returned as a ProviderResponse so callers can
surface the provider's own error message.

Security: NEVER log recipient numbers or message text. Only log session
ids, counts and lengths.
"""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from typing import Any

import requests

from wabridge.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PROVIDER_API_URL = "http://localhost:3000/api"
DEFAULT_PROVIDER_TIMEOUT = 30


class ProviderError(Exception):
    """Provider unreachable (DNS, connect, timeout, invalid URL)."""


@dataclass
class ProviderResponse:
    status_code: int
    data: dict[str, Any] | None
    raw: str = field(default="", repr=False)

    @property
    def ok(self) -> bool:
        """True for HTTP 200 with `"success": true` in the body."""
        return self.status_code == 200 and bool((self.data or {}).get("success"))

    @property
    def error_message(self) -> str:
        """Provider error text, or a generic message naming the status."""
        data = self.data or {}
        message = data.get("error") or data.get("message")
        if message:
            return str(message)
        return f"Provider returned HTTP {self.status_code}"


def _get_config() -> dict[str, Any]:
    """Provider config from environment.

    Optional env vars:
    - PROVIDER_API_URL: base URL (default: http://localhost:3000/api)
    - PROVIDER_API_KEY: fallback API key when no device key is given
    - PROVIDER_API_TIMEOUT: seconds (default: 30)
    """
    return {
        "base_url": os.environ.get("PROVIDER_API_URL", DEFAULT_PROVIDER_API_URL).rstrip("/"),
        "api_key": os.environ.get("PROVIDER_API_KEY", ""),
        "timeout": int(os.environ.get("PROVIDER_API_TIMEOUT", str(DEFAULT_PROVIDER_TIMEOUT))),
    }


class ProviderClient:
    """Thin wrapper over the provider REST endpoints.

    Args:
        api_key: Key sent as `x-api-key` (a device API key). Falls back to
            PROVIDER_API_KEY.
        base_url: Overrides PROVIDER_API_URL.
        timeout: Overrides PROVIDER_API_TIMEOUT.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: int | None = None,
    ) -> None:
        config = _get_config()
        self.base_url = (base_url or config["base_url"]).rstrip("/")
        self.timeout = timeout if timeout is not None else config["timeout"]
        self.api_key = api_key or config["api_key"]

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(
                method,
                url,
                json=payload if method in ("POST", "PUT", "PATCH") else None,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(
                "provider request failed",
                extra={
                    "extra_fields": {
                        "method": method,
                        "endpoint": endpoint,
                        "error_type": type(e).__name__,
                    }
                },
            )
            raise ProviderError(f"Provider request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = None

        if response.status_code >= 400:
            logger.warning(
                "provider returned error status",
                extra={
                    "extra_fields": {
                        "method": method,
                        "endpoint": endpoint,
                        "status_code": response.status_code,
                    }
                },
            )

        return ProviderResponse(
            status_code=response.status_code,
            data=data,
            raw=response.text,
        )

    # Session endpoints

    def create_session(
        self, session_id: str, config: dict[str, Any] | None = None
    ) -> ProviderResponse:
        return self._request(
            "POST",
            "/auth/create-session",
            {"sessionId": session_id, "config": config or {}},
        )

    def connect_session(self, session_id: str) -> ProviderResponse:
        return self._request("POST", "/auth/connect", {"sessionId": session_id})

    def get_session_status(self, session_id: str) -> ProviderResponse:
        return self._request("GET", f"/auth/status/{session_id}")

    def get_qr_code(self, session_id: str) -> ProviderResponse:
        return self._request("GET", f"/auth/qr/{session_id}")

    def disconnect_session(self, session_id: str) -> ProviderResponse:
        return self._request("POST", "/auth/disconnect", {"sessionId": session_id})

    def logout_session(self, session_id: str) -> ProviderResponse:
        return self._request("POST", "/auth/logout", {"sessionId": session_id})

    # Message endpoints

    def send_text_message(
        self,
        session_id: str,
        to: list[str],
        text: str,
        options: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        logger.info(
            "sending text via provider",
            extra={
                "extra_fields": {
                    "session_id": session_id,
                    "recipient_count": len(to),
                    "text_len": len(text),
                }
            },
        )
        return self._request(
            "POST",
            "/message/send-text",
            {"sessionId": session_id, "to": to, "text": text, "options": options or {}},
        )

    def send_media_message(
        self,
        session_id: str,
        to: list[str],
        media: bytes,
        media_type: str,
        options: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        """Send media bytes, base64-encoded in the JSON body."""
        logger.info(
            "sending media via provider",
            extra={
                "extra_fields": {
                    "session_id": session_id,
                    "recipient_count": len(to),
                    "media_type": media_type,
                    "media_bytes": len(media),
                }
            },
        )
        return self._request(
            "POST",
            "/message/send-media",
            {
                "sessionId": session_id,
                "to": to,
                "type": media_type,
                "media": base64.b64encode(media).decode("ascii"),
                "options": options or {},
            },
        )

    def send_location(
        self,
        session_id: str,
        to: list[str],
        latitude: float,
        longitude: float,
        name: str = "",
        address: str = "",
    ) -> ProviderResponse:
        return self._request(
            "POST",
            "/message/send-location",
            {
                "sessionId": session_id,
                "to": to,
                "latitude": latitude,
                "longitude": longitude,
                "name": name,
                "address": address,
            },
        )

    def send_contact(
        self, session_id: str, to: list[str], contacts: list[dict[str, Any]]
    ) -> ProviderResponse:
        return self._request(
            "POST",
            "/message/send-contact",
            {"sessionId": session_id, "to": to, "contacts": contacts},
        )

    def health_check(self) -> ProviderResponse:
        return self._request("GET", "/health")

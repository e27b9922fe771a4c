"""Device lifecycle and outbound sends through the provider.

Each operation talks to the provider first and records the result in the
database afterwards, in its own short transaction. Provider failures raise
ProviderRejectedError (non-ok response) or ProviderError (unreachable);
routes map both to 502.

Security: NEVER log recipient numbers or message text.
"""

from __future__ import annotations

import json
import os
from typing import Any

import requests

from wabridge.domain.phone import normalize_phone_number
from wabridge.domain.statuses import DeviceStatus, map_provider_state
from wabridge.domain.urls import is_valid_webhook_url
from wabridge.infra.db import txn
from wabridge.infra.repositories import devices_repository, messages_repository
from wabridge.infra.repositories.devices_repository import Device
from wabridge.infra.tokens import (
    generate_api_key,
    generate_device_token,
    generate_session_id,
)
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import log_context
from wabridge.whatsapp.provider_client import ProviderClient, ProviderError, ProviderResponse

logger = get_logger(__name__)

DEFAULT_MAX_MEDIA_BYTES = 10 * 1024 * 1024
MEDIA_DOWNLOAD_TIMEOUT = 30
MEDIA_TYPES = ("image", "video", "audio", "document")


class SessionIdTakenError(Exception):
    """Requested session id already belongs to a device."""


class ProviderRejectedError(Exception):
    """Provider answered, but not with success."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidRecipientError(ValueError):
    """A recipient phone number failed normalization."""


class MediaFetchError(Exception):
    """Media URL could not be downloaded (or exceeds MAX_MEDIA_BYTES)."""


def _max_media_bytes() -> int:
    return int(os.environ.get("MAX_MEDIA_BYTES", str(DEFAULT_MAX_MEDIA_BYTES)))


def _client(device: Device | None = None) -> ProviderClient:
    """Provider client keyed with the device API key when there is one."""
    return ProviderClient(api_key=device.api_key if device else None)


def _require_ok(response: ProviderResponse, action: str) -> dict[str, Any]:
    """Return the provider `data` object or raise ProviderRejectedError."""
    if not response.ok:
        raise ProviderRejectedError(
            f"Failed to {action}: {response.error_message}",
            status_code=response.status_code,
        )
    inner = (response.data or {}).get("data")
    return inner if isinstance(inner, dict) else {}


def _require_status_200(response: ProviderResponse, action: str) -> dict[str, Any]:
    """Like _require_ok, but only the HTTP status is checked."""
    if response.status_code != 200:
        raise ProviderRejectedError(
            f"Failed to {action}: {response.error_message}",
            status_code=response.status_code,
        )
    inner = (response.data or {}).get("data")
    return inner if isinstance(inner, dict) else {}


# Device lifecycle


def create_device(
    *,
    device_name: str,
    webhook_url: str | None = None,
    note: str | None = None,
    session_id: str | None = None,
    config: dict[str, Any] | None = None,
) -> Device:
    """Register a device and create its provider session.

    If the provider rejects the session (or is unreachable), the new device
    is retired and the error is raised.

    Raises:
        ValueError: If webhook_url is set and not an absolute http(s) URL.
        SessionIdTakenError: If session_id is already used.
        ProviderRejectedError / ProviderError: Provider failure.
    """
    if webhook_url and not is_valid_webhook_url(webhook_url):
        raise ValueError("Invalid webhook URL")

    with txn() as cur:
        if session_id and devices_repository.session_id_exists(cur, session_id):
            raise SessionIdTakenError("Session ID already exists")
        device = devices_repository.create_device(
            cur,
            device_name=device_name,
            session_id=session_id or generate_session_id(),
            api_key=generate_api_key(),
            device_token=generate_device_token(),
            webhook_url=webhook_url or None,
            note=note or None,
        )

    try:
        _require_ok(
            _client(device).create_session(device.session_id, config),
            "create session",
        )
    except (ProviderRejectedError, ProviderError):
        with txn() as cur:
            devices_repository.retire_device(cur, device.id)
        logger.warning(
            "provider rejected new session, device retired",
            extra={"extra_fields": log_context(device_id=device.id, session_id=device.session_id)},
        )
        raise

    logger.info(
        "device created",
        extra={"extra_fields": log_context(device_id=device.id, session_id=device.session_id)},
    )
    return device


def connect_device(device: Device) -> None:
    """Ask the provider to start pairing; device goes to `connecting`."""
    _require_ok(_client(device).connect_session(device.session_id), "connect session")
    with txn() as cur:
        devices_repository.update_device_status(cur, device.id, DeviceStatus.CONNECTING)
    logger.info(
        "session connection initiated",
        extra={"extra_fields": log_context(device_id=device.id, session_id=device.session_id)},
    )


def disconnect_device(device: Device) -> None:
    _require_status_200(
        _client(device).disconnect_session(device.session_id), "disconnect session"
    )
    with txn() as cur:
        devices_repository.update_device_status(cur, device.id, DeviceStatus.DISCONNECTED)
    logger.info(
        "session disconnected",
        extra={"extra_fields": log_context(device_id=device.id, session_id=device.session_id)},
    )


def refresh_status(device: Device) -> dict[str, Any]:
    """Fetch the provider state, map it and sync the device row.

    An unknown provider state leaves the stored status untouched.
    """
    data = _require_status_200(
        _client(device).get_session_status(device.session_id), "get session status"
    )
    node_status = str(data.get("state") or "DISCONNECTED")
    connection_status = map_provider_state(node_status)
    phone = data.get("phone")

    with txn() as cur:
        devices_repository.update_device_status(
            cur,
            device.id,
            connection_status.to_device_status(),
            phone_number=str(phone) if phone else None,
        )

    return {
        "status": connection_status.value,
        "node_status": node_status,
        "phone": phone,
        "data": data,
    }


def get_qr(device: Device) -> dict[str, Any]:
    data = _require_status_200(_client(device).get_qr_code(device.session_id), "get QR code")
    return {"qr_code": data.get("qr"), "qr_url": data.get("qrUrl")}


def retire_device(device: Device) -> bool:
    """Disconnect at the provider (best effort), then soft-delete."""
    try:
        _client(device).disconnect_session(device.session_id)
    except ProviderError:
        logger.warning(
            "provider disconnect failed before retire",
            extra={"extra_fields": log_context(device_id=device.id, session_id=device.session_id)},
        )

    with txn() as cur:
        retired = devices_repository.retire_device(cur, device.id)
    if retired:
        logger.info(
            "device retired",
            extra={"extra_fields": log_context(device_id=device.id, session_id=device.session_id)},
        )
    return retired


# Outbound sends


def normalize_recipients(to: str | list[str]) -> list[str]:
    """Normalize one or many recipient numbers.

    Raises:
        InvalidRecipientError: On the first number that fails normalization.
    """
    recipients = to if isinstance(to, list) else [to]
    if not recipients:
        raise InvalidRecipientError("At least one recipient is required")

    normalized: list[str] = []
    for phone in recipients:
        number = normalize_phone_number(str(phone))
        if number is None:
            raise InvalidRecipientError(f"Invalid phone number: {phone}")
        normalized.append(number)
    return normalized


def _provider_message_id(data: dict[str, Any]) -> str:
    for key in ("messageId", "id"):
        value = data.get(key)
        if value:
            return str(value)
    return ""


def _store_outgoing(
    device: Device,
    recipients: list[str],
    *,
    provider_message_id: str,
    message_type: str,
    content: str,
    media_url: str | None = None,
    caption: str | None = None,
) -> None:
    with txn() as cur:
        for recipient in recipients:
            messages_repository.insert_outgoing_message(
                cur,
                device_id=device.id,
                session_id=device.session_id,
                provider_message_id=provider_message_id,
                message_type=message_type,
                counterpart_number=recipient,
                content=content,
                media_url=media_url,
                caption=caption,
            )


def send_text(
    device: Device,
    to: str | list[str],
    text: str,
    options: dict[str, Any] | None = None,
) -> dict[str, Any]:
    recipients = normalize_recipients(to)
    data = _require_ok(
        _client(device).send_text_message(device.session_id, recipients, text, options),
        "send message",
    )
    _store_outgoing(
        device,
        recipients,
        provider_message_id=_provider_message_id(data),
        message_type="text",
        content=text,
    )
    return {"data": data, "recipients": recipients}


def fetch_media(url: str) -> bytes:
    """Download media from an http(s) URL, capped at MAX_MEDIA_BYTES.

    Raises:
        MediaFetchError: Invalid URL, transport/HTTP error, or too large.
    """
    if not is_valid_webhook_url(url):
        raise MediaFetchError("media_url must be an absolute http(s) URL")

    limit = _max_media_bytes()
    try:
        with requests.get(url, stream=True, timeout=MEDIA_DOWNLOAD_TIMEOUT) as response:
            response.raise_for_status()
            chunks: list[bytes] = []
            size = 0
            for chunk in response.iter_content(chunk_size=64 * 1024):
                size += len(chunk)
                if size > limit:
                    raise MediaFetchError(f"Media exceeds {limit} bytes")
                chunks.append(chunk)
    except requests.RequestException as e:
        raise MediaFetchError(f"Failed to download media from URL: {type(e).__name__}") from e
    return b"".join(chunks)


def send_media(
    device: Device,
    to: str | list[str],
    media_url: str,
    media_type: str,
    caption: str = "",
    options: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if media_type not in MEDIA_TYPES:
        raise ValueError("Invalid media type. Allowed: " + ", ".join(MEDIA_TYPES))
    recipients = normalize_recipients(to)
    media = fetch_media(media_url)

    media_options = {**(options or {}), "caption": caption}
    file_name = media_url.rstrip("/").rsplit("/", 1)[-1]
    if file_name:
        media_options["fileName"] = file_name

    data = _require_ok(
        _client(device).send_media_message(
            device.session_id, recipients, media, media_type, media_options
        ),
        "send media message",
    )
    _store_outgoing(
        device,
        recipients,
        provider_message_id=_provider_message_id(data),
        message_type=media_type,
        content=caption,
        media_url=media_url,
        caption=caption or None,
    )
    return {"data": data, "recipients": recipients}


def send_location(
    device: Device,
    to: str | list[str],
    latitude: float,
    longitude: float,
    name: str = "",
    address: str = "",
) -> dict[str, Any]:
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValueError("Invalid coordinates")
    recipients = normalize_recipients(to)
    data = _require_ok(
        _client(device).send_location(
            device.session_id, recipients, latitude, longitude, name, address
        ),
        "send location",
    )
    _store_outgoing(
        device,
        recipients,
        provider_message_id=_provider_message_id(data),
        message_type="location",
        content=json.dumps(
            {"latitude": latitude, "longitude": longitude, "name": name, "address": address}
        ),
    )
    return {"data": data, "recipients": recipients}


def send_contact(
    device: Device,
    to: str | list[str],
    contacts: list[dict[str, Any]],
) -> dict[str, Any]:
    """Send contact cards. Each contact needs `name` and `phone`."""
    if not contacts:
        raise ValueError("contacts must be a non-empty array")
    for contact in contacts:
        if "name" not in contact or "phone" not in contact:
            raise ValueError("Each contact must have name and phone")
    recipients = normalize_recipients(to)
    data = _require_ok(
        _client(device).send_contact(device.session_id, recipients, contacts),
        "send contact",
    )
    _store_outgoing(
        device,
        recipients,
        provider_message_id=_provider_message_id(data),
        message_type="contact",
        content=", ".join(str(c["name"]) for c in contacts),
    )
    return {"data": data, "recipients": recipients}


def provider_healthy() -> bool:
    """True if the provider /health answers 200."""
    try:
        return _client().health_check().status_code == 200
    except ProviderError:
        return False

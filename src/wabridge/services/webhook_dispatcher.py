"""Outbound webhook delivery to device callback URLs.

One POST per call, no retries, no queue. Every attempt (empty URL
excluded) is recorded as exactly one webhook_logs row, written in its own
short transaction after the HTTP call returns.

Security: payloads may carry message text and phone numbers. They are
stored in webhook_logs but NEVER written to the application log.
"""

from __future__ import annotations

import json
import os
import time
from enum import Enum
from typing import Any

import requests

from wabridge.infra.db import txn
from wabridge.infra.repositories import webhook_logs_repository
from wabridge.infra.repositories.devices_repository import Device
from wabridge.infra.time import iso_timestamp
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import log_context
from wabridge.whatsapp.models import (
    AuthFailure,
    ConnectionState,
    ContactInfo,
    EventType,
    GroupInfo,
    InboundMessage,
    NormalizedEvent,
    QrPayload,
)

logger = get_logger(__name__)

BRIDGE_VERSION = "1.0.0"
DEFAULT_BRIDGE_NAME = "WhatsApp-Bridge"
DEFAULT_WEBHOOK_TIMEOUT = 30

# Stored response bodies are cut at 64 KiB
MAX_RESPONSE_BODY = 64 * 1024

# Outbound event names (inbound "message" is delivered as "message_received")
OUTBOUND_EVENT_NAMES: dict[EventType, str] = {
    EventType.MESSAGE: "message_received",
    EventType.CONNECTION_UPDATE: "connection_update",
    EventType.QR_CODE: "qr_code",
    EventType.AUTH_FAILURE: "auth_failure",
    EventType.CONTACT_UPDATE: "contact_update",
    EventType.GROUP_UPDATE: "group_update",
}
TEST_EVENT = "webhook_test"


class DispatchOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"

    @property
    def ok(self) -> bool:
        """Nothing went wrong: delivered, or there was nowhere to deliver."""
        return self is not DispatchOutcome.FAILED


def _bridge_name() -> str:
    return os.environ.get("BRIDGE_NAME", DEFAULT_BRIDGE_NAME)


def _webhook_timeout() -> int:
    """WEBHOOK_TIMEOUT in seconds; malformed or non-positive values use the default."""
    try:
        timeout = int(os.environ.get("WEBHOOK_TIMEOUT", str(DEFAULT_WEBHOOK_TIMEOUT)))
    except ValueError:
        return DEFAULT_WEBHOOK_TIMEOUT
    return timeout if timeout > 0 else DEFAULT_WEBHOOK_TIMEOUT


def user_agent() -> str:
    return f"{_bridge_name()}/{BRIDGE_VERSION}"


def _record_attempt(
    *,
    device_id: int,
    event_type: str,
    payload: dict[str, Any],
    response_code: int,
    response_body: str,
    execution_time_ms: int,
    outcome: DispatchOutcome,
    error_message: str | None,
) -> None:
    """Write the audit row. A failure here is logged, never raised."""
    try:
        with txn() as cur:
            webhook_logs_repository.insert_delivery_log(
                cur,
                device_id=device_id,
                event_type=event_type,
                payload=payload,
                response_code=response_code,
                response_body=response_body,
                execution_time_ms=execution_time_ms,
                status=outcome.value,
                error_message=error_message,
            )
    except Exception:
        logger.exception(
            "webhook delivery log write failed",
            extra={
                "extra_fields": log_context(
                    device_id=device_id,
                    event_type=event_type,
                    outcome=outcome.value,
                )
            },
        )


def dispatch(
    device_id: int,
    webhook_url: str | None,
    event_type: str,
    payload: dict[str, Any],
) -> DispatchOutcome:
    """POST `payload` as JSON to `webhook_url` and log the attempt.

    Args:
        device_id: Owner device (webhook_logs FK).
        webhook_url: Target URL. Empty or None means nothing to do.
        event_type: Sent as X-Event-Type and stored on the log row.
        payload: JSON-serializable body.

    Returns:
        NOT_ATTEMPTED for an empty URL (no HTTP call, no log row),
        SUCCESS for a 2xx response, FAILED otherwise.
    """
    if not webhook_url:
        return DispatchOutcome.NOT_ATTEMPTED

    headers = {
        "Content-Type": "application/json",
        "X-Event-Type": event_type,
        "User-Agent": user_agent(),
    }
    body = json.dumps(payload, default=str)

    response_code = 0
    response_body = ""
    error_message: str | None = None

    start = time.monotonic()
    try:
        response = requests.post(
            webhook_url,
            data=body.encode("utf-8"),
            headers=headers,
            timeout=_webhook_timeout(),
        )
        response_code = response.status_code
        response_body = response.text[:MAX_RESPONSE_BODY]
    except requests.RequestException as e:
        error_message = f"{type(e).__name__}: {e}"
    execution_time_ms = int((time.monotonic() - start) * 1000)

    if error_message is None and 200 <= response_code < 300:
        outcome = DispatchOutcome.SUCCESS
    else:
        outcome = DispatchOutcome.FAILED
        if error_message is None:
            error_message = f"HTTP {response_code}"

    log_ctx = log_context(
        device_id=device_id,
        event_type=event_type,
        response_code=response_code,
        execution_time_ms=execution_time_ms,
        outcome=outcome.value,
    )
    if outcome is DispatchOutcome.SUCCESS:
        logger.info("webhook delivered", extra={"extra_fields": log_ctx})
    else:
        logger.warning(
            "webhook delivery failed",
            extra={"extra_fields": {**log_ctx, "error": error_message}},
        )

    _record_attempt(
        device_id=device_id,
        event_type=event_type,
        payload=payload,
        response_code=response_code,
        response_body=response_body,
        execution_time_ms=execution_time_ms,
        outcome=outcome,
        error_message=error_message,
    )
    return outcome


# Payload builders


def _device_fields(device: Device, event: str) -> dict[str, Any]:
    return {
        "event": event,
        "device_id": device.id,
        "device_name": device.device_name,
        "session_id": device.session_id,
        "timestamp": iso_timestamp(),
    }


def _message_body(device: Device, message: InboundMessage) -> dict[str, Any]:
    return {
        "message": {
            "id": message.provider_message_id,
            "session_id": device.session_id,
            "type": message.type.value,
            "from": message.counterpart_number,
            "to": device.phone_number,
            "group_id": message.group_id,
            "content": message.content,
            "media_url": message.media_url,
            "caption": message.caption,
            "quoted_message_id": message.quoted_message_id,
            "timestamp": iso_timestamp(message.provider_timestamp)
            if message.provider_timestamp
            else None,
        }
    }


def _connection_body(device: Device, state: ConnectionState) -> dict[str, Any]:
    return {
        "status": state.status.value,
        "node_status": state.provider_state,
        "phone_number": state.phone_number or device.phone_number,
    }


def _contact_body(contact: ContactInfo) -> dict[str, Any]:
    return {
        "contact": {
            "phone_number": contact.phone_number,
            "name": contact.display_name,
            "profile_name": contact.profile_name,
            "profile_picture": contact.profile_picture_url,
            "last_seen": iso_timestamp(contact.last_seen) if contact.last_seen else None,
            "status": contact.status_text,
        }
    }


def _group_body(group: GroupInfo) -> dict[str, Any]:
    return {
        "group": {
            "group_id": group.group_id,
            "name": group.subject,
            "description": group.description,
            "picture": group.picture_url,
            "owner": group.owner_number,
            "participant_count": group.participant_count,
        }
    }


def build_event_payload(device: Device, event: NormalizedEvent) -> tuple[str, dict[str, Any]]:
    """Outbound (event name, body) for a normalized provider event.

    Raises:
        ValueError: For EventType.UNRECOGNIZED (never dispatched).
    """
    name = OUTBOUND_EVENT_NAMES.get(event.event_type)
    if name is None:
        raise ValueError(f"event type {event.event_type.value!r} is not dispatchable")

    body = _device_fields(device, name)
    payload = event.payload
    if isinstance(payload, InboundMessage):
        body.update(_message_body(device, payload))
    elif isinstance(payload, ConnectionState):
        body.update(_connection_body(device, payload))
    elif isinstance(payload, QrPayload):
        body["qr_code"] = payload.qr_code
    elif isinstance(payload, AuthFailure):
        body.update({"reason": payload.reason, "status": payload.status.value})
    elif isinstance(payload, ContactInfo):
        body.update(_contact_body(payload))
    elif isinstance(payload, GroupInfo):
        body.update(_group_body(payload))
    return name, body


def build_test_payload(device: Device) -> dict[str, Any]:
    body = _device_fields(device, TEST_EVENT)
    body["message"] = "This is a test webhook from WhatsApp Bridge"
    body["test"] = True
    return body


def build_custom_payload(device: Device, event: str, data: dict[str, Any]) -> dict[str, Any]:
    """User data merged with the device fields (device fields win)."""
    return {**data, **_device_fields(device, event)}

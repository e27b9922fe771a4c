"""Webhook relay - provider callback -> device effects -> store -> dispatch.

Pipeline stages (tracked on RequestContext.stage):

    RECEIVED -> NORMALIZED -> DISPATCHED
         \            \
          +-> DROPPED  +-> DROPPED (internal failure)

Each stage that writes uses its own short transaction. Device effects are
committed before persistence so the stored device status follows the
provider even if a later stage fails. No transaction is open while the
outbound webhook is in flight.

Response contract (returned as RelayResult, rendered by the route):
- 400: empty body, invalid JSON, missing sessionId/event
- 200: unknown session or unrecognized event (acknowledged, ignored)
- 200: processed (dispatch outcome never changes the response)
- 500: device lookup, device effect or persistence failure
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wabridge.domain.statuses import DeviceStatus
from wabridge.infra.db import txn
from wabridge.infra.repositories import (
    contacts_repository,
    devices_repository,
    messages_repository,
)
from wabridge.infra.repositories.devices_repository import Device
from wabridge.infra.time import utc_now
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import log_context
from wabridge.services.webhook_dispatcher import (
    DispatchOutcome,
    build_event_payload,
    dispatch,
)
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
from wabridge.whatsapp.normalizer import MalformedEventError, normalize, parse_envelope

logger = get_logger(__name__)


class RelayStage(str, Enum):
    RECEIVED = "received"
    NORMALIZED = "normalized"
    DISPATCHED = "dispatched"
    DROPPED = "dropped"


@dataclass
class RequestContext:
    """State of one receiver invocation, passed through every stage."""

    correlation_id: str
    client_ip: str | None = None
    received_at: datetime = field(default_factory=utc_now)
    stage: RelayStage = RelayStage.RECEIVED
    device: Device | None = None
    event: NormalizedEvent | None = None
    drop_reason: str | None = None
    dispatch_outcome: DispatchOutcome | None = None


@dataclass(frozen=True)
class RelayResult:
    status_code: int
    body: dict[str, Any]


def _log_fields(ctx: RequestContext, **extra: Any) -> dict[str, Any]:
    return log_context(
        correlationId=ctx.correlation_id,
        stage=ctx.stage.value,
        device_id=ctx.device.id if ctx.device else None,
        session_id=ctx.device.session_id if ctx.device else None,
        event_type=ctx.event.event_type.value if ctx.event else None,
        **extra,
    )


def _drop(ctx: RequestContext, reason: str, result: RelayResult) -> RelayResult:
    ctx.stage = RelayStage.DROPPED
    ctx.drop_reason = reason
    return result


def _client_error(ctx: RequestContext, error: str) -> RelayResult:
    logger.warning(
        "webhook rejected",
        extra={"extra_fields": _log_fields(ctx, client_ip=ctx.client_ip, error=error)},
    )
    return _drop(ctx, error, RelayResult(400, {"success": False, "error": error}))


def _internal_error(ctx: RequestContext, reason: str) -> RelayResult:
    logger.exception(
        "webhook processing failed",
        extra={"extra_fields": _log_fields(ctx, reason=reason)},
    )
    return _drop(
        ctx,
        reason,
        RelayResult(500, {"success": False, "message": "Failed to process webhook"}),
    )


def apply_device_effects(cur: PgCursor, device: Device, event: NormalizedEvent) -> Device:
    """Apply status/phone/QR changes implied by a connection-type event.

    Returns:
        The device as it is after the update (unchanged for other events).
    """
    payload = event.payload

    if isinstance(payload, ConnectionState):
        status = payload.status.to_device_status()
        devices_repository.update_device_status(
            cur, device.id, status, phone_number=payload.phone_number
        )
        changes: dict[str, Any] = {}
        if status is not None:
            changes["status"] = status.value
        if payload.phone_number is not None:
            changes["phone_number"] = payload.phone_number
        return dataclasses.replace(device, **changes)

    if isinstance(payload, QrPayload):
        devices_repository.update_device_status(
            cur, device.id, DeviceStatus.CONNECTING, qr_code=payload.qr_code
        )
        return dataclasses.replace(
            device,
            status=DeviceStatus.CONNECTING.value,
            qr_code=payload.qr_code if payload.qr_code is not None else device.qr_code,
        )

    if isinstance(payload, AuthFailure):
        devices_repository.update_device_status(cur, device.id, payload.status)
        return dataclasses.replace(device, status=payload.status.value)

    return device


def _persist(cur: PgCursor, device: Device, event: NormalizedEvent) -> None:
    payload = event.payload
    if isinstance(payload, InboundMessage):
        messages_repository.insert_incoming_message(
            cur,
            device_id=device.id,
            session_id=device.session_id,
            message=payload,
        )
    elif isinstance(payload, ContactInfo):
        contacts_repository.upsert_contact(cur, device.id, payload)
    elif isinstance(payload, GroupInfo):
        contacts_repository.upsert_group(cur, device.id, payload)


def process_webhook(raw_body: bytes, ctx: RequestContext) -> RelayResult:
    """Run one provider callback through the relay pipeline.

    Args:
        raw_body: Request body as received.
        ctx: Request-scoped context; updated in place with stage, device,
            event and dispatch outcome.

    Returns:
        RelayResult with HTTP status and JSON body for the provider.
    """
    if not raw_body.strip():
        return _client_error(ctx, "No webhook data received")

    try:
        raw = json.loads(raw_body)
    except ValueError:
        return _client_error(ctx, "Invalid JSON data")

    try:
        envelope = parse_envelope(raw)
    except MalformedEventError as e:
        return _client_error(ctx, str(e))

    event = normalize(envelope)

    try:
        with txn() as cur:
            device = devices_repository.get_active_device_by_session(cur, envelope.session_id)
    except Exception:
        return _internal_error(ctx, "device lookup failed")

    if device is None:
        logger.warning(
            "webhook for unknown session dropped",
            extra={"extra_fields": _log_fields(ctx, event=envelope.event)},
        )
        return _drop(
            ctx,
            "unknown session",
            RelayResult(200, {"success": True, "message": "Device not found, event ignored"}),
        )

    ctx.device = device

    if event.event_type is EventType.UNRECOGNIZED:
        logger.info(
            "unrecognized provider event ignored",
            extra={"extra_fields": _log_fields(ctx, event=envelope.event)},
        )
        return _drop(
            ctx, "unrecognized event", RelayResult(200, {"success": True, "message": "Event ignored"})
        )

    ctx.event = event
    ctx.stage = RelayStage.NORMALIZED

    try:
        with txn() as cur:
            ctx.device = apply_device_effects(cur, device, event)
    except Exception:
        return _internal_error(ctx, "device update failed")

    try:
        with txn() as cur:
            _persist(cur, ctx.device, event)
    except Exception:
        return _internal_error(ctx, "persistence failed")

    event_name, body = build_event_payload(ctx.device, event)
    ctx.dispatch_outcome = dispatch(ctx.device.id, ctx.device.webhook_url, event_name, body)
    ctx.stage = RelayStage.DISPATCHED

    logger.info(
        "webhook processed",
        extra={"extra_fields": _log_fields(ctx, dispatch_outcome=ctx.dispatch_outcome.value)},
    )
    return RelayResult(200, {"success": True, "message": "Webhook processed"})

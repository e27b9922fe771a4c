"""Device webhook management (device API key, rate limited).

GET  /api/webhook → 24h delivery stats, 10 most recent attempts, webhook_url
POST /api/webhook → action test | update_url | send_custom

Test and custom sends go through the normal dispatcher, so each one is
logged in webhook_logs like any relayed event.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from wabridge.api.auth import CurrentDeviceDep
from wabridge.api.rate_limit import RateLimitDep
from wabridge.domain.urls import is_valid_webhook_url
from wabridge.infra.db import txn
from wabridge.infra.repositories import devices_repository, webhook_logs_repository
from wabridge.infra.repositories.devices_repository import Device
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import log_context
from wabridge.services.webhook_dispatcher import (
    TEST_EVENT,
    build_custom_payload,
    build_test_payload,
    dispatch,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"], dependencies=[RateLimitDep])

RECENT_LOG_LIMIT = 10

# webhook_logs.event_type is VARCHAR(64)
MAX_EVENT_TYPE_LENGTH = 64


class WebhookActionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["test", "update_url", "send_custom"] = "test"
    webhook_url: str | None = None
    event_type: str | None = Field(default=None, max_length=MAX_EVENT_TYPE_LENGTH)
    payload: dict[str, Any] | None = None


def _target_url(device: Device, override: str | None) -> str:
    url = (override or device.webhook_url or "").strip()
    if not url:
        raise HTTPException(status_code=400, detail="No webhook URL configured")
    if not is_valid_webhook_url(url):
        raise HTTPException(status_code=400, detail="Invalid webhook URL")
    return url


@router.get("")
def webhook_overview(device: Device = CurrentDeviceDep) -> dict:
    with txn() as cur:
        stats = webhook_logs_repository.delivery_stats(cur, device.id)
        recent = webhook_logs_repository.recent_logs(cur, device.id, RECENT_LOG_LIMIT)
    return {
        "success": True,
        "data": {
            "stats": stats,
            "recent_logs": recent,
            "webhook_url": device.webhook_url,
        },
    }


def _test(device: Device, body: WebhookActionRequest) -> dict[str, Any]:
    url = _target_url(device, body.webhook_url)
    outcome = dispatch(device.id, url, TEST_EVENT, build_test_payload(device))
    if not outcome.ok:
        raise HTTPException(status_code=502, detail="Failed to send test webhook")
    return {"message": "Test webhook sent successfully", "webhook_url": url}


def _update_url(device: Device, body: WebhookActionRequest) -> dict[str, Any]:
    if body.webhook_url is None:
        raise HTTPException(status_code=400, detail="webhook_url is required")
    url = body.webhook_url.strip()
    if url and not is_valid_webhook_url(url):
        raise HTTPException(status_code=400, detail="Invalid webhook URL")

    with txn() as cur:
        devices_repository.update_device(cur, device.id, {"webhook_url": url})

    logger.info(
        "webhook url updated",
        extra={"extra_fields": log_context(device_id=device.id, cleared=not url)},
    )
    return {"message": "Webhook URL updated successfully", "webhook_url": url or None}


def _send_custom(device: Device, body: WebhookActionRequest) -> dict[str, Any]:
    if not body.event_type or not body.payload:
        raise HTTPException(status_code=400, detail="event_type and payload are required")
    url = _target_url(device, body.webhook_url)
    payload = build_custom_payload(device, body.event_type, body.payload)
    outcome = dispatch(device.id, url, body.event_type, payload)
    if not outcome.ok:
        raise HTTPException(status_code=502, detail="Failed to send custom webhook")
    return {"message": "Custom webhook sent successfully", "event_type": body.event_type}


_ACTIONS = {
    "test": _test,
    "update_url": _update_url,
    "send_custom": _send_custom,
}


@router.post("")
def webhook_action(body: WebhookActionRequest, device: Device = CurrentDeviceDep) -> dict:
    result = _ACTIONS[body.action](device, body)
    return {"success": True, **result}

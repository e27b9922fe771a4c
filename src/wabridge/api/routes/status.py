"""Device status and statistics (device API key, rate limited).

GET /api/status?action=device    → device record, live provider session, message totals
GET /api/status?action=messages  → daily counts, type distribution, recent previews (days ≤ 30)
GET /api/status?action=webhooks  → delivery stats, recent attempts, per-event counts (hours ≤ 168)
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query

from wabridge.api.auth import CurrentDeviceDep
from wabridge.api.rate_limit import RateLimitDep
from wabridge.api.routes.devices import device_to_dict
from wabridge.infra.db import txn
from wabridge.infra.repositories import messages_repository, webhook_logs_repository
from wabridge.infra.repositories.devices_repository import Device
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import log_context
from wabridge.services import sessions
from wabridge.services.sessions import ProviderRejectedError
from wabridge.whatsapp.provider_client import ProviderError

logger = get_logger(__name__)

router = APIRouter(prefix="/api/status", tags=["status"], dependencies=[RateLimitDep])

MAX_DAYS = 30
MAX_HOURS = 168
PREVIEW_CHARS = 100


def _session_view(device: Device) -> dict:
    try:
        result = sessions.refresh_status(device)
    except (ProviderRejectedError, ProviderError) as e:
        logger.warning(
            "session status unavailable",
            extra={"extra_fields": log_context(device_id=device.id, error=str(e))},
        )
        return {"status": "error", "error": str(e)}
    return {
        "status": result["status"],
        "node_status": result["node_status"],
        "phone": result["phone"],
    }


def _device_status(device: Device) -> dict:
    session = _session_view(device)
    with txn() as cur:
        statistics = messages_repository.message_stats(cur, device.id)
    return {
        "device": device_to_dict(device),
        "session": session,
        "statistics": statistics,
    }


def _message_status(device: Device, days: int) -> dict:
    days = max(1, min(days, MAX_DAYS))
    with txn() as cur:
        daily = messages_repository.daily_message_stats(cur, device.id, days)
        types = messages_repository.message_type_distribution(cur, device.id, days)
        recent = messages_repository.list_messages(cur, device.id, limit=10)

    previews = [
        {
            "direction": m["direction"],
            "message_type": m["message_type"],
            "counterpart_number": m["counterpart_number"],
            "preview": (m["content"] or "")[:PREVIEW_CHARS],
            "timestamp": m["timestamp"],
            "status": m["status"],
        }
        for m in recent
    ]
    return {
        "daily_stats": daily,
        "type_distribution": types,
        "recent_messages": previews,
        "period_days": days,
    }


def _webhook_status(device: Device, hours: int) -> dict:
    hours = max(1, min(hours, MAX_HOURS))
    with txn() as cur:
        stats = webhook_logs_repository.delivery_stats(cur, device.id, hours)
        recent = webhook_logs_repository.recent_logs(cur, device.id, limit=20)
        events = webhook_logs_repository.event_distribution(cur, device.id, hours)
    return {
        "stats": stats,
        "recent_calls": recent,
        "event_distribution": events,
        "webhook_url": device.webhook_url,
        "period_hours": hours,
    }


@router.get("")
def get_status(
    device: Device = CurrentDeviceDep,
    action: Literal["device", "messages", "webhooks"] = Query("device"),
    days: int = Query(7),
    hours: int = Query(24),
) -> dict:
    if action == "messages":
        data = _message_status(device, days)
    elif action == "webhooks":
        data = _webhook_status(device, hours)
    else:
        data = _device_status(device)
    return {"success": True, "data": data}

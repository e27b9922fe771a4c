"""Device message API (device API key, rate limited).

GET  /api/messages   → stored messages, newest first (limit ≤ 100, offset, direction)
POST /api/messages   → send via provider; body `action` selects
                       send_text | send_media | send_location | send_contact
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from wabridge.api.auth import CurrentDeviceDep
from wabridge.api.errors import service_errors
from wabridge.api.rate_limit import RateLimitDep
from wabridge.domain.statuses import Direction
from wabridge.infra.db import txn
from wabridge.infra.repositories import messages_repository
from wabridge.infra.repositories.devices_repository import Device
from wabridge.services import sessions

router = APIRouter(prefix="/api/messages", tags=["messages"], dependencies=[RateLimitDep])


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["send_text", "send_media", "send_location", "send_contact"] = "send_text"
    to: str | list[str] | None = None
    text: str | None = None
    media_url: str | None = None
    type: str | None = None
    caption: str = ""
    latitude: float | None = None
    longitude: float | None = None
    name: str = ""
    address: str = ""
    contacts: list[dict[str, Any]] | None = None
    options: dict[str, Any] | None = None


@router.get("")
def list_messages(
    device: Device = CurrentDeviceDep,
    limit: int = Query(50, ge=1),
    offset: int = Query(0),
    direction: str | None = Query(None),
) -> dict:
    limit = min(limit, messages_repository.MAX_PAGE_SIZE)
    offset = max(offset, 0)

    direction_filter = None
    if direction:
        try:
            direction_filter = Direction(direction)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid direction parameter")

    with txn() as cur:
        rows = messages_repository.list_messages(
            cur, device.id, limit=limit, offset=offset, direction=direction_filter
        )
        total = messages_repository.count_messages(cur, device.id, direction_filter)

    return {
        "success": True,
        "data": rows,
        "pagination": {"limit": limit, "offset": offset, "total": total},
    }


def _send_text(device: Device, body: SendMessageRequest) -> dict[str, Any]:
    if not body.to or not body.text:
        raise HTTPException(status_code=400, detail="to and text are required")
    with service_errors():
        result = sessions.send_text(device, body.to, body.text, body.options)
    return {"message": "Text message sent successfully", **result}


def _send_media(device: Device, body: SendMessageRequest) -> dict[str, Any]:
    if not body.to or not body.media_url or not body.type:
        raise HTTPException(status_code=400, detail="to, media_url, and type are required")
    with service_errors():
        result = sessions.send_media(
            device, body.to, body.media_url, body.type, body.caption, body.options
        )
    return {"message": "Media message sent successfully", **result}


def _send_location(device: Device, body: SendMessageRequest) -> dict[str, Any]:
    if not body.to or body.latitude is None or body.longitude is None:
        raise HTTPException(status_code=400, detail="to, latitude, and longitude are required")
    with service_errors():
        result = sessions.send_location(
            device, body.to, body.latitude, body.longitude, body.name, body.address
        )
    return {"message": "Location message sent successfully", **result}


def _send_contact(device: Device, body: SendMessageRequest) -> dict[str, Any]:
    if not body.to or not body.contacts:
        raise HTTPException(status_code=400, detail="to and contacts are required")
    with service_errors():
        result = sessions.send_contact(device, body.to, body.contacts)
    return {"message": "Contact message sent successfully", **result}


_ACTIONS = {
    "send_text": _send_text,
    "send_media": _send_media,
    "send_location": _send_location,
    "send_contact": _send_contact,
}


@router.post("")
def send_message(body: SendMessageRequest, device: Device = CurrentDeviceDep) -> dict:
    """Send through the provider and store one outgoing row per recipient."""
    result = _ACTIONS[body.action](device, body)
    return {"success": True, **result}

"""Operator device management (X-Admin-Key).

GET    /api/devices                  → list active devices
POST   /api/devices                  → register device + provider session (201)
GET    /api/devices/{id}             → device detail
PATCH  /api/devices/{id}             → update name / webhook_url / note
DELETE /api/devices/{id}             → disconnect + soft-retire
POST   /api/devices/{id}/connect     → start pairing
POST   /api/devices/{id}/disconnect  → disconnect session
GET    /api/devices/{id}/status      → provider status (syncs device)
GET    /api/devices/{id}/qr          → latest QR code
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Path
from pydantic import BaseModel, ConfigDict, Field, field_validator

from wabridge.api.auth import AdminDep
from wabridge.api.errors import service_errors
from wabridge.domain.urls import is_valid_webhook_url
from wabridge.infra.db import txn
from wabridge.infra.repositories import devices_repository
from wabridge.infra.repositories.devices_repository import Device
from wabridge.observability.correlation import get_correlation_id
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import log_context, mask_api_key
from wabridge.services import sessions

logger = get_logger(__name__)

router = APIRouter(prefix="/api/devices", tags=["devices"], dependencies=[AdminDep])


# ── Schemas ───────────────────────────────────────────────────────────────────


def _check_webhook_url(value: str | None) -> str | None:
    if value and not is_valid_webhook_url(value):
        raise ValueError("Invalid webhook URL")
    return value


class CreateDeviceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    device_name: str = Field(min_length=3, max_length=100)
    webhook_url: str | None = None
    note: str | None = None
    session_id: str | None = Field(default=None, min_length=1, max_length=100)
    config: dict[str, Any] | None = None

    @field_validator("device_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Device name must be at least 3 characters long")
        return v

    @field_validator("webhook_url")
    @classmethod
    def _validate_webhook_url(cls, v: str | None) -> str | None:
        return _check_webhook_url(v.strip() if v else v)


class UpdateDeviceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    device_name: str | None = Field(default=None, min_length=1, max_length=100)
    webhook_url: str | None = None
    note: str | None = None

    @field_validator("device_name")
    @classmethod
    def _name_not_empty(cls, v: str | None) -> str:
        # Only runs when the field is sent; an explicit null is rejected
        if v is None or not v.strip():
            raise ValueError("Device name cannot be empty")
        return v.strip()

    @field_validator("webhook_url")
    @classmethod
    def _validate_webhook_url(cls, v: str | None) -> str | None:
        return _check_webhook_url(v.strip() if v else v)


# ── Helpers ───────────────────────────────────────────────────────────────────


def device_to_dict(device: Device, *, reveal_secrets: bool = False) -> dict[str, Any]:
    """JSON view of a device. The API key is masked unless reveal_secrets."""

    def _iso(value):
        return value.isoformat() if value else None

    return {
        "id": device.id,
        "device_name": device.device_name,
        "session_id": device.session_id,
        "api_key": device.api_key if reveal_secrets else mask_api_key(device.api_key),
        "webhook_url": device.webhook_url,
        "note": device.note,
        "status": device.status,
        "phone_number": device.phone_number,
        "last_activity": _iso(device.last_activity),
        "created_at": _iso(device.created_at),
        "updated_at": _iso(device.updated_at),
    }


def _load_device(device_id: int) -> Device:
    with txn() as cur:
        device = devices_repository.get_device(cur, device_id)
    if device is None or device.status == "inactive":
        raise HTTPException(status_code=404, detail="Device not found")
    return device


# ── Collection ────────────────────────────────────────────────────────────────


@router.get("")
def list_devices() -> dict:
    with txn() as cur:
        devices = devices_repository.list_active_devices(cur)
    return {
        "success": True,
        "data": [device_to_dict(d) for d in devices],
        "total": len(devices),
    }


@router.post("", status_code=201)
def create_device(body: CreateDeviceRequest) -> dict:
    """Register a device and create its provider session.

    The full API key is returned only here.
    """
    with service_errors():
        device = sessions.create_device(
            device_name=body.device_name,
            webhook_url=body.webhook_url,
            note=body.note,
            session_id=body.session_id,
            config=body.config,
        )

    logger.info(
        "device registered via api",
        extra={
            "extra_fields": log_context(
                correlationId=get_correlation_id(),
                device_id=device.id,
                session_id=device.session_id,
            )
        },
    )
    return {
        "success": True,
        "message": "Device created successfully",
        "data": {**device_to_dict(device, reveal_secrets=True), "device_token": device.device_token},
    }


# ── Item ──────────────────────────────────────────────────────────────────────


@router.get("/{device_id}")
def get_device(device_id: int = Path(...)) -> dict:
    return {"success": True, "data": device_to_dict(_load_device(device_id))}


@router.patch("/{device_id}")
def update_device(body: UpdateDeviceRequest, device_id: int = Path(...)) -> dict:
    _load_device(device_id)
    changes = body.model_dump(exclude_unset=True)
    with txn() as cur:
        device = devices_repository.update_device(cur, device_id, changes)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return {
        "success": True,
        "message": "Device updated successfully",
        "data": device_to_dict(device),
    }


@router.delete("/{device_id}")
def delete_device(device_id: int = Path(...)) -> dict:
    device = _load_device(device_id)
    if not sessions.retire_device(device):
        raise HTTPException(status_code=404, detail="Device not found")
    return {"success": True, "message": "Device deleted successfully"}


# ── Session proxy ─────────────────────────────────────────────────────────────


@router.post("/{device_id}/connect")
def connect_device(device_id: int = Path(...)) -> dict:
    device = _load_device(device_id)
    with service_errors():
        sessions.connect_device(device)
    return {"success": True, "message": "Session connection initiated"}


@router.post("/{device_id}/disconnect")
def disconnect_device(device_id: int = Path(...)) -> dict:
    device = _load_device(device_id)
    with service_errors():
        sessions.disconnect_device(device)
    return {"success": True, "message": "Session disconnected"}


@router.get("/{device_id}/status")
def device_status(device_id: int = Path(...)) -> dict:
    device = _load_device(device_id)
    with service_errors():
        result = sessions.refresh_status(device)
    return {"success": True, **result}


@router.get("/{device_id}/qr")
def device_qr(device_id: int = Path(...)) -> dict:
    device = _load_device(device_id)
    with service_errors():
        result = sessions.get_qr(device)
    return {"success": True, **result}

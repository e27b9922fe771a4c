"""Shared test helpers for WhatsApp bridge tests.

FakeBridgeStore replaces the repository modules with in-memory tables and
patches txn() everywhere it is imported, so API and service tests run
without PostgreSQL. These are NOT fixtures - see conftest.py.
"""

from __future__ import annotations

import dataclasses
import json
from contextlib import contextmanager
from typing import Any
from unittest.mock import MagicMock

from wabridge.domain.statuses import DeviceStatus, MessageStatus, can_advance
from wabridge.infra.repositories.devices_repository import Device
from wabridge.infra.time import utc_now

ADMIN_KEY = "test-admin-key"

# Modules that do `from wabridge.infra.db import txn`
TXN_MODULES = (
    "wabridge.infra.db",
    "wabridge.api.auth",
    "wabridge.api.routes.devices",
    "wabridge.api.routes.messages",
    "wabridge.api.routes.status",
    "wabridge.api.routes.webhook_admin",
    "wabridge.services.relay",
    "wabridge.services.sessions",
    "wabridge.services.webhook_dispatcher",
)


class FakeCursor:
    """Placeholder cursor; the fake repositories never touch it."""


@contextmanager
def fake_txn(conn=None):
    yield FakeCursor()


def make_device(**overrides: Any) -> Device:
    values: dict[str, Any] = {
        "id": 1,
        "device_name": "Front Desk",
        "session_id": "wa_1",
        "api_key": "wa_" + "a" * 40,
        "device_token": "dev_" + "b" * 32,
        "webhook_url": None,
        "note": None,
        "status": DeviceStatus.DISCONNECTED.value,
        "phone_number": None,
    }
    values.update(overrides)
    return Device(**values)


def fake_http_response(status_code: int = 200, body: Any = None, text: str | None = None):
    """MagicMock shaped like requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("no json")
        response.text = text or ""
    else:
        response.json.return_value = body
        response.text = text if text is not None else json.dumps(body)
    return response


class StoreFailure(RuntimeError):
    """Raised by a fake repository call listed in FakeBridgeStore.fail_on."""


class FakeBridgeStore:
    """In-memory devices / messages / webhook_logs / contacts / chat_groups."""

    def __init__(self) -> None:
        self.devices: dict[int, Device] = {}
        self.messages: list[dict[str, Any]] = []
        self.webhook_logs: list[dict[str, Any]] = []
        self.contacts: dict[tuple[int, str], Any] = {}
        self.groups: dict[tuple[int, str], Any] = {}
        self.status_updates: list[tuple[int, Any]] = []
        self.fail_on: set[str] = set()
        self._next_device_id = 1

    def _check(self, name: str) -> None:
        if name in self.fail_on:
            raise StoreFailure(f"{name} failed")

    def add_device(self, **overrides: Any) -> Device:
        overrides.setdefault("id", self._next_device_id)
        overrides.setdefault("session_id", f"wa_{overrides['id']}")
        overrides.setdefault("api_key", f"wa_{overrides['id']:040d}")
        overrides.setdefault("device_token", f"dev_{overrides['id']:032d}")
        device = make_device(**overrides)
        self.devices[device.id] = device
        self._next_device_id = max(self._next_device_id, device.id) + 1
        return device

    # devices_repository

    def create_device(self, cur, **fields: Any) -> Device:
        self._check("create_device")
        return self.add_device(
            status=DeviceStatus.DISCONNECTED.value,
            created_at=utc_now(),
            updated_at=utc_now(),
            **fields,
        )

    def get_device(self, cur, device_id: int) -> Device | None:
        self._check("get_device")
        return self.devices.get(device_id)

    def _active(self) -> list[Device]:
        return [d for d in self.devices.values() if d.status != DeviceStatus.INACTIVE.value]

    def get_active_device_by_session(self, cur, session_id: str) -> Device | None:
        self._check("get_active_device_by_session")
        return next((d for d in self._active() if d.session_id == session_id), None)

    def get_active_device_by_api_key(self, cur, api_key: str) -> Device | None:
        self._check("get_active_device_by_api_key")
        return next((d for d in self._active() if d.api_key == api_key), None)

    def session_id_exists(self, cur, session_id: str) -> bool:
        return any(d.session_id == session_id for d in self.devices.values())

    def list_active_devices(self, cur) -> list[Device]:
        return sorted(self._active(), key=lambda d: d.id, reverse=True)

    def update_device_status(self, cur, device_id, status, *, phone_number=None, qr_code=None):
        self._check("update_device_status")
        self.status_updates.append((device_id, status))
        changes: dict[str, Any] = {"last_activity": utc_now()}
        if status is not None:
            changes["status"] = DeviceStatus(status).value
        if phone_number is not None:
            changes["phone_number"] = phone_number
        if qr_code is not None:
            changes["qr_code"] = qr_code
        self.devices[device_id] = dataclasses.replace(self.devices[device_id], **changes)

    def update_device(self, cur, device_id: int, changes: dict[str, Any]) -> Device | None:
        device = self.devices.get(device_id)
        if device is None:
            return None
        allowed = {k: v for k, v in changes.items() if k in ("device_name", "webhook_url", "note")}
        if "webhook_url" in allowed and not allowed["webhook_url"]:
            allowed["webhook_url"] = None
        device = dataclasses.replace(device, updated_at=utc_now(), **allowed)
        self.devices[device_id] = device
        return device

    def retire_device(self, cur, device_id: int) -> bool:
        device = self.devices.get(device_id)
        if device is None or device.status == DeviceStatus.INACTIVE.value:
            return False
        self.devices[device_id] = dataclasses.replace(device, status=DeviceStatus.INACTIVE.value)
        return True

    def count_devices(self, cur) -> dict[str, int]:
        self._check("count_devices")
        active = self._active()
        online = [d for d in active if d.status in ("connected", "connecting")]
        return {"total_devices": len(active), "active_devices": len(online)}

    # messages_repository

    def insert_incoming_message(self, cur, *, device_id, session_id, message) -> int:
        self._check("insert_incoming_message")
        row = {
            "id": len(self.messages) + 1,
            "device_id": device_id,
            "session_id": session_id,
            "provider_message_id": message.provider_message_id,
            "direction": "incoming",
            "message_type": message.type.value,
            "counterpart_number": message.counterpart_number,
            "group_id": message.group_id,
            "content": message.content,
            "media_url": message.media_url,
            "caption": message.caption,
            "status": MessageStatus.DELIVERED.value,
            "timestamp": message.provider_timestamp or utc_now(),
        }
        self.messages.append(row)
        return row["id"]

    def insert_outgoing_message(self, cur, **fields: Any) -> int:
        self._check("insert_outgoing_message")
        row = {
            "id": len(self.messages) + 1,
            "direction": "outgoing",
            "status": MessageStatus.SENT.value,
            "timestamp": utc_now(),
            **fields,
        }
        self.messages.append(row)
        return row["id"]

    def _device_messages(self, device_id: int, direction) -> list[dict[str, Any]]:
        rows = [m for m in self.messages if m["device_id"] == device_id]
        if direction is not None:
            rows = [m for m in rows if m["direction"] == direction.value]
        return list(reversed(rows))

    def list_messages(self, cur, device_id, *, limit=50, offset=0, direction=None):
        return self._device_messages(device_id, direction)[offset:offset + limit]

    def count_messages(self, cur, device_id, direction=None) -> int:
        return len(self._device_messages(device_id, direction))

    def advance_status(self, cur, device_id, provider_message_id, new_status) -> int:
        updated = 0
        for row in self.messages:
            if (
                row["device_id"] == device_id
                and row["provider_message_id"] == provider_message_id
                and can_advance(MessageStatus(row["status"]), new_status)
            ):
                row["status"] = new_status.value
                updated += 1
        return updated

    def message_stats(self, cur, device_id) -> dict[str, Any]:
        rows = self._device_messages(device_id, None)
        return {
            "total_messages": len(rows),
            "incoming_messages": sum(1 for m in rows if m["direction"] == "incoming"),
            "outgoing_messages": sum(1 for m in rows if m["direction"] == "outgoing"),
        }

    def daily_message_stats(self, cur, device_id, days=7) -> list[dict[str, Any]]:
        return []

    def message_type_distribution(self, cur, device_id, days=7) -> list[dict[str, Any]]:
        counts: dict[str, int] = {}
        for m in self._device_messages(device_id, None):
            counts[m["message_type"]] = counts.get(m["message_type"], 0) + 1
        return [{"message_type": k, "count": v} for k, v in counts.items()]

    # webhook_logs_repository

    def insert_delivery_log(self, cur, **fields: Any) -> None:
        self._check("insert_delivery_log")
        self.webhook_logs.append(fields)

    def _device_logs(self, device_id: int) -> list[dict[str, Any]]:
        return [log for log in self.webhook_logs if log["device_id"] == device_id]

    def delivery_stats(self, cur, device_id, hours=24) -> dict[str, Any]:
        logs = self._device_logs(device_id)
        successful = sum(1 for log in logs if log["status"] == "success")
        return {
            "hours": hours,
            "total_webhooks": len(logs),
            "successful_webhooks": successful,
            "failed_webhooks": len(logs) - successful,
            "success_rate": round(successful * 100.0 / len(logs), 2) if logs else 0.0,
            "avg_execution_time_ms": 0.0,
        }

    def recent_logs(self, cur, device_id, limit=10) -> list[dict[str, Any]]:
        return list(reversed(self._device_logs(device_id)))[:limit]

    def event_distribution(self, cur, device_id, hours=24) -> list[dict[str, Any]]:
        counts: dict[str, list[int]] = {}
        for log in self._device_logs(device_id):
            total, ok = counts.get(log["event_type"], [0, 0])
            counts[log["event_type"]] = [total + 1, ok + (log["status"] == "success")]
        return [
            {"event_type": k, "count": total, "success_count": ok}
            for k, (total, ok) in counts.items()
        ]

    # contacts_repository

    def upsert_contact(self, cur, device_id, contact) -> None:
        self._check("upsert_contact")
        self.contacts[(device_id, contact.phone_number)] = contact

    def upsert_group(self, cur, device_id, group) -> None:
        self._check("upsert_group")
        self.groups[(device_id, group.group_id)] = group

    def install(self, monkeypatch) -> None:
        """Patch repository functions and txn() with this store."""
        from wabridge.infra.repositories import (
            contacts_repository,
            devices_repository,
            messages_repository,
            webhook_logs_repository,
        )

        patched = {
            devices_repository: (
                "create_device",
                "get_device",
                "get_active_device_by_session",
                "get_active_device_by_api_key",
                "session_id_exists",
                "list_active_devices",
                "update_device_status",
                "update_device",
                "retire_device",
                "count_devices",
            ),
            messages_repository: (
                "insert_incoming_message",
                "insert_outgoing_message",
                "list_messages",
                "count_messages",
                "advance_status",
                "message_stats",
                "daily_message_stats",
                "message_type_distribution",
            ),
            webhook_logs_repository: (
                "insert_delivery_log",
                "delivery_stats",
                "recent_logs",
                "event_distribution",
            ),
            contacts_repository: ("upsert_contact", "upsert_group"),
        }
        for module, names in patched.items():
            for name in names:
                monkeypatch.setattr(module, name, getattr(self, name))

        for module_name in TXN_MODULES:
            monkeypatch.setattr(f"{module_name}.txn", fake_txn)

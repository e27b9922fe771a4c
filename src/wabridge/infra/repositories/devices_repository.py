"""Device registry - raw SQL with psycopg2 (no ORM).

Soft-retired devices (status = 'inactive') are excluded from every lookup
used for routing and authentication.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wabridge.domain.statuses import DeviceStatus

_DEVICE_COLUMNS = """
    id, device_name, session_id, api_key, device_token, webhook_url, note,
    status, phone_number, qr_code, last_activity, created_at, updated_at
"""


@dataclass
class Device:
    id: int
    device_name: str
    session_id: str
    api_key: str = field(repr=False)
    device_token: str = field(repr=False)
    webhook_url: str | None
    note: str | None
    status: str
    phone_number: str | None
    qr_code: str | None = field(default=None, repr=False)
    last_activity: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _row_to_device(row: tuple[Any, ...]) -> Device:
    return Device(*row)


def create_device(
    cur: PgCursor,
    *,
    device_name: str,
    session_id: str,
    api_key: str,
    device_token: str,
    webhook_url: str | None = None,
    note: str | None = None,
) -> Device:
    """Insert a new device in status 'disconnected'.

    Raises:
        psycopg2.errors.UniqueViolation: If session_id, api_key or
            device_token already exist.
    """
    cur.execute(
        f"""
        INSERT INTO devices (
            device_name, session_id, api_key, device_token, webhook_url, note, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING {_DEVICE_COLUMNS}
        """,
        (
            device_name,
            session_id,
            api_key,
            device_token,
            webhook_url,
            note,
            DeviceStatus.DISCONNECTED.value,
        ),
    )
    return _row_to_device(cur.fetchone())


def get_device(cur: PgCursor, device_id: int) -> Device | None:
    """Get a device by id, including retired ones."""
    cur.execute(f"SELECT {_DEVICE_COLUMNS} FROM devices WHERE id = %s", (device_id,))
    row = cur.fetchone()
    return _row_to_device(row) if row else None


def get_active_device_by_session(cur: PgCursor, session_id: str) -> Device | None:
    cur.execute(
        f"""
        SELECT {_DEVICE_COLUMNS} FROM devices
        WHERE session_id = %s AND status != 'inactive'
        """,
        (session_id,),
    )
    row = cur.fetchone()
    return _row_to_device(row) if row else None


def get_active_device_by_api_key(cur: PgCursor, api_key: str) -> Device | None:
    cur.execute(
        f"""
        SELECT {_DEVICE_COLUMNS} FROM devices
        WHERE api_key = %s AND status != 'inactive'
        """,
        (api_key,),
    )
    row = cur.fetchone()
    return _row_to_device(row) if row else None


def session_id_exists(cur: PgCursor, session_id: str) -> bool:
    """True if any device (retired included) uses this session id."""
    cur.execute("SELECT 1 FROM devices WHERE session_id = %s", (session_id,))
    return cur.fetchone() is not None


def list_active_devices(cur: PgCursor) -> list[Device]:
    cur.execute(
        f"""
        SELECT {_DEVICE_COLUMNS} FROM devices
        WHERE status != 'inactive'
        ORDER BY created_at DESC, id DESC
        """
    )
    return [_row_to_device(row) for row in cur.fetchall()]


def update_device_status(
    cur: PgCursor,
    device_id: int,
    status: DeviceStatus | str | None,
    *,
    phone_number: str | None = None,
    qr_code: str | None = None,
) -> None:
    """Record a status change (last-write-wins) and touch last_activity.

    Args:
        status: New status, or None to only touch last_activity.
        phone_number: Stored only when not None.
        qr_code: Stored only when not None.
    """
    assignments = ["last_activity = now()"]
    params: list[Any] = []

    if status is not None:
        assignments.append("status = %s")
        params.append(DeviceStatus(status).value)
    if phone_number is not None:
        assignments.append("phone_number = %s")
        params.append(phone_number)
    if qr_code is not None:
        assignments.append("qr_code = %s")
        params.append(qr_code)

    params.append(device_id)
    cur.execute(
        f"UPDATE devices SET {', '.join(assignments)} WHERE id = %s",
        params,
    )


_UPDATABLE_FIELDS = ("device_name", "webhook_url", "note")


def update_device(cur: PgCursor, device_id: int, changes: dict[str, Any]) -> Device | None:
    """Update device_name / webhook_url / note.

    Unknown keys are ignored. An empty webhook_url clears it (stored NULL).

    Returns:
        The updated device, or None if it does not exist.
    """
    assignments: list[str] = []
    params: list[Any] = []
    for name in _UPDATABLE_FIELDS:
        if name in changes:
            value = changes[name]
            if name == "webhook_url" and not value:
                value = None
            assignments.append(f"{name} = %s")
            params.append(value)

    if not assignments:
        return get_device(cur, device_id)

    assignments.append("updated_at = now()")
    params.append(device_id)
    cur.execute(
        f"""
        UPDATE devices SET {', '.join(assignments)}
        WHERE id = %s
        RETURNING {_DEVICE_COLUMNS}
        """,
        params,
    )
    row = cur.fetchone()
    return _row_to_device(row) if row else None


def retire_device(cur: PgCursor, device_id: int) -> bool:
    """Soft-delete: mark the device inactive. Returns False if not found."""
    cur.execute(
        """
        UPDATE devices SET status = 'inactive', updated_at = now()
        WHERE id = %s AND status != 'inactive'
        """,
        (device_id,),
    )
    return cur.rowcount > 0


def count_devices(cur: PgCursor) -> dict[str, int]:
    """Totals for /health: all non-retired devices and those online or pairing."""
    cur.execute(
        """
        SELECT
            COUNT(*) FILTER (WHERE status != 'inactive'),
            COUNT(*) FILTER (WHERE status IN ('connected', 'connecting'))
        FROM devices
        """
    )
    row = cur.fetchone()
    return {"total_devices": row[0] or 0, "active_devices": row[1] or 0}

"""Webhook delivery log store (append-only) and statistics queries."""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wabridge.infra.db import strip_nul

DEFAULT_STATS_HOURS = 24


def insert_delivery_log(
    cur: PgCursor,
    *,
    device_id: int,
    event_type: str,
    payload: dict[str, Any],
    response_code: int,
    response_body: str,
    execution_time_ms: int,
    status: str,
    error_message: str | None,
) -> int:
    """Append one delivery attempt. Returns the new row id."""
    cur.execute(
        """
        INSERT INTO webhook_logs (
            device_id, event_type, payload, response_code, response_body,
            execution_time_ms, status, error_message
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        strip_nul((
            device_id,
            event_type,
            json.dumps(strip_nul(payload), default=str),
            response_code,
            response_body,
            execution_time_ms,
            status,
            error_message,
        )),
    )
    return cur.fetchone()[0]


def delivery_stats(
    cur: PgCursor, device_id: int, hours: int = DEFAULT_STATS_HOURS
) -> dict[str, Any]:
    """Success/failure totals and mean latency over the last `hours`."""
    cur.execute(
        """
        SELECT
            COUNT(*),
            COUNT(*) FILTER (WHERE status = 'success'),
            COUNT(*) FILTER (WHERE status = 'failed'),
            AVG(execution_time_ms)
        FROM webhook_logs
        WHERE device_id = %s
          AND created_at >= now() - make_interval(hours => %s)
        """,
        (device_id, hours),
    )
    row = cur.fetchone()
    total = row[0] or 0
    successful = row[1] or 0
    return {
        "hours": hours,
        "total_webhooks": total,
        "successful_webhooks": successful,
        "failed_webhooks": row[2] or 0,
        "success_rate": round(successful * 100.0 / total, 2) if total else 0.0,
        "avg_execution_time_ms": round(float(row[3]), 2) if row[3] is not None else 0.0,
    }


def recent_logs(cur: PgCursor, device_id: int, limit: int = 10) -> list[dict[str, Any]]:
    """Newest delivery attempts, without the stored payload and body."""
    cur.execute(
        """
        SELECT id, event_type, response_code, execution_time_ms, status,
               error_message, created_at
        FROM webhook_logs
        WHERE device_id = %s
        ORDER BY created_at DESC, id DESC
        LIMIT %s
        """,
        (device_id, limit),
    )
    return [
        {
            "id": row[0],
            "event_type": row[1],
            "response_code": row[2],
            "execution_time_ms": row[3],
            "status": row[4],
            "error_message": row[5],
            "created_at": row[6].isoformat() if row[6] else None,
        }
        for row in cur.fetchall()
    ]


def event_distribution(
    cur: PgCursor, device_id: int, hours: int = DEFAULT_STATS_HOURS
) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT event_type, COUNT(*) AS n, COUNT(*) FILTER (WHERE status = 'success')
        FROM webhook_logs
        WHERE device_id = %s
          AND created_at >= now() - make_interval(hours => %s)
        GROUP BY event_type
        ORDER BY n DESC
        """,
        (device_id, hours),
    )
    return [
        {"event_type": row[0], "count": row[1], "success_count": row[2]}
        for row in cur.fetchall()
    ]

"""Message store - raw SQL with psycopg2 (no ORM).

Rows are immutable after insert except `status`, which only advances
sent -> delivered -> read. Incoming rows are written as delivered,
outgoing rows as sent.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wabridge.domain.statuses import Direction, MessageStatus
from wabridge.infra.db import strip_nul
from wabridge.whatsapp.models import InboundMessage

_MESSAGE_COLUMNS = """
    id, device_id, provider_message_id, session_id, direction, message_type,
    counterpart_number, group_id, content, media_url, caption,
    quoted_message_id, status, message_timestamp, delivered_at, read_at,
    created_at
"""

MAX_PAGE_SIZE = 100


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert a messages row to a JSON-safe dict."""

    def _iso(value: datetime | None) -> str | None:
        return value.isoformat() if value else None

    return {
        "id": row[0],
        "device_id": row[1],
        "message_id": row[2],
        "session_id": row[3],
        "direction": row[4],
        "message_type": row[5],
        "counterpart_number": row[6],
        "group_id": row[7],
        "content": row[8],
        "media_url": row[9],
        "caption": row[10],
        "quoted_message_id": row[11],
        "status": row[12],
        "timestamp": _iso(row[13]),
        "delivered_at": _iso(row[14]),
        "read_at": _iso(row[15]),
        "created_at": _iso(row[16]),
    }


def insert_incoming_message(
    cur: PgCursor,
    *,
    device_id: int,
    session_id: str,
    message: InboundMessage,
) -> int:
    """Persist a normalized inbound message. Returns the new row id.

    The provider timestamp is used when present, otherwise the insert time.
    No uniqueness on provider_message_id: provider retries insert again.
    """
    cur.execute(
        """
        INSERT INTO messages (
            device_id, provider_message_id, session_id, direction, message_type,
            counterpart_number, group_id, content, media_url, caption,
            quoted_message_id, status, message_timestamp, delivered_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                COALESCE(%s, now()), now())
        RETURNING id
        """,
        strip_nul((
            device_id,
            message.provider_message_id,
            session_id,
            Direction.INCOMING.value,
            message.type.value,
            message.counterpart_number,
            message.group_id,
            message.content,
            message.media_url,
            message.caption,
            message.quoted_message_id,
            MessageStatus.DELIVERED.value,
            message.provider_timestamp,
        )),
    )
    return cur.fetchone()[0]


def insert_outgoing_message(
    cur: PgCursor,
    *,
    device_id: int,
    session_id: str,
    provider_message_id: str,
    message_type: str,
    counterpart_number: str,
    content: str,
    media_url: str | None = None,
    caption: str | None = None,
) -> int:
    """Persist one outgoing message (one row per recipient)."""
    cur.execute(
        """
        INSERT INTO messages (
            device_id, provider_message_id, session_id, direction, message_type,
            counterpart_number, content, media_url, caption, status,
            message_timestamp
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now())
        RETURNING id
        """,
        strip_nul((
            device_id,
            provider_message_id,
            session_id,
            Direction.OUTGOING.value,
            message_type,
            counterpart_number,
            content,
            media_url,
            caption,
            MessageStatus.SENT.value,
        )),
    )
    return cur.fetchone()[0]


def list_messages(
    cur: PgCursor,
    device_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
    direction: Direction | None = None,
) -> list[dict[str, Any]]:
    """Newest first. limit is clamped to [1, MAX_PAGE_SIZE]."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    query = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE device_id = %s"
    params: list[Any] = [device_id]
    if direction is not None:
        query += " AND direction = %s"
        params.append(Direction(direction).value)
    query += " ORDER BY message_timestamp DESC, id DESC LIMIT %s OFFSET %s"
    params.extend([limit, offset])

    cur.execute(query, params)
    return [_row_to_dict(row) for row in cur.fetchall()]


def count_messages(
    cur: PgCursor, device_id: int, direction: Direction | None = None
) -> int:
    query = "SELECT COUNT(*) FROM messages WHERE device_id = %s"
    params: list[Any] = [device_id]
    if direction is not None:
        query += " AND direction = %s"
        params.append(Direction(direction).value)
    cur.execute(query, params)
    return cur.fetchone()[0]


# Status rank, evaluated in SQL so concurrent updates never move backwards
_STATUS_RANK_SQL = "CASE {col} WHEN 'sent' THEN 0 WHEN 'delivered' THEN 1 WHEN 'read' THEN 2 END"


def advance_status(
    cur: PgCursor,
    device_id: int,
    provider_message_id: str,
    new_status: MessageStatus | str,
) -> int:
    """Move matching messages forward to `new_status`.

    A request to move backwards (or sideways) matches no rows and is a no-op.

    Returns:
        Number of rows updated.
    """
    status = MessageStatus(new_status)
    current_rank = _STATUS_RANK_SQL.format(col="status")
    new_rank = _STATUS_RANK_SQL.format(col="%s")
    cur.execute(
        f"""
        UPDATE messages
        SET status = %s,
            delivered_at = CASE WHEN %s IN ('delivered', 'read')
                                THEN COALESCE(delivered_at, now())
                                ELSE delivered_at END,
            read_at = CASE WHEN %s = 'read' THEN COALESCE(read_at, now())
                           ELSE read_at END
        WHERE device_id = %s
          AND provider_message_id = %s
          AND {new_rank} > {current_rank}
        """,
        (
            status.value,
            status.value,
            status.value,
            device_id,
            provider_message_id,
            status.value,
        ),
    )
    return cur.rowcount


def message_stats(cur: PgCursor, device_id: int) -> dict[str, Any]:
    """Totals by direction, messages in the last 24h, last message time."""
    cur.execute(
        """
        SELECT
            COUNT(*),
            COUNT(*) FILTER (WHERE direction = 'incoming'),
            COUNT(*) FILTER (WHERE direction = 'outgoing'),
            COUNT(*) FILTER (WHERE created_at >= now() - interval '24 hours'),
            MAX(created_at)
        FROM messages
        WHERE device_id = %s
        """,
        (device_id,),
    )
    row = cur.fetchone()
    return {
        "total_messages": row[0] or 0,
        "incoming_messages": row[1] or 0,
        "outgoing_messages": row[2] or 0,
        "messages_24h": row[3] or 0,
        "last_message_at": row[4].isoformat() if row[4] else None,
    }


def message_type_distribution(
    cur: PgCursor, device_id: int, days: int = 7
) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT message_type, COUNT(*) AS n
        FROM messages
        WHERE device_id = %s
          AND message_timestamp >= current_date - make_interval(days => %s)
        GROUP BY message_type
        ORDER BY n DESC
        """,
        (device_id, days),
    )
    return [{"message_type": row[0], "count": row[1]} for row in cur.fetchall()]


def daily_message_stats(cur: PgCursor, device_id: int, days: int = 7) -> list[dict[str, Any]]:
    """Per-day totals by direction for the last `days` days, newest first."""
    cur.execute(
        """
        SELECT
            message_timestamp::date AS day,
            COUNT(*),
            COUNT(*) FILTER (WHERE direction = 'incoming'),
            COUNT(*) FILTER (WHERE direction = 'outgoing')
        FROM messages
        WHERE device_id = %s
          AND message_timestamp >= current_date - make_interval(days => %s)
        GROUP BY day
        ORDER BY day DESC
        """,
        (device_id, days),
    )
    return [
        {"date": row[0].isoformat(), "total": row[1], "incoming": row[2], "outgoing": row[3]}
        for row in cur.fetchall()
    ]

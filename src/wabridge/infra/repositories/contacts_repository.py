"""Contact and group metadata - upserts keyed per device."""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from wabridge.infra.db import strip_nul
from wabridge.whatsapp.models import ContactInfo, GroupInfo


def upsert_contact(cur: PgCursor, device_id: int, contact: ContactInfo) -> None:
    """Insert or refresh a contact, keyed by (device_id, phone_number).

    Fields missing from the update keep their stored value.
    """
    cur.execute(
        """
        INSERT INTO contacts (
            device_id, phone_number, display_name, profile_name,
            profile_picture, last_seen, status_message
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (device_id, phone_number) DO UPDATE SET
            display_name = COALESCE(EXCLUDED.display_name, contacts.display_name),
            profile_name = COALESCE(EXCLUDED.profile_name, contacts.profile_name),
            profile_picture = COALESCE(EXCLUDED.profile_picture, contacts.profile_picture),
            last_seen = COALESCE(EXCLUDED.last_seen, contacts.last_seen),
            status_message = COALESCE(EXCLUDED.status_message, contacts.status_message),
            updated_at = now()
        """,
        strip_nul((
            device_id,
            contact.phone_number,
            contact.display_name,
            contact.profile_name,
            contact.profile_picture_url,
            contact.last_seen,
            contact.status_text,
        )),
    )


def upsert_group(cur: PgCursor, device_id: int, group: GroupInfo) -> None:
    """Insert or refresh a group, keyed by (device_id, group_id)."""
    cur.execute(
        """
        INSERT INTO chat_groups (
            device_id, group_id, group_name, group_description,
            group_picture, owner_number, participant_count
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (device_id, group_id) DO UPDATE SET
            group_name = EXCLUDED.group_name,
            group_description = EXCLUDED.group_description,
            group_picture = COALESCE(EXCLUDED.group_picture, chat_groups.group_picture),
            owner_number = EXCLUDED.owner_number,
            participant_count = EXCLUDED.participant_count,
            updated_at = now()
        """,
        strip_nul((
            device_id,
            group.group_id,
            group.subject,
            group.description,
            group.picture_url,
            group.owner_number,
            group.participant_count,
        )),
    )

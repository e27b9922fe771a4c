"""Normalized provider event models.

A NormalizedEvent is the internal, typed form of one provider callback. Its
`payload` is exactly one of the variant dataclasses below, selected by
`event_type`. All variants are frozen: normalizing the same raw payload
twice yields equal objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from wabridge.domain.statuses import ConnectionStatus, DeviceStatus


class EventType(str, Enum):
    MESSAGE = "message"
    CONNECTION_UPDATE = "connection_update"
    QR_CODE = "qr_code"
    AUTH_FAILURE = "auth_failure"
    CONTACT_UPDATE = "contact_update"
    GROUP_UPDATE = "group_update"
    # Provider tag outside the six above
    UNRECOGNIZED = "unrecognized"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    CONTACT = "contact"
    LOCATION = "location"
    REACTION = "reaction"
    UNKNOWN = "unknown"


MEDIA_TYPES = frozenset(
    {MessageType.IMAGE, MessageType.VIDEO, MessageType.AUDIO, MessageType.DOCUMENT}
)


@dataclass(frozen=True)
class InboundMessage:
    """Message extracted from a `message` event.

    counterpart_number is the JID prefix of the remote party (for group
    messages, the group id prefix). group_id keeps the full group JID.
    """

    provider_message_id: str
    type: MessageType
    remote_jid: str
    counterpart_number: str
    group_id: str | None
    content: str
    media_url: str | None
    caption: str | None
    quoted_message_id: str | None
    provider_timestamp: datetime | None


@dataclass(frozen=True)
class ConnectionState:
    provider_state: str
    status: ConnectionStatus
    phone_number: str | None


@dataclass(frozen=True)
class QrPayload:
    qr_code: str | None


@dataclass(frozen=True)
class AuthFailure:
    reason: str
    status: DeviceStatus


@dataclass(frozen=True)
class ContactInfo:
    remote_jid: str
    phone_number: str
    display_name: str | None
    profile_name: str | None
    profile_picture_url: str | None
    last_seen: datetime | None
    status_text: str | None


@dataclass(frozen=True)
class GroupInfo:
    group_id: str
    subject: str
    description: str
    picture_url: str | None
    owner_number: str
    participant_count: int


@dataclass(frozen=True)
class UnrecognizedEvent:
    event: str


EventPayload = Union[
    InboundMessage,
    ConnectionState,
    QrPayload,
    AuthFailure,
    ContactInfo,
    GroupInfo,
    UnrecognizedEvent,
]


@dataclass(frozen=True)
class NormalizedEvent:
    event_type: EventType
    device_session_id: str
    payload: EventPayload

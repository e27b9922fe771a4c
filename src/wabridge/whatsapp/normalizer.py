"""Provider event normalizer - validate and classify webhook payloads.

Provider callback body:

    {"sessionId": "wa_1", "event": "message", "data": {...}}

parse_envelope() validates the outer shape; normalize() turns the envelope
into a NormalizedEvent. Both are pure: no clock, no I/O, no device lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from wabridge.domain.phone import extract_number, is_group_jid
from wabridge.domain.statuses import (
    DEFAULT_PROVIDER_STATE,
    ProviderState,
    auth_failure_status,
    map_provider_state,
)
from wabridge.infra.time import from_unix

from .models import (
    MEDIA_TYPES,
    AuthFailure,
    ConnectionState,
    ContactInfo,
    EventPayload,
    EventType,
    GroupInfo,
    InboundMessage,
    MessageType,
    NormalizedEvent,
    QrPayload,
    UnrecognizedEvent,
)


class MalformedEventError(Exception):
    """Raised when a provider callback has an invalid outer shape."""


@dataclass(frozen=True)
class ProviderEnvelope:
    session_id: str
    event: str
    data: dict[str, Any]


# Payload key -> message type, in classification priority order
_MESSAGE_TYPE_KEYS: tuple[tuple[str, MessageType], ...] = (
    ("conversation", MessageType.TEXT),
    ("extendedTextMessage", MessageType.TEXT),
    ("imageMessage", MessageType.IMAGE),
    ("videoMessage", MessageType.VIDEO),
    ("audioMessage", MessageType.AUDIO),
    ("documentMessage", MessageType.DOCUMENT),
    ("contactMessage", MessageType.CONTACT),
    ("locationMessage", MessageType.LOCATION),
    ("reactionMessage", MessageType.REACTION),
)

_CAPTION_KEYS = ("imageMessage", "videoMessage", "documentMessage")


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def parse_envelope(payload: Any) -> ProviderEnvelope:
    """Validate the outer callback shape.

    Args:
        payload: Decoded JSON body.

    Returns:
        ProviderEnvelope with session id, event tag and data object
        (data defaults to {} when absent or not an object).

    Raises:
        MalformedEventError: If the body is not an object or sessionId/event
            is missing or not a non-empty string.
    """
    if not isinstance(payload, dict):
        raise MalformedEventError("webhook body must be a JSON object")

    session_id = payload.get("sessionId")
    event = payload.get("event")
    if not isinstance(session_id, str) or not session_id:
        raise MalformedEventError("Invalid webhook data: missing sessionId or event")
    if not isinstance(event, str) or not event:
        raise MalformedEventError("Invalid webhook data: missing sessionId or event")

    return ProviderEnvelope(
        session_id=session_id,
        event=event,
        data=_as_dict(payload.get("data")),
    )


def classify_message(message: dict[str, Any]) -> MessageType:
    """First known payload key present (and non-null) wins."""
    for key, message_type in _MESSAGE_TYPE_KEYS:
        if message.get(key) is not None:
            return message_type
    return MessageType.UNKNOWN


def _format_coordinate(value: Any) -> str:
    return "" if value is None else str(value)


def extract_content(message: dict[str, Any]) -> str:
    """Message body text, by fixed priority.

    conversation > extended text > image/video/document caption >
    contact display name > "Location: name (lat, lon)" > "".
    """
    if message.get("conversation") is not None:
        return str(message["conversation"])

    extended_text = _as_dict(message.get("extendedTextMessage")).get("text")
    if extended_text is not None:
        return str(extended_text)

    for key in _CAPTION_KEYS:
        caption = _as_dict(message.get(key)).get("caption")
        if caption is not None:
            return str(caption)

    display_name = _as_dict(message.get("contactMessage")).get("displayName")
    if display_name is not None:
        return str(display_name)

    if message.get("locationMessage") is not None:
        location = _as_dict(message["locationMessage"])
        name = location.get("name")
        return "Location: {} ({}, {})".format(
            "Unknown" if name is None else name,
            _format_coordinate(location.get("degreesLatitude")),
            _format_coordinate(location.get("degreesLongitude")),
        )

    return ""


def _extract_caption(message: dict[str, Any]) -> str | None:
    for key in _CAPTION_KEYS:
        caption = _as_dict(message.get(key)).get("caption")
        if caption is not None:
            return str(caption)
    return None


def _extract_media_url(message: dict[str, Any], message_type: MessageType) -> str | None:
    if message_type not in MEDIA_TYPES:
        return None
    key = next(k for k, t in _MESSAGE_TYPE_KEYS if t is message_type)
    return _opt_str(_as_dict(message.get(key)).get("url"))


def _extract_quoted_id(message: dict[str, Any]) -> str | None:
    context = _as_dict(_as_dict(message.get("extendedTextMessage")).get("contextInfo"))
    stanza_id = context.get("stanzaId")
    if stanza_id is not None:
        return str(stanza_id)
    quoted_key = _as_dict(_as_dict(context.get("quotedMessage")).get("key"))
    return _opt_str(quoted_key.get("id"))


def _normalize_message(data: dict[str, Any]) -> InboundMessage:
    key = _as_dict(data.get("key"))
    message = _as_dict(data.get("message"))
    remote_jid = str(key.get("remoteJid") or "")
    message_type = classify_message(message)

    return InboundMessage(
        provider_message_id=str(key.get("id") or ""),
        type=message_type,
        remote_jid=remote_jid,
        counterpart_number=extract_number(remote_jid),
        group_id=remote_jid if is_group_jid(remote_jid) else None,
        content=extract_content(message),
        media_url=_extract_media_url(message, message_type),
        caption=_extract_caption(message),
        quoted_message_id=_extract_quoted_id(message),
        provider_timestamp=from_unix(data.get("messageTimestamp")),
    )


def _normalize_connection(data: dict[str, Any]) -> ConnectionState:
    state = data.get("state")
    provider_state = DEFAULT_PROVIDER_STATE if state is None else str(state)
    status = map_provider_state(provider_state)

    phone_number = None
    if provider_state == ProviderState.CONNECTED.value:
        user_id = _as_dict(data.get("user")).get("id")
        if user_id:
            phone_number = extract_number(str(user_id))

    return ConnectionState(
        provider_state=provider_state,
        status=status,
        phone_number=phone_number,
    )


def _normalize_qr(data: dict[str, Any]) -> QrPayload:
    return QrPayload(qr_code=_opt_str(data.get("qr")))


def _normalize_auth_failure(data: dict[str, Any]) -> AuthFailure:
    reason = data.get("reason")
    reason = "unknown" if reason is None else str(reason)
    return AuthFailure(reason=reason, status=auth_failure_status(reason))


def _normalize_contact(data: dict[str, Any]) -> ContactInfo:
    remote_jid = str(data.get("jid") or "")
    return ContactInfo(
        remote_jid=remote_jid,
        phone_number=extract_number(remote_jid),
        display_name=_opt_str(data.get("name")),
        profile_name=_opt_str(data.get("notify")),
        profile_picture_url=_opt_str(data.get("imgUrl")),
        last_seen=from_unix(data.get("lastSeen")),
        status_text=_opt_str(data.get("status")),
    )


def _normalize_group(data: dict[str, Any]) -> GroupInfo:
    size = data.get("size")
    try:
        participant_count = int(size) if size is not None else 0
    except (TypeError, ValueError, OverflowError):
        participant_count = 0

    return GroupInfo(
        group_id=str(data.get("jid") or ""),
        subject=str(data.get("subject") or ""),
        description=str(data.get("desc") or ""),
        picture_url=_opt_str(data.get("pictureUrl")),
        owner_number=extract_number(str(data.get("owner") or "")),
        participant_count=participant_count,
    )


_EXTRACTORS: dict[EventType, Callable[[dict[str, Any]], EventPayload]] = {
    EventType.MESSAGE: _normalize_message,
    EventType.CONNECTION_UPDATE: _normalize_connection,
    EventType.QR_CODE: _normalize_qr,
    EventType.AUTH_FAILURE: _normalize_auth_failure,
    EventType.CONTACT_UPDATE: _normalize_contact,
    EventType.GROUP_UPDATE: _normalize_group,
}


def normalize(envelope: ProviderEnvelope) -> NormalizedEvent:
    """Classify an envelope and extract its typed payload.

    Unknown event tags yield EventType.UNRECOGNIZED with an
    UnrecognizedEvent payload instead of raising.
    """
    try:
        event_type = EventType(envelope.event)
    except ValueError:
        event_type = EventType.UNRECOGNIZED

    extractor = _EXTRACTORS.get(event_type)
    if extractor is None:
        return NormalizedEvent(
            event_type=EventType.UNRECOGNIZED,
            device_session_id=envelope.session_id,
            payload=UnrecognizedEvent(event=envelope.event),
        )

    return NormalizedEvent(
        event_type=event_type,
        device_session_id=envelope.session_id,
        payload=extractor(envelope.data),
    )

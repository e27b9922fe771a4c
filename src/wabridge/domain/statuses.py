"""Status vocabularies and the provider → bridge status mapping.

Device status (stored on devices.status):
    disconnected | connecting | connected | banned | inactive (soft-retired)

Provider connection states are mapped through a closed table; anything
outside it maps to ConnectionStatus.UNKNOWN, which never overwrites the
stored device status.

Message status only moves forward: sent -> delivered -> read.
"""

from __future__ import annotations

from enum import Enum


class DeviceStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BANNED = "banned"
    INACTIVE = "inactive"


class ConnectionStatus(str, Enum):
    """Result of mapping a provider connection state."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    BANNED = "banned"
    UNKNOWN = "unknown"

    def to_device_status(self) -> DeviceStatus | None:
        """Device status to store, or None for UNKNOWN (leave as is)."""
        if self is ConnectionStatus.UNKNOWN:
            return None
        return DeviceStatus(self.value)


class ProviderState(str, Enum):
    """Connection states emitted by the provider engine."""

    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    BANNED = "BANNED"
    QR_GENERATED = "QR_GENERATED"
    TIMEOUT = "TIMEOUT"


_PROVIDER_STATE_MAP: dict[ProviderState, ConnectionStatus] = {
    ProviderState.CONNECTING: ConnectionStatus.CONNECTING,
    ProviderState.CONNECTED: ConnectionStatus.CONNECTED,
    ProviderState.DISCONNECTED: ConnectionStatus.DISCONNECTED,
    ProviderState.BANNED: ConnectionStatus.BANNED,
    ProviderState.QR_GENERATED: ConnectionStatus.CONNECTING,
    ProviderState.TIMEOUT: ConnectionStatus.DISCONNECTED,
}

# Provider omitted the state entirely
DEFAULT_PROVIDER_STATE = ProviderState.DISCONNECTED.value


def map_provider_state(state: str) -> ConnectionStatus:
    """Map a provider state string to a ConnectionStatus.

    Total over all strings: the six known states map per the table, every
    other value maps to ConnectionStatus.UNKNOWN. Matching is exact
    (provider states are upper-case).
    """
    try:
        provider_state = ProviderState(state)
    except ValueError:
        return ConnectionStatus.UNKNOWN
    return _PROVIDER_STATE_MAP[provider_state]


# Reasons that mean the account itself was banned
_BAN_REASONS = frozenset({"banned", "blocked"})


def auth_failure_status(reason: str) -> DeviceStatus:
    """Device status implied by an auth_failure reason."""
    if reason in _BAN_REASONS:
        return DeviceStatus.BANNED
    return DeviceStatus.DISCONNECTED


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


_MESSAGE_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


def can_advance(current: MessageStatus, new: MessageStatus) -> bool:
    """True if `new` is strictly later than `current` in sent -> delivered -> read."""
    return _MESSAGE_STATUS_RANK[new] > _MESSAGE_STATUS_RANK[current]


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"

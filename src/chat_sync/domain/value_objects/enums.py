from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SubscriptionPhase(StrEnum):
    NO_PEER = "no_peer"
    RESOLVING = "resolving"
    SUBSCRIBED = "subscribed"


class SendFailureKind(StrEnum):
    RATE_LIMITED = "rate_limited"
    PEER_NOT_FOUND = "peer_not_found"
    INVALID_CONTENT = "invalid_content"
    UNKNOWN = "unknown"


class MergeOutcome(StrEnum):
    APPENDED = "appended"
    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"

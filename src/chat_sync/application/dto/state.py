from __future__ import annotations

from dataclasses import dataclass

from chat_sync.application.dto.usage import DailyUsage
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ConnectionState, SubscriptionPhase


@dataclass(frozen=True, slots=True)
class ChatError:
    """User-facing error banner."""

    kind: str
    message: str


@dataclass(frozen=True, slots=True)
class ChatSnapshot:
    """Read-only view of a chat session for the UI."""

    me: str
    peer: str | None
    connection: ConnectionState
    connection_error: str | None
    phase: SubscriptionPhase
    messages: tuple[Message, ...]
    sending: bool
    history_loading: bool
    history_error: str | None
    error: ChatError | None
    usage: DailyUsage | None
    draft: str
    is_typing: bool

    @property
    def pending_count(self) -> int:
        return sum(1 for m in self.messages if m.pending)

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Message:
    """One logical chat message.

    Confirmed messages carry the backend ``id`` (pushes without one are
    identified by their content key). Optimistic entries carry a client-only
    ``temp_id`` instead and are pending until a confirmed copy replaces them.
    """

    sender: str
    receiver: str
    content: str
    timestamp: datetime
    id: str | None = None
    temp_id: str | None = None
    client_msg_id: str | None = None

    def __post_init__(self) -> None:
        if self.id is not None and self.temp_id is not None:
            raise ValueError("Message cannot carry both id and temp_id")

    @property
    def pending(self) -> bool:
        return self.temp_id is not None

    def confirmed_by(self, server: Message) -> Message:
        """Return the confirmed form of this optimistic entry."""
        return replace(
            server,
            temp_id=None,
            client_msg_id=server.client_msg_id or self.client_msg_id,
        )

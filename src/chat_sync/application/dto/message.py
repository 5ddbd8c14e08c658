from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class PushDelivery:
    """A decoded push, tagged with the subscription generation it came from."""

    generation: int
    topic: str
    message: Message

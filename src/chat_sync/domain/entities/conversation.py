from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.topics import TopicPair


@dataclass(frozen=True, slots=True)
class Conversation:
    """The (tenant, me, peer) pair currently being viewed."""

    tenant_id: str
    me: str
    peer: str
    topics: TopicPair

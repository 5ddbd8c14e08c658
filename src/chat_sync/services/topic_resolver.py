from __future__ import annotations

from urllib.parse import quote

from chat_sync.application.exceptions import InvalidConversationError
from chat_sync.config import settings
from chat_sync.domain.value_objects.topics import TopicPair


def _segment(value: str) -> str:
    return quote(value, safe="")


def topic_for(tenant_id: str, author: str, counterpart: str, *, prefix: str | None = None) -> str:
    """Topic carrying messages authored by ``author`` in its chat with ``counterpart``."""
    return ":".join(
        (prefix or settings.TOPIC_PREFIX, _segment(tenant_id), _segment(author), _segment(counterpart))
    )


def resolve_topics(
    tenant_id: str,
    user_a: str,
    user_b: str,
    *,
    prefix: str | None = None,
) -> TopicPair:
    """Return the directional topic pair for a conversation.

    The result does not depend on argument order, so both participants
    compute the same pair.
    """
    tenant = (tenant_id or "").strip()
    a = (user_a or "").strip()
    b = (user_b or "").strip()
    if not tenant:
        raise InvalidConversationError("Tenant id must not be empty")
    if not a or not b:
        raise InvalidConversationError("Both participants must be specified")

    lo, hi = sorted((a, b))
    return TopicPair(
        primary=topic_for(tenant, lo, hi, prefix=prefix),
        secondary=topic_for(tenant, hi, lo, prefix=prefix),
    )

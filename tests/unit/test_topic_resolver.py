from __future__ import annotations

import pytest

from chat_sync.application.exceptions import InvalidConversationError
from chat_sync.services.topic_resolver import resolve_topics, topic_for


def test_both_participants_compute_the_same_pair():
    mine = resolve_topics("acme", "alice", "bob", prefix="chat")
    theirs = resolve_topics("acme", "bob", "alice", prefix="chat")

    assert mine == theirs
    assert mine.primary == "chat:acme:alice:bob"
    assert mine.secondary == "chat:acme:bob:alice"


def test_topics_are_scoped_by_tenant():
    assert resolve_topics("acme", "alice", "bob") != resolve_topics("globex", "alice", "bob")


def test_identifiers_are_stripped_and_encoded():
    pair = resolve_topics(" acme ", "al:ice", " bob", prefix="chat")

    assert pair.primary == "chat:acme:al%3Aice:bob"
    assert pair.secondary == "chat:acme:bob:al%3Aice"


def test_self_conversation_yields_identical_topics():
    pair = resolve_topics("acme", "alice", "alice")

    assert pair.primary == pair.secondary
    assert list(pair) == [pair.primary, pair.secondary]


def test_topic_for_is_directional():
    assert topic_for("acme", "alice", "bob", prefix="x") == "x:acme:alice:bob"


@pytest.mark.parametrize(
    ("tenant", "a", "b"),
    [("acme", "", "bob"), ("acme", "alice", "   "), ("", "alice", "bob")],
)
def test_empty_identifier_is_rejected(tenant, a, b):
    with pytest.raises(InvalidConversationError):
        resolve_topics(tenant, a, b)

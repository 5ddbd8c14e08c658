from __future__ import annotations

from datetime import timedelta

import pytest

from chat_sync.domain.value_objects.enums import MergeOutcome
from chat_sync.services.reconciliation import ReconciliationEngine, dedup_key
from tests.conftest import T0, FakeClock, make_message


@pytest.fixture
def engine(clock: FakeClock) -> ReconciliationEngine:
    return ReconciliationEngine(match_window=timedelta(seconds=60), clock=clock)


def _optimistic(content: str = "hi", temp_id: str = "tmp-1", **kwargs):
    return make_message(content=content, temp_id=temp_id, **kwargs)


def test_dedup_key_prefers_id():
    a = make_message(id="m1", content="one")
    b = make_message(id="m1", content="two")
    c = make_message(content="one")

    assert dedup_key(a) == dedup_key(b)
    assert dedup_key(c) == ("composite", T0, "alice", "bob", "one")


def test_repeated_delivery_by_id_shows_one_entry(engine):
    msg = make_message(sender="bob", receiver="alice", id="m1")

    outcomes = [engine.server_message_arrived(msg) for _ in range(3)]

    assert outcomes == [MergeOutcome.APPENDED, MergeOutcome.DUPLICATE, MergeOutcome.DUPLICATE]
    assert len(engine) == 1


def test_repeated_delivery_without_id_collapses_on_composite_key(engine):
    msg = make_message(sender="bob", receiver="alice", content="yo")

    engine.server_message_arrived(msg)
    engine.server_message_arrived(make_message(sender="bob", receiver="alice", content="yo"))

    assert len(engine) == 1


def test_same_content_at_different_times_is_two_messages(engine):
    engine.server_message_arrived(make_message(sender="bob", receiver="alice", content="ok"))
    engine.server_message_arrived(
        make_message(sender="bob", receiver="alice", content="ok", timestamp=T0 + timedelta(seconds=5)),
    )

    assert len(engine) == 2


def test_confirmation_replaces_optimistic_entry_in_place(engine):
    engine.server_message_arrived(make_message(sender="bob", receiver="alice", id="m0", content="first"))
    engine.optimistic_added(_optimistic("hi"))
    engine.server_message_arrived(make_message(sender="bob", receiver="alice", id="m2", content="late"))

    outcome = engine.server_message_arrived(make_message(id="m1", content="hi", timestamp=T0 + timedelta(seconds=1)))

    assert outcome == MergeOutcome.CONFIRMED
    assert [m.id for m in engine.messages] == ["m0", "m1", "m2"]
    assert engine.messages[1].pending is False
    assert engine.messages[1].temp_id is None
    assert engine.pending_count == 0


def test_confirmation_keeps_the_client_token(engine):
    engine.optimistic_added(_optimistic("hi", client_msg_id="c-1"))

    engine.server_message_arrived(make_message(id="m1", content="hi"))

    assert engine.messages[0].client_msg_id == "c-1"


def test_peer_message_without_optimistic_counterpart_is_appended(engine):
    engine.optimistic_added(_optimistic("hi"))

    outcome = engine.server_message_arrived(make_message(sender="bob", receiver="alice", id="m9", content="hi"))

    assert outcome == MergeOutcome.APPENDED
    assert [m.pending for m in engine.messages] == [True, False]


def test_optimistic_entry_outside_window_is_not_matched(engine, clock):
    engine.optimistic_added(_optimistic("hi"))
    clock.advance(61)

    outcome = engine.server_message_arrived(make_message(id="m1", content="hi", timestamp=clock.now()))

    assert outcome == MergeOutcome.APPENDED
    assert len(engine) == 2


def test_window_tolerates_skewed_server_timestamp(engine, clock):
    engine.optimistic_added(_optimistic("hi"))
    clock.advance(2)

    outcome = engine.server_message_arrived(
        make_message(id="m1", content="hi", timestamp=T0 - timedelta(minutes=10)),
    )

    assert outcome == MergeOutcome.CONFIRMED


def test_correlation_token_matches_exactly(engine):
    engine.optimistic_added(_optimistic("same", temp_id="tmp-1", client_msg_id="c-1"))
    engine.optimistic_added(_optimistic("same", temp_id="tmp-2", client_msg_id="c-2"))

    engine.server_message_arrived(make_message(id="m2", content="same", client_msg_id="c-2"))

    assert [(m.id, m.temp_id) for m in engine.messages] == [(None, "tmp-1"), ("m2", None)]


def test_heuristic_matches_earliest_of_identical_pending_entries(engine):
    engine.optimistic_added(_optimistic("same", temp_id="tmp-1"))
    engine.optimistic_added(_optimistic("same", temp_id="tmp-2"))

    engine.server_message_arrived(make_message(id="m1", content="same"))

    assert [(m.id, m.temp_id) for m in engine.messages] == [("m1", None), (None, "tmp-2")]


def test_duplicate_delivery_removes_leftover_optimistic_copy(engine):
    engine.server_message_arrived(make_message(id="m1", content="hi"))
    engine.optimistic_added(_optimistic("hi"))

    outcome = engine.server_message_arrived(make_message(id="m1", content="hi"))

    assert outcome == MergeOutcome.DUPLICATE
    assert [m.id for m in engine.messages] == ["m1"]


def test_failed_optimistic_entry_is_removed_and_not_resurrected(engine):
    engine.optimistic_added(_optimistic("hi", temp_id="tmp-1"))

    assert engine.optimistic_failed("tmp-1") is True
    assert engine.optimistic_failed("tmp-1") is False
    assert len(engine) == 0

    engine.server_message_arrived(make_message(sender="bob", receiver="alice", id="m1"))
    assert all(m.temp_id != "tmp-1" for m in engine.messages)


def test_optimistic_entry_requires_temp_id(engine):
    with pytest.raises(ValueError):
        engine.optimistic_added(make_message(id="m1"))


def test_server_message_must_not_carry_temp_id(engine):
    with pytest.raises(ValueError):
        engine.server_message_arrived(_optimistic())


def test_duplicate_temp_id_is_rejected(engine):
    engine.optimistic_added(_optimistic(temp_id="tmp-1"))
    with pytest.raises(ValueError):
        engine.optimistic_added(_optimistic(content="other", temp_id="tmp-1"))


def test_history_replaces_list_and_drops_duplicates(engine):
    engine.server_message_arrived(make_message(id="old", content="stale", sender="carol"))
    engine.clear()

    engine.load_history([
        make_message(id="h1", content="a"),
        make_message(id="h2", content="b"),
        make_message(id="h1", content="a"),
    ])

    assert [m.id for m in engine.messages] == ["h1", "h2"]


def test_history_keeps_entries_that_raced_the_request(engine):
    engine.server_message_arrived(make_message(sender="bob", receiver="alice", id="p1", content="pushed"))
    engine.server_message_arrived(make_message(sender="bob", receiver="alice", id="h2", content="both"))
    engine.optimistic_added(_optimistic("pending"))

    engine.load_history([make_message(id="h1", content="a"), make_message(sender="bob", receiver="alice", id="h2", content="both")])

    assert [m.id or m.temp_id for m in engine.messages] == ["h1", "h2", "p1", "tmp-1"]


def test_history_containing_the_confirmed_send_drops_the_pending_copy(engine):
    engine.optimistic_added(_optimistic("hi"))

    engine.load_history([make_message(id="m1", content="hi", timestamp=T0 + timedelta(seconds=1))])

    assert [m.id for m in engine.messages] == ["m1"]
    engine.server_message_arrived(make_message(id="m1", content="hi"))
    assert len(engine) == 1


def test_messages_snapshot_is_read_only(engine):
    engine.server_message_arrived(make_message(id="m1"))
    snapshot = engine.messages

    engine.server_message_arrived(make_message(id="m2"))

    assert isinstance(snapshot, tuple)
    assert len(snapshot) == 1

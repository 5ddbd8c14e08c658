"""Ordered message list for the active conversation.

Three sources feed the list: history retrieved over REST, optimistic entries
created locally on send, and confirmed messages delivered by push. The engine
merges them so that a logical message is shown at most once and an
optimistic entry is replaced where it stands when its confirmation arrives.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Hashable

from chat_sync.application.ports.clock import Clock, SystemClock, age
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MergeOutcome

logger = logging.getLogger(__name__)

DedupKey = tuple[Hashable, ...]


def dedup_key(message: Message) -> DedupKey:
    if message.id is not None:
        return ("id", message.id)
    return ("composite", message.timestamp, message.sender, message.receiver, message.content)


class ReconciliationEngine:
    def __init__(
        self,
        *,
        match_window: timedelta = timedelta(seconds=60),
        clock: Clock | None = None,
    ) -> None:
        self._match_window = match_window
        self._clock = clock or SystemClock()
        self._messages: list[Message] = []
        self._keys: set[DedupKey] = set()

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def pending_count(self) -> int:
        return sum(1 for m in self._messages if m.pending)

    def __len__(self) -> int:
        return len(self._messages)

    def clear(self) -> None:
        self._messages = []
        self._keys = set()

    def load_history(self, history: list[Message]) -> None:
        """Replace the list with server-ordered history.

        Entries already in the list that history does not cover (still
        pending, or pushed while the history request was in flight) are kept
        after it in their previous order.
        """
        messages: list[Message] = []
        keys: set[DedupKey] = set()
        for msg in history:
            if msg.pending:
                continue
            key = dedup_key(msg)
            if key in keys:
                continue
            keys.add(key)
            messages.append(msg)

        confirmed = list(messages)
        carried = 0
        for msg in self._messages:
            if msg.pending:
                if any(self._confirms(server, msg) for server in confirmed):
                    continue
            else:
                key = dedup_key(msg)
                if key in keys:
                    continue
                keys.add(key)
            messages.append(msg)
            carried += 1

        self._messages = messages
        self._keys = keys
        logger.debug("History loaded: %d messages (%d carried over)", len(messages), carried)

    def optimistic_added(self, message: Message) -> None:
        if not message.pending:
            raise ValueError("Optimistic entries must carry a temp_id")
        if self._index_of_temp(message.temp_id) is not None:
            raise ValueError(f"Duplicate temp_id {message.temp_id}")
        self._messages.append(message)

    def optimistic_failed(self, temp_id: str) -> bool:
        """Drop the optimistic entry with ``temp_id``. Unknown ids are ignored."""
        idx = self._index_of_temp(temp_id)
        if idx is None:
            return False
        del self._messages[idx]
        return True

    def server_message_arrived(self, message: Message) -> MergeOutcome:
        if message.pending:
            raise ValueError("Server messages cannot carry a temp_id")
        key = dedup_key(message)
        match = self._find_pending_match(message)

        if key in self._keys:
            if match is not None:
                leftover = self._messages.pop(match)
                logger.debug("Duplicate delivery; removed leftover optimistic %s", leftover.temp_id)
            return MergeOutcome.DUPLICATE

        self._keys.add(key)
        if match is not None:
            self._messages[match] = self._messages[match].confirmed_by(message)
            return MergeOutcome.CONFIRMED

        self._messages.append(message)
        return MergeOutcome.APPENDED

    def _index_of_temp(self, temp_id: str | None) -> int | None:
        for idx, msg in enumerate(self._messages):
            if msg.temp_id == temp_id:
                return idx
        return None

    def _find_pending_match(self, message: Message) -> int | None:
        # A correlation token echoed by the server is authoritative.
        if message.client_msg_id:
            for idx, msg in enumerate(self._messages):
                if msg.pending and msg.client_msg_id == message.client_msg_id:
                    return idx
            return None

        for idx, msg in enumerate(self._messages):
            if (
                msg.pending
                and msg.sender == message.sender
                and msg.receiver == message.receiver
                and msg.content == message.content
                and age(self._clock, msg.timestamp) <= self._match_window
            ):
                return idx
        return None

    def _confirms(self, server: Message, pending: Message) -> bool:
        if server.client_msg_id and pending.client_msg_id:
            return server.client_msg_id == pending.client_msg_id
        return (
            server.sender == pending.sender
            and server.receiver == pending.receiver
            and server.content == pending.content
            and abs(server.timestamp - pending.timestamp) <= self._match_window
        )

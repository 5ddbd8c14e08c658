"""Keeps exactly one topic-pair subscription live for the active peer."""
from __future__ import annotations

import logging
from typing import Any, Callable, Coroutine

from chat_sync.application.dto.message import PushDelivery
from chat_sync.application.exceptions import NotConnectedError
from chat_sync.application.ports.transport import OnRawMessage
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.value_objects.enums import ConnectionState, SubscriptionPhase
from chat_sync.infrastructure.bus.serializer import deserialize_message
from chat_sync.services.connection_manager import ConnectionManager, SubscriptionHandle
from chat_sync.services.topic_resolver import resolve_topics

logger = logging.getLogger(__name__)

OnPush = Callable[[PushDelivery], Coroutine[Any, Any, None]]
OnSwitch = Callable[[], None]


class SubscriptionSlot:
    """Single-slot registry for the live subscription handles."""

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections
        self._handles: list[SubscriptionHandle] = []

    @property
    def occupied(self) -> bool:
        return bool(self._handles)

    def fill(self, handles: list[SubscriptionHandle]) -> None:
        if self._handles:
            raise RuntimeError("Subscription slot is already occupied")
        self._handles = handles

    async def release(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            await self._connections.unsubscribe(handle)

    def invalidate(self) -> None:
        self._handles = []


class SubscriptionController:
    """State machine ``NO_PEER -> RESOLVING -> SUBSCRIBED`` keyed by active peer.

    Every peer change bumps ``generation``; handlers created for an older
    generation drop whatever they still receive.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        *,
        tenant_id: str,
        me: str,
        on_push: OnPush,
        topic_prefix: str | None = None,
        on_switch: OnSwitch | None = None,
    ) -> None:
        self._connections = connections
        self._tenant_id = tenant_id
        self._me = me
        self._on_push = on_push
        self._topic_prefix = topic_prefix
        self._on_switch = on_switch
        self._slot = SubscriptionSlot(connections)
        self._conversation: Conversation | None = None
        self._phase = SubscriptionPhase.NO_PEER
        self._generation = 0
        self._remove_listener = connections.add_listener(self.on_connection_state)

    @property
    def phase(self) -> SubscriptionPhase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def conversation(self) -> Conversation | None:
        return self._conversation

    @property
    def peer(self) -> str | None:
        return self._conversation.peer if self._conversation else None

    async def __aenter__(self) -> "SubscriptionController":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    async def select_peer(self, peer: str | None) -> Conversation | None:
        """Switch the active peer; the previous pair is released first."""
        peer = (peer or "").strip()
        if self._conversation is not None and peer == self._conversation.peer:
            return self._conversation

        # Resolve before tearing down so invalid input leaves the old pair live.
        topics = (
            resolve_topics(self._tenant_id, self._me, peer, prefix=self._topic_prefix)
            if peer else None
        )

        self._generation += 1
        if self._on_switch is not None:
            self._on_switch()
        await self._slot.release()

        if topics is None:
            self._conversation = None
            self._phase = SubscriptionPhase.NO_PEER
            logger.debug("Active peer cleared")
            return None

        self._conversation = Conversation(
            tenant_id=self._tenant_id, me=self._me, peer=peer, topics=topics,
        )
        self._phase = SubscriptionPhase.RESOLVING
        logger.info("Active peer -> %s (generation=%d)", peer, self._generation)
        if self._connections.connected:
            await self._subscribe()
        return self._conversation

    async def on_connection_state(self, state: ConnectionState, _cause: BaseException | None) -> None:
        if state == ConnectionState.CONNECTED:
            if self._conversation is not None and self._phase == SubscriptionPhase.RESOLVING:
                await self._subscribe()
        elif state == ConnectionState.DISCONNECTED:
            # The transport does not keep subscriptions across reconnects.
            self._slot.invalidate()
            if self._conversation is not None:
                self._phase = SubscriptionPhase.RESOLVING

    async def close(self) -> None:
        self._generation += 1
        await self._slot.release()
        self._conversation = None
        self._phase = SubscriptionPhase.NO_PEER
        self._remove_listener()

    async def _subscribe(self) -> None:
        conversation = self._conversation
        assert conversation is not None
        generation = self._generation
        handler = self._make_handler(generation)
        handles: list[SubscriptionHandle] = []
        try:
            for topic in dict.fromkeys(conversation.topics):
                handles.append(await self._connections.subscribe(topic, handler))
        except NotConnectedError as exc:
            logger.info("Subscribe deferred until reconnect: %s", exc.detail)
            for handle in handles:
                await self._connections.unsubscribe(handle)
            return

        if generation != self._generation or self._slot.occupied:
            for handle in handles:
                await self._connections.unsubscribe(handle)
            return

        self._slot.fill(handles)
        self._phase = SubscriptionPhase.SUBSCRIBED
        logger.info(
            "Subscribed to %s / %s for peer %s",
            conversation.topics.primary,
            conversation.topics.secondary,
            conversation.peer,
        )

    def _make_handler(self, generation: int) -> OnRawMessage:
        async def _handle(topic: str, raw: str | bytes) -> None:
            if generation != self._generation:
                logger.debug("Dropping push on %s from stale generation %d", topic, generation)
                return
            try:
                message = deserialize_message(raw)
            except ValueError as exc:
                logger.warning("Dropping malformed push on %s: %s", topic, exc)
                return
            await self._on_push(PushDelivery(generation=generation, topic=topic, message=message))

        return _handle

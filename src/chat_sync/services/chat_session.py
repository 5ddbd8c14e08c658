"""Per-user chat session: wires connection, subscriptions, engine and sends."""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Callable

from chat_sync.application.dto.message import PushDelivery
from chat_sync.application.dto.principal import Credential
from chat_sync.application.dto.state import ChatError, ChatSnapshot
from chat_sync.application.dto.usage import DailyUsage
from chat_sync.application.exceptions import HistoryLoadError, SendFailure, ValidationError
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.application.ports.clock import Clock
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ConnectionState
from chat_sync.infrastructure.bus.serializer import serialize_event
from chat_sync.services.composer import Composer
from chat_sync.services.connection_manager import ConnectionManager
from chat_sync.services.reconciliation import ReconciliationEngine
from chat_sync.services.send_coordinator import SendCoordinator
from chat_sync.services.subscription_controller import SubscriptionController

logger = logging.getLogger(__name__)

Observer = Callable[[], None]


def _calc_backoff(attempts: int, base: float, maximum: float) -> float:
    return min(base * (2 ** attempts), maximum)


class ChatSession:
    """Everything one signed-in user needs to view and send messages.

    Push deliveries are queued and applied by a single consumer task, so the
    message list only ever changes on one logical thread of control.
    """

    def __init__(
        self,
        *,
        me: str,
        tenant_id: str,
        credential: Credential,
        connections: ConnectionManager,
        api: ChatApi,
        clock: Clock | None = None,
        match_window_seconds: float = 60.0,
        typing_idle_seconds: float = 1.0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        topic_prefix: str | None = None,
        typing_destination: str | None = None,
    ) -> None:
        self.me = me
        self._tenant_id = tenant_id
        self._typing_destination = typing_destination
        self._credential = credential
        self._connections = connections
        self._api = api
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay

        self._observers: list[Observer] = []
        self._inbox: asyncio.Queue[PushDelivery] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None
        self._publish_tasks: set[asyncio.Task[None]] = set()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0
        self._closing = False

        self._history_loading = False
        self._history_error: str | None = None
        self._error: ChatError | None = None

        self.engine = ReconciliationEngine(
            match_window=timedelta(seconds=match_window_seconds), clock=clock,
        )
        self.composer = Composer(idle_seconds=typing_idle_seconds, on_change=self._notify)
        self.sender = SendCoordinator(
            me=me,
            engine=self.engine,
            api=api,
            composer=self.composer,
            clock=clock,
            on_change=self._notify,
        )
        self.subscriptions = SubscriptionController(
            connections,
            tenant_id=tenant_id,
            me=me,
            on_push=self._enqueue,
            topic_prefix=topic_prefix,
            on_switch=self._on_peer_switch,
        )
        self._remove_listener = connections.add_listener(self._on_connection_state)

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump(), name=f"chat-pump-{self.me}")
        await self._connections.connect(self._credential)
        await self.sender.refresh_usage()
        self._notify()

    async def close(self) -> None:
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        self._remove_listener()
        await self.subscriptions.close()
        await self._connections.disconnect()
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        for task in list(self._publish_tasks):
            task.cancel()
        self.composer.close()
        await self._api.close()
        self._observers.clear()
        logger.info("Chat session closed for %s", self.me)

    # -- observable state --------------------------------------------------

    def add_observer(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def snapshot(self) -> ChatSnapshot:
        last_error = self._connections.last_error
        return ChatSnapshot(
            me=self.me,
            peer=self.subscriptions.peer,
            connection=self._connections.state,
            connection_error=str(last_error) if last_error and not self._connections.connected else None,
            phase=self.subscriptions.phase,
            messages=self.engine.messages,
            sending=self.sender.sending,
            history_loading=self._history_loading,
            history_error=self._history_error,
            error=self._error,
            usage=self.sender.usage,
            draft=self.composer.draft,
            is_typing=self.composer.is_typing,
        )

    @property
    def usage(self) -> DailyUsage | None:
        return self.sender.usage

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    # -- operations --------------------------------------------------------

    async def select_peer(self, peer: str | None) -> Conversation | None:
        previous = self.subscriptions.peer
        conversation = await self.subscriptions.select_peer(peer)
        if conversation is None:
            self._notify()
            return None
        if conversation.peer == previous:
            return conversation
        await self._load_history(conversation)
        return conversation

    async def reload_history(self) -> None:
        conversation = self.subscriptions.conversation
        if conversation is None:
            raise ValidationError("No active conversation")
        await self._load_history(conversation)

    async def send(self, content: str | None) -> Message | None:
        self._error = None
        try:
            return await self.sender.send(self.subscriptions.peer, content)
        except SendFailure as exc:
            self._error = ChatError(kind=exc.kind.value, message=exc.user_message)
            raise
        except ValidationError as exc:
            self._error = ChatError(kind="validation", message=exc.detail)
            raise
        finally:
            self._notify()

    def update_credential(self, token: str) -> None:
        """Use a refreshed bearer token for REST calls and the next push connect."""
        if token == self._credential.token:
            return
        self._credential = Credential(identity=self._credential.identity, token=token)
        self._api.update_token(token)
        logger.info("Credential refreshed for %s", self.me)

    def update_draft(self, text: str) -> None:
        was_typing = self.composer.is_typing
        self.composer.update(text)
        if not was_typing:
            self._announce_typing()

    async def drain(self) -> None:
        """Wait until every queued push has been applied."""
        await self._inbox.join()

    # -- internals ---------------------------------------------------------

    async def _load_history(self, conversation: Conversation) -> None:
        generation = self.subscriptions.generation
        peer = conversation.peer
        self._history_loading = True
        self._history_error = None
        self._notify()
        try:
            history = await self._api.fetch_history(peer)
        except Exception as exc:
            if not self._is_current(peer, generation):
                return
            error = exc if isinstance(exc, HistoryLoadError) else HistoryLoadError(str(exc))
            logger.warning("History load for %s failed: %s", peer, error.detail)
            self._history_loading = False
            self._history_error = error.detail or "Failed to load messages"
            self._notify()
            return

        if not self._is_current(peer, generation):
            logger.debug("Discarding stale history for %s", peer)
            return
        self.engine.load_history(history)
        self._history_loading = False
        self._notify()

    def _announce_typing(self) -> None:
        peer = self.subscriptions.peer
        if not self._typing_destination or not peer or not self._connections.connected:
            return
        payload = serialize_event(
            "chat.typing", {"tenant_id": self._tenant_id, "sender": self.me, "receiver": peer},
        )
        task = asyncio.create_task(self._publish(self._typing_destination, payload))
        self._publish_tasks.add(task)
        task.add_done_callback(self._publish_tasks.discard)

    async def _publish(self, destination: str, payload: str) -> None:
        try:
            await self._connections.publish(destination, payload)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Typing notification to %s not sent: %s", destination, exc)

    def _on_peer_switch(self) -> None:
        # Runs before the old pair is released; queued pushes of the old
        # generation are dropped by the pump.
        self.engine.clear()
        self._history_loading = False
        self._history_error = None
        self._error = None
        self._notify()

    def _is_current(self, peer: str, generation: int) -> bool:
        return self.subscriptions.peer == peer and self.subscriptions.generation == generation

    async def _enqueue(self, delivery: PushDelivery) -> None:
        self._inbox.put_nowait(delivery)

    async def _pump(self) -> None:
        while True:
            delivery = await self._inbox.get()
            try:
                if delivery.generation != self.subscriptions.generation:
                    logger.debug("Dropping queued push from stale generation %d", delivery.generation)
                    continue
                outcome = self.engine.server_message_arrived(delivery.message)
                logger.debug("Push on %s -> %s", delivery.topic, outcome)
                self._notify()
            except Exception:
                logger.exception("Error applying push from %s", delivery.topic)
            finally:
                self._inbox.task_done()

    async def _on_connection_state(self, state: ConnectionState, cause: BaseException | None) -> None:
        if state == ConnectionState.CONNECTED:
            self._reconnect_attempts = 0
        elif state == ConnectionState.DISCONNECTED and cause is not None and not self._closing:
            self._schedule_reconnect()
        self._notify()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        delay = _calc_backoff(
            self._reconnect_attempts, self._reconnect_base_delay, self._reconnect_max_delay,
        )
        self._reconnect_attempts += 1
        logger.info("Reconnecting %s in %.1fs (attempt %d)", self.me, delay, self._reconnect_attempts)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay), name=f"chat-reconnect-{self.me}",
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._closing:
            return
        await self._connections.connect(self._credential)

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer()
            except Exception:
                logger.exception("Chat session observer failed")

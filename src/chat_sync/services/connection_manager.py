"""One push connection per user session."""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from chat_sync.application.dto.principal import Credential
from chat_sync.application.exceptions import NotConnectedError, PushConnectionError
from chat_sync.application.ports.transport import OnRawMessage, PushTransport
from chat_sync.domain.value_objects.enums import ConnectionState

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState, BaseException | None], Coroutine[Any, Any, None]]
TransportFactory = Callable[[], PushTransport]

_handle_ids = itertools.count(1)


@dataclass(eq=False, slots=True)
class SubscriptionHandle:
    topic: str
    id: int = field(default_factory=lambda: next(_handle_ids))
    released: bool = False


class ConnectionManager:
    """Owns the transport session, its state machine and topic subscriptions.

    Reconnection policy is left to the owner: after a transport loss the
    manager only reports ``disconnected`` with the cause.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        connect_timeout: float = 10.0,
    ) -> None:
        self._transport_factory = transport_factory
        self._connect_timeout = connect_timeout
        self._transport: PushTransport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._last_error: BaseException | None = None
        self._listeners: list[StateListener] = []
        self._connect_task: asyncio.Task[None] | None = None
        self._handlers: dict[str, dict[int, OnRawMessage]] = {}
        self._handles: dict[int, SubscriptionHandle] = {}

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def connect(self, credential: Credential) -> None:
        if self._state == ConnectionState.CONNECTED:
            return
        if self._connect_task is not None and not self._connect_task.done():
            await asyncio.shield(self._connect_task)
            return
        self._connect_task = asyncio.create_task(
            self._connect(credential), name=f"push-connect-{credential.identity}",
        )
        await asyncio.shield(self._connect_task)

    async def _connect(self, credential: Credential) -> None:
        await self._transition(ConnectionState.CONNECTING, None)
        transport = self._transport_factory()
        try:
            await asyncio.wait_for(
                transport.open(credential, self._dispatch, self._on_transport_lost),
                timeout=self._connect_timeout,
            )
        except asyncio.CancelledError:
            await self._close_quietly(transport)
            await self._transition(ConnectionState.DISCONNECTED, None)
            raise
        except Exception as exc:
            if isinstance(exc, asyncio.TimeoutError):
                cause = PushConnectionError(
                    f"Push connection timed out after {self._connect_timeout:.1f}s"
                )
            else:
                cause = PushConnectionError(f"Push connection failed: {exc}")
            cause.__cause__ = exc
            logger.warning("Push connect failed for %s: %s", credential.identity, exc)
            await self._close_quietly(transport)
            await self._transition(ConnectionState.DISCONNECTED, cause)
            return

        self._transport = transport
        logger.info("Push connection established for %s", credential.identity)
        await self._transition(ConnectionState.CONNECTED, None)

    async def subscribe(self, topic: str, handler: OnRawMessage) -> SubscriptionHandle:
        if self._state != ConnectionState.CONNECTED or self._transport is None:
            raise NotConnectedError(f"Cannot subscribe to {topic}: push connection is {self._state}")
        topic_handlers = self._handlers.get(topic)
        if not topic_handlers:
            try:
                await self._transport.subscribe(topic)
            except Exception as exc:
                # A broken transport is a lost connection, not a caller error.
                logger.warning("Subscribe to %s failed: %s", topic, exc)
                await self._on_transport_lost(exc)
                raise NotConnectedError(f"Cannot subscribe to {topic}: {exc}") from exc
            topic_handlers = self._handlers.setdefault(topic, {})
        handle = SubscriptionHandle(topic=topic)
        topic_handlers[handle.id] = handler
        self._handles[handle.id] = handle
        logger.debug("Subscribed handle=%d topic=%s", handle.id, topic)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if handle.released:
            return
        handle.released = True
        self._handles.pop(handle.id, None)
        topic_handlers = self._handlers.get(handle.topic)
        if topic_handlers is None:
            return
        topic_handlers.pop(handle.id, None)
        if topic_handlers:
            return
        del self._handlers[handle.topic]
        if self._transport is not None and self.connected:
            try:
                await self._transport.unsubscribe(handle.topic)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Unsubscribe from %s failed: %s", handle.topic, exc)
        logger.debug("Unsubscribed handle=%d topic=%s", handle.id, handle.topic)

    async def publish(self, destination: str, payload: str) -> None:
        if self._state != ConnectionState.CONNECTED or self._transport is None:
            raise NotConnectedError(f"Cannot publish to {destination}: push connection is {self._state}")
        await self._transport.publish(destination, payload)

    async def disconnect(self) -> None:
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        self._release_all()
        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_quietly(transport)
        if self._state != ConnectionState.DISCONNECTED:
            logger.info("Push connection closed")
            await self._transition(ConnectionState.DISCONNECTED, None)

    async def _dispatch(self, topic: str, raw: str | bytes) -> None:
        for handler in list(self._handlers.get(topic, {}).values()):
            try:
                await handler(topic, raw)
            except Exception:
                logger.exception("Push handler failed for topic=%s", topic)

    async def _on_transport_lost(self, exc: BaseException) -> None:
        if self._state != ConnectionState.CONNECTED:
            return
        cause = PushConnectionError(f"Push connection lost: {exc}")
        cause.__cause__ = exc
        self._release_all()
        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_quietly(transport)
        await self._transition(ConnectionState.DISCONNECTED, cause)

    def _release_all(self) -> None:
        for handle in self._handles.values():
            handle.released = True
        self._handles.clear()
        self._handlers.clear()

    async def _close_quietly(self, transport: PushTransport) -> None:
        try:
            await transport.close()
        except Exception:  # noqa: BLE001
            logger.debug("Error closing push transport", exc_info=True)

    async def _transition(self, state: ConnectionState, cause: BaseException | None) -> None:
        self._state = state
        if state == ConnectionState.CONNECTED:
            self._last_error = None
        elif cause is not None:
            self._last_error = cause
        for listener in list(self._listeners):
            try:
                await listener(state, cause)
            except Exception:
                logger.exception("Connection state listener failed (state=%s)", state)

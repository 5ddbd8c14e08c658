from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol

from chat_sync.application.dto.principal import Credential

OnRawMessage = Callable[[str, str | bytes], Coroutine[Any, Any, None]]
OnTransportLost = Callable[[BaseException], Coroutine[Any, Any, None]]


class PushTransport(Protocol):
    """Topic-based publish/subscribe transport with at-least-once delivery."""

    async def open(self, credential: Credential, on_message: OnRawMessage, on_lost: OnTransportLost) -> None: ...

    async def subscribe(self, topic: str) -> None: ...

    async def unsubscribe(self, topic: str) -> None: ...

    async def publish(self, destination: str, payload: str) -> None: ...

    async def close(self) -> None: ...

from __future__ import annotations

from typing import Any, Protocol

from chat_sync.application.dto.usage import DailyUsage
from chat_sync.domain.entities.message import Message


class ChatApi(Protocol):
    """REST collaborator backed by the server-side message store."""

    async def fetch_history(self, peer: str) -> list[Message]: ...

    async def send_message(
        self, peer: str, content: str, *, client_msg_id: str | None = None,
    ) -> dict[str, Any]: ...

    async def fetch_daily_usage(self) -> DailyUsage: ...

    def update_token(self, token: str) -> None: ...

    async def close(self) -> None: ...

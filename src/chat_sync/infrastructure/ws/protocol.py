"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class WsInbound(BaseModel):
    """UI → service."""

    type: str  # ping | draft | select_peer | message.send
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Service → UI."""

    type: str  # chat.state | error | pong
    data: dict[str, Any] = {}

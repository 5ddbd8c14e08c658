from __future__ import annotations

from pydantic import BaseModel

from chat_sync.api.v1.schemas.message import MessageResponse


class ChatErrorResponse(BaseModel):
    kind: str
    message: str

    model_config = {"from_attributes": True}


class UsageResponse(BaseModel):
    used: int
    limit: int
    unlimited: bool
    remaining: int | None
    limit_reached: bool

    model_config = {"from_attributes": True}


class ComposerResponse(BaseModel):
    draft: str
    is_typing: bool


class ChatStateResponse(BaseModel):
    me: str
    peer: str | None
    connection: str
    connection_error: str | None
    phase: str
    messages: list[MessageResponse]
    pending_count: int
    sending: bool
    history_loading: bool
    history_error: str | None
    error: ChatErrorResponse | None
    usage: UsageResponse | None
    draft: str
    is_typing: bool

    model_config = {"from_attributes": True}

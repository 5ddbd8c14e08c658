from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    content: str = Field(max_length=4000)


class SelectPeerRequest(BaseModel):
    peer: str | None = None


class DraftRequest(BaseModel):
    text: str = ""


class MessageResponse(BaseModel):
    id: str | None
    temp_id: str | None
    sender: str
    receiver: str
    content: str
    timestamp: datetime
    pending: bool

    model_config = {"from_attributes": True}

"""Push payload codec.

Incoming payloads come either bare (``{"sender": ..., "content": ...}``) or
wrapped in the event envelope ``{"event": ..., "data": {...}}``, and name the
parties ``sender``/``receiver`` or ``from``/``to``. Everything is normalized
here into one :class:`Message` shape.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from chat_sync.domain.entities.message import Message


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


class MessagePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sender: str = Field(validation_alias=AliasChoices("sender", "from"))
    receiver: str = Field(validation_alias=AliasChoices("receiver", "to"))
    content: str
    timestamp: datetime
    id: str | None = None
    client_msg_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("clientMsgId", "client_msg_id"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_message(self) -> Message:
        return Message(
            sender=self.sender,
            receiver=self.receiver,
            content=self.content,
            timestamp=self.timestamp,
            id=self.id,
            client_msg_id=self.client_msg_id,
        )


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    envelope = {"event": event_type, "data": payload}
    return json.dumps(envelope, cls=_Encoder)


def message_from_record(record: dict[str, Any]) -> Message:
    """Build a confirmed Message from a REST or push record."""
    return MessagePayload.model_validate(record).to_message()


def deserialize_message(raw: str | bytes) -> Message:
    """Decode one push payload. Raises ``ValueError`` on malformed input."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("push payload is not an object")
    if "event" in data and isinstance(data.get("data"), dict):
        data = data["data"]
    return message_from_record(data)

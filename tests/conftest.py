"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
import pytest_asyncio

from chat_sync.application.dto.principal import Credential
from chat_sync.application.dto.usage import DailyUsage
from chat_sync.application.ports.transport import OnRawMessage, OnTransportLost
from chat_sync.domain.entities.message import Message
from chat_sync.services.chat_session import ChatSession
from chat_sync.services.connection_manager import ConnectionManager

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
TENANT = "acme"
ME = "alice"


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


def make_message(
    *,
    sender: str = ME,
    receiver: str = "bob",
    content: str = "hello",
    timestamp: datetime = T0,
    id: str | None = None,
    temp_id: str | None = None,
    client_msg_id: str | None = None,
) -> Message:
    return Message(
        sender=sender,
        receiver=receiver,
        content=content,
        timestamp=timestamp,
        id=id,
        temp_id=temp_id,
        client_msg_id=client_msg_id,
    )


def push_payload(
    *,
    sender: str = ME,
    receiver: str = "bob",
    content: str = "hello",
    timestamp: datetime = T0,
    id: str | None = None,
    client_msg_id: str | None = None,
) -> str:
    record: dict[str, Any] = {
        "sender": sender,
        "receiver": receiver,
        "content": content,
        "timestamp": timestamp.isoformat(),
    }
    if id is not None:
        record["id"] = id
    if client_msg_id is not None:
        record["clientMsgId"] = client_msg_id
    return json.dumps(record)


async def wait_for(predicate: Callable[[], bool], *, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@dataclass
class FakeBroker:
    """In-memory topic router shared by every FakeTransport of a test."""

    transports: list[FakeTransport] = field(default_factory=list)
    published: list[tuple[str, str]] = field(default_factory=list)

    async def deliver(self, topic: str, raw: str) -> None:
        for transport in list(self.transports):
            if topic in transport.topics:
                await transport.on_message(topic, raw)


class FakeTransport:
    def __init__(
        self,
        broker: FakeBroker,
        *,
        fail_open: Exception | None = None,
        open_delay: float = 0.0,
    ) -> None:
        self._broker = broker
        self._fail_open = fail_open
        self._open_delay = open_delay
        self.credential: Credential | None = None
        self.topics: set[str] = set()
        self.subscribe_calls: list[str] = []
        self.unsubscribe_calls: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        self.fail_subscribe: Exception | None = None
        self._on_message: OnRawMessage | None = None
        self._on_lost: OnTransportLost | None = None

    async def open(self, credential: Credential, on_message: OnRawMessage, on_lost: OnTransportLost) -> None:
        if self._open_delay:
            await asyncio.sleep(self._open_delay)
        if self._fail_open is not None:
            raise self._fail_open
        self.credential = credential
        self._on_message = on_message
        self._on_lost = on_lost
        self._broker.transports.append(self)

    async def subscribe(self, topic: str) -> None:
        if self.fail_subscribe is not None:
            raise self.fail_subscribe
        self.topics.add(topic)
        self.subscribe_calls.append(topic)
        self.calls.append(("subscribe", topic))

    async def unsubscribe(self, topic: str) -> None:
        self.topics.discard(topic)
        self.unsubscribe_calls.append(topic)
        self.calls.append(("unsubscribe", topic))

    async def publish(self, destination: str, payload: str) -> None:
        self._broker.published.append((destination, payload))

    async def close(self) -> None:
        self.closed = True
        self.topics.clear()
        if self in self._broker.transports:
            self._broker.transports.remove(self)

    async def on_message(self, topic: str, raw: str) -> None:
        assert self._on_message is not None
        await self._on_message(topic, raw)

    async def lose(self, exc: BaseException | None = None) -> None:
        assert self._on_lost is not None
        await self._on_lost(exc or ConnectionResetError("connection reset by peer"))


@dataclass
class FakeTransportFactory:
    broker: FakeBroker
    created: list[FakeTransport] = field(default_factory=list)
    fail_next: list[Exception] = field(default_factory=list)
    open_delay: float = 0.0

    def __call__(self) -> FakeTransport:
        fail = self.fail_next.pop(0) if self.fail_next else None
        transport = FakeTransport(self.broker, fail_open=fail, open_delay=self.open_delay)
        self.created.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.created[-1]


@dataclass
class FakeChatApi:
    histories: dict[str, list[Message]] = field(default_factory=dict)
    history_gates: dict[str, asyncio.Event] = field(default_factory=dict)
    history_error: Exception | None = None
    send_error: Exception | None = None
    usage: DailyUsage = field(default_factory=lambda: DailyUsage(used=0, limit=100))
    usage_error: Exception | None = None
    history_calls: list[str] = field(default_factory=list)
    sent: list[dict[str, Any]] = field(default_factory=list)
    usage_calls: int = 0
    closed: bool = False
    token: str | None = None

    async def fetch_history(self, peer: str) -> list[Message]:
        self.history_calls.append(peer)
        gate = self.history_gates.get(peer)
        if gate is not None:
            await gate.wait()
        if self.history_error is not None:
            raise self.history_error
        return list(self.histories.get(peer, []))

    async def send_message(
        self, peer: str, content: str, *, client_msg_id: str | None = None,
    ) -> dict[str, Any]:
        self.sent.append({"receiver": peer, "content": content, "client_msg_id": client_msg_id})
        if self.send_error is not None:
            raise self.send_error
        self.usage = DailyUsage(used=self.usage.used + 1, limit=self.usage.limit)
        return {"status": "sent"}

    async def fetch_daily_usage(self) -> DailyUsage:
        self.usage_calls += 1
        if self.usage_error is not None:
            raise self.usage_error
        return self.usage

    def update_token(self, token: str) -> None:
        self.token = token

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def transport_factory(broker: FakeBroker) -> FakeTransportFactory:
    return FakeTransportFactory(broker)


@pytest.fixture
def api() -> FakeChatApi:
    return FakeChatApi()


@pytest.fixture
def credential() -> Credential:
    return Credential(identity=ME, token="token-alice")


def build_session(
    transport_factory: FakeTransportFactory,
    api: FakeChatApi,
    clock: FakeClock,
    **kwargs: Any,
) -> ChatSession:
    connections = ConnectionManager(transport_factory, connect_timeout=1.0)
    options: dict[str, Any] = {
        "reconnect_base_delay": 0.01,
        "reconnect_max_delay": 0.05,
        "typing_idle_seconds": 0.05,
        "topic_prefix": "chat",
        "typing_destination": "chat.typing",
    }
    options.update(kwargs)
    return ChatSession(
        me=ME,
        tenant_id=TENANT,
        credential=Credential(identity=ME, token="token-alice"),
        connections=connections,
        api=api,
        clock=clock,
        **options,
    )


@pytest_asyncio.fixture
async def session(transport_factory: FakeTransportFactory, api: FakeChatApi, clock: FakeClock):
    chat = build_session(transport_factory, api, clock)
    await chat.start()
    try:
        yield chat
    finally:
        await chat.close()

"""Redis Pub/Sub push transport: one client + one PubSub per session."""
from __future__ import annotations

import asyncio
import logging

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub

from chat_sync.application.dto.principal import Credential
from chat_sync.application.ports.transport import OnRawMessage, OnTransportLost

logger = logging.getLogger(__name__)


class RedisPushTransport:
    """Implements application.ports.transport.PushTransport."""

    def __init__(
        self,
        url: str,
        *,
        acl_auth: bool = False,
        poll_interval: float = 1.0,
    ) -> None:
        self._url = url
        self._acl_auth = acl_auth
        self._poll_interval = poll_interval
        self._redis: aioredis.Redis | None = None
        self._pubsub: PubSub | None = None
        self._on_message: OnRawMessage | None = None
        self._on_lost: OnTransportLost | None = None
        self._task: asyncio.Task[None] | None = None

    async def open(
        self,
        credential: Credential,
        on_message: OnRawMessage,
        on_lost: OnTransportLost,
    ) -> None:
        kwargs: dict[str, str] = {"client_name": f"chat-sync:{credential.identity}"}
        if self._acl_auth:
            kwargs["username"] = credential.identity
            kwargs["password"] = credential.token
        # Payloads stay bytes; decoding belongs to the codec, which drops bad input.
        self._redis = aioredis.from_url(self._url, decode_responses=False, **kwargs)
        await self._redis.ping()
        self._pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        self._on_message = on_message
        self._on_lost = on_lost
        self._task = asyncio.create_task(
            self._listen(), name=f"redis-push-{credential.identity}",
        )
        logger.info("Redis push transport opened for %s", credential.identity)

    async def subscribe(self, topic: str) -> None:
        assert self._pubsub is not None, "transport is not open"
        await self._pubsub.subscribe(topic)

    async def unsubscribe(self, topic: str) -> None:
        if self._pubsub is None:
            return
        await self._pubsub.unsubscribe(topic)

    async def publish(self, destination: str, payload: str) -> None:
        assert self._redis is not None, "transport is not open"
        await self._redis.publish(destination, payload)

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._pubsub is not None:
            try:
                await self._pubsub.aclose()
            except Exception:  # noqa: BLE001
                logger.debug("Error closing pubsub", exc_info=True)
            self._pubsub = None
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception:  # noqa: BLE001
                logger.debug("Error closing redis client", exc_info=True)
            self._redis = None
        logger.info("Redis push transport closed")

    async def _listen(self) -> None:
        assert self._pubsub is not None
        try:
            while True:
                if not self._pubsub.subscribed:
                    await asyncio.sleep(self._poll_interval)
                    continue
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_interval,
                )
                if message is None or message["type"] != "message":
                    continue
                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode("utf-8", errors="replace")
                try:
                    await self._on_message(channel, message["data"])
                except Exception:
                    logger.exception("Error processing push message")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Redis push transport lost: %s", exc)
            if self._on_lost is not None:
                await self._on_lost(exc)

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from chat_sync.application.dto.principal import Credential, Principal
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.application.ports.transport import PushTransport
from chat_sync.config import Settings
from chat_sync.services.chat_session import ChatSession
from chat_sync.services.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

ApiFactory = Callable[[str], ChatApi]
TransportFactory = Callable[[], PushTransport]


class SessionRegistry:
    """One started ChatSession per authenticated user.

    Sessions without observers that have not been used for
    ``SESSION_IDLE_SECONDS`` are closed by the reaper.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport_factory: TransportFactory,
        api_factory: ApiFactory,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._transport_factory = transport_factory
        self._api_factory = api_factory
        self._monotonic = monotonic
        self._sessions: dict[str, ChatSession] = {}
        self._last_seen: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._reaper_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, principal: Principal) -> ChatSession | None:
        return self._sessions.get(principal.principal_key)

    def touch(self, principal: Principal) -> None:
        key = principal.principal_key
        if key in self._sessions:
            self._last_seen[key] = self._monotonic()

    async def get_or_create(self, principal: Principal, token: str) -> ChatSession:
        key = principal.principal_key
        session = self._sessions.get(key)
        if session is not None:
            session.update_credential(token)
            self._last_seen[key] = self._monotonic()
            return session
        async with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                session.update_credential(token)
                self._last_seen[key] = self._monotonic()
                return session
            session = self._build(principal, token)
            self._sessions[key] = session
            self._last_seen[key] = self._monotonic()
        await session.start()
        logger.info("Chat session started for %s", key)
        return session

    async def close(self, principal: Principal) -> bool:
        return await self._close_key(principal.principal_key)

    async def evict_idle(self) -> int:
        """Close idle sessions nobody is watching. Returns how many were closed."""
        cutoff = self._monotonic() - self._settings.SESSION_IDLE_SECONDS
        idle = [
            key for key, session in self._sessions.items()
            if session.observer_count == 0 and self._last_seen.get(key, 0.0) <= cutoff
        ]
        for key in idle:
            logger.info("Evicting idle chat session %s", key)
            await self._close_key(key)
        return len(idle)

    def start_reaper(self) -> None:
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reap(), name="chat-session-reaper")

    async def close_all(self) -> None:
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None
        sessions, self._sessions = list(self._sessions.values()), {}
        self._last_seen.clear()
        for session in sessions:
            try:
                await session.close()
            except Exception:
                logger.exception("Error closing chat session for %s", session.me)

    async def _reap(self) -> None:
        interval = self._settings.SESSION_REAP_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            try:
                await self.evict_idle()
            except Exception:
                logger.exception("Idle session sweep failed")

    async def _close_key(self, key: str) -> bool:
        session = self._sessions.pop(key, None)
        self._last_seen.pop(key, None)
        if session is None:
            return False
        await session.close()
        return True

    def _build(self, principal: Principal, token: str) -> ChatSession:
        s = self._settings
        connections = ConnectionManager(
            self._transport_factory,
            connect_timeout=s.PUSH_CONNECT_TIMEOUT_SECONDS,
        )
        return ChatSession(
            me=principal.username,
            tenant_id=principal.tenant_id or s.TENANT_ID,
            credential=Credential(identity=principal.username, token=token),
            connections=connections,
            api=self._api_factory(token),
            match_window_seconds=s.OPTIMISTIC_MATCH_WINDOW_SECONDS,
            typing_idle_seconds=s.TYPING_IDLE_SECONDS,
            reconnect_base_delay=s.RECONNECT_BASE_DELAY_SECONDS,
            reconnect_max_delay=s.RECONNECT_MAX_DELAY_SECONDS,
            topic_prefix=s.TOPIC_PREFIX,
            typing_destination=s.PUSH_TYPING_DESTINATION,
        )

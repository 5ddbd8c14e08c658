from __future__ import annotations

import asyncio
import logging
from typing import Callable

from chat_sync.application.dto.usage import DailyUsage
from chat_sync.application.exceptions import SendFailure, ValidationError
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import SendFailureKind
from chat_sync.domain.value_objects.ids import new_client_msg_id, new_temp_id
from chat_sync.services.composer import Composer
from chat_sync.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class SendCoordinator:
    """Dual-path send: optimistic insert, then the REST call.

    A successful call does not touch the list; the confirmed copy arrives
    by push and the engine swaps it in. A failed call removes the optimistic
    entry and records a classified failure.
    """

    def __init__(
        self,
        *,
        me: str,
        engine: ReconciliationEngine,
        api: ChatApi,
        composer: Composer | None = None,
        clock: Clock | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._me = me
        self._engine = engine
        self._api = api
        self._composer = composer
        self._clock = clock or SystemClock()
        self._on_change = on_change
        self._in_flight = 0
        self.last_failure: SendFailure | None = None
        self.usage: DailyUsage | None = None

    @property
    def sending(self) -> bool:
        return self._in_flight > 0

    async def send(self, peer: str | None, content: str | None) -> Message | None:
        text = (content or "").strip()
        if not text:
            return None
        receiver = (peer or "").strip()
        if not receiver:
            raise ValidationError("Please specify a receiver.")

        optimistic = Message(
            sender=self._me,
            receiver=receiver,
            content=text,
            timestamp=self._clock.now(),
            temp_id=new_temp_id(),
            client_msg_id=new_client_msg_id(),
        )
        self._in_flight += 1
        self._engine.optimistic_added(optimistic)
        self._notify()
        if self._composer is not None:
            self._composer.clear()

        try:
            await self._api.send_message(
                receiver, text, client_msg_id=optimistic.client_msg_id,
            )
        except asyncio.CancelledError:
            self._engine.optimistic_failed(optimistic.temp_id)
            self._notify()
            raise
        except Exception as exc:
            failure = (
                exc if isinstance(exc, SendFailure)
                else SendFailure(SendFailureKind.UNKNOWN, f"Send failed: {exc}")
            )
            self._engine.optimistic_failed(optimistic.temp_id)
            self.last_failure = failure
            self._notify()
            logger.warning(
                "Send to %s failed (%s): %s", receiver, failure.kind, failure.detail,
            )
            if failure is exc:
                raise
            raise failure from exc
        finally:
            self._in_flight -= 1

        self.last_failure = None
        await self.refresh_usage()
        return optimistic

    async def refresh_usage(self) -> DailyUsage | None:
        try:
            self.usage = await self._api.fetch_daily_usage()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Daily usage refresh failed: %s", exc)
        return self.usage

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()

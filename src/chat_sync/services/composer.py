from __future__ import annotations

import asyncio
from typing import Callable


class Composer:
    """Draft text and typing indicator for the message input.

    ``is_typing`` is set on every edit and cleared after ``idle_seconds``
    without further edits.
    """

    def __init__(
        self,
        *,
        idle_seconds: float = 1.0,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._idle_seconds = idle_seconds
        self._on_change = on_change
        self._draft = ""
        self._is_typing = False
        self._idle_handle: asyncio.TimerHandle | None = None

    @property
    def draft(self) -> str:
        return self._draft

    @property
    def is_typing(self) -> bool:
        return self._is_typing

    def update(self, text: str) -> None:
        self._draft = text
        self._is_typing = True
        self._cancel_idle()
        self._idle_handle = asyncio.get_running_loop().call_later(
            self._idle_seconds, self._stop_typing,
        )
        self._notify()

    def clear(self) -> None:
        self._cancel_idle()
        self._draft = ""
        self._is_typing = False
        self._notify()

    def close(self) -> None:
        self._cancel_idle()

    def _stop_typing(self) -> None:
        self._idle_handle = None
        self._is_typing = False
        self._notify()

    def _cancel_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()

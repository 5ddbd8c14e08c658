from __future__ import annotations

import asyncio

import pytest

from chat_sync.services.composer import Composer


@pytest.mark.asyncio
async def test_typing_clears_after_idle_period():
    composer = Composer(idle_seconds=0.02)

    composer.update("h")
    assert composer.is_typing

    await asyncio.sleep(0.05)
    assert composer.is_typing is False
    assert composer.draft == "h"


@pytest.mark.asyncio
async def test_each_edit_restarts_the_idle_timer():
    composer = Composer(idle_seconds=0.05)

    composer.update("h")
    await asyncio.sleep(0.03)
    composer.update("he")
    await asyncio.sleep(0.03)

    assert composer.is_typing
    composer.close()


@pytest.mark.asyncio
async def test_clear_resets_draft_and_typing():
    changes: list[tuple[str, bool]] = []
    composer = Composer(idle_seconds=10, on_change=lambda: changes.append((composer.draft, composer.is_typing)))

    composer.update("hello")
    composer.clear()

    assert composer.draft == ""
    assert composer.is_typing is False
    assert changes == [("hello", True), ("", False)]


@pytest.mark.asyncio
async def test_close_cancels_pending_timer():
    changes: list[bool] = []
    composer = Composer(idle_seconds=0.01, on_change=lambda: changes.append(True))

    composer.update("x")
    composer.close()
    await asyncio.sleep(0.03)

    assert changes == [True]

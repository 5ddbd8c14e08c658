from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from chat_sync.api.deps import get_verifier
from chat_sync.api.v1.schemas.state import ChatStateResponse
from chat_sync.application.dto.principal import Principal
from chat_sync.application.exceptions import AppError, SendFailure
from chat_sync.config import settings
from chat_sync.infrastructure.ws.protocol import WsInbound, WsOutbound
from chat_sync.services.chat_session import ChatSession
from chat_sync.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


async def _authenticate(token: str) -> Principal | None:
    try:
        verifier = get_verifier()
        return await verifier.verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


def _state_frame(session: ChatSession) -> str:
    state = ChatStateResponse.model_validate(session.snapshot(), from_attributes=True)
    return WsOutbound(type="chat.state", data=state.model_dump(mode="json")).model_dump_json()


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    principal = await _authenticate(token)
    if principal is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    registry: SessionRegistry = websocket.app.state.sessions
    await websocket.accept()
    session = await registry.get_or_create(principal, token)

    changed = asyncio.Event()
    remove_observer = session.add_observer(changed.set)
    changed.set()

    pusher_task = asyncio.create_task(
        _push_state(websocket, session, changed), name=f"ws-state-{principal.principal_key}",
    )
    heartbeat_task = asyncio.create_task(
        _heartbeat(websocket), name=f"ws-heartbeat-{principal.principal_key}",
    )
    try:
        await _read_loop(websocket, session)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", principal.principal_key)
    finally:
        remove_observer()
        registry.touch(principal)
        pusher_task.cancel()
        heartbeat_task.cancel()


async def _push_state(ws: WebSocket, session: ChatSession, changed: asyncio.Event) -> None:
    try:
        while True:
            await changed.wait()
            changed.clear()
            await ws.send_text(_state_frame(session))
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("WS state push stopped", exc_info=True)


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await ws.send_text(WsOutbound(type="pong", data={}).model_dump_json())
    except asyncio.CancelledError:
        pass
    except Exception:
        pass


async def _read_loop(ws: WebSocket, session: ChatSession) -> None:
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except Exception:
            await ws.send_text(
                WsOutbound(type="error", data={"code": "invalid_payload"}).model_dump_json()
            )
            continue

        if msg.type == "ping":
            await ws.send_text(WsOutbound(type="pong", data={}).model_dump_json())

        elif msg.type == "draft":
            session.update_draft(str(msg.data.get("text", "")))

        elif msg.type == "select_peer":
            try:
                await session.select_peer(msg.data.get("peer"))
            except AppError as exc:
                await ws.send_text(
                    WsOutbound(type="error", data={"code": "invalid_peer", "detail": exc.detail}).model_dump_json()
                )

        elif msg.type == "message.send":
            await _handle_send(ws, session, msg.data)

        else:
            await ws.send_text(
                WsOutbound(type="error", data={"code": "unknown_type", "type": msg.type}).model_dump_json()
            )


async def _handle_send(ws: WebSocket, session: ChatSession, data: dict) -> None:
    try:
        await session.send(data.get("content"))
    except SendFailure as exc:
        await ws.send_text(
            WsOutbound(
                type="error",
                data={"code": "send_failed", "kind": exc.kind.value, "detail": exc.user_message},
            ).model_dump_json()
        )
    except AppError as exc:
        await ws.send_text(
            WsOutbound(type="error", data={"code": "send_failed", "detail": exc.detail}).model_dump_json()
        )

from __future__ import annotations

from fastapi import APIRouter, Response, status

from chat_sync.api.deps import CurrentPrincipal, RegistryDep, SessionDep
from chat_sync.api.v1.schemas.message import DraftRequest, SelectPeerRequest, SendMessageRequest
from chat_sync.api.v1.schemas.state import ChatStateResponse, ComposerResponse
from chat_sync.services.chat_session import ChatSession

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


def _state(session: ChatSession) -> ChatStateResponse:
    return ChatStateResponse.model_validate(session.snapshot(), from_attributes=True)


@router.get("/state", response_model=ChatStateResponse)
async def get_state(session: SessionDep) -> ChatStateResponse:
    return _state(session)


@router.put("/peer", response_model=ChatStateResponse)
async def select_peer(body: SelectPeerRequest, session: SessionDep) -> ChatStateResponse:
    await session.select_peer(body.peer)
    return _state(session)


@router.post("/messages", response_model=ChatStateResponse, status_code=202)
async def send_message(body: SendMessageRequest, session: SessionDep) -> ChatStateResponse:
    await session.send(body.content)
    return _state(session)


@router.put("/draft", response_model=ComposerResponse)
async def update_draft(body: DraftRequest, session: SessionDep) -> ComposerResponse:
    session.update_draft(body.text)
    return ComposerResponse(draft=session.composer.draft, is_typing=session.composer.is_typing)


@router.post("/history/reload", response_model=ChatStateResponse)
async def reload_history(session: SessionDep) -> ChatStateResponse:
    await session.reload_history()
    return _state(session)


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(principal: CurrentPrincipal, registry: RegistryDep) -> Response:
    await registry.close(principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

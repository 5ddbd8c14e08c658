"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chat_sync.application.dto.principal import Principal
from chat_sync.application.ports.auth import TokenVerifier
from chat_sync.config import settings
from chat_sync.infrastructure.auth.hs256_verifier import HS256Verifier
from chat_sync.services.chat_session import ChatSession
from chat_sync.services.session_registry import SessionRegistry

_bearer_scheme = HTTPBearer()

_verifier: TokenVerifier | None = None


def get_verifier() -> TokenVerifier:
    global _verifier  # noqa: PLW0603
    if _verifier is None:
        _verifier = HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)
    return _verifier


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
) -> Principal:
    verifier = get_verifier()
    try:
        return await verifier.verify(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


async def get_session(
    principal: CurrentPrincipal,
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    registry: RegistryDep,
) -> ChatSession:
    return await registry.get_or_create(principal, credentials.credentials)


SessionDep = Annotated[ChatSession, Depends(get_session)]

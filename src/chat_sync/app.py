from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_sync.api.middleware.request_context import RequestContextMiddleware
from chat_sync.api.v1.routers import chat, health, ws
from chat_sync.application.exceptions import (
    HistoryLoadError,
    NotConnectedError,
    NotFoundError,
    SendFailure,
    ValidationError,
)
from chat_sync.config import Settings, settings
from chat_sync.domain.value_objects.enums import SendFailureKind
from chat_sync.infrastructure.bus.redis_pubsub import RedisPushTransport
from chat_sync.infrastructure.http.chat_api import HttpChatApi
from chat_sync.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

_SEND_FAILURE_STATUS: dict[SendFailureKind, int] = {
    SendFailureKind.RATE_LIMITED: 429,
    SendFailureKind.PEER_NOT_FOUND: 404,
    SendFailureKind.INVALID_CONTENT: 422,
    SendFailureKind.UNKNOWN: 502,
}


def build_registry(cfg: Settings) -> SessionRegistry:
    return SessionRegistry(
        cfg,
        transport_factory=lambda: RedisPushTransport(
            cfg.REDIS_URL,
            acl_auth=cfg.REDIS_ACL_AUTH,
            poll_interval=cfg.PUSH_POLL_INTERVAL_SECONDS,
        ),
        api_factory=lambda token: HttpChatApi(
            base_url=cfg.CHAT_API_BASE_URL,
            token=token,
            timeout_seconds=cfg.HTTP_TIMEOUT_SECONDS,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    if getattr(app.state, "sessions", None) is None:
        app.state.sessions = build_registry(settings)
    app.state.sessions.start_reaper()
    logger.info("Chat sync service started (tenant=%s)", settings.TENANT_ID)

    yield

    await app.state.sessions.close_all()
    await app.state.redis.aclose()
    logger.info("Chat sync service stopped")


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    app = FastAPI(
        title="Chat Sync Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.sessions = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(chat.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(SendFailure)
    async def _send_failure(_req: Request, exc: SendFailure) -> JSONResponse:
        return JSONResponse(
            status_code=_SEND_FAILURE_STATUS[exc.kind],
            content={"detail": exc.user_message, "kind": exc.kind.value},
        )

    @app.exception_handler(HistoryLoadError)
    async def _history(_req: Request, exc: HistoryLoadError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": exc.detail})

    @app.exception_handler(NotConnectedError)
    async def _not_connected(_req: Request, exc: NotConnectedError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.detail})

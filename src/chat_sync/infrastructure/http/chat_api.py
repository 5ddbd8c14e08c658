"""REST client for the chat backend (history, send, daily usage)."""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from chat_sync.api.middleware.request_context import HEADER, correlation_id_ctx
from chat_sync.application.dto.usage import UNLIMITED, DailyUsage
from chat_sync.application.exceptions import HistoryLoadError, SendFailure
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import SendFailureKind
from chat_sync.infrastructure.bus.serializer import message_from_record

logger = logging.getLogger(__name__)

HISTORY_PATH = "/api/messages/history/{peer}"
SEND_PATH = "/api/messages"
DAILY_USAGE_PATH = "/api/usage/daily"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip().replace("\n", " ")[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body.get("error") or "")
    return ""


class HttpChatApi:
    """Implements application.ports.chat_api.ChatApi over httpx."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
        )
        self._authorization_header = f"Bearer {token}"

    def update_token(self, token: str) -> None:
        self._authorization_header = f"Bearer {token}"

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpChatApi":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": self._authorization_header}
        cid = correlation_id_ctx.get()
        if cid:
            headers[HEADER] = cid
        return headers

    async def _request(self, method: str, path: str, *, payload: dict[str, Any] | None = None) -> httpx.Response:
        response = await self._client.request(method, path, json=payload, headers=self._headers())
        response.raise_for_status()
        return response

    async def fetch_history(self, peer: str) -> list[Message]:
        path = HISTORY_PATH.format(peer=quote(peer, safe=""))
        try:
            response = await self._request("GET", path)
            records = response.json()
        except httpx.HTTPStatusError as exc:
            raise HistoryLoadError(
                f"History request failed with {exc.response.status_code}: {_error_detail(exc.response)}"
            ) from exc
        except httpx.HTTPError as exc:
            raise HistoryLoadError(f"History request failed: {exc}") from exc
        except ValueError as exc:
            raise HistoryLoadError("History response is not valid JSON") from exc

        if isinstance(records, dict):
            records = records.get("messages", records.get("items"))
        if not isinstance(records, list):
            raise HistoryLoadError("History response is not a list")
        try:
            return [message_from_record(r) for r in records]
        except PydanticValidationError as exc:
            raise HistoryLoadError(f"Malformed history record: {exc}") from exc

    async def send_message(
        self, peer: str, content: str, *, client_msg_id: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"receiver": peer, "content": content}
        if client_msg_id:
            payload["clientMsgId"] = client_msg_id
        try:
            response = await self._request("POST", SEND_PATH, payload=payload)
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.info("Send to %s rejected with %d", peer, status_code)
            raise SendFailure.from_status(status_code, _error_detail(exc.response)) from exc
        except httpx.TimeoutException as exc:
            raise SendFailure(SendFailureKind.UNKNOWN, "Send timed out") from exc
        except httpx.HTTPError as exc:
            raise SendFailure(SendFailureKind.UNKNOWN, f"Send failed: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def fetch_daily_usage(self) -> DailyUsage:
        response = await self._request("GET", DAILY_USAGE_PATH)
        body = response.json()
        used = body.get("used", body.get("messagesSentToday", 0))
        limit = body.get("limit", body.get("dailyLimit", UNLIMITED))
        return DailyUsage(used=int(used), limit=int(limit))

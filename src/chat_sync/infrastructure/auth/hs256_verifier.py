from __future__ import annotations

import jwt

from chat_sync.application.dto.principal import Principal


class HS256Verifier:
    """Verify JWTs signed with a shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> Principal:
        payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        username = payload.get("username") or payload["sub"]
        tenant_raw = payload.get("tenant_id", payload.get("tenant"))
        return Principal(
            username=str(username),
            tenant_id=str(tenant_raw) if tenant_raw is not None else None,
            roles=payload.get("roles", []),
        )

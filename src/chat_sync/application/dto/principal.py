from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity extracted from JWT."""

    username: str
    tenant_id: str | None = None
    roles: list[str] = field(default_factory=list)

    @property
    def principal_key(self) -> str:
        """Unique key for the session registry."""
        return f"{self.tenant_id or '-'}:{self.username}"


@dataclass(frozen=True, slots=True)
class Credential:
    """What a push connection is opened with."""

    identity: str
    token: str

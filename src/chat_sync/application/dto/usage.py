from __future__ import annotations

from dataclasses import dataclass

UNLIMITED = -1


@dataclass(frozen=True, slots=True)
class DailyUsage:
    used: int
    limit: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> int | None:
        if self.unlimited:
            return None
        return max(self.limit - self.used, 0)

    @property
    def limit_reached(self) -> bool:
        return not self.unlimited and self.used >= self.limit

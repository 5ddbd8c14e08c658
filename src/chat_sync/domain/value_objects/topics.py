from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TopicPair:
    primary: str
    secondary: str

    def __iter__(self):
        yield self.primary
        yield self.secondary

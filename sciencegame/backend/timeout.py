"""Reaction-window scheduling contract used after an accepted result."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol


logger = logging.getLogger(__name__)

ACTION_TIMEOUT_MS = 30_000


class TimeoutPolicy(Protocol):
    def arm(self, identity: str, duration_ms: int) -> None:
        """Arm a bounded timer for ``identity``; firing is handled by the host runtime."""


@dataclass(frozen=True)
class ArmedTimeout:
    identity: str
    duration_ms: int


class LoggingTimeoutPolicy:
    """Server default: reports each armed window and keeps no history."""

    def arm(self, identity: str, duration_ms: int) -> None:
        logger.info("Reaction window of %d ms armed for %s", duration_ms, identity)


@dataclass
class InMemoryTimeoutPolicy:
    armed: list[ArmedTimeout] = field(default_factory=list)

    def arm(self, identity: str, duration_ms: int) -> None:
        self.armed.append(ArmedTimeout(identity=identity, duration_ms=duration_ms))

    def latest_for(self, identity: str) -> ArmedTimeout | None:
        for armed in reversed(self.armed):
            if armed.identity == identity:
                return armed
        return None

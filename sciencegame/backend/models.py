"""Domain models for game sessions and the runtime records around them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Stage(str, Enum):
    WAITING = "Waiting"
    SUBMITTED = "Submitted"
    EVALUATED = "Evaluated"


@dataclass
class Participant:
    identity: str
    balance: int
    local_results: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PlayerJoin:
    identity: str
    balance: int = 0


@dataclass(frozen=True)
class SessionCheckpoint:
    """Opaque checkpoint marker; the core keeps no durable cross-session state."""


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    state: dict[str, Any]


@dataclass(frozen=True)
class SessionAccess:
    session_id: str
    role: str
    state: dict[str, Any]


@dataclass(frozen=True)
class CreatedSession:
    session_id: str
    evaluator_token: str
    player_token: str

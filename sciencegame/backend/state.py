"""Session aggregate plus builders for initial state and snapshots."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, StrictStr, ValidationError

from .codec import load_public_key
from .errors import DecodeError
from .events import UINT64_MAX, PlayerJoinPayload
from .ledger import ResultLedger
from .models import Participant, Stage
from .pending import PendingQueue
from .registry import ParticipantRegistry
from .security import canonical_result_key


class AccountData(BaseModel):
    reward_amount: int = Field(ge=0, le=UINT64_MAX)
    evaluator_public_key: StrictStr = Field(min_length=1)
    initial_result_ledger: dict[StrictStr, StrictStr] = Field(default_factory=dict)


class SessionInit(AccountData):
    players: list[PlayerJoinPayload] = Field(default_factory=list)


@dataclass
class GameSession:
    reward_amount: int
    evaluator_public_key: str
    participants: ParticipantRegistry = field(default_factory=ParticipantRegistry)
    stage: Stage = Stage.WAITING
    ledger: ResultLedger = field(default_factory=ResultLedger)
    pending: PendingQueue = field(default_factory=PendingQueue)


def build_initial_session(payload: SessionInit | dict[str, Any]) -> GameSession:
    """Construct a session from the account-data payload.

    Every initial participant starts with a copy of the initial result ledger
    as its local cache. Initial ledger keys are canonicalized like Evaluate
    content so they match it. The evaluator key is parsed once here so a bad key
    fails at creation rather than at the first submission.
    """
    if not isinstance(payload, SessionInit):
        try:
            payload = SessionInit.model_validate(payload)
        except ValidationError as exc:
            raise DecodeError(f"Malformed session payload: {exc}") from exc
    load_public_key(payload.evaluator_public_key)

    ledger = ResultLedger(
        {canonical_result_key(key): identity for key, identity in payload.initial_result_ledger.items()}
    )
    participants = ParticipantRegistry(
        Participant(identity=player.identity, balance=player.balance, local_results=ledger.snapshot())
        for player in payload.players
    )
    return GameSession(
        reward_amount=payload.reward_amount,
        evaluator_public_key=payload.evaluator_public_key,
        participants=participants,
        ledger=ledger,
    )


def session_snapshot(session: GameSession) -> dict[str, Any]:
    return {
        "stage": session.stage.value,
        "rewardAmount": session.reward_amount,
        "evaluatorPublicKey": session.evaluator_public_key,
        "resultLedger": session.ledger.snapshot(),
        "participants": [
            {
                "identity": participant.identity,
                "balance": participant.balance,
                "localResults": dict(participant.local_results),
            }
            for participant in session.participants
        ],
        "pending": [base64.b64encode(item).decode("ascii") for item in session.pending.snapshot()],
    }


def restore_session(snapshot: dict[str, Any]) -> GameSession:
    """Rebuild a live session from :func:`session_snapshot` output."""
    return GameSession(
        reward_amount=int(snapshot["rewardAmount"]),
        evaluator_public_key=snapshot["evaluatorPublicKey"],
        participants=ParticipantRegistry(
            Participant(
                identity=entry["identity"],
                balance=int(entry["balance"]),
                local_results=dict(entry.get("localResults", {})),
            )
            for entry in snapshot.get("participants", [])
        ),
        stage=Stage(snapshot.get("stage", Stage.WAITING.value)),
        ledger=ResultLedger(snapshot.get("resultLedger", {})),
        pending=PendingQueue(base64.b64decode(item) for item in snapshot.get("pending", [])),
    )


def public_view(snapshot: dict[str, Any]) -> dict[str, Any]:
    view = {key: value for key, value in snapshot.items() if key != "pending"}
    view["pendingCount"] = len(snapshot.get("pending", []))
    return view

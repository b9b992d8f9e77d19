"""State machine for the submit -> evaluate -> broadcast workflow."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .codec import Message, PrivateKeyMaterial, decrypt_message
from .errors import DecodeError, GameError
from .events import UINT64_MAX, EvaluateEvent, GameEvent, SubmitEvent, SyncEvent, parse_event
from .models import PlayerJoin, SessionCheckpoint, Stage
from .security import canonical_result_key, solution_digest
from .state import GameSession
from .timeout import ACTION_TIMEOUT_MS, TimeoutPolicy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    engine_events: list[dict[str, Any]]


def apply_event(
    session: GameSession,
    sender: str,
    event: GameEvent,
    timeouts: TimeoutPolicy,
    action_timeout_ms: int = ACTION_TIMEOUT_MS,
) -> ActionResult:
    """Apply one action to ``session``.

    ``sender`` is the identity already authenticated by the host runtime.
    Evaluate actions are trusted to come from the evaluator; the runtime is
    responsible for that check. A failing action leaves the session untouched.
    """
    if isinstance(event, SubmitEvent):
        return _apply_submit(session=session, sender=sender, event=event)
    if isinstance(event, EvaluateEvent):
        return _apply_evaluate(session=session, event=event, timeouts=timeouts, action_timeout_ms=action_timeout_ms)
    if isinstance(event, SyncEvent):
        return apply_sync(session=session, new_players=event.new_players)
    raise DecodeError(f"Unsupported action: {type(event).__name__}")


def handle_raw_event(
    session: GameSession,
    sender: str,
    raw: bytes | str | Mapping[str, Any],
    timeouts: TimeoutPolicy,
    action_timeout_ms: int = ACTION_TIMEOUT_MS,
) -> ActionResult:
    event = parse_event(raw)
    return apply_event(
        session=session,
        sender=sender,
        event=event,
        timeouts=timeouts,
        action_timeout_ms=action_timeout_ms,
    )


def apply_sync(session: GameSession, new_players: Iterable[PlayerJoin]) -> ActionResult:
    """Append newly admitted participants, each seeded with the current ledger."""
    events: list[dict[str, Any]] = []
    for player in list(new_players):
        participant = session.participants.join(player, session.ledger.snapshot())
        logger.info("Participant %s joined with %d known results", participant.identity, len(participant.local_results))
        events.append({"kind": "participant_joined", "identity": participant.identity, "balance": participant.balance})
    return ActionResult(engine_events=events)


def into_checkpoint(session: GameSession) -> SessionCheckpoint:
    return SessionCheckpoint()


def prepare_evaluation(session: GameSession, private_key: PrivateKeyMaterial) -> EvaluateEvent | None:
    """Decrypt the oldest pending submission into an Evaluate action.

    This is the evaluator's side of the flow and does not mutate the session.
    Returns ``None`` when nothing is pending.
    """
    ciphertext = session.pending.peek()
    if ciphertext is None:
        return None
    decrypted = decrypt_message(ciphertext, private_key)
    return EvaluateEvent(message=Message(sender=decrypted.sender, content=solution_digest(decrypted.content)))


def discard_pending(session: GameSession) -> ActionResult:
    """Drop the oldest pending submission without crediting anyone.

    The evaluator uses this when the head does not decrypt into a message,
    so a single unreadable submission cannot block the queue.
    """
    consumed = session.pending.pop() is not None
    if len(session.pending) == 0:
        session.stage = Stage.WAITING
    if consumed:
        logger.warning("Discarded unreadable submission, %d still pending", len(session.pending))
    return ActionResult(
        engine_events=[{"kind": "submission_discarded", "consumed": consumed, "pending": len(session.pending)}],
    )


def _apply_submit(session: GameSession, sender: str, event: SubmitEvent) -> ActionResult:
    session.participants.require(sender)
    position = session.pending.push(event.ciphertext)
    session.stage = Stage.SUBMITTED
    logger.debug("Queued %d byte submission from %s at position %d", len(event.ciphertext), sender, position)
    return ActionResult(
        engine_events=[{"kind": "submission_queued", "sender": sender, "pending": position}],
    )


def _apply_evaluate(
    session: GameSession,
    event: EvaluateEvent,
    timeouts: TimeoutPolicy,
    action_timeout_ms: int,
) -> ActionResult:
    # The consumed queue slot is not cross-checked against the message: the
    # evaluator is trusted to report the oldest submission.
    message = event.message
    key = canonical_result_key(message.content)

    if key in session.ledger:
        consumed = session.pending.pop() is not None
        session.stage = Stage.WAITING
        logger.info("Submitted solution already exists: %s", key)
        return ActionResult(
            engine_events=[{"kind": "duplicate_result", "key": key, "sender": message.sender, "consumed": consumed}],
        )

    participant = session.participants.require(message.sender)
    if participant.balance + session.reward_amount > UINT64_MAX:
        raise GameError(f"Balance overflow for participant {participant.identity!r}")

    consumed = session.pending.pop() is not None
    participant.balance += session.reward_amount
    session.ledger.insert(key, participant.identity)
    logger.info("Accepted result %s from %s, balance now %d", key, participant.identity, participant.balance)

    timeouts.arm(participant.identity, action_timeout_ms)
    synced = session.participants.sync_results(session.ledger.snapshot())

    return ActionResult(
        engine_events=[
            {
                "kind": "result_accepted",
                "key": key,
                "sender": participant.identity,
                "reward": session.reward_amount,
                "consumed": consumed,
            },
            {"kind": "timeout_armed", "identity": participant.identity, "durationMs": action_timeout_ms},
            {"kind": "ledger_broadcast", "participants": synced, "results": len(session.ledger)},
        ],
    )

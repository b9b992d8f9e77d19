"""Persistence interfaces and implementations for game sessions.

Stores are the host runtime around the state machine: they authenticate
callers by token role, serialize action delivery per session and keep the
versioned snapshots that clients receive.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sciencegame.backend.codec import Message
from sciencegame.backend.engine import ActionResult, apply_event, discard_pending
from sciencegame.backend.events import EvaluateEvent, GameEvent, SubmitEvent, SyncEvent
from sciencegame.backend.models import CreatedSession, PlayerJoin, SessionAccess, SessionRecord
from sciencegame.backend.security import hash_token
from sciencegame.backend.state import GameSession, SessionInit, build_initial_session, restore_session, session_snapshot
from sciencegame.backend.timeout import ACTION_TIMEOUT_MS, LoggingTimeoutPolicy, TimeoutPolicy


logger = logging.getLogger(__name__)

EVALUATOR = "EVALUATOR"
PLAYER = "PLAYER"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def render_state(
    session_id: str,
    session: GameSession,
    version: int,
    log: list[dict[str, Any]],
    meta: dict[str, Any],
) -> dict[str, Any]:
    state: dict[str, Any] = {"id": session_id, "version": version}
    state.update(session_snapshot(session))
    state["log"] = list(log)
    state["meta"] = dict(meta)
    return state


def _next_state(state: dict[str, Any], session: GameSession, action: dict[str, Any], result: ActionResult) -> dict[str, Any]:
    next_meta = dict(state["meta"])
    next_meta["updatedAt"] = _utc_now_iso()
    next_log = list(state.get("log", []))
    next_log.append(action)
    next_log.extend(result.engine_events)
    return render_state(
        session_id=state["id"],
        session=session,
        version=int(state["version"]) + 1,
        log=next_log,
        meta=next_meta,
    )


Step = Callable[[GameSession], ActionResult]


def _event_step(sender: str, event: GameEvent, timeouts: TimeoutPolicy, action_timeout_ms: int) -> Step:
    def step(session: GameSession) -> ActionResult:
        return apply_event(
            session=session,
            sender=sender,
            event=event,
            timeouts=timeouts,
            action_timeout_ms=action_timeout_ms,
        )

    return step


def _describe(sender: str, event: GameEvent) -> dict[str, Any]:
    if isinstance(event, SubmitEvent):
        return {"kind": "submit", "sender": sender, "size": len(event.ciphertext)}
    if isinstance(event, EvaluateEvent):
        return {"kind": "evaluate", "sender": event.message.sender}
    return {"kind": "sync", "identities": [player.identity for player in event.new_players]}


class SessionStore(Protocol):
    """Token-authenticated access to sessions.

    The player token is shared by every participant of a session: it proves
    membership, not identity. `submit` trusts the sender named by the caller,
    so a token holder can queue under any registered identity. Rewards still
    go to the sender inside the decrypted message.
    """

    def create_session(self, init: SessionInit, evaluator_token: str, player_token: str) -> CreatedSession:
        """Create a session and persist its initial snapshot plus token hashes."""

    def get_session_state(self, session_id: str, raw_token: str) -> SessionRecord | None:
        """Return session state when token is valid."""

    def get_session_access(self, session_id: str, raw_token: str) -> SessionAccess | None:
        """Return caller role and session state when token is valid."""

    def submit(self, session_id: str, raw_token: str, sender: str, ciphertext: bytes) -> dict[str, Any] | None:
        """Queue an encrypted submission and return new state when authorized."""

    def pending_head(self, session_id: str, raw_token: str) -> bytes | None:
        """Return the oldest pending ciphertext for the evaluator."""

    def evaluate(self, session_id: str, raw_token: str, message: Message) -> dict[str, Any] | None:
        """Apply an evaluator decision and return new state when authorized."""

    def sync(self, session_id: str, raw_token: str, new_players: list[PlayerJoin]) -> dict[str, Any] | None:
        """Admit new participants and return new state when authorized."""

    def discard_pending(self, session_id: str, raw_token: str) -> dict[str, Any] | None:
        """Drop the oldest pending submission without a reward when authorized."""


@dataclass
class InMemorySessionStore:
    server_salt: str
    timeouts: TimeoutPolicy = field(default_factory=LoggingTimeoutPolicy)
    action_timeout_ms: int = ACTION_TIMEOUT_MS

    def __post_init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_session(self, init: SessionInit, evaluator_token: str, player_token: str) -> CreatedSession:
        session = build_initial_session(init)
        session_id = str(uuid.uuid4())
        now = _utc_now_iso()
        with self._lock:
            self._sessions[session_id] = {
                "session": session,
                "state": render_state(
                    session_id=session_id,
                    session=session,
                    version=1,
                    log=[],
                    meta={"createdAt": now, "updatedAt": now},
                ),
                "tokens": {
                    EVALUATOR: hash_token(evaluator_token, self.server_salt),
                    PLAYER: hash_token(player_token, self.server_salt),
                },
            }
        logger.info("Created session %s with %d participants", session_id, len(session.participants))
        return CreatedSession(session_id=session_id, evaluator_token=evaluator_token, player_token=player_token)

    def get_session_state(self, session_id: str, raw_token: str) -> SessionRecord | None:
        access = self.get_session_access(session_id=session_id, raw_token=raw_token)
        if access is None:
            return None
        return SessionRecord(session_id=session_id, state=access.state)

    def get_session_access(self, session_id: str, raw_token: str) -> SessionAccess | None:
        payload = self._sessions.get(session_id)
        if payload is None:
            return None

        raw_hash = hash_token(raw_token, self.server_salt)
        role: str | None = None
        for candidate_role, token_hash in payload["tokens"].items():
            if raw_hash == token_hash:
                role = candidate_role
                break

        if role is None:
            return None
        return SessionAccess(session_id=session_id, role=role, state=payload["state"])

    def submit(self, session_id: str, raw_token: str, sender: str, ciphertext: bytes) -> dict[str, Any] | None:
        return self._apply(session_id, raw_token, sender, SubmitEvent(ciphertext=ciphertext), evaluator_only=False)

    def pending_head(self, session_id: str, raw_token: str) -> bytes | None:
        with self._lock:
            access = self.get_session_access(session_id=session_id, raw_token=raw_token)
            if access is None or access.role != EVALUATOR:
                return None
            return self._sessions[session_id]["session"].pending.peek()

    def evaluate(self, session_id: str, raw_token: str, message: Message) -> dict[str, Any] | None:
        return self._apply(session_id, raw_token, EVALUATOR, EvaluateEvent(message=message), evaluator_only=True)

    def sync(self, session_id: str, raw_token: str, new_players: list[PlayerJoin]) -> dict[str, Any] | None:
        event = SyncEvent(new_players=tuple(new_players))
        return self._apply(session_id, raw_token, EVALUATOR, event, evaluator_only=True)

    def discard_pending(self, session_id: str, raw_token: str) -> dict[str, Any] | None:
        return self._run(session_id, raw_token, {"kind": "discard"}, discard_pending, evaluator_only=True)

    def _apply(
        self,
        session_id: str,
        raw_token: str,
        sender: str,
        event: GameEvent,
        evaluator_only: bool,
    ) -> dict[str, Any] | None:
        step = _event_step(sender, event, self.timeouts, self.action_timeout_ms)
        return self._run(session_id, raw_token, _describe(sender, event), step, evaluator_only)

    def _run(
        self,
        session_id: str,
        raw_token: str,
        action: dict[str, Any],
        step: Step,
        evaluator_only: bool,
    ) -> dict[str, Any] | None:
        with self._lock:
            access = self.get_session_access(session_id=session_id, raw_token=raw_token)
            if access is None or (evaluator_only and access.role != EVALUATOR):
                return None
            payload = self._sessions[session_id]
            result = step(payload["session"])
            payload["state"] = _next_state(
                state=payload["state"],
                session=payload["session"],
                action=action,
                result=result,
            )
            return payload["state"]


@dataclass
class PostgresSessionStore:
    database_url: str
    server_salt: str
    timeouts: TimeoutPolicy = field(default_factory=LoggingTimeoutPolicy)
    action_timeout_ms: int = ACTION_TIMEOUT_MS

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def create_session(self, init: SessionInit, evaluator_token: str, player_token: str) -> CreatedSession:
        session = build_initial_session(init)
        session_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        state = render_state(
            session_id=session_id,
            session=session,
            version=1,
            log=[],
            meta={"createdAt": now.isoformat(), "updatedAt": now.isoformat()},
        )

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO game_sessions (id, stage, current_version, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (session_id, state["stage"], state["version"], now, now),
                )
                cur.execute(
                    """
                    INSERT INTO session_tokens (id, session_id, role, token_hash, created_at, revoked_at)
                    VALUES (%s, %s, 'EVALUATOR', %s, %s, NULL), (%s, %s, 'PLAYER', %s, %s, NULL)
                    """,
                    (
                        str(uuid.uuid4()),
                        session_id,
                        hash_token(evaluator_token, self.server_salt),
                        now,
                        str(uuid.uuid4()),
                        session_id,
                        hash_token(player_token, self.server_salt),
                        now,
                    ),
                )
                cur.execute(
                    """
                    INSERT INTO session_snapshots (id, session_id, version, created_at, state_json)
                    VALUES (%s, %s, %s, %s, %s::jsonb)
                    """,
                    (str(uuid.uuid4()), session_id, state["version"], now, json.dumps(state)),
                )
            conn.commit()

        logger.info("Created session %s with %d participants", session_id, len(session.participants))
        return CreatedSession(session_id=session_id, evaluator_token=evaluator_token, player_token=player_token)

    def get_session_state(self, session_id: str, raw_token: str) -> SessionRecord | None:
        access = self.get_session_access(session_id=session_id, raw_token=raw_token)
        if access is None:
            return None
        return SessionRecord(session_id=session_id, state=access.state)

    def get_session_access(self, session_id: str, raw_token: str) -> SessionAccess | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                row = self._fetch_access(cur, session_id=session_id, raw_token=raw_token, for_update=False)
        return self._to_access(session_id, row)

    def submit(self, session_id: str, raw_token: str, sender: str, ciphertext: bytes) -> dict[str, Any] | None:
        return self._apply(session_id, raw_token, sender, SubmitEvent(ciphertext=ciphertext), evaluator_only=False)

    def pending_head(self, session_id: str, raw_token: str) -> bytes | None:
        access = self.get_session_access(session_id=session_id, raw_token=raw_token)
        if access is None or access.role != EVALUATOR:
            return None
        return restore_session(access.state).pending.peek()

    def evaluate(self, session_id: str, raw_token: str, message: Message) -> dict[str, Any] | None:
        return self._apply(session_id, raw_token, EVALUATOR, EvaluateEvent(message=message), evaluator_only=True)

    def sync(self, session_id: str, raw_token: str, new_players: list[PlayerJoin]) -> dict[str, Any] | None:
        event = SyncEvent(new_players=tuple(new_players))
        return self._apply(session_id, raw_token, EVALUATOR, event, evaluator_only=True)

    def discard_pending(self, session_id: str, raw_token: str) -> dict[str, Any] | None:
        return self._run(session_id, raw_token, {"kind": "discard"}, discard_pending, evaluator_only=True)

    def _fetch_access(self, cur: Any, session_id: str, raw_token: str, for_update: bool) -> Any:
        # Row lock on the session serializes concurrent actions into one order.
        lock_clause = "FOR UPDATE OF e" if for_update else ""
        cur.execute(
            f"""
            SELECT t.role, s.state_json
            FROM game_sessions e
            JOIN session_snapshots s
              ON s.session_id = e.id AND s.version = e.current_version
            JOIN session_tokens t
              ON t.session_id = e.id
            WHERE e.id = %s
              AND t.token_hash = %s
              AND t.revoked_at IS NULL
            {lock_clause}
            """,
            (session_id, hash_token(raw_token, self.server_salt)),
        )
        return cur.fetchone()

    def _to_access(self, session_id: str, row: Any) -> SessionAccess | None:
        if row is None:
            return None
        role, state_json = row
        state = state_json if isinstance(state_json, dict) else json.loads(state_json)
        return SessionAccess(session_id=session_id, role=role, state=state)

    def _apply(
        self,
        session_id: str,
        raw_token: str,
        sender: str,
        event: GameEvent,
        evaluator_only: bool,
    ) -> dict[str, Any] | None:
        step = _event_step(sender, event, self.timeouts, self.action_timeout_ms)
        return self._run(session_id, raw_token, _describe(sender, event), step, evaluator_only)

    def _run(
        self,
        session_id: str,
        raw_token: str,
        action: dict[str, Any],
        step: Step,
        evaluator_only: bool,
    ) -> dict[str, Any] | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                row = self._fetch_access(cur, session_id=session_id, raw_token=raw_token, for_update=True)
                access = self._to_access(session_id, row)
                if access is None or (evaluator_only and access.role != EVALUATOR):
                    return None

                session = restore_session(access.state)
                result = step(session)
                next_state = _next_state(
                    state=access.state,
                    session=session,
                    action=action,
                    result=result,
                )

                now = datetime.now(timezone.utc)
                cur.execute(
                    """
                    INSERT INTO session_snapshots (id, session_id, version, created_at, state_json)
                    VALUES (%s, %s, %s, %s, %s::jsonb)
                    """,
                    (str(uuid.uuid4()), session_id, next_state["version"], now, json.dumps(next_state)),
                )
                cur.execute(
                    """
                    UPDATE game_sessions
                    SET current_version = %s, stage = %s, updated_at = %s
                    WHERE id = %s
                    """,
                    (next_state["version"], next_state["stage"], now, session_id),
                )
            conn.commit()

        return next_state


def create_store(
    database_url: str | None,
    server_salt: str,
    timeouts: TimeoutPolicy | None = None,
    action_timeout_ms: int = ACTION_TIMEOUT_MS,
) -> SessionStore:
    policy = timeouts if timeouts is not None else LoggingTimeoutPolicy()
    if database_url:
        return PostgresSessionStore(
            database_url=database_url,
            server_salt=server_salt,
            timeouts=policy,
            action_timeout_ms=action_timeout_ms,
        )
    return InMemorySessionStore(server_salt=server_salt, timeouts=policy, action_timeout_ms=action_timeout_ms)

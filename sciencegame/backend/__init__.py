"""Backend package for the encrypted-submission science game."""

from .codec import Message, decrypt_message, encrypt_message, load_private_key, load_public_key
from .config import BackendSettings, load_settings
from .engine import (
    ActionResult,
    apply_event,
    apply_sync,
    discard_pending,
    handle_raw_event,
    into_checkpoint,
    prepare_evaluation,
)
from .errors import CryptoError, DecodeError, EncodingError, GameError, UnknownParticipant
from .events import EvaluateEvent, GameEvent, SubmitEvent, SyncEvent, parse_event
from .models import Participant, PlayerJoin, SessionCheckpoint, Stage
from .security import canonical_result_key, generate_token, hash_token, solution_digest, verify_token
from .state import GameSession, SessionInit, build_initial_session
from .store import InMemorySessionStore, PostgresSessionStore, SessionStore, create_store
from .timeout import InMemoryTimeoutPolicy, LoggingTimeoutPolicy, TimeoutPolicy

__all__ = [
    "ActionResult",
    "apply_event",
    "apply_sync",
    "BackendSettings",
    "build_initial_session",
    "canonical_result_key",
    "create_store",
    "CryptoError",
    "DecodeError",
    "decrypt_message",
    "discard_pending",
    "EncodingError",
    "encrypt_message",
    "EvaluateEvent",
    "GameError",
    "GameEvent",
    "GameSession",
    "generate_token",
    "handle_raw_event",
    "hash_token",
    "InMemorySessionStore",
    "InMemoryTimeoutPolicy",
    "into_checkpoint",
    "load_private_key",
    "load_public_key",
    "load_settings",
    "LoggingTimeoutPolicy",
    "Message",
    "parse_event",
    "Participant",
    "PlayerJoin",
    "PostgresSessionStore",
    "prepare_evaluation",
    "SessionCheckpoint",
    "SessionInit",
    "SessionStore",
    "solution_digest",
    "Stage",
    "SubmitEvent",
    "SyncEvent",
    "TimeoutPolicy",
    "UnknownParticipant",
    "verify_token",
]

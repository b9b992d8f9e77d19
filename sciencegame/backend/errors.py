"""Error taxonomy for the submission/evaluation state machine."""

from __future__ import annotations


class GameError(Exception):
    """Base class for every error surfaced by the game core."""


class UnknownParticipant(GameError):
    def __init__(self, identity: str) -> None:
        super().__init__(f"Participant not found: {identity!r}")
        self.identity = identity


class CryptoError(GameError):
    """Encryption, decryption or key loading failed."""


class EncodingError(GameError):
    """A structured message could not be serialized or deserialized."""


class DecodeError(GameError):
    """An action payload was malformed and rejected before any state change."""

"""Game actions and the decoder for their tagged wire payloads."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, TypeAdapter, ValidationError

from .codec import Message
from .errors import DecodeError
from .models import PlayerJoin


UINT64_MAX = 2**64 - 1


@dataclass(frozen=True)
class SubmitEvent:
    ciphertext: bytes


@dataclass(frozen=True)
class EvaluateEvent:
    message: Message


@dataclass(frozen=True)
class SyncEvent:
    new_players: tuple[PlayerJoin, ...]


GameEvent = Union[SubmitEvent, EvaluateEvent, SyncEvent]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SubmitPayload(_Payload):
    type: Literal["submit"]
    ciphertext: StrictStr = Field(min_length=1)


class EvaluatePayload(_Payload):
    type: Literal["evaluate"]
    sender: StrictStr = Field(min_length=1)
    content: StrictStr


class PlayerJoinPayload(_Payload):
    identity: StrictStr = Field(min_length=1)
    balance: int = Field(default=0, ge=0, le=UINT64_MAX)


class SyncPayload(_Payload):
    type: Literal["sync"]
    new_players: list[PlayerJoinPayload]


EventPayload = Annotated[Union[SubmitPayload, EvaluatePayload, SyncPayload], Field(discriminator="type")]

_event_adapter: TypeAdapter[Any] = TypeAdapter(EventPayload)


def decode_ciphertext(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded, validate=True)
    except ValueError as exc:
        raise DecodeError("Submission ciphertext is not valid base64") from exc


def parse_event(raw: bytes | str | Mapping[str, Any]) -> GameEvent:
    """Decode a tagged action payload; malformed input raises ``DecodeError``."""
    try:
        if isinstance(raw, (bytes, bytearray, str)):
            payload = _event_adapter.validate_json(raw)
        else:
            payload = _event_adapter.validate_python(dict(raw))
    except (ValidationError, TypeError, ValueError) as exc:
        raise DecodeError(f"Malformed action payload: {exc}") from exc

    if isinstance(payload, SubmitPayload):
        return SubmitEvent(ciphertext=decode_ciphertext(payload.ciphertext))
    if isinstance(payload, EvaluatePayload):
        return EvaluateEvent(message=Message(sender=payload.sender, content=payload.content))
    return SyncEvent(
        new_players=tuple(PlayerJoin(identity=player.identity, balance=player.balance) for player in payload.new_players)
    )


def encode_event(event: GameEvent) -> dict[str, Any]:
    """Inverse of :func:`parse_event`, producing a JSON-compatible payload."""
    if isinstance(event, SubmitEvent):
        return {"type": "submit", "ciphertext": base64.b64encode(event.ciphertext).decode("ascii")}
    if isinstance(event, EvaluateEvent):
        return {"type": "evaluate", "sender": event.message.sender, "content": event.message.content}
    return {
        "type": "sync",
        "new_players": [{"identity": player.identity, "balance": player.balance} for player in event.new_players],
    }

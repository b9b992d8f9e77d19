"""Ordered, append-only collection of session participants."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping

from .errors import UnknownParticipant
from .models import Participant, PlayerJoin


class ParticipantRegistry:
    def __init__(self, participants: Iterable[Participant] = ()) -> None:
        self._participants: list[Participant] = list(participants)

    def __iter__(self) -> Iterator[Participant]:
        return iter(self._participants)

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, identity: object) -> bool:
        return isinstance(identity, str) and self.find(identity) is not None

    def find(self, identity: str) -> Participant | None:
        """Return the first participant registered under ``identity``."""
        for participant in self._participants:
            if participant.identity == identity:
                return participant
        return None

    def require(self, identity: str) -> Participant:
        participant = self.find(identity)
        if participant is None:
            raise UnknownParticipant(identity)
        return participant

    def join(self, player: PlayerJoin, results: Mapping[str, str]) -> Participant:
        # Duplicate identities are appended as-is; lookups resolve to the first entry.
        participant = Participant(identity=player.identity, balance=player.balance, local_results=dict(results))
        self._participants.append(participant)
        return participant

    def sync_results(self, results: Mapping[str, str]) -> int:
        """Overwrite every participant's local result cache with a copy of ``results``."""
        for participant in self._participants:
            participant.local_results = dict(results)
        return len(self._participants)

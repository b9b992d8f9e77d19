"""Authoritative mapping from result key to the participant who claimed it."""

from __future__ import annotations

from collections.abc import Iterator, Mapping


class ResultLedger:
    """Insert-only ledger: a key, once claimed, is never overwritten or removed."""

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: dict[str, str] = dict(entries or {})

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def claimant(self, key: str) -> str | None:
        return self._entries.get(key)

    def insert(self, key: str, identity: str) -> bool:
        """Record ``key`` for ``identity``; returns ``False`` if it was already claimed."""
        if key in self._entries:
            return False
        self._entries[key] = identity
        return True

    def snapshot(self) -> dict[str, str]:
        return dict(self._entries)

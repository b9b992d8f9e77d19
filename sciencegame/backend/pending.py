"""FIFO of submitted ciphertexts awaiting evaluation."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable


class PendingQueue:
    def __init__(self, submissions: Iterable[bytes] = ()) -> None:
        self._submissions: deque[bytes] = deque(submissions)

    def __len__(self) -> int:
        return len(self._submissions)

    def push(self, ciphertext: bytes) -> int:
        self._submissions.append(bytes(ciphertext))
        return len(self._submissions)

    def peek(self) -> bytes | None:
        return self._submissions[0] if self._submissions else None

    def pop(self) -> bytes | None:
        """Remove and return the oldest submission, or ``None`` when empty."""
        return self._submissions.popleft() if self._submissions else None

    def snapshot(self) -> list[bytes]:
        return list(self._submissions)

"""Security helpers for access tokens and result keys."""

from __future__ import annotations

import hashlib
import secrets
import unicodedata


TOKEN_BYTES = 24


def generate_token() -> str:
    """Generate a URL-safe token for session access."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str, server_salt: str) -> str:
    """Create deterministic token hash via sha256(token + server_salt)."""
    payload = f"{token}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def verify_token(raw_token: str, expected_hash: str, server_salt: str) -> bool:
    """Compare raw token against a stored hash."""
    return secrets.compare_digest(hash_token(raw_token, server_salt), expected_hash)


def normalize_solution(content: str) -> str:
    return unicodedata.normalize("NFC", content).strip()


def solution_digest(content: str) -> str:
    """Digest a decrypted solution into the key the evaluator reports."""
    return hashlib.sha256(normalize_solution(content).encode("utf-8")).hexdigest()


def canonical_result_key(value: str) -> str:
    """Normalize the digest carried by an Evaluate action into a ledger key."""
    return value.strip()

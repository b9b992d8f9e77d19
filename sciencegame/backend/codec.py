"""RSA-PKCS1v1.5 codec for solutions sent to the evaluator.

Any participant encrypts with the evaluator's public key; only the holder of
the private key can read a submission. The codec is stateless and knows
nothing about game rules.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError
from pydantic_core import PydanticSerializationError

from .errors import CryptoError, EncodingError


PKCS1V15_OVERHEAD = 11


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: StrictStr
    content: StrictStr


PublicKeyMaterial = rsa.RSAPublicKey | str | bytes
PrivateKeyMaterial = rsa.RSAPrivateKey | str | bytes


def _as_bytes(data: str | bytes) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def load_public_key(pem: str | bytes) -> rsa.RSAPublicKey:
    """Load an RSA public key from SubjectPublicKeyInfo or PKCS#1 PEM."""
    try:
        key = serialization.load_pem_public_key(_as_bytes(pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoError(f"Invalid evaluator public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise CryptoError("Evaluator public key is not an RSA key")
    return key


def load_private_key(pem: str | bytes, password: bytes | None = None) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(_as_bytes(pem), password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoError(f"Invalid evaluator private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CryptoError("Evaluator private key is not an RSA key")
    return key


def max_plaintext_size(public_key: rsa.RSAPublicKey) -> int:
    """Largest plaintext PKCS1v1.5 can carry for this modulus."""
    return (public_key.key_size + 7) // 8 - PKCS1V15_OVERHEAD


def encode_message(message: Message | Mapping[str, Any]) -> bytes:
    try:
        if not isinstance(message, Message):
            message = Message.model_validate(message)
        return message.model_dump_json().encode("utf-8")
    except (ValidationError, PydanticSerializationError, TypeError, UnicodeEncodeError) as exc:
        raise EncodingError(f"Cannot serialize message: {exc}") from exc


def decode_message(data: bytes) -> Message:
    try:
        return Message.model_validate_json(data)
    except ValidationError as exc:
        raise EncodingError(f"Decrypted payload is not a message: {exc.error_count()} error(s)") from exc


def encrypt_message(message: Message | Mapping[str, Any], public_key: PublicKeyMaterial) -> bytes:
    """Serialize ``message`` and encrypt it for the evaluator.

    PKCS1v1.5 is randomized, so encrypting the same message twice yields
    different ciphertexts.
    """
    if not isinstance(public_key, rsa.RSAPublicKey):
        public_key = load_public_key(public_key)
    plaintext = encode_message(message)
    capacity = max_plaintext_size(public_key)
    if len(plaintext) > capacity:
        raise CryptoError(f"Message is {len(plaintext)} bytes, key capacity is {capacity} bytes")
    try:
        return public_key.encrypt(plaintext, padding.PKCS1v15())
    except (ValueError, TypeError) as exc:
        raise CryptoError(f"Encryption failed: {exc}") from exc


def decrypt_message(ciphertext: bytes, private_key: PrivateKeyMaterial) -> Message:
    """Decrypt a submission with the evaluator's private key."""
    if not isinstance(private_key, rsa.RSAPrivateKey):
        private_key = load_private_key(private_key)
    if not isinstance(ciphertext, (bytes, bytearray)):
        raise CryptoError("Ciphertext must be bytes")
    try:
        plaintext = private_key.decrypt(bytes(ciphertext), padding.PKCS1v15())
    except (ValueError, TypeError) as exc:
        raise CryptoError(f"Decryption failed: {exc}") from exc
    return decode_message(plaintext)

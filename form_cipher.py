"""AES-128-GCM protection for the per-attempt shuffle token.

The authentication tag is appended to the ciphertext, so a token that was
altered in transit fails to decrypt instead of grading against a garbled
mapping.
"""

from __future__ import annotations

import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from errors import InvalidToken

KEY_BYTES = 16
IV_BYTES = 12


def generate_key_material() -> tuple[bytes, bytes]:
    """Return a fresh ``(key, iv)`` pair for a new form."""
    return AESGCM.generate_key(bit_length=KEY_BYTES * 8), os.urandom(IV_BYTES)


def encrypt(plaintext: str, key: bytes, iv: bytes) -> str:
    return AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None).hex()


def decrypt(token: str, key: bytes, iv: bytes) -> str:
    try:
        raw = bytes.fromhex(token)
        return AESGCM(key).decrypt(iv, raw, None).decode("utf-8")
    except (ValueError, binascii.Error, InvalidTag, UnicodeDecodeError) as exc:
        raise InvalidToken() from exc

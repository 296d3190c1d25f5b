"""Encryption helpers for the persisted session blob.

Uses Fernet symmetric encryption with PBKDF2 key derivation.  Every sealed
value gets its own random salt, stored alongside the Fernet token as
``<salt_b64>.<token>``.
"""

import base64
import logging
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 480_000
SALT_BYTES = 16


class SealError(Exception):
    """Raised when a sealed value cannot be opened (wrong key or corrupt data)."""


def derive_key(session_key: str, salt: bytes) -> bytes:
    """Derive a Fernet-compatible key from *session_key* and *salt*."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    derived = kdf.derive(session_key.encode("utf-8"))
    return base64.urlsafe_b64encode(derived)


def seal(plaintext: str, session_key: str) -> str:
    """Encrypt *plaintext* into a single printable string."""
    salt = os.urandom(SALT_BYTES)
    token = Fernet(derive_key(session_key, salt)).encrypt(plaintext.encode("utf-8"))
    return base64.urlsafe_b64encode(salt).decode("ascii") + "." + token.decode("ascii")


def unseal(sealed: str, session_key: str) -> str:
    """Decrypt a value produced by :func:`seal`.

    Raises:
        SealError: If the key is wrong or the value is malformed.
    """
    try:
        salt_b64, token = sealed.split(".", 1)
        salt = base64.urlsafe_b64decode(salt_b64.encode("ascii"))
        return Fernet(derive_key(session_key, salt)).decrypt(token.encode("ascii")).decode("utf-8")
    except (ValueError, InvalidToken) as e:
        raise SealError("Sealed value could not be decrypted") from e

"""Helper utilities for hashing and verifying entry keys."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os

import bcrypt
from werkzeug.security import check_password_hash

BCRYPT_ROUNDS = int(os.getenv("CLIPBOARD_BCRYPT_ROUNDS", "12"))
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def _prehash(key: str) -> bytes:
    """Digest a key of any length down to 44 bytes, under bcrypt's 72-byte limit."""

    return base64.b64encode(hashlib.sha256(key.encode("utf-8")).digest())


def hash_key(key: str) -> str:
    """Hash the provided entry key using bcrypt with a per-key salt."""

    if not isinstance(key, str):
        raise TypeError("Key must be a string.")
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(_prehash(key), salt)
    return hashed.decode("utf-8")


def verify_key(key: str, stored_key: str | bytes | None) -> bool:
    """Validate a candidate key against the stored key column.

    Rows written by other tools may hold a werkzeug hash or the raw key
    itself; those are accepted too.
    """

    if not key or not stored_key:
        return False

    stored = stored_key.decode("utf-8") if isinstance(stored_key, bytes) else str(stored_key)

    if stored.startswith("scrypt:") or stored.startswith("pbkdf2:"):
        return check_password_hash(stored, key)

    if stored.startswith(BCRYPT_PREFIXES):
        stored_bytes = stored.encode("utf-8")
        raw_key = key.encode("utf-8")
        try:
            if bcrypt.checkpw(_prehash(key), stored_bytes):
                return True
            # bcrypt hashes written by other tools cover the raw key.
            return len(raw_key) <= 72 and bcrypt.checkpw(raw_key, stored_bytes)
        except (ValueError, TypeError):
            return False

    return hmac.compare_digest(key.encode("utf-8"), stored.encode("utf-8"))

"""
auth/passwords.py -- One-way password hashing with Argon2id.

Security design decisions:
  Argon2id (argon2-cffi low-level API) is memory-hard: each guess costs
  64 MiB of RAM, which makes GPU/ASIC-parallel brute force expensive. A fresh
  16-byte salt per hash defeats precomputed tables.

  The encoded form is base64(salt || key), always 48 bytes before encoding.
  Parameters are fixed module constants, so the encoded form does not need to
  carry them. Changing a constant invalidates every stored hash -- bump them
  only together with a rehash-on-login migration.

  Comparison uses hmac.compare_digest so verification time does not depend on
  how many leading bytes match.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import secrets

from argon2.exceptions import HashingError as Argon2HashingError
from argon2.low_level import Type, hash_secret_raw

from auth.errors import FormatError, HashingError

ARGON2_TIME_COST = 1
ARGON2_MEMORY_COST = 64 * 1024  # KiB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32
SALT_LEN = 16

_ENCODED_LEN = SALT_LEN + ARGON2_HASH_LEN


class PasswordHasher:
    """Hash and verify passwords.

    Usage:
        hasher = PasswordHasher()
        encoded = hasher.hash("secret1")
        hasher.verify("secret1", encoded)   # True
        hasher.verify("wrong", encoded)     # False
    """

    def hash(self, password: str) -> str:
        """Return base64(salt || argon2id(password, salt)).

        Raises HashingError if the OS entropy source or the KDF fails.
        """
        try:
            salt = secrets.token_bytes(SALT_LEN)
        except (OSError, NotImplementedError) as exc:
            raise HashingError("entropy source unavailable") from exc
        key = self._derive(password, salt)
        return base64.b64encode(salt + key).decode("ascii")

    def verify(self, password: str, encoded_hash: str) -> bool:
        """Return True if password matches encoded_hash.

        A mismatch is not an error. A hash that is not valid base64 or does not
        decode to exactly salt+key bytes raises FormatError -- that indicates
        a corrupted row, not a bad guess.
        """
        try:
            combined = base64.b64decode(encoded_hash.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise FormatError("password hash is not valid base64") from exc
        if len(combined) != _ENCODED_LEN:
            raise FormatError("password hash has unexpected length")

        salt, expected = combined[:SALT_LEN], combined[SALT_LEN:]
        actual = self._derive(password, salt)
        return hmac.compare_digest(actual, expected)

    @staticmethod
    def _derive(password: str, salt: bytes) -> bytes:
        try:
            return hash_secret_raw(
                secret=password.encode("utf-8"),
                salt=salt,
                time_cost=ARGON2_TIME_COST,
                memory_cost=ARGON2_MEMORY_COST,
                parallelism=ARGON2_PARALLELISM,
                hash_len=ARGON2_HASH_LEN,
                type=Type.ID,
            )
        except Argon2HashingError as exc:
            raise HashingError("argon2 key derivation failed") from exc

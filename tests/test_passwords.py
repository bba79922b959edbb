"""Unit tests for auth/passwords.py -- Argon2id hashing and verification.

Covers:
- hash/verify round trip and wrong-password rejection
- random salt: same password hashes differently each time
- encoded layout: base64 of salt || key
- FormatError on corrupted stored hashes
- HashingError when the entropy source fails
"""

from __future__ import annotations

import base64

import pytest

from auth.errors import FormatError, HashingError
from auth.passwords import ARGON2_HASH_LEN, SALT_LEN, PasswordHasher


class TestHashAndVerify:
    def test_correct_password_verifies(self, hasher: PasswordHasher) -> None:
        encoded = hasher.hash("secret1")
        assert hasher.verify("secret1", encoded) is True

    def test_wrong_password_does_not_verify(self, hasher: PasswordHasher) -> None:
        encoded = hasher.hash("secret1")
        assert hasher.verify("secret2", encoded) is False

    def test_same_password_hashes_differently(self, hasher: PasswordHasher) -> None:
        """Random salt -> two distinct encodings, both valid."""
        first = hasher.hash("secret1")
        second = hasher.hash("secret1")
        assert first != second
        assert hasher.verify("secret1", first)
        assert hasher.verify("secret1", second)

    def test_unicode_password(self, hasher: PasswordHasher) -> None:
        encoded = hasher.hash("pässwörd-密码")
        assert hasher.verify("pässwörd-密码", encoded)
        assert not hasher.verify("passwort-密码", encoded)

    def test_encoded_layout_is_salt_plus_key(self, hasher: PasswordHasher) -> None:
        raw = base64.b64decode(hasher.hash("secret1"))
        assert len(raw) == SALT_LEN + ARGON2_HASH_LEN

    def test_hash_does_not_contain_plaintext(self, hasher: PasswordHasher) -> None:
        assert "secret1" not in hasher.hash("secret1")


class TestMalformedHashes:
    def test_invalid_base64_raises_format_error(self, hasher: PasswordHasher) -> None:
        with pytest.raises(FormatError):
            hasher.verify("secret1", "not base64 at all!!")

    def test_wrong_length_raises_format_error(self, hasher: PasswordHasher) -> None:
        short = base64.b64encode(b"\x00" * 20).decode()
        with pytest.raises(FormatError):
            hasher.verify("secret1", short)

    def test_truncated_real_hash_raises_format_error(self, hasher: PasswordHasher) -> None:
        raw = base64.b64decode(hasher.hash("secret1"))
        truncated = base64.b64encode(raw[:-1]).decode()
        with pytest.raises(FormatError):
            hasher.verify("secret1", truncated)

    def test_foreign_hash_format_raises_format_error(self, hasher: PasswordHasher) -> None:
        """A PHC-style string from another hasher is not our format."""
        with pytest.raises(FormatError):
            hasher.verify("secret1", "$argon2id$v=19$m=65536,t=3,p=4$c2FsdA$aGFzaA")


def test_entropy_failure_raises_hashing_error(hasher: PasswordHasher, monkeypatch: pytest.MonkeyPatch) -> None:
    def _broken(_n: int) -> bytes:
        raise OSError("no entropy")

    monkeypatch.setattr("auth.passwords.secrets.token_bytes", _broken)
    with pytest.raises(HashingError):
        hasher.hash("secret1")

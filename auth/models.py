"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, services, and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Credential:
    """A registered user as seen by the auth core.

    password_hash is the encoded Argon2id output from auth.passwords. It is
    excluded from repr() so a stray log line or traceback cannot leak it, and
    it never leaves the core -- routes only ever see UserInfo.
    """

    username: str
    email: str
    password_hash: str = field(repr=False)
    id: str | None = None
    created_at: datetime | None = None

    def public(self) -> UserInfo:
        return UserInfo(
            id=self.id or "",
            username=self.username,
            email=self.email,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class UserInfo:
    """Public projection of a Credential (no hash)."""

    id: str
    username: str
    email: str
    created_at: datetime | None = None


@dataclass
class RefreshToken:
    """A persisted refresh token.

    Security design:
    - token_hash is SHA-256 of the raw value. The raw value is returned ONCE
      (login or rotation) and is unrecoverable afterwards.
    - revoked only ever flips False -> True. token_hash and expires_at are
      never updated after insert.
    - Revoked rows are kept until the purge job removes them so a replayed
      token hits a Revoked row instead of "unknown".
    """

    credential_id: str
    token_hash: str
    expires_at: datetime
    id: str | None = None
    revoked: bool = False
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Claims:
    """Verified access-token claim set."""

    subject_id: str
    username: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, attached to a request after Bearer validation."""

    credential_id: str
    username: str

    @classmethod
    def from_claims(cls, claims: Claims) -> Identity:
        return cls(credential_id=claims.subject_id, username=claims.username)


@dataclass(frozen=True)
class AuthResult:
    """Token pair plus public user info returned by login and rotation.

    refresh_token is the raw value -- the only time it exists in plaintext.
    """

    access_token: str
    access_expires_at: datetime
    refresh_token: str = field(repr=False)
    user: UserInfo

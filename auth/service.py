"""
auth/service.py -- Registration and password login.

CredentialService orchestrates the PasswordHasher, TokenCodec, and
CredentialStore. It never returns or logs a raw password or a password hash;
callers only ever receive UserInfo and AuthResult.

Security design decisions:
  Username enumeration: an unknown username and a wrong password raise the
       same InvalidCredentials. An unknown username still runs one Argon2
       verification against _dummy_hash so both paths cost the same time.

  Registration race: the existence checks only produce a specific message.
       They run before any write, so they are not isolated from a concurrent
       registration. UNIQUE(username)/UNIQUE(email) in the schema reject the
       losing INSERT, which surfaces as AlreadyExists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from auth.errors import AlreadyExists, InvalidCredentials
from auth.models import AuthResult, Credential, RefreshToken, UserInfo
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.tokens import Clock, TokenCodec, generate_refresh_token, hash_refresh_token, utc_now

logger = logging.getLogger("authgate.auth")


class CredentialService:
    """Register users and exchange username/password for a token pair.

    Usage:
        service = CredentialService(store, PasswordHasher(), codec, refresh_ttl=timedelta(days=7))
        user = service.register("alice", "alice@x.com", "secret1")
        result = service.login("alice", "secret1")
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        refresh_ttl: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._codec = codec
        self._refresh_ttl = refresh_ttl
        self._clock = clock
        # Computed once so the first unknown-username login is not measurably
        # slower than later ones.
        self._dummy_hash = hasher.hash("authgate_timing_dummy")

    def register(self, username: str, email: str, password: str) -> UserInfo:
        """Create a new credential. Raises AlreadyExists on username/email collision."""
        with self._store.transaction() as tx:
            if tx.exists_username(username):
                raise AlreadyExists("username already exists")
            if tx.exists_email(email):
                raise AlreadyExists("email already exists")
            credential = tx.create_credential(
                Credential(username=username, email=email, password_hash=self._hasher.hash(password))
            )
        logger.info("User registered user_id=%s username=%s", credential.id, credential.username)
        return credential.public()

    def login(self, username: str, password: str) -> AuthResult:
        """Verify the password and issue a fresh access token + refresh token pair."""
        credential = self._store.find_by_username(username)
        if credential is None:
            # Equalize timing -- do NOT return before running Argon2.
            self._hasher.verify(password, self._dummy_hash)
            raise InvalidCredentials("invalid username or password")
        if not self._hasher.verify(password, credential.password_hash):
            raise InvalidCredentials("invalid username or password")

        result = issue_session(self._store, self._codec, credential, self._refresh_ttl, self._clock())
        logger.info("User logged in user_id=%s", credential.id)
        return result


def issue_session(
    store: CredentialStore,
    codec: TokenCodec,
    credential: Credential,
    refresh_ttl: timedelta,
    now: datetime,
) -> AuthResult:
    """Issue an access token and persist a brand-new Active refresh token.

    Shared by login and rotation. Only the hash of the refresh token is
    stored; the raw value lives in the returned AuthResult and nowhere else.
    """
    access_token, access_expires_at = codec.issue(credential.id, credential.username)
    raw_refresh = generate_refresh_token()
    store.create_refresh_token(
        RefreshToken(
            credential_id=credential.id,
            token_hash=hash_refresh_token(raw_refresh),
            expires_at=now + refresh_ttl,
            created_at=now,
        )
    )
    return AuthResult(
        access_token=access_token,
        access_expires_at=access_expires_at,
        refresh_token=raw_refresh,
        user=credential.public(),
    )

"""
auth/rotation.py -- Refresh-token rotation, revocation, and cleanup.

A refresh token is in exactly one of three states:

  Active   not revoked, now < expires_at
  Expired  not revoked, now >= expires_at (detected lazily, here)
  Revoked  terminal

Rotation exchanges an Active token for a new access token and a new Active
refresh token, and revokes the presented one in the same store transaction.
Replaying a rotated token therefore finds nothing (InvalidToken); the Revoked
row stays in the table as evidence until the purge job removes it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.errors import InvalidToken, TokenExpired
from auth.models import AuthResult
from auth.service import issue_session
from auth.store import CredentialStore
from auth.tokens import Clock, TokenCodec, hash_refresh_token, utc_now

logger = logging.getLogger("authgate.auth.rotation")


class SessionRotator:
    """Validate, rotate, and revoke refresh tokens.

    Usage:
        rotator = SessionRotator(store, codec, refresh_ttl=timedelta(days=7))
        result = rotator.rotate(raw_refresh_token)
        rotator.logout(result.refresh_token)
    """

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        refresh_ttl: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._codec = codec
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    def rotate(self, raw_refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new token pair.

        Raises:
            InvalidToken: unknown, already revoked, or owner no longer exists.
            TokenExpired: past expires_at. The token is revoked before raising,
                          so a retry with the same value gets InvalidToken.
        """
        token_hash = hash_refresh_token(raw_refresh_token)
        now = self._clock()

        record = self._store.find_by_hash(token_hash)
        if record is None:
            raise InvalidToken("invalid refresh token")

        if record.is_expired(now):
            self._store.revoke_by_hash(token_hash)
            logger.info("Refresh token %s expired; revoked", record.id)
            raise TokenExpired("refresh token has expired")

        credential = self._store.find_by_id(record.credential_id)
        if credential is None:
            self._store.revoke_by_hash(token_hash)
            logger.warning("Refresh token %s belongs to a missing user; revoked", record.id)
            raise InvalidToken("invalid refresh token")

        with self._store.transaction() as tx:
            # Revoke first: if a concurrent rotation already retired this
            # token, abort (and roll back) instead of minting a second session.
            if not tx.revoke_by_hash(token_hash):
                raise InvalidToken("invalid refresh token")
            result = issue_session(tx, self._codec, credential, self._refresh_ttl, now)

        logger.info("Refresh token rotated user_id=%s", credential.id)
        return result

    def logout(self, raw_refresh_token: str) -> None:
        """Revoke a refresh token. Unknown or already-revoked tokens are a no-op."""
        self._store.revoke_by_hash(hash_refresh_token(raw_refresh_token))

    def logout_all(self, credential_id: str) -> int:
        """Revoke every Active refresh token of a user. Returns how many were revoked."""
        revoked = self._store.revoke_all_for_credential(credential_id)
        logger.info("Revoked %d refresh tokens for user_id=%s", revoked, credential_id)
        return revoked

    def purge(self) -> int:
        """Delete expired and revoked refresh tokens. Returns rows removed."""
        removed = self._store.purge_refresh_tokens(self._clock())
        if removed:
            logger.info("Purged %d expired/revoked refresh tokens", removed)
        return removed

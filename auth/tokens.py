"""
auth/tokens.py -- Access-token codec and refresh-token primitives.

Security design decisions:
  Access tokens: python-jose with an HMAC algorithm (HS256 by default). Tokens
       carry sub/user_id, username, iat, and exp. They are stateless: validity
       is signature + expiry, never a DB lookup. The signing secret is passed
       to TokenCodec at construction -- there is no module-level key, so tests
       and multiple apps in one process can use distinct secrets.

  Algorithm confusion: the header "alg" must equal the configured algorithm
       before the signature is even checked. "none", RS*/ES* and any other
       HMAC variant are rejected as InvalidSignature.

  Expiry is checked against the injected clock rather than jose's internal
       time call, so the same clock drives issue() and validate().

  Refresh tokens: secrets.token_hex(32) gives 256 bits of entropy. We store
       SHA-256(raw) so lookup is O(1) via the UNIQUE index; Argon2's
       intentional slowness buys nothing for a value this long and random.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JWTClaimsError, JWTError

from auth.errors import Expired, InvalidSignature, Malformed
from auth.models import Claims

logger = logging.getLogger("authgate.auth")

Clock = Callable[[], datetime]

_HMAC_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})

REFRESH_TOKEN_BYTES = 32


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


class TokenCodec:
    """Sign and verify short-lived access tokens.

    Usage:
        codec = TokenCodec(secret=settings.secret_key, access_ttl=timedelta(minutes=15))
        token, expires_at = codec.issue(user.id, user.username)
        claims = codec.validate(token)   # raises InvalidSignature / Malformed / Expired
    """

    def __init__(
        self,
        secret: str,
        access_ttl: timedelta,
        algorithm: str = "HS256",
        clock: Clock = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("TokenCodec requires a non-empty signing secret.")
        if algorithm not in _HMAC_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm {algorithm!r}; use one of {sorted(_HMAC_ALGORITHMS)}.")
        if access_ttl <= timedelta(0):
            raise ValueError("access_ttl must be positive.")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self._clock = clock

    def issue(self, subject_id: str, username: str) -> tuple[str, datetime]:
        """Return (token, expires_at) for the given identity.

        Timestamps are whole seconds (JWT NumericDate), so expires_at is
        truncated to match the exp claim exactly.
        """
        now = self._clock()
        issued_at = int(now.timestamp())
        expires_at = int((now + self.access_ttl).timestamp())
        payload = {
            "sub": subject_id,
            "user_id": subject_id,
            "username": username,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return token, datetime.fromtimestamp(expires_at, tz=timezone.utc)

    def validate(self, token: str) -> Claims:
        """Verify signature, algorithm, and expiry; return the claims.

        Raises:
            Malformed:        token is not a decodable JWT or lacks required claims.
            InvalidSignature: wrong key, tampered content, or a different alg.
            Expired:          exp is not after the current clock time.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise Malformed("access token is not a decodable JWT") from exc

        if header.get("alg") != self._algorithm:
            raise InvalidSignature(f"unexpected signing algorithm {header.get('alg')!r}")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise Malformed(str(exc)) from exc
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc

        claims = _claims_from_payload(payload)
        if claims.expires_at <= self._clock():
            raise Expired("access token has expired")
        return claims


def _claims_from_payload(payload: dict) -> Claims:
    subject_id = payload.get("user_id")
    username = payload.get("username")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(subject_id, str) or not subject_id:
        raise Malformed("missing user_id claim")
    if not isinstance(username, str):
        raise Malformed("missing username claim")
    # bool is an int subclass; reject it explicitly.
    for name, value in (("iat", iat), ("exp", exp)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise Malformed(f"{name} claim must be an integer")
    return Claims(
        subject_id=subject_id,
        username=username,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Refresh token generation and hashing
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a new opaque refresh token: 32 random bytes as 64 hex chars."""
    return secrets.token_hex(REFRESH_TOKEN_BYTES)


def hash_refresh_token(raw_token: str) -> str:
    """Return SHA-256(raw_token) as hex. Deterministic, so usable as a lookup key."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

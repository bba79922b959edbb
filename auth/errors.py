"""
auth/errors.py -- Typed error taxonomy for the credential and token lifecycle.

Every failure the auth core can produce is one of these classes. The API layer
maps them onto HTTP status codes in a single place (api/main.py) so route
handlers never build error responses by hand.

Security-relevant distinctions are collapsed at the source:
  InvalidCredentials covers both "unknown username" and "wrong password".
  InvalidToken covers unknown, revoked, and tampered tokens.

Infrastructure errors (HashingError, FormatError, StorageError) are surfaced
to callers as a generic internal error; the detail goes to the log only.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth package."""

    code: str = "auth_error"


class AlreadyExists(AuthError):
    """Username or email is already registered."""

    code = "conflict"


class InvalidCredentials(AuthError):
    """Bad username or bad password. Intentionally indistinguishable."""

    code = "invalid_credentials"


class InvalidToken(AuthError):
    """Unknown, revoked, tampered, or malformed token."""

    code = "invalid_token"


class InvalidSignature(InvalidToken):
    """Access token signature or algorithm does not match the configured key."""


class Malformed(InvalidToken):
    """Access token cannot be decoded or is missing required claims."""


class TokenExpired(AuthError):
    """Token is well-formed but past its expiry."""

    code = "token_expired"


class Expired(TokenExpired):
    """Access token exp claim is in the past."""


class HashingError(AuthError):
    """Password hashing failed (entropy source or KDF failure)."""

    code = "internal_error"


class FormatError(AuthError):
    """A stored password hash does not have the expected structure."""

    code = "internal_error"


class StorageError(AuthError):
    """The persistence layer failed."""

    code = "internal_error"

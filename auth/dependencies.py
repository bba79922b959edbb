"""
auth/dependencies.py -- FastAPI Depends() helpers for Bearer authentication.

get_current_identity() validates "Authorization: Bearer <access token>" with
the app's TokenCodec and returns a typed Identity. Route handlers receive the
caller's identity as a parameter, never from an untyped request-scoped lookup.

Cookies are not consulted; this service is Bearer-only.

Layer rule: may import fastapi (part of the dependency injection system) but
not api/ or core/.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.errors import InvalidToken, TokenExpired
from auth.models import Identity
from auth.tokens import TokenCodec

logger = logging.getLogger("authgate.auth")


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        return None
    return token


def get_current_identity(request: Request) -> Identity:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )

    codec: TokenCodec = request.app.state.codec
    try:
        claims = codec.validate(token)
    except TokenExpired:
        logger.info("Rejected expired access token")
        raise HTTPException(
            status_code=401,
            detail={"code": "token_expired", "message": "Access token has expired."},
        ) from None
    except InvalidToken as exc:
        logger.warning("Rejected access token: %s", exc.__class__.__name__)
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_token", "message": "Invalid token."},
        ) from None
    return Identity.from_claims(claims)

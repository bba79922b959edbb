"""
api/routes/v1/auth.py -- Registration, login, token rotation, and logout endpoints.

Routes:
  POST /api/v1/auth/register    -- create an account; 201
  POST /api/v1/auth/login       -- password login; returns access + refresh token
  POST /api/v1/auth/refresh     -- rotate a refresh token; returns a new pair
  POST /api/v1/auth/logout      -- revoke a refresh token; always 200
  POST /api/v1/auth/logout-all  -- revoke every refresh token of the caller (Bearer)
  GET  /api/v1/me               -- current user info (Bearer)

Error mapping lives in api/main.py: services raise auth.errors types and the
exception handler turns them into the standard error envelope. Handlers here
only translate between API models and service calls.

Security:
  Login and refresh responses carry Cache-Control: no-store so intermediaries
  never cache a token pair.
  Handlers are plain `def` so FastAPI runs the blocking Argon2 and DB work in
  its thread pool instead of on the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    LoginRequest,
    LogoutAllResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.rotation import SessionRotator
from auth.service import CredentialService
from auth.store import UserStore

# Auth policy:
# - POST /api/v1/auth/register:    public
# - POST /api/v1/auth/login:       public
# - POST /api/v1/auth/refresh:     public -- the refresh token is the credential
# - POST /api/v1/auth/logout:      public -- the refresh token is the credential
# - POST /api/v1/auth/logout-all:  requires Bearer access token
# - GET  /api/v1/me:               requires Bearer access token
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create a new account. 409 if the username or email is already taken."""
    service: CredentialService = request.app.state.credential_service
    user = service.register(body.username, body.email, body.password)
    return RegisterResponse(user=UserResponse.from_user(user))


@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, response: Response, body: LoginRequest) -> TokenResponse:
    """Authenticate with username and password.

    Unknown username and wrong password both produce 401 invalid_credentials.
    """
    service: CredentialService = request.app.state.credential_service
    result = service.login(body.username, body.password)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse.from_result(result)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenResponse:
    """Exchange a refresh token for a new access token and a new refresh token.

    The presented refresh token is revoked; presenting it again returns 401.
    """
    rotator: SessionRotator = request.app.state.rotator
    result = rotator.rotate(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse.from_result(result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshRequest) -> MessageResponse:
    """Revoke a refresh token. Unknown or already-revoked tokens also return 200."""
    rotator: SessionRotator = request.app.state.rotator
    rotator.logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, identity: Identity = Depends(get_current_identity)) -> LogoutAllResponse:
    """Revoke every refresh token belonging to the caller.

    Access tokens already issued stay valid until they expire.
    """
    rotator: SessionRotator = request.app.state.rotator
    revoked = rotator.logout_all(identity.credential_id)
    return LogoutAllResponse(revoked=revoked)


@router.get("/me", response_model=UserResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> UserResponse:
    """Return public information for the authenticated user."""
    user_store: UserStore = request.app.state.user_store
    credential = user_store.find_by_id(identity.credential_id)
    if credential is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return UserResponse.from_user(credential.public())

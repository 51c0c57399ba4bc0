"""
api/routes/v1/auth.py -- Authentication and self-service account endpoints.

Routes:
  POST /api/v1/auth/institution/register -- create institution, returns token
  POST /api/v1/auth/student/register     -- create student under an institution, returns token
  POST /api/v1/auth/institution/login    -- institution password login
  POST /api/v1/auth/student/login        -- student password login (optional tenant hint)
  POST /api/v1/auth/logout               -- acknowledge logout (requires auth)
  GET  /api/v1/auth/me                   -- current principal + kind (requires auth)
  PUT  /api/v1/auth/change-password      -- change own password (requires auth)
  GET  /api/v1/auth/profile              -- own profile (requires auth)
  PUT  /api/v1/auth/profile              -- update own profile (requires auth)

Security:
  [H2] Register and login routes are rate-limited per client IP.
  [C1] Unknown-account logins are timing-equalized inside AuthService.login().
  [M5] Cache-Control: no-store on every response that carries a token.
  Tokens are stateless; logout only tells the client to discard its copy.

Rate limits are applied by SlowAPIMiddleware; @limiter.limit sits above the
router decorator so FastAPI registers the undecorated handler.

Handlers are plain `def` so FastAPI runs them in its thread pool -- bcrypt
is CPU-bound and would otherwise block the event loop.

Auth-core failures are raised as typed errors and rendered by the exception
handlers in api/main.py; handlers here only deal with the happy path.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    ChangePasswordRequest,
    InstitutionRegisterRequest,
    LoginRequest,
    ProfileUpdateRequest,
    StudentRegisterRequest,
    account_to_dict,
)
from api.responses import success
from auth.dependencies import get_auth_service, get_current_account
from auth.models import Account, AuthResult, PrincipalKind
from auth.service import AuthService

# Auth policy:
# - POST /auth/{kind}/register:   public, rate-limited
# - POST /auth/{kind}/login:      public, rate-limited
# - everything else:              requires a bearer token (get_current_account)
router = APIRouter()


def _auth_payload(result: AuthResult) -> dict:
    return {
        "user": account_to_dict(result.account),
        "kind": result.account.kind.value,
        "token": result.token,
    }


# ---------------------------------------------------------------------------
# Registration (public)
# ---------------------------------------------------------------------------


@limiter.limit(register_limit)  # [H2]
@router.post("/auth/institution/register", status_code=201)
def register_institution(
    request: Request,
    body: InstitutionRegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Register a new institution and sign it in."""
    result = service.register_institution(body.to_domain())
    return success("Institution registered successfully", _auth_payload(result), status_code=201, no_store=True)


@limiter.limit(register_limit)  # [H2]
@router.post("/auth/student/register", status_code=201)
def register_student(
    request: Request,
    body: StudentRegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Register a new student under an active institution and sign it in."""
    result = service.register_student(body.to_domain())
    return success("Student registered successfully", _auth_payload(result), status_code=201, no_store=True)


# ---------------------------------------------------------------------------
# Login (public)
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/institution/login")
def login_institution(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate an institution with email and password."""
    result = service.login(body.email, body.password, PrincipalKind.INSTITUTION)
    return success("Login successful", _auth_payload(result), no_store=True)


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/student/login")
def login_student(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate a student, scoped to body.institution_id when given."""
    result = service.login(body.email, body.password, PrincipalKind.STUDENT, institution_hint=body.institution_id)
    return success("Login successful", _auth_payload(result), no_store=True)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(account: Account = Depends(get_current_account)) -> JSONResponse:
    """Acknowledge logout. The token itself stays valid until it expires."""
    return success("Logged out successfully", {"message": "Please remove the token from client storage"})


@router.get("/auth/me")
def me(account: Account = Depends(get_current_account)) -> JSONResponse:
    """Return the authenticated principal and its kind."""
    return success(
        "User information retrieved successfully",
        {"user": account_to_dict(account), "kind": account.kind.value},
    )


@router.put("/auth/change-password")
def change_password(
    body: ChangePasswordRequest,
    account: Account = Depends(get_current_account),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    service.change_password(account.kind, account.id, body.current_password, body.new_password)
    return success("Password changed successfully")


@router.get("/auth/profile")
def get_profile(account: Account = Depends(get_current_account)) -> JSONResponse:
    return success(
        "Profile retrieved successfully",
        {"user": account_to_dict(account), "kind": account.kind.value},
    )


@router.put("/auth/profile")
def update_profile(
    body: ProfileUpdateRequest,
    account: Account = Depends(get_current_account),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Update the caller's own profile. Fields the caller's kind may not change are dropped."""
    try:
        fields = body.to_fields(account.kind)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc
    updated = service.update_profile(account.kind, account.id, fields)
    return success("Profile updated successfully", {"user": account_to_dict(updated), "kind": updated.kind.value})

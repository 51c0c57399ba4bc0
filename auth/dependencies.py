"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Tokens are accepted only from the `Authorization: Bearer <token>` header.
There are no cookies and no API keys; the SafeEd clients store the token
themselves and send it on every request.

get_auth_service() pulls the AuthService the lifespan put on app.state.
get_current_account() resolves the bearer token to a live Institution or
Student. A missing header is rejected here with HTTP 401; every other
failure (expired, tampered, inactive, locked) is a typed auth error that
the exception handlers in api/main.py turn into the response envelope.

Layer rule: may import from fastapi (this module is part of the dependency
injection system). No imports from api/.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import Account
from auth.service import AuthService
from auth.tokens import extract_bearer_token


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_account(request: Request, service: AuthService = Depends(get_auth_service)) -> Account:
    """Require a valid bearer token. Returns the authenticated account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Access token is required."},
        )
    return service.authenticate(token)

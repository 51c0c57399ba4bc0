"""
auth/errors.py -- Typed error taxonomy for the auth core.

Every failure the auth core can produce is one of these classes. Each carries
a stable machine-readable `code`; the HTTP status mapping lives at the API
boundary (api/main.py), never here.

InvalidCredentialsError deliberately covers both "unknown account" and
"wrong password" so callers cannot enumerate accounts. AccountLockedError is
intentionally distinct and reveals lock state.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime


class AuthError(Exception):
    """Base class for all auth-core failures."""

    code = "auth_error"
    default_message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConflictError(AuthError):
    """A unique key is already taken. `field` names which one."""

    code = "conflict"

    _MESSAGES = {
        ("institution", "email"): "Institution with this email already exists.",
        ("institution", "institution_id"): "Institution ID already exists.",
        ("student", "email"): "A student with this email already exists in this institution.",
        ("student", "roll_no"): "A student with this roll number already exists in this institution.",
    }

    def __init__(self, entity: str, field: str) -> None:
        self.entity = entity
        self.field = field
        super().__init__(self._MESSAGES.get((entity, field), f"Duplicate value for field: {field}."))


class NotFoundError(AuthError):
    code = "not_found"
    default_message = "Account not found."


class InvalidTenantError(AuthError):
    code = "invalid_tenant"
    default_message = "Invalid or inactive institution ID."


class TenantNotFoundError(InvalidTenantError):
    pass


class TenantInactiveError(InvalidTenantError):
    pass


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    default_message = "Invalid login credentials."


class AccountLockedError(AuthError):
    code = "account_locked"
    default_message = "Account temporarily locked due to too many failed login attempts."

    def __init__(self, lock_until: datetime | None = None) -> None:
        self.lock_until = lock_until
        super().__init__()


class TokenError(AuthError):
    code = "invalid_token"
    default_message = "Invalid access token."


class TokenExpiredError(TokenError):
    code = "token_expired"
    default_message = "Token has expired. Please login again."


class InvalidTokenError(TokenError):
    pass


class CorruptHashError(AuthError):
    """A stored password hash could not be parsed. Data integrity fault."""

    code = "corrupt_hash"
    default_message = "Stored credential is malformed."


class NoChangesError(AuthError):
    code = "no_changes"
    default_message = "No valid fields to update."

"""
auth/tokens.py -- Signed, time-bound bearer tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with AuthConfig.secret_key
       and carry the principal id, kind, email, name and -- for students --
       the owning institution's internal id, plus iss/aud constants and an
       expiry.

  Claims on the wire:
       {id, kind, institutionId?, email, name, iat, exp, iss, aud}

  Verification distinguishes exactly two outcomes besides success:
       TokenExpiredError -- signature, issuer and audience are valid but the
                            token is at or past its exp.
       InvalidTokenError -- anything else: malformed, tampered signature,
                            wrong iss/aud, missing or ill-typed claims.

  Expiry is checked here against the injected clock rather than by jose, so
  it is a pure function of (token, secret, now). There is no revocation
  store; a token stays valid until it expires.

Layer rule: no imports from api/. Config is passed in, never looked up.
"""

from __future__ import annotations

from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.errors import InvalidTokenError, TokenExpiredError
from auth.lockout import Clock, utc_now
from auth.models import Account, PrincipalKind, TokenClaims
from core.config import AuthConfig

_REQUIRED_CLAIMS = ("id", "kind", "email", "name", "exp", "iss", "aud")


def extract_bearer_token(auth_header: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` header, or None."""
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


class TokenService:
    """Issues and verifies bearer tokens.

    Usage:
        tokens = TokenService(AuthConfig(secret_key=...))
        token = tokens.issue(account)
        claims = tokens.verify(token)   # TokenClaims, or raises TokenError
    """

    def __init__(self, config: AuthConfig, clock: Clock = utc_now) -> None:
        self._config = config
        self._clock = clock

    def issue(self, account: Account) -> str:
        now = self._clock()
        expire = now + self._config.token_lifetime
        payload = {
            "id": account.id,
            "kind": account.kind.value,
            "email": account.email,
            "name": account.name,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "iss": self._config.token_issuer,
            "aud": self._config.token_audience,
        }
        if account.kind is PrincipalKind.STUDENT:
            payload["institutionId"] = account.institution_id
        return jwt.encode(payload, self._config.secret_key, algorithm=self._config.token_algorithm)

    def verify(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._config.secret_key,
                algorithms=[self._config.token_algorithm],
                audience=self._config.token_audience,
                issuer=self._config.token_issuer,
                options={"verify_exp": False, "require_aud": True, "require_iss": True},
            )
        except JWTError as exc:
            raise InvalidTokenError() from exc

        missing = [name for name in _REQUIRED_CLAIMS if payload.get(name) in (None, "")]
        if missing:
            raise InvalidTokenError()

        exp = payload["exp"]
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise InvalidTokenError()
        if self._clock().timestamp() >= exp:
            raise TokenExpiredError()

        try:
            kind = PrincipalKind(payload["kind"])
        except ValueError as exc:
            raise InvalidTokenError() from exc

        account_id = payload["id"]
        institution_id = payload.get("institutionId")
        if not isinstance(account_id, int) or isinstance(account_id, bool):
            raise InvalidTokenError()
        if kind is PrincipalKind.STUDENT and not isinstance(institution_id, int):
            raise InvalidTokenError()

        iat = payload.get("iat")
        return TokenClaims(
            id=account_id,
            kind=kind,
            email=payload["email"],
            name=payload["name"],
            institution_id=institution_id if kind is PrincipalKind.STUDENT else None,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if isinstance(iat, (int, float)) else None,
        )

"""
auth/service.py -- Auth Service: the one entry point other layers call.

Composes the credential store, password hasher, lockout policy, token
service and tenant resolver into the register / login / change-password /
profile use cases. Route handlers never reach past this class.

Write-path rules that a persistence framework would otherwise hide in
pre-save hooks are explicit here:
  - hash-before-persist: a password is hashed exactly once, in the use case
    that changes it, and only the hash reaches the store.
  - recompute-before-persist: Student.profile_completed is recomputed from
    the record's fields before every student write.

Failures surface as the typed errors in auth/errors.py. Nothing here logs a
password, hash or token.
"""

from __future__ import annotations

import dataclasses
import logging

from auth.errors import (
    AccountLockedError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTenantError,
    InvalidTokenError,
    NoChangesError,
    NotFoundError,
)
from auth.lockout import Clock, LockoutPolicy, utc_now
from auth.models import (
    Account,
    AuthResult,
    Institution,
    InstitutionRegistration,
    PrincipalKind,
    Student,
    StudentRegistration,
)
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.tenants import TenantResolver
from auth.tokens import TokenService
from core.config import AuthConfig

logger = logging.getLogger("safeed.auth")

# Fields a principal may change about itself via update_profile().
# Anything else submitted is dropped without error.
PROFILE_FIELDS: dict[PrincipalKind, tuple[str, ...]] = {
    PrincipalKind.STUDENT: ("name", "phone", "parent_phone"),
    PrincipalKind.INSTITUTION: ("name", "phone", "location"),
}


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AuthService:
    """Registration, login and self-service account operations.

    Usage:
        service = create_auth_service(store, AuthConfig(secret_key=...))
        result = service.register_institution(registration)
        result = service.login("a@sch.edu", "Abc12345!", PrincipalKind.INSTITUTION)
        account = service.authenticate(result.token)
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        lockout: LockoutPolicy,
        tenants: TenantResolver,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._tokens = tokens
        self._lockout = lockout
        self._tenants = tenants

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_institution(self, fields: InstitutionRegistration) -> AuthResult:
        """Create an institution account and sign it in.

        Uniqueness is checked email first, then institution code, so the
        reported field is deterministic when both collide. The schema's
        unique constraints back these checks up under concurrency.
        """
        email = normalize_email(fields.email)
        code = fields.institution_id.strip().upper()

        if self._store.institution_email_exists(email):
            raise ConflictError("institution", "email")
        if self._store.institution_code_exists(code):
            raise ConflictError("institution", "institution_id")

        institution = Institution(
            name=fields.name.strip(),
            institution_id=code,
            email=email,
            phone=fields.phone.strip(),
            location=fields.location,
            hashed_password=self._hasher.hash(fields.password),
        )
        institution_pk = self._store.create_institution(institution)
        created = self._store.find_institution_by_id(institution_pk)
        logger.info("Institution registered id=%s code=%s", created.id, created.institution_id)
        return AuthResult(account=created, token=self._tokens.issue(created))

    def register_student(self, fields: StudentRegistration) -> AuthResult:
        """Create a student account under an active institution and sign it in.

        The tenant is resolved before any student row is read or written.
        Email is checked before roll number.
        """
        institution = self._tenants.resolve(fields.institution_id)
        email = normalize_email(fields.email)

        if self._store.student_email_exists(institution.id, email):
            raise ConflictError("student", "email")
        if self._store.student_roll_no_exists(institution.id, fields.roll_no):
            raise ConflictError("student", "roll_no")

        student = Student(
            institution_id=institution.id,
            name=fields.name.strip(),
            roll_no=fields.roll_no,
            division=fields.division.strip(),
            class_name=fields.class_name.strip(),
            admission_year=fields.admission_year,
            phone=fields.phone.strip(),
            parent_phone=fields.parent_phone.strip(),
            email=email,
            hashed_password=self._hasher.hash(fields.password),
        )
        student.profile_completed = student.compute_profile_completed()
        student_pk = self._store.create_student(student)
        created = self._store.find_student_by_id(student_pk)
        logger.info("Student registered id=%s institution=%s", created.id, institution.institution_id)
        return AuthResult(account=created, token=self._tokens.issue(created))

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        kind: PrincipalKind,
        institution_hint: str | None = None,
    ) -> AuthResult:
        """Verify credentials and issue a token.

        Students are looked up inside the hinted institution when a hint is
        given; without one the lookup falls back to the first student with
        that email across all institutions.

        Unknown account, inactive account and wrong password all raise
        InvalidCredentialsError. A student whose institution is inactive
        raises InvalidTenantError whatever the password, and nothing is
        written. A locked account raises AccountLockedError before the
        password is even checked, and again if a concurrent failure locked
        it while the password was being verified.
        """
        account = self._find_for_login(normalize_email(email), kind, institution_hint)
        if account is None or not account.is_active:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self._hasher.verify_dummy(password)
            raise InvalidCredentialsError()

        if account.kind is PrincipalKind.STUDENT and not institution_hint:
            # The unscoped path never went through the resolver.
            try:
                self._tenants.ensure_active(account.institution_id)
            except InvalidTenantError:
                self._hasher.verify_dummy(password)  # [C1]
                raise

        if self._lockout.is_locked(account):
            raise AccountLockedError(account.lock_until)

        if not self._hasher.verify(password, account.hashed_password):
            self._lockout.record_failure(account.kind, account.id)
            raise InvalidCredentialsError()

        self._lockout.record_success(account)
        fresh = self._store.find_by_id(account.kind, account.id)
        return AuthResult(account=fresh, token=self._tokens.issue(fresh))

    def _find_for_login(self, email: str, kind: PrincipalKind, institution_hint: str | None) -> Account | None:
        try:
            if kind is PrincipalKind.STUDENT and institution_hint:
                institution = self._tenants.resolve(institution_hint)
                return self._store.find_student_by_institution_and_email(
                    institution.id, email, include_password=True
                )
            return self._store.find_by_email(kind, email, include_password=True)
        except NotFoundError:
            return None

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def authenticate(self, token: str) -> Account:
        """Resolve a bearer token to a live account.

        Raises TokenExpiredError / InvalidTokenError from verification,
        InvalidTokenError if the account no longer exists or is inactive, and
        AccountLockedError if it is currently locked.
        """
        claims = self._tokens.verify(token)
        try:
            account = self._store.find_by_id(claims.kind, claims.id)
        except NotFoundError as exc:
            raise InvalidTokenError("Account not found or inactive.") from exc
        if not account.is_active:
            raise InvalidTokenError("Account not found or inactive.")
        if self._lockout.is_locked(account):
            raise AccountLockedError(account.lock_until)
        return account

    def get_account(self, kind: PrincipalKind, account_id: int) -> Account:
        return self._store.find_by_id(kind, account_id)

    # ------------------------------------------------------------------
    # Self-service updates
    # ------------------------------------------------------------------

    def change_password(self, kind: PrincipalKind, account_id: int, current: str, new: str) -> None:
        """Replace the password after re-verifying the current one."""
        account = self._store.find_by_id(kind, account_id, include_password=True)
        if not self._hasher.verify(current, account.hashed_password):
            raise InvalidCredentialsError("Current password is incorrect.")
        self._store.update_password(kind, account_id, self._hasher.hash(new))
        logger.info("Password changed for %s id=%s", kind.value, account_id)

    def update_profile(self, kind: PrincipalKind, account_id: int, fields: dict) -> Account:
        """Apply the subset of `fields` this kind may change; drop the rest.

        Raises NoChangesError when nothing allowed was submitted.
        """
        allowed = PROFILE_FIELDS[kind]
        updates = {name: value for name, value in fields.items() if name in allowed and value is not None}
        if not updates:
            raise NoChangesError()

        if kind is PrincipalKind.STUDENT:
            current = self._store.find_student_by_id(account_id)
            merged = dataclasses.replace(current, **updates)
            updates["profile_completed"] = merged.compute_profile_completed()

        self._store.update_profile(kind, account_id, updates)
        return self._store.find_by_id(kind, account_id)


def create_auth_service(
    store: CredentialStore,
    config: AuthConfig,
    hasher: PasswordHasher | None = None,
    clock: Clock = utc_now,
) -> AuthService:
    """Wire an AuthService from its collaborators.

    The application lifespan calls this once at startup; tests call it with
    a cheap hasher and a controllable clock.
    """
    return AuthService(
        store=store,
        hasher=hasher or PasswordHasher(),
        tokens=TokenService(config, clock=clock),
        lockout=LockoutPolicy(store, config, clock=clock),
        tenants=TenantResolver(store),
    )

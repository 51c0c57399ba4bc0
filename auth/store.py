"""
auth/store.py -- SQLAlchemy Core persistence layer for credential records.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_institution / _row_to_student are the mappers. Service code never
touches SQL directly.

Uniqueness is enforced by the schema, not only by the service's pre-checks:

    institutions  UNIQUE(email), UNIQUE(institution_id)
    students      UNIQUE(institution_id, email), UNIQUE(institution_id, roll_no)

so two concurrent registrations that both pass the service's existence
checks still cannot both commit. The losing insert surfaces as
sqlalchemy.exc.IntegrityError, which create_* translate into ConflictError
(or InvalidTenantError when the owning institution row is gone).

Lockout bookkeeping uses compare-and-set updates (swap_lockout_state and
record_login_success): the WHERE clause pins both login_attempts and
lock_until to the values the caller read, so a concurrent change makes
the update match zero rows instead of being silently overwritten.

Password hashes are excluded from every finder unless include_password=True
is passed. Records loaded without it carry hashed_password=None.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/safeed_auth.db unless DATABASE_URL is configured.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    exists,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError, InvalidTenantError, NotFoundError
from auth.lockout import LockoutState
from auth.models import Account, Institution, LearningProgress, Location, PrincipalKind, Student

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'safeed_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_institutions = Table(
    "institutions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("institution_id", String(50), nullable=False, unique=True),  # human-readable code
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("phone", String(15), nullable=False),
    Column("state", String(100), nullable=False),
    Column("district", String(100), nullable=False),
    Column("city", String(100), nullable=False),
    Column("pincode", String(6), nullable=False),
    Column("address", String(500), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_until", String(32)),  # ISO 8601, NULL = not locked
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_students = Table(
    "students",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("institution_id", Integer, ForeignKey("institutions.id"), nullable=False),
    Column("name", String(50), nullable=False),
    Column("roll_no", Integer, nullable=False),
    Column("division", String(10), nullable=False),
    Column("class_name", String(2), nullable=False),
    Column("admission_year", Integer, nullable=False),
    Column("phone", String(15), nullable=False),
    Column("parent_phone", String(15), nullable=False),
    Column("email", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("learning_progress", Text, nullable=False, server_default="{}"),  # opaque JSON
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("profile_completed", Integer, nullable=False, server_default="0"),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_until", String(32)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("institution_id", "email", name="uq_student_institution_email"),
    UniqueConstraint("institution_id", "roll_no", name="uq_student_institution_roll_no"),
)

_TABLES: dict[PrincipalKind, Table] = {
    PrincipalKind.INSTITUTION: _institutions,
    PrincipalKind.STUDENT: _students,
}

_LOCATION_FIELDS = ("state", "district", "city", "pincode", "address")

# Columns update_profile() may touch, per kind. Checked before any SQL is
# built so a caller can never smuggle lockout or password columns through.
_PROFILE_FIELDS: dict[PrincipalKind, frozenset[str]] = {
    PrincipalKind.INSTITUTION: frozenset({"name", "phone", "location"}),
    PrincipalKind.STUDENT: frozenset({"name", "phone", "parent_phone", "profile_completed"}),
}


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON is what makes a student
    insert against a missing institution fail at the store level.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # Naive values are treated as UTC.
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


def _columns(table: Table, include_password: bool) -> list:
    if include_password:
        return list(table.c)
    return [c for c in table.c if c.name != "hashed_password"]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Institution and Student credential records.

    Usage:
        store = CredentialStore()
        pk = store.create_institution(institution)
        inst = store.find_institution_by_email("a@sch.edu", include_password=True)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Institutions
    # ------------------------------------------------------------------

    def create_institution(self, institution: Institution) -> int:
        """Insert a new institution and return its internal id.

        Raises ConflictError("institution", "email" | "institution_id") if a
        unique constraint rejects the row. Nothing is persisted in that case.
        """
        now = _now_iso()
        loc = institution.location
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _institutions.insert().values(
                        institution_id=institution.institution_id,
                        name=institution.name,
                        email=institution.email,
                        hashed_password=institution.hashed_password,
                        phone=institution.phone,
                        state=loc.state,
                        district=loc.district,
                        city=loc.city,
                        pincode=loc.pincode,
                        address=loc.address,
                        is_active=1 if institution.is_active else 0,
                        login_attempts=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            # Re-check in the same deterministic order the service uses.
            if self.institution_email_exists(institution.email):
                raise ConflictError("institution", "email") from exc
            if self.institution_code_exists(institution.institution_id):
                raise ConflictError("institution", "institution_id") from exc
            raise

    def institution_email_exists(self, email: str) -> bool:
        return self._exists(_institutions.c.email == email)

    def institution_code_exists(self, code: str) -> bool:
        return self._exists(_institutions.c.institution_id == code)

    def find_institution_by_id(self, institution_pk: int, include_password: bool = False) -> Institution:
        return self._find_one(
            _institutions, _institutions.c.id == institution_pk, _row_to_institution, include_password
        )

    def find_institution_by_email(self, email: str, include_password: bool = False) -> Institution:
        return self._find_one(_institutions, _institutions.c.email == email, _row_to_institution, include_password)

    def find_institution_by_code(self, code: str, include_password: bool = False) -> Institution:
        """Look up by the human-readable institution code (exact match, callers normalize)."""
        return self._find_one(
            _institutions, _institutions.c.institution_id == code, _row_to_institution, include_password
        )

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    def create_student(self, student: Student) -> int:
        """Insert a new student and return its internal id.

        Raises ConflictError("student", "email" | "roll_no") when the
        per-institution unique constraints reject the row, and
        InvalidTenantError when the owning institution row does not exist.
        """
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _students.insert().values(
                        institution_id=student.institution_id,
                        name=student.name,
                        roll_no=student.roll_no,
                        division=student.division,
                        class_name=student.class_name,
                        admission_year=student.admission_year,
                        phone=student.phone,
                        parent_phone=student.parent_phone,
                        email=student.email,
                        hashed_password=student.hashed_password,
                        learning_progress=json.dumps(student.learning_progress.data),
                        is_active=1 if student.is_active else 0,
                        profile_completed=1 if student.profile_completed else 0,
                        login_attempts=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            if not self._exists(_institutions.c.id == student.institution_id):
                raise InvalidTenantError() from exc
            if self.student_email_exists(student.institution_id, student.email):
                raise ConflictError("student", "email") from exc
            if self.student_roll_no_exists(student.institution_id, student.roll_no):
                raise ConflictError("student", "roll_no") from exc
            raise

    def student_email_exists(self, institution_pk: int, email: str) -> bool:
        return self._exists(
            (_students.c.institution_id == institution_pk) & (_students.c.email == email),
        )

    def student_roll_no_exists(self, institution_pk: int, roll_no: int) -> bool:
        return self._exists(
            (_students.c.institution_id == institution_pk) & (_students.c.roll_no == roll_no),
        )

    def find_student_by_id(self, student_pk: int, include_password: bool = False) -> Student:
        return self._find_one(_students, _students.c.id == student_pk, _row_to_student, include_password)

    def find_student_by_institution_and_email(
        self, institution_pk: int, email: str, include_password: bool = False
    ) -> Student:
        return self._find_one(
            _students,
            (_students.c.institution_id == institution_pk) & (_students.c.email == email),
            _row_to_student,
            include_password,
        )

    def find_student_by_institution_and_roll_no(
        self, institution_pk: int, roll_no: int, include_password: bool = False
    ) -> Student:
        return self._find_one(
            _students,
            (_students.c.institution_id == institution_pk) & (_students.c.roll_no == roll_no),
            _row_to_student,
            include_password,
        )

    def find_student_by_email(self, email: str, include_password: bool = False) -> Student:
        """Unscoped lookup across all institutions.

        Student emails are only unique per institution, so this can match
        several rows. The lowest id wins; callers that know the tenant must
        use find_student_by_institution_and_email() instead.
        """
        return self._find_one(
            _students, _students.c.email == email, _row_to_student, include_password, order_by=_students.c.id
        )

    # ------------------------------------------------------------------
    # Kind-dispatching finders
    # ------------------------------------------------------------------

    def find_by_id(self, kind: PrincipalKind, account_id: int, include_password: bool = False) -> Account:
        if kind is PrincipalKind.INSTITUTION:
            return self.find_institution_by_id(account_id, include_password)
        return self.find_student_by_id(account_id, include_password)

    def find_by_email(self, kind: PrincipalKind, email: str, include_password: bool = False) -> Account:
        if kind is PrincipalKind.INSTITUTION:
            return self.find_institution_by_email(email, include_password)
        return self.find_student_by_email(email, include_password)

    # ------------------------------------------------------------------
    # Lockout bookkeeping
    # ------------------------------------------------------------------

    def get_lockout_state(self, kind: PrincipalKind, account_id: int) -> LockoutState:
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            row = conn.execute(
                select(table.c.login_attempts, table.c.lock_until).where(table.c.id == account_id)
            ).fetchone()
        if row is None:
            raise NotFoundError()
        return LockoutState(attempts=row.login_attempts, lock_until=_from_iso(row.lock_until))

    def swap_lockout_state(
        self, kind: PrincipalKind, account_id: int, expected: LockoutState, new: LockoutState
    ) -> bool:
        """Write `new` only if the row still holds `expected`. Returns True if it did."""
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update()
                .where((table.c.id == account_id) & self._lockout_matches(table, expected))
                .values(login_attempts=new.attempts, lock_until=_to_iso(new.lock_until))
            )
            conn.commit()
        return result.rowcount > 0

    def record_login_success(
        self,
        kind: PrincipalKind,
        account_id: int,
        expected: LockoutState,
        new: LockoutState,
        at: datetime,
    ) -> bool:
        """Write the post-success lockout state and stamp last_login in one update.

        Same compare-and-set contract as swap_lockout_state(): the row is
        only written if it still holds `expected`, so a lock committed by a
        concurrent failure is never cleared. Returns True if it was written.
        """
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update()
                .where((table.c.id == account_id) & self._lockout_matches(table, expected))
                .values(
                    login_attempts=new.attempts,
                    lock_until=_to_iso(new.lock_until),
                    last_login=_to_iso(at),
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Explicit updates
    # ------------------------------------------------------------------

    def update_password(self, kind: PrincipalKind, account_id: int, hashed_password: str) -> None:
        self._update(kind, account_id, {"hashed_password": hashed_password})

    def update_profile(self, kind: PrincipalKind, account_id: int, fields: dict) -> None:
        """Update whitelisted profile fields.

        Accepted fields: institution name/phone/location, student
        name/phone/parent_phone/profile_completed. Unknown keys raise
        ValueError rather than being silently ignored -- the service has
        already filtered user input, so an unknown key here is a bug.
        """
        unknown = set(fields) - _PROFILE_FIELDS[kind]
        if unknown:
            raise ValueError(f"Unknown profile fields for {kind.value}: {sorted(unknown)!r}")
        values = dict(fields)
        location = values.pop("location", None)
        if location is not None:
            values.update({name: getattr(location, name) for name in _LOCATION_FIELDS})
        if "profile_completed" in values:
            values["profile_completed"] = 1 if values["profile_completed"] else 0
        self._update(kind, account_id, values)

    def set_active(self, kind: PrincipalKind, account_id: int, active: bool) -> None:
        """Activate or deactivate an account. Records are never hard-deleted."""
        self._update(kind, account_id, {"is_active": 1 if active else 0})

    # ------------------------------------------------------------------
    # Health / lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _lockout_matches(table: Table, expected: LockoutState):
        expected_lock = _to_iso(expected.lock_until)
        lock_matches = table.c.lock_until.is_(None) if expected_lock is None else table.c.lock_until == expected_lock
        return (table.c.login_attempts == expected.attempts) & lock_matches

    def _exists(self, condition) -> bool:
        with self.engine.connect() as conn:
            return bool(conn.execute(select(exists().where(condition))).scalar())

    def _find_one(self, table: Table, condition, mapper, include_password: bool, order_by=None):
        stmt = select(*_columns(table, include_password)).where(condition)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        with self.engine.connect() as conn:
            row = conn.execute(stmt.limit(1)).fetchone()
        if row is None:
            raise NotFoundError()
        return mapper(row)

    def _update(self, kind: PrincipalKind, account_id: int, values: dict) -> None:
        table = _TABLES[kind]
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update().where(table.c.id == account_id).values(updated_at=_now_iso(), **values)
            )
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_institution(row) -> Institution:
    return Institution(
        id=row.id,
        institution_id=row.institution_id,
        name=row.name,
        email=row.email,
        # Absent from the row unless the caller asked for it.
        hashed_password=getattr(row, "hashed_password", None),
        phone=row.phone,
        location=Location(
            state=row.state,
            district=row.district,
            city=row.city,
            pincode=row.pincode,
            address=row.address,
        ),
        is_active=bool(row.is_active),
        login_attempts=row.login_attempts,
        lock_until=_from_iso(row.lock_until),
        last_login=_from_iso(row.last_login),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_student(row) -> Student:
    return Student(
        id=row.id,
        institution_id=row.institution_id,
        name=row.name,
        roll_no=row.roll_no,
        division=row.division,
        class_name=row.class_name,
        admission_year=row.admission_year,
        phone=row.phone,
        parent_phone=row.parent_phone,
        email=row.email,
        hashed_password=getattr(row, "hashed_password", None),
        learning_progress=LearningProgress(data=json.loads(row.learning_progress or "{}")),
        is_active=bool(row.is_active),
        profile_completed=bool(row.profile_completed),
        login_attempts=row.login_attempts,
        lock_until=_from_iso(row.lock_until),
        last_login=_from_iso(row.last_login),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

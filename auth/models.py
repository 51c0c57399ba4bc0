"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; the store, the lockout policy and the auth service do the work.

Principals are a tagged union, not a class hierarchy:

    Account = Institution | Student

Each variant carries only its own fields and a `kind` discriminant that is
fixed per class (init=False). Code that needs to branch on the variant
checks `account.kind`, never isinstance chains against a shared base.

Naming note: Institution.institution_id is the human-readable code
("SCH-001"); Student.institution_id is the owning institution's internal
integer id. This mirrors how the two records are keyed on the wire.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class PrincipalKind(str, Enum):
    INSTITUTION = "institution"
    STUDENT = "student"


@dataclass
class Location:
    state: str
    district: str
    city: str
    pincode: str
    address: str


@dataclass
class LearningProgress:
    """Opaque learning-progress aggregate embedded in a Student.

    The auth core never interprets this; it is stored as JSON and handed
    back unchanged. `data` holds whatever the progress views wrote.
    """

    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> LearningProgress:
        return cls(
            data={
                "completed_modules": [],
                "total_quizzes_taken": 0,
                "average_quiz_score": 0,
                "badges_earned": [],
                "current_streak": 0,
                "longest_streak": 0,
                "total_study_time": 0,
            }
        )


@dataclass
class Institution:
    """An educational institution -- the tenant boundary for students.

    id is None before the record is written to the database.
    hashed_password is None whenever the record was loaded without
    include_password=True.
    """

    name: str
    institution_id: str  # human-readable code, uppercase
    email: str
    phone: str
    location: Location
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    login_attempts: int = 0
    lock_until: datetime | None = None
    last_login: datetime | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    kind: PrincipalKind = field(default=PrincipalKind.INSTITUTION, init=False)


# Fields that must be non-empty for a student profile to count as complete.
STUDENT_REQUIRED_FIELDS: tuple[str, ...] = (
    "name",
    "roll_no",
    "division",
    "class_name",
    "admission_year",
    "phone",
    "parent_phone",
    "email",
)


@dataclass
class Student:
    """A student belonging to exactly one institution.

    institution_id is the owning Institution.id (internal key).
    (institution_id, email) and (institution_id, roll_no) are each unique.
    """

    institution_id: int
    name: str
    roll_no: int
    division: str
    class_name: str  # "1".."12"
    admission_year: int
    phone: str
    parent_phone: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    learning_progress: LearningProgress = field(default_factory=LearningProgress.empty)
    is_active: bool = True
    profile_completed: bool = False
    login_attempts: int = 0
    lock_until: datetime | None = None
    last_login: datetime | None = None
    created_at: str = ""
    updated_at: str = ""
    kind: PrincipalKind = field(default=PrincipalKind.STUDENT, init=False)

    def compute_profile_completed(self) -> bool:
        """Return True if every required profile field is present and non-blank."""
        for name in STUDENT_REQUIRED_FIELDS:
            value = getattr(self, name)
            if value is None or not str(value).strip():
                return False
        return True


Account = Union[Institution, Student]


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims recovered from a bearer token.

    institution_id is set only for students (owning Institution.id).
    """

    id: int
    kind: PrincipalKind
    email: str
    name: str
    expires_at: datetime
    institution_id: int | None = None
    issued_at: datetime | None = None


@dataclass
class InstitutionRegistration:
    """Input to AuthService.register_institution(). Already shape-validated."""

    name: str
    institution_id: str
    email: str
    password: str
    phone: str
    location: Location


@dataclass
class StudentRegistration:
    """Input to AuthService.register_student(). institution_id is the human-readable code."""

    institution_id: str
    name: str
    roll_no: int
    division: str
    class_name: str
    admission_year: int
    phone: str
    parent_phone: str
    email: str
    password: str


@dataclass
class AuthResult:
    """Returned by registration and login: the principal (password stripped) and its token."""

    account: Account
    token: str

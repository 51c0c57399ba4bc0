"""
API request and response models for SafeEd REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Request models validate input shape before
the auth core is invoked; route handlers map between the two with to_domain()
and from_domain().

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import (
    Account,
    Institution,
    InstitutionRegistration,
    Location,
    PrincipalKind,
    Student,
    StudentRegistration,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
PHONE_PATTERN = r"^[6-9]\d{9}$"  # 10-digit Indian mobile number
PINCODE_PATTERN = r"^[1-9][0-9]{5}$"
INSTITUTION_CODE_PATTERN = r"^[A-Z0-9_-]+$"
PERSON_NAME_PATTERN = r"^[a-zA-Z\s]+$"
CLASS_PATTERN = r"^(?:[1-9]|1[0-2])$"

_SPECIAL_CHARS = set("@$!%*?&")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


def _check_confirmation(password: str, confirm: Optional[str], label: str) -> None:
    if confirm is not None and confirm != password:
        raise ValueError(f"Password confirmation does not match {label}")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LocationModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    state: str = Field(min_length=2, max_length=100)
    district: str = Field(min_length=2, max_length=100)
    city: str = Field(min_length=2, max_length=100)
    pincode: str = Field(pattern=PINCODE_PATTERN)
    address: str = Field(min_length=10, max_length=500)

    def to_domain(self) -> Location:
        return Location(**self.model_dump())


class InstitutionRegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/institution/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100)
    institution_id: str = Field(min_length=1, max_length=50, pattern=INSTITUTION_CODE_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    confirm_password: Optional[str] = None
    phone: str = Field(pattern=PHONE_PATTERN)
    location: LocationModel

    @field_validator("institution_id", mode="before")
    @classmethod
    def normalize_code(cls, value: Any) -> Any:
        """Uppercase the code before the pattern check, so "sch-001" is accepted as "SCH-001"."""
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _lower(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        has_letter = any(c.isalpha() for c in value)
        has_digit = any(c.isdigit() for c in value)
        has_special = any(c in _SPECIAL_CHARS for c in value)
        if not (has_letter and has_digit and has_special):
            raise ValueError("Password must contain at least one letter, one number, and one special character")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "InstitutionRegisterRequest":
        _check_confirmation(self.password, self.confirm_password, "password")
        return self

    def to_domain(self) -> InstitutionRegistration:
        return InstitutionRegistration(
            name=self.name,
            institution_id=self.institution_id,
            email=self.email,
            password=self.password,
            phone=self.phone,
            location=self.location.to_domain(),
        )


class StudentRegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/student/register.

    institution_id is the human-readable institution code, not an internal id.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    institution_id: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=2, max_length=50, pattern=PERSON_NAME_PATTERN)
    roll_no: int = Field(ge=1, le=999999)
    division: str = Field(min_length=1, max_length=10)
    class_name: str = Field(pattern=CLASS_PATTERN)
    admission_year: int = Field(ge=2000)
    phone: str = Field(pattern=PHONE_PATTERN)
    parent_phone: str = Field(pattern=PHONE_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    confirm_password: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _lower(value)

    @field_validator("admission_year")
    @classmethod
    def not_too_far_ahead(cls, value: int) -> int:
        latest = datetime.now(timezone.utc).year + 5
        if value > latest:
            raise ValueError(f"Admission year must be between 2000 and {latest}")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "StudentRegisterRequest":
        _check_confirmation(self.password, self.confirm_password, "password")
        return self

    def to_domain(self) -> StudentRegistration:
        return StudentRegistration(
            institution_id=self.institution_id,
            name=self.name,
            roll_no=self.roll_no,
            division=self.division,
            class_name=self.class_name,
            admission_year=self.admission_year,
            phone=self.phone,
            parent_phone=self.parent_phone,
            email=self.email,
            password=self.password,
        )


class LoginRequest(BaseModel):
    """Request body for both login endpoints.

    institution_id is an optional tenant hint (institution code) honoured
    by student login only.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=128)
    institution_id: Optional[str] = Field(default=None, min_length=1, max_length=50)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _lower(value)


class ChangePasswordRequest(BaseModel):
    """Request body for PUT /api/v1/auth/change-password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=6, max_length=128)
    confirm_password: Optional[str] = None

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not any(c.isalpha() for c in value) or not any(c.isdigit() for c in value):
            raise ValueError("New password must contain at least one letter and one number")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        _check_confirmation(self.new_password, self.confirm_password, "new password")
        return self


class _StudentNameUpdate(BaseModel):
    """Student name rules, identical to StudentRegisterRequest.name."""

    name: str = Field(min_length=2, max_length=50, pattern=PERSON_NAME_PATTERN)


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/auth/profile.

    Every field is optional and unknown fields are ignored. Which of these a
    given principal may actually change is decided by the auth service.

    name is shape-checked here against the institution rules (2..100 chars);
    to_fields() re-checks it against the stricter student rules when the
    caller is a student, since the body alone does not say who is asking.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    parent_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    location: Optional[LocationModel] = None

    def to_fields(self, kind: PrincipalKind) -> dict[str, Any]:
        """Return the submitted, non-null fields as domain values.

        Raises pydantic.ValidationError when a student submits a name that
        student registration would reject.
        """
        if kind is PrincipalKind.STUDENT and self.name is not None:
            _StudentNameUpdate(name=self.name)
        fields: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None:
                continue
            fields[name] = value.to_domain() if isinstance(value, LocationModel) else value
        return fields


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class InstitutionOut(BaseModel):
    """Public view of an institution. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    institution_id: str
    name: str
    email: str
    phone: str
    location: dict[str, str]
    is_active: bool
    last_login: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, institution: Institution) -> "InstitutionOut":
        loc = institution.location
        return cls(
            id=institution.id,
            institution_id=institution.institution_id,
            name=institution.name,
            email=institution.email,
            phone=institution.phone,
            location={
                "state": loc.state,
                "district": loc.district,
                "city": loc.city,
                "pincode": loc.pincode,
                "address": loc.address,
            },
            is_active=institution.is_active,
            last_login=_iso(institution.last_login),
            created_at=institution.created_at,
            updated_at=institution.updated_at,
        )


class StudentOut(BaseModel):
    """Public view of a student. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    institution_id: int
    name: str
    roll_no: int
    division: str
    class_name: str
    admission_year: int
    phone: str
    parent_phone: str
    email: str
    learning_progress: dict[str, Any]
    is_active: bool
    profile_completed: bool
    last_login: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, student: Student) -> "StudentOut":
        return cls(
            id=student.id,
            institution_id=student.institution_id,
            name=student.name,
            roll_no=student.roll_no,
            division=student.division,
            class_name=student.class_name,
            admission_year=student.admission_year,
            phone=student.phone,
            parent_phone=student.parent_phone,
            email=student.email,
            learning_progress=student.learning_progress.data,
            is_active=student.is_active,
            profile_completed=student.profile_completed,
            last_login=_iso(student.last_login),
            created_at=student.created_at,
            updated_at=student.updated_at,
        )


def account_to_dict(account: Account) -> dict[str, Any]:
    """Serialize either principal variant, dispatching on its kind."""
    if account.kind is PrincipalKind.INSTITUTION:
        return InstitutionOut.from_domain(account).model_dump()
    return StudentOut.from_domain(account).model_dump()


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    field: Optional[str] = None
    detail: Optional[Any] = None


class Envelope(BaseModel):
    """Uniform response envelope for every SafeEd API response."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    data: Optional[dict[str, Any]] = None
    error: Optional[ErrorDetail] = None
    timestamp: str = Field(default_factory=_now_iso)


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

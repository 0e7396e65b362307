"""Pydantic schemas for enrolment key signup.

Request/Response models for:
- Signing up with an enrolment key
- Confirming an account
- The post-signup results view
- Password login and login page instructions
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator


USERNAME_MAX_LENGTH = 100
PASSWORD_MAX_LENGTH = 128
SIGNUP_TOKEN_MAX_LENGTH = 255


class ConfirmationStatus(str, Enum):
    """Outcome of following a confirmation link."""

    CONFIRMED = "confirmed"  # Flag flipped by this request
    ALREADY_CONFIRMED = "already_confirmed"  # Idempotent re-confirmation
    ERROR = "error"  # Unknown user, foreign auth type or wrong secret


def normalize_username(value: str) -> str:
    """Usernames are stored trimmed and lowercase."""
    value = value.strip().lower()
    if not value:
        raise ValueError("Username is required")
    if any(c.isspace() for c in value):
        raise ValueError("Username may not contain whitespace")
    return value


# ==============================================================================
# Request Schemas
# ==============================================================================


class SignupRequest(BaseModel):
    """Self-registration form submission."""

    username: str = Field(
        ..., min_length=1, max_length=USERNAME_MAX_LENGTH, description="Login name"
    )
    password: str = Field(
        ..., min_length=1, max_length=PASSWORD_MAX_LENGTH, description="Plaintext password"
    )
    email: EmailStr = Field(..., description="Email address for confirmation")
    signup_token: str = Field(
        ...,
        min_length=1,
        max_length=SIGNUP_TOKEN_MAX_LENGTH,
        description="Enrolment key. Compared exactly, never normalized.",
    )
    firstname: str = Field(default="", max_length=100)
    lastname: str = Field(default="", max_length=100)
    profile_fields: dict[str, str] = Field(
        default_factory=dict, description="Custom profile field values by shortname"
    )

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return normalize_username(v)


class LoginRequest(BaseModel):
    """Password login."""

    username: str = Field(..., min_length=1, max_length=USERNAME_MAX_LENGTH)
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return normalize_username(v)


# ==============================================================================
# Response Schemas
# ==============================================================================


class SignupResponse(BaseModel):
    """Result of a signup."""

    success: bool = True
    user_id: UUID
    username: str
    email: str
    applied_offer_ids: list[UUID] = Field(default_factory=list)
    redirect_url: str | None = Field(
        None, description="Results view listing the applied enrolments"
    )
    access_token: str | None = None
    message: str | None = None


class ConfirmResponse(BaseModel):
    """Result of following a confirmation link."""

    status: ConfirmationStatus
    username: str
    message: str


class EnrolledOfferItem(BaseModel):
    """One applied offer on the results view."""

    offer_id: UUID
    course_id: UUID
    name: str


class ResultsViewResponse(BaseModel):
    """Results view shown after signup."""

    items: list[EnrolledOfferItem]
    total: int
    message: str


class LoginResponse(BaseModel):
    success: bool
    username: str


class InstructionsResponse(BaseModel):
    """Login page instructions."""

    instructions: str | None = None
    signup_url: str | None = None


def parse_offer_ids(ids: str) -> list[UUID]:
    """Parse the comma-joined ``ids`` query value of the results view.

    Raises:
        ValueError: If an entry is not a UUID
    """
    return [UUID(part) for part in (p.strip() for p in ids.split(",")) if part]

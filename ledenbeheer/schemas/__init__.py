# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Request / Response schemas: API contract definitions.
These are Pydantic models used ONLY at the controller (HTTP) boundary.
Payloads are camelCase, like the stored records.
"""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ledenbeheer.core.config import settings
from ledenbeheer.models.domain import (
    BANKING_PAYMENT_METHODS,
    Member,
    format_member_number,
)

GENDER_PATTERN = "^(man|vrouw)$"
MEMBERSHIP_TYPE_PATTERN = "^(standaard|student|senior)$"
PAYMENT_TERM_PATTERN = "^(maandelijks|driemaandelijks|jaarlijks)$"
PAYMENT_METHOD_PATTERN = "^(cash|domiciliering|overschrijving|bancontact)$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
IBAN_PATTERN = "^[A-Z]{2}[0-9]{2}[A-Z0-9]{10,30}$"
BIC_PATTERN = "^[A-Z]{6}[A-Z0-9]{2}([A-Z0-9]{3})?$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Shared personal data ──

class PersonIn(CamelModel):
    """Optional personal/contact/membership/banking fields accepted on input."""

    gender: Optional[str] = Field(default=None, pattern=GENDER_PATTERN)
    birth_date: Optional[date] = None
    nationality: Optional[str] = Field(default=None, max_length=100)

    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    street: Optional[str] = Field(default=None, max_length=255)
    house_number: Optional[str] = Field(default=None, max_length=20)
    bus_number: Optional[str] = Field(default=None, max_length=20)
    postal_code: Optional[str] = Field(default=None, max_length=20)
    city: Optional[str] = Field(default=None, max_length=100)

    membership_type: Optional[str] = Field(default=None, pattern=MEMBERSHIP_TYPE_PATTERN)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    auto_renew: Optional[bool] = None
    payment_term: Optional[str] = Field(default=None, pattern=PAYMENT_TERM_PATTERN)
    payment_method: Optional[str] = Field(default=None, pattern=PAYMENT_METHOD_PATTERN)

    account_number: Optional[str] = Field(default=None, pattern=IBAN_PATTERN)
    account_holder_name: Optional[str] = Field(default=None, max_length=255)
    bic_swift: Optional[str] = Field(default=None, pattern=BIC_PATTERN)

    privacy_consent: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("gender", "membership_type", "payment_term", "payment_method", mode="before")
    @classmethod
    def normalise_choice(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("account_number", "bic_swift", mode="before")
    @classmethod
    def normalise_banking(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.replace(" ", "").upper()
            return v or None
        return v

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @field_validator("house_number", "bus_number", "postal_code", mode="before")
    @classmethod
    def as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def banking_details_required(self):
        if self.payment_method in BANKING_PAYMENT_METHODS:
            missing = [
                to_camel(name) for name in ("account_number", "account_holder_name")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"{', '.join(missing)} required when paymentMethod is {self.payment_method}"
                )
        return self


# ── Member Schemas ──

class MemberCreate(PersonIn):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=1, max_length=30)
    member_number: Optional[int] = Field(default=None, ge=1)
    registration_date: Optional[datetime] = None
    payment_status: Optional[bool] = None
    is_active: Optional[bool] = None
    privacy_consent: bool

    @field_validator("first_name", "last_name", "phone_number")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("privacy_consent")
    @classmethod
    def consent_given(cls, v: bool) -> bool:
        if v is not True:
            raise ValueError("privacyConsent must be true to register a member")
        return v


class MemberUpdate(PersonIn):
    """Partial update model for PATCH /api/v1/members/{id}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=30)
    member_number: Optional[int] = Field(default=None, ge=1)
    registration_date: Optional[datetime] = None
    payment_status: Optional[bool] = None
    is_active: Optional[bool] = None


class MemberOut(Member):
    """Member record plus the zero-padded display number."""

    display_number: Optional[str] = None

    @classmethod
    def from_member(cls, member: Member) -> "MemberOut":
        return cls(
            **member.model_dump(),
            display_number=format_member_number(
                member.member_number, settings.MEMBER_NUMBER_WIDTH
            ),
        )


class NextNumber(CamelModel):
    member_number: int
    display_number: str


class DeleteResult(CamelModel):
    status: str
    id: str
    member_number: Optional[int] = None


# ── Membership Request Schemas ──

class MembershipRequestCreate(PersonIn):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=1, max_length=30)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)

    @field_validator("first_name", "last_name", "phone_number")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class MembershipRequestUpdate(PersonIn):
    """Partial update model for PATCH /api/v1/member-requests/{id}.

    Unknown fields are rejected, so status and processing fields cannot be
    written through an edit.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=30)


class RejectBody(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=2000)
    processed_by: Optional[str] = Field(default=None, max_length=255)


class ApproveBody(CamelModel):
    processed_by: Optional[str] = Field(default=None, max_length=255)


class MarkApprovedBody(CamelModel):
    member_id: str = Field(..., min_length=1)
    processed_by: Optional[str] = Field(default=None, max_length=255)


class PendingCount(CamelModel):
    pending: int


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    request_id: Optional[str] = None

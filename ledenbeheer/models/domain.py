# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Domain models: pure data structures, NO FastAPI dependency.

Records are persisted as camelCase JSON with ISO-8601 date strings; the
models parse them back into date values and tolerate the legacy shapes
older deployments wrote (zero-padded member numbers, full timestamps in
date fields, "paid"/"unpaid" payment flags).
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

GENDERS = ("man", "vrouw")
MEMBERSHIP_TYPES = ("standaard", "student", "senior")
PAYMENT_TERMS = ("maandelijks", "driemaandelijks", "jaarlijks")
PAYMENT_METHODS = ("cash", "domiciliering", "overschrijving", "bancontact")
BANKING_PAYMENT_METHODS = ("domiciliering", "overschrijving")

REQUEST_STATUSES = ("pending", "approved", "rejected")
ALLOWED_TRANSITIONS = {
    "pending":  {"approved", "rejected"},
    "approved": set(),
    "rejected": set(),
}

REQUIRED_MEMBER_FIELDS = ("first_name", "last_name", "phone_number")
REQUIRED_REQUEST_FIELDS = ("first_name", "last_name", "phone_number", "email")

# Fields only the workflow may write on a request.
PROCESSING_FIELDS = (
    "status", "processed_date", "processed_by", "rejection_reason",
    "member_id", "member_number", "request_date",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_member_number(number: Optional[int], width: int = 4) -> Optional[str]:
    """Zero-padded rendering used for display only (7 -> "0007")."""
    if number is None:
        return None
    return str(number).zfill(width)


class StoredRecord(BaseModel):
    """A JSON record living under ``<collection>/<id>`` in the key/value store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: Optional[str] = None

    @classmethod
    def from_store(cls, key: str, data: dict[str, Any]):
        return cls.model_validate({**data, "id": key})

    def to_store(self) -> dict[str, Any]:
        """camelCase JSON without the id (the id is the key) and without nulls."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"}, exclude_none=True)


class PersonFields(StoredRecord):
    """Personal, contact, membership and banking fields shared by members and requests."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    nationality: Optional[str] = None

    email: Optional[str] = None
    phone_number: Optional[str] = None
    street: Optional[str] = None
    house_number: Optional[str] = None
    bus_number: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None

    membership_type: str = "standaard"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    auto_renew: bool = True
    payment_term: str = "jaarlijks"
    payment_method: str = "cash"

    account_number: Optional[str] = None
    account_holder_name: Optional[str] = None
    bic_swift: Optional[str] = None

    privacy_consent: bool = False
    notes: Optional[str] = None

    @field_validator("birth_date", "start_date", "end_date", mode="before")
    @classmethod
    def _date_part(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            if "T" in value:
                return value.split("T", 1)[0]
        return value

    @field_validator("house_number", "bus_number", "postal_code", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("membership_type", "payment_term", "payment_method", mode="before")
    @classmethod
    def _blank_to_default(cls, value: Any, info) -> Any:
        if value in (None, ""):
            return cls.model_fields[info.field_name].default
        return value


def _coerce_member_number(value: Any) -> Any:
    if value in (None, ""):
        return None
    if isinstance(value, str):
        return int(value.strip())
    return value


class Member(PersonFields):
    """An accepted participant with a permanent membership record."""

    member_number: Optional[int] = None
    registration_date: Optional[datetime] = None
    payment_status: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Marks an id reserved by approve that was never filled in.
    temp: bool = Field(default=False, exclude=True)

    @field_validator("member_number", mode="before")
    @classmethod
    def _member_number(cls, value: Any) -> Any:
        return _coerce_member_number(value)

    @field_validator("payment_status", mode="before")
    @classmethod
    def _payment_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() in ("paid", "betaald", "true", "1")
        if value is None:
            return False
        return value


class MembershipRequest(PersonFields):
    """An application awaiting a decision to become a Member."""

    status: str = "pending"
    request_date: Optional[datetime] = None
    processed_date: Optional[datetime] = None
    processed_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    member_id: Optional[str] = None
    member_number: Optional[int] = None
    ip_address: Optional[str] = None

    @field_validator("member_number", mode="before")
    @classmethod
    def _member_number(cls, value: Any) -> Any:
        return _coerce_member_number(value)

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


class DeletedMemberNumber(StoredRecord):
    """A freed member number waiting in the reuse pool."""

    member_number: int
    deleted_at: datetime

    @field_validator("member_number", mode="before")
    @classmethod
    def _member_number(cls, value: Any) -> Any:
        return _coerce_member_number(value)


class ApprovalResult(BaseModel):
    """Outcome of approving a request: what was observed, not what was intended."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    outcome: str
    attempts: int = 0
    request_id: str
    member_id: Optional[str] = None
    member_number: Optional[int] = None
    member: Optional[Member] = None
    request: Optional[MembershipRequest] = None
    warnings: list[str] = Field(default_factory=list)
    message: str = ""

"""CRM entity models shared by repositories, record stores and page views.

Entities are pydantic models so that raw records coming back from a record
store (snake_case or the camelCase keys the hosted store uses) are normalized
in one place. Enumerated fields are stored as plain strings: writes are
checked against the enum, while values read back from the store that fall
outside it are kept and later bucketed under a default label.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .date_windows import normalize_timestamp
from .errors import ValidationFailure


class DealStage(str, Enum):
    LEAD = "Lead"
    QUALIFIED = "Qualified"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    WON = "Won"
    LOST = "Lost"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActivityType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    NOTE = "note"


class QuoteStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


DEAL_STAGE_ORDER: tuple[str, ...] = tuple(stage.value for stage in DealStage)
CLOSED_STAGES = frozenset({DealStage.WON.value, DealStage.LOST.value})
TIMED_ACTIVITY_TYPES = frozenset({ActivityType.CALL.value, ActivityType.MEETING.value})

# Keys used by the hosted record store that do not follow the camelCase rule.
_RAW_KEY_ALIASES: Mapping[str, str] = {
    "Id": "id",
    "Name": "name",
    "Tags": "tags",
    "CreatedOn": "created_at",
    "ModifiedOn": "updated_at",
}


def _require_non_empty_string(value: Any, field_name: str) -> None:
    """Ensure that a required string field is not empty or whitespace."""
    if not isinstance(value, str):
        raise ValidationFailure(f"{field_name} must be provided as a string.")
    if value.strip() == "":
        raise ValidationFailure(f"{field_name} must not be blank or whitespace.")


def _validate_enum_value(raw_value: Any, enum_cls: Type[Enum], field_name: str) -> str:
    """Validate that the provided value matches an enum exactly."""
    if isinstance(raw_value, Enum):
        raw_value = raw_value.value
    if not isinstance(raw_value, str):
        raise ValidationFailure(f"{field_name} must be provided as a string.")
    valid_values = {member.value for member in enum_cls}
    if raw_value not in valid_values:
        formatted = ", ".join(member.value for member in enum_cls)
        raise ValidationFailure(f"{field_name} must be one of: {formatted}.")
    return raw_value


def _validate_non_negative_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        try:
            value = float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationFailure(f"{field_name} must be numeric.") from exc
    if value < 0:
        raise ValidationFailure(f"{field_name} must not be negative.")
    return float(value)


_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def _validate_email(value: Any) -> Optional[str]:
    """Email addresses are checked on write only; stored values are read as is."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return _EMAIL_ADAPTER.validate_python(value.strip() if isinstance(value, str) else value)
    except ValidationError as exc:
        raise ValidationFailure(f"Contact email '{value}' is not a valid email address.") from exc


def _validate_probability(value: Any) -> int:
    """Win probability is a whole-number percentage between 0 and 100."""
    try:
        as_float = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailure("Probability must be numeric.") from exc
    if not as_float.is_integer():
        raise ValidationFailure("Probability must be expressed as a whole-number percentage.")
    as_int = int(as_float)
    if as_int < 0 or as_int > 100:
        raise ValidationFailure("Probability must be between 0 and 100.")
    return as_int


def _parse_foreign_key(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, Mapping):
        # Lookup fields come back from the hosted store as {"Id": .., "Name": ..}.
        value = value.get("Id", value.get("id"))
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(f"{field_name} must be a record identifier.") from exc


def _coerce_calendar_date(value: Any) -> Any:
    """Accept ISO datetimes where only the calendar date is stored."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime) or (isinstance(value, str) and "T" in value):
        parsed = normalize_timestamp(value)
        if isinstance(parsed, datetime):
            return parsed.date()
    return value


def enum_or_default(value: Any, enum_cls: Type[Enum], default: Enum) -> Enum:
    """Map a stored value onto its enum member, falling back to ``default``."""
    try:
        return enum_cls(value)
    except ValueError:
        return default


def normalize_raw_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Rename the hosted store's irregular keys (``Id``, ``Name``, ...) to field names."""
    return {_RAW_KEY_ALIASES.get(key, key): value for key, value in data.items()}


_ADDRESS_PARTS = ("name_to", "street", "city", "state", "country", "pincode")


def fold_address_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Collect flat ``billingStreet``-style keys into ``billing``/``shipping`` blocks."""
    folded = dict(data)
    for block in ("billing", "shipping"):
        if block in folded:
            continue
        parts: Dict[str, Any] = {}
        for part in _ADDRESS_PARTS:
            camel = to_camel(part)
            for key in (f"{block}_{part}", f"{block}{camel[0].upper()}{camel[1:]}"):
                if key in folded:
                    parts[part] = folded.pop(key)
        if parts:
            folded[block] = parts
    return folded


class CRMBaseModel(BaseModel):
    """Shared configuration for all CRM entities."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def remap_raw_keys(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        return normalize_raw_keys(data)

    @field_validator("*", mode="before", check_fields=False)
    @classmethod
    def strip_strings(cls, value: Any) -> Any:
        """Normalize string inputs by trimming whitespace."""
        if isinstance(value, str):
            return value.strip()
        return value

    def to_record(self) -> Dict[str, Any]:
        """Dump to the snake_case shape written to record stores."""
        return self.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})


class Contact(CRMBaseModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("name", mode="before")
    @classmethod
    def unwrap_name(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return value.get("Name") or value.get("name")
        return value

    @field_validator("email", "phone", "company", "position", "notes", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def normalize_timestamps(cls, value: Any) -> Any:
        return normalize_timestamp(value)


class Deal(CRMBaseModel):
    id: int
    title: str
    value: float = Field(default=0.0, ge=0)
    stage: str = DealStage.LEAD.value
    contact_id: Optional[int] = None
    probability: int = Field(default=0, ge=0, le=100)
    expected_close_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("contact_id", mode="before")
    @classmethod
    def parse_contact_id(cls, value: Any) -> Optional[int]:
        return _parse_foreign_key(value, "contact_id")

    @field_validator("expected_close_date", mode="before")
    @classmethod
    def parse_close_date(cls, value: Any) -> Any:
        return _coerce_calendar_date(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def normalize_timestamps(cls, value: Any) -> Any:
        return normalize_timestamp(value)

    @property
    def is_open(self) -> bool:
        return self.stage not in CLOSED_STAGES


class Task(CRMBaseModel):
    id: int
    title: str
    description: str = ""
    due_date: datetime
    priority: str = TaskPriority.MEDIUM.value
    completed: bool = False
    contact_id: Optional[int] = None

    @field_validator("contact_id", mode="before")
    @classmethod
    def parse_contact_id(cls, value: Any) -> Optional[int]:
        return _parse_foreign_key(value, "contact_id")

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, value: Any) -> Any:
        return normalize_timestamp(value)

    @field_validator("description", mode="before")
    @classmethod
    def none_to_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class Activity(CRMBaseModel):
    id: int
    type: str
    contact_id: int
    deal_id: Optional[int] = None
    description: str = ""
    date: datetime
    duration: int = Field(default=0, ge=0)

    @field_validator("contact_id", mode="before")
    @classmethod
    def parse_contact_id(cls, value: Any) -> Optional[int]:
        return _parse_foreign_key(value, "contact_id")

    @field_validator("deal_id", mode="before")
    @classmethod
    def parse_deal_id(cls, value: Any) -> Optional[int]:
        return _parse_foreign_key(value, "deal_id")

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        return normalize_timestamp(value)

    @field_validator("duration", mode="before")
    @classmethod
    def none_to_zero(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("description", mode="before")
    @classmethod
    def none_to_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_timed(self) -> bool:
        """Duration is only meaningful for calls and meetings."""
        return self.type in TIMED_ACTIVITY_TYPES


class Address(CRMBaseModel):
    name_to: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    pincode: Optional[str] = None


class Quote(CRMBaseModel):
    id: int
    name: str
    status: str = QuoteStatus.DRAFT.value
    company_id: Optional[int] = None
    contact_id: Optional[int] = None
    deal_id: Optional[int] = None
    quote_date: Optional[date] = None
    expires_on: Optional[date] = None
    delivery_method: Optional[str] = None
    billing: Address = Field(default_factory=Address)
    shipping: Address = Field(default_factory=Address)
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def fold_address_blocks(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        return fold_address_fields(data)

    @field_validator("company_id", "contact_id", "deal_id", mode="before")
    @classmethod
    def parse_references(cls, value: Any, info: ValidationInfo) -> Optional[int]:
        return _parse_foreign_key(value, info.field_name)

    @field_validator("quote_date", "expires_on", mode="before")
    @classmethod
    def parse_dates(cls, value: Any) -> Any:
        return _coerce_calendar_date(value)

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return value

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def normalize_timestamps(cls, value: Any) -> Any:
        return normalize_timestamp(value)

    def with_shipping_from_billing(self) -> "Quote":
        """Return a copy whose shipping block mirrors the billing block."""
        return self.model_copy(update={"shipping": self.billing.model_copy()})

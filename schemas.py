import datetime as dt
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from models import TransactionCategory, TransactionStatus, TransactionType, UserRole

DEFAULT_EXPORT_COLUMNS = [
    "name",
    "email",
    "date",
    "amount",
    "type",
    "category",
    "status",
    "description",
    "reference",
]
EXPORTABLE_COLUMNS = DEFAULT_EXPORT_COLUMNS + ["id", "avatar", "createdAt", "updatedAt"]

# 1 billion in major units; per-user sums must fit a 64-bit integer
MAX_AMOUNT_CENTS = 100_000_000_000
MAX_AMOUNT = Decimal(MAX_AMOUNT_CENTS) / 100

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult(Generic[ModelT]):
    value: Optional[ModelT] = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and self.value is not None


def validate(model: type[ModelT], payload: Any) -> ValidationResult[ModelT]:
    """Validate an incoming JSON payload against ``model``.

    Never raises for bad input; the caller decides how to report the field
    errors.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return ValidationResult(errors=[FieldError("body", "Expected a JSON object")])
    try:
        return ValidationResult(value=model.model_validate(payload))
    except PydanticValidationError as exc:
        errors = []
        for item in exc.errors():
            loc = ".".join(str(part) for part in item.get("loc", ())) or "body"
            message = str(item.get("msg", "Invalid value"))
            if message.startswith("Value error, "):
                message = message[len("Value error, ") :]
            errors.append(FieldError(loc, message))
        return ValidationResult(errors=errors)


def amount_to_cents(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("Amount must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError("Amount must be a number") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a number")
    if amount > MAX_AMOUNT:
        raise ValueError("Amount is too large")
    if amount < -MAX_AMOUNT:
        raise ValueError("Amount cannot be negative")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0:
        raise ValueError("Amount cannot be negative")
    return cents


def coerce_date(value: Any) -> Any:
    """Accept ISO dates as well as ISO datetimes, keeping the calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value.strip()) > 10:
        raw = value.strip().replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(raw).date()
        except ValueError:
            return value
    return value


def _clean_email(value: str) -> str:
    clean = value.strip().lower()
    if "@" not in clean or clean.startswith("@") or clean.endswith("@"):
        raise ValueError("Please provide a valid email")
    return clean


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.user

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _clean_email(value)


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return value.strip().lower()


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    avatar: Optional[str] = None

    @field_validator("name", "avatar", mode="before")
    @classmethod
    def _ignore_blank(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return value.strip() if isinstance(value, str) else value


class TransactionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    amount_cents: int = Field(..., alias="amount", ge=0, le=MAX_AMOUNT_CENTS)
    type: TransactionType
    category: TransactionCategory
    date: Optional[dt.date] = None
    avatar: Optional[str] = None
    status: TransactionStatus = TransactionStatus.completed
    description: Optional[str] = Field(default=None, max_length=500)
    reference: Optional[str] = Field(default=None, max_length=50)

    @field_validator("name", "description", "reference", "avatar", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("amount_cents", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Any:
        if value is None:
            return value
        return amount_to_cents(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value: Any) -> Any:
        return coerce_date(_blank_to_none(value))


class TransactionUpdateIn(TransactionIn):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    amount_cents: Optional[int] = Field(
        default=None, alias="amount", ge=0, le=MAX_AMOUNT_CENTS
    )
    type: Optional[TransactionType] = None
    category: Optional[TransactionCategory] = None
    status: Optional[TransactionStatus] = None

    @field_validator("email")
    @classmethod
    def _email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value is not None else None

    @model_validator(mode="after")
    def _required_not_null(self) -> "TransactionUpdateIn":
        for name in ("name", "email", "amount_cents", "type", "category", "status", "date"):
            if name in self.model_fields_set and getattr(self, name) is None:
                label = "amount" if name == "amount_cents" else name
                raise ValueError(f"{label} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ExportIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    columns: Optional[list[str]] = None
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    type: Optional[TransactionType] = None
    category: Optional[TransactionCategory] = None
    status: Optional[TransactionStatus] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _dates(cls, value: Any) -> Any:
        return coerce_date(_blank_to_none(value))

    @field_validator("type", "category", "status", mode="before")
    @classmethod
    def _blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("columns")
    @classmethod
    def _known_columns(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if not value:
            return None
        unknown = [col for col in value if col not in EXPORTABLE_COLUMNS]
        if unknown:
            raise ValueError(f"Unknown export columns: {', '.join(unknown)}")
        return value

    @property
    def export_columns(self) -> list[str]:
        return list(self.columns or DEFAULT_EXPORT_COLUMNS)

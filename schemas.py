import datetime as dt
from datetime import date, datetime
from typing import ClassVar, Literal, Optional

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from models import BudgetPeriod, TransactionType, UserRole
from periods import budget_window_end


# bcrypt rejects secrets longer than 72 bytes
PASSWORD_MAX_BYTES = 72


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    return value


class PartialUpdate(BaseModel):
    """Base for PUT bodies: only fields sent by the client are applied."""

    model_config = ConfigDict(extra="forbid")

    # Fields that may be omitted but never cleared.
    required_when_set: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_nulls(self):
        for name in self.required_when_set:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=PASSWORD_MAX_BYTES)

    _password_bytes = field_validator("password")(_check_password_bytes)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserUpdateIn(PartialUpdate):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8, max_length=PASSWORD_MAX_BYTES)

    required_when_set: ClassVar[tuple[str, ...]] = ("name", "email", "password")

    _password_bytes = field_validator("password")(_check_password_bytes)


class AllowedOriginsIn(BaseModel):
    allowed_origins: list[AnyHttpUrl]


class AllowedOriginsOut(BaseModel):
    allowed_origins: list[str]


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    type: TransactionType
    icon: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=9)


class CategoryUpdateIn(PartialUpdate):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    type: Optional[TransactionType] = None
    icon: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=9)

    required_when_set: ClassVar[tuple[str, ...]] = ("name", "type")


class TransactionIn(BaseModel):
    type: TransactionType
    category_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=2, max_length=200)
    date: date
    notes: Optional[str] = Field(None, max_length=1000)


class TransactionUpdateIn(PartialUpdate):
    type: Optional[TransactionType] = None
    category_id: Optional[str] = Field(None, min_length=1)
    amount: Optional[float] = Field(None, gt=0)
    description: Optional[str] = Field(None, min_length=2, max_length=200)
    date: Optional[dt.date] = None
    notes: Optional[str] = Field(None, max_length=1000)

    required_when_set: ClassVar[tuple[str, ...]] = (
        "type",
        "category_id",
        "amount",
        "description",
        "date",
    )


class BudgetIn(BaseModel):
    category_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: date
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date is None:
            self.end_date = budget_window_end(self.start_date, self.period)
        if self.start_date >= self.end_date:
            raise ValueError("Start date must be before end date")
        return self


class BudgetUpdateIn(PartialUpdate):
    category_id: Optional[str] = Field(None, min_length=1)
    amount: Optional[float] = Field(None, gt=0)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    required_when_set: ClassVar[tuple[str, ...]] = (
        "category_id",
        "amount",
        "period",
        "start_date",
        "end_date",
    )

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValueError("Start date must be before end date")
        return self


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    role: UserRole
    allowed_origins: Optional[list[str]] = None
    created_at: datetime
    updated_at: datetime


class AuthOut(BaseModel):
    user: UserOut
    access_token: str
    token_type: Literal["bearer"] = "bearer"


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: TransactionType
    icon: Optional[str]
    color: Optional[str]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: TransactionType
    category_id: str
    amount: float
    description: str
    date: date
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    category_id: str
    amount: float
    period: BudgetPeriod
    start_date: date
    end_date: date
    created_at: datetime
    updated_at: datetime


class BudgetProgressOut(BaseModel):
    budget_id: str
    category_id: str
    period: BudgetPeriod
    start_date: date
    end_date: date
    budget: float
    spent: float
    remaining: float
    percent_used: int
    is_over_budget: bool
    status: Literal["nominal", "warning", "critical"]

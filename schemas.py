import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from periods import parse_day


MAX_ROW_ID = 2**63 - 1
_CENT = Decimal("0.01")


def _amount_field():
    # JSON numbers only: "12.5" or true must not slip through as an amount
    return Field(..., gt=0, strict=True, allow_inf_nan=False)


def _id_field():
    return Field(default=None, gt=0, le=MAX_ROW_ID, strict=True)


def check_money(value: float, integer_digits: int) -> float:
    """Rounds to cents; the result must be positive and fit the column."""
    ceiling = 10**integer_digits
    cents = None
    if value < ceiling:
        cents = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    if cents is None or cents >= ceiling:
        raise ValueError(f"Amount must be less than {ceiling}")
    if cents <= 0:
        raise ValueError("Amount must be at least 0.01")
    return float(cents)


class ApiIn(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )


class ApiOut(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class LoginIn(BaseModel):
    id_token: Optional[str] = None
    token: Optional[str] = None

    @property
    def raw_token(self) -> Optional[str]:
        return self.id_token or self.token


class IncomeIn(ApiIn):
    amount: float = _amount_field()
    source: str = Field(..., min_length=1, max_length=200)
    date: dt.date

    @field_validator("amount")
    @classmethod
    def _round_amount(cls, value: float) -> float:
        return check_money(value, 10)

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> dt.date:
        return parse_day(value)


class TransactionIn(ApiIn):
    """Company and category come either as existing ids or as names to find-or-create."""

    company_id: Optional[int] = _id_field()
    category_id: Optional[int] = _id_field()
    company: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    item: str = Field(..., min_length=1, max_length=200)
    payment_type: str = Field(..., min_length=1, max_length=50)
    amount: float = _amount_field()
    date: dt.date

    @field_validator("amount")
    @classmethod
    def _round_amount(cls, value: float) -> float:
        return check_money(value, 10)

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> dt.date:
        return parse_day(value)

    @model_validator(mode="after")
    def _require_references(self) -> "TransactionIn":
        if self.company_id is None and not self.company:
            raise ValueError("company or companyId is required")
        if self.category_id is None and not self.category:
            raise ValueError("category or categoryId is required")
        return self


class CompanyIn(ApiIn):
    name: str = Field(..., min_length=1, max_length=200)


class CategoryIn(ApiIn):
    name: str = Field(..., min_length=1, max_length=100)


class NetWorthAccountIn(ApiIn):
    account_name: str = Field(..., min_length=1, max_length=120)
    amount: float = _amount_field()

    @field_validator("amount")
    @classmethod
    def _round_amount(cls, value: float) -> float:
        return check_money(value, 12)


class NetWorthAccountsIn(ApiIn):
    accounts: list[NetWorthAccountIn] = Field(..., min_length=1)

    @field_validator("accounts")
    @classmethod
    def _unique_names(cls, accounts: list[NetWorthAccountIn]) -> list[NetWorthAccountIn]:
        seen: set[str] = set()
        for account in accounts:
            if account.account_name in seen:
                raise ValueError(f"Duplicate account name: {account.account_name}")
            seen.add(account.account_name)
        return accounts


class NetWorthIn(NetWorthAccountsIn):
    date: dt.date

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> dt.date:
        return parse_day(value)


class UserOut(ApiOut):
    id: int
    email: str
    name: str
    google_id: str
    created_at: dt.datetime


class IncomeOut(ApiOut):
    id: int
    user_id: int
    amount: float
    source: str
    date: dt.date
    created_at: dt.datetime


class CompanyOut(ApiOut):
    id: int
    name: str
    created_at: dt.datetime


class CategoryOut(ApiOut):
    id: int
    user_id: int
    name: str
    created_at: dt.datetime


class NameRef(ApiOut):
    name: str


class TransactionOut(ApiOut):
    id: int
    user_id: int
    company_id: int
    category_id: int
    item: str
    payment_type: str
    amount: float
    date: dt.date
    created_at: dt.datetime
    updated_at: Optional[dt.datetime] = None
    company: Optional[NameRef] = None
    category: Optional[NameRef] = None


class NetWorthOut(ApiOut):
    id: int
    user_id: int
    account_name: str
    amount: float
    date: dt.date
    created_at: dt.datetime


def dump(schema: type[ApiOut], row: Any) -> dict[str, Any]:
    return schema.model_validate(row).model_dump(by_alias=True, mode="json")


def dump_all(schema: type[ApiOut], rows: list[Any]) -> list[dict[str, Any]]:
    return [dump(schema, row) for row in rows]

"""Domain models for the finance tracker.

All records are pydantic v2 models serialized with the camelCase field names
the stored datasets use (``categoryId``, ``recurringGroupId``...). Python code
uses the snake_case attribute names.
"""

import datetime
import re
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from finance_tracker.config import DEFAULT_CATEGORY_COLOR, SCHEMA_VERSION

MONTH_KEY_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class Dataset(str, Enum):
    """Unit of sync granularity: one blob per dataset per user."""

    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"
    BUDGETS = "budgets"
    INVESTMENTS = "investments"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class RecurringRule(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class InvestmentType(str, Enum):
    SAVINGS = "savings"
    FIXED_INCOME = "fixed_income"
    STOCKS = "stocks"
    FUNDS = "funds"
    REAL_ESTATE = "real_estate"
    CRYPTO = "crypto"
    OTHER = "other"


# -----------------------------------------------------------------------------
# Base
# -----------------------------------------------------------------------------


class Record(BaseModel):
    """Stored record: accepts either field names or their camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        """Plain JSON-ready dict using the stored (aliased) field names."""
        return self.model_dump(by_alias=True, mode="json")


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------


class Transaction(Record):
    """A single income or expense entry.

    Attributes:
        id: Unique within the transactions collection.
        description: Free text. Generated occurrences carry the recurrence marker.
        amount: Non-negative; the sign comes from ``type``.
        type: income or expense.
        category_id: Reference to a Category. May dangle after a category delete.
        date: Calendar date, no time component.
        recurring_rule: Rule the entry was created with.
        recurring_group_id: Shared by all occurrences of one rule invocation.
            Absent for one-off entries and for legacy data.
        schema_version: Version of the record layout.
    """

    id: int
    description: str = Field(min_length=1)
    amount: float = Field(ge=0)
    type: TransactionType
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    date: date
    recurring_rule: RecurringRule = Field(default=RecurringRule.NONE, alias="recurringRule")
    recurring_group_id: Optional[str] = Field(default=None, alias="recurringGroupId")
    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")


class TransactionCreate(Record):
    """Fields supplied by the user for a new transaction."""

    description: str = Field(min_length=1)
    amount: float = Field(ge=0)
    type: TransactionType
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    date: date
    recurring_rule: RecurringRule = Field(default=RecurringRule.NONE, alias="recurringRule")


class TransactionEdit(Record):
    """Partial update. Only explicitly set fields are applied.

    ``date`` is honored for single edits and ignored for group edits, where
    every occurrence keeps its own date.
    """

    description: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[float] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    date: Optional[datetime.date] = None
    recurring_rule: Optional[RecurringRule] = Field(default=None, alias="recurringRule")

    def changes(self, *, include_date: bool = True) -> Dict[str, Any]:
        """Set fields as a dict keyed by attribute name."""
        fields = set(self.model_fields_set)
        if not include_date:
            fields.discard("date")
        return {name: getattr(self, name) for name in fields}


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------


class Category(Record):
    id: int
    name: str = Field(min_length=1)
    type: TransactionType
    color: str = DEFAULT_CATEGORY_COLOR


class CategoryCreate(Record):
    name: str = Field(min_length=1)
    type: TransactionType
    color: str = DEFAULT_CATEGORY_COLOR


class CategoryEdit(Record):
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[TransactionType] = None
    color: Optional[str] = None


# -----------------------------------------------------------------------------
# Budgets
# -----------------------------------------------------------------------------


def validate_month_key(value: str) -> str:
    """Check a ``YYYY-MM`` budget key."""
    if not isinstance(value, str) or not MONTH_KEY_PATTERN.match(value):
        raise ValueError(f"Invalid month key {value!r}, expected YYYY-MM")
    return value


class Budgets(BaseModel):
    """Monthly expense ceilings keyed by ``YYYY-MM``."""

    months: Dict[str, float] = Field(default_factory=dict)

    @field_validator("months")
    @classmethod
    def validate_months(cls, value: Dict[str, float]) -> Dict[str, float]:
        for key, amount in value.items():
            validate_month_key(key)
            if amount < 0:
                raise ValueError(f"Budget for {key} must be non-negative")
        return value


# -----------------------------------------------------------------------------
# Investments
# -----------------------------------------------------------------------------


class Investment(Record):
    """An investment. Its current value is derived, never stored."""

    id: int
    name: str = Field(min_length=1)
    type: InvestmentType = InvestmentType.OTHER
    principal: float = Field(gt=0)
    annual_rate_percent: float = Field(gt=-100, alias="annualRatePercent")
    start_date: date = Field(alias="startDate")
    maturity_date: Optional[date] = Field(default=None, alias="maturityDate")

    @model_validator(mode="after")
    def validate_dates(self) -> "Investment":
        """Maturity cannot precede the start date."""
        if self.maturity_date is not None and self.maturity_date < self.start_date:
            raise ValueError("maturityDate cannot be before startDate")
        return self


class InvestmentCreate(Record):
    name: str = Field(min_length=1)
    type: InvestmentType = InvestmentType.OTHER
    principal: float = Field(gt=0)
    annual_rate_percent: float = Field(gt=-100, alias="annualRatePercent")
    start_date: date = Field(alias="startDate")
    maturity_date: Optional[date] = Field(default=None, alias="maturityDate")


class InvestmentEdit(Record):
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[InvestmentType] = None
    principal: Optional[float] = Field(default=None, gt=0)
    annual_rate_percent: Optional[float] = Field(default=None, gt=-100, alias="annualRatePercent")
    start_date: Optional[date] = Field(default=None, alias="startDate")
    maturity_date: Optional[date] = Field(default=None, alias="maturityDate")

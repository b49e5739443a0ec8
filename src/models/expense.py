"""
Expense and Budget Models

These models define the strict schemas for the records the sync core
reads and writes. They are designed to:
1. Reject non-positive amounts and unknown categories before any store call
2. Be serializable for storage and logging
3. Keep the category list in exactly one place

DESIGN DECISION: Amounts are Decimal with two places, never float.
Aggregates over many small expenses must add up to the cent. A float
input is rounded to the cent on the way in; strings and Decimals with
more than two places are rejected.
"""

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


CENT = Decimal("0.01")


def round_float_amount(v):
    """Round float input to the cent; floats carry binary noise like 0.1 + 0.2."""
    if isinstance(v, float):
        return Decimal(str(v)).quantize(CENT, rounding=ROUND_HALF_UP)
    return v


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseCategory(str, Enum):
    """
    Supported expense categories.

    Category pickers, validation and analytics all read this enum.
    """
    FOOD = "Food"
    TRANSPORTATION = "Transportation"
    ENTERTAINMENT = "Entertainment"
    SHOPPING = "Shopping"
    UTILITIES = "Utilities"
    EDUCATION = "Education"
    HEALTH = "Health"
    OTHER = "Other"


EXPENSE_CATEGORIES: tuple[str, ...] = tuple(c.value for c in ExpenseCategory)


class BudgetPeriod(str, Enum):
    """Budget period."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseDraft(BaseModel):
    """
    Fields supplied by the caller when recording an expense.

    id and timestamps are assigned by the store.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(
        ...,
        min_length=1,
        description="Owning account id"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount spent"
    )
    category: ExpenseCategory = Field(
        ...,
        description="One of the fixed categories"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Free-text description"
    )
    date: dt.date = Field(
        ...,
        description="Effective date of the expense"
    )

    _round_amount = field_validator("amount", mode="before")(round_float_amount)


class Expense(ExpenseDraft):
    """
    A stored expense.

    pending marks an optimistic local entry that the store has not
    confirmed yet. It is never persisted.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Record id"
    )
    created_at: dt.datetime = Field(
        default_factory=dt.datetime.utcnow,
        description="When the record was created"
    )
    updated_at: dt.datetime = Field(
        default_factory=dt.datetime.utcnow,
        description="When the record was last changed"
    )
    pending: bool = Field(
        default=False,
        exclude=True,
        description="Optimistic entry awaiting store confirmation"
    )


class ExpenseUpdate(BaseModel):
    """Partial update of an expense. Ownership and id cannot change."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    category: Optional[ExpenseCategory] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None

    _round_amount = field_validator("amount", mode="before")(round_float_amount)

    @field_validator("amount", "category", "description", "date")
    @classmethod
    def reject_explicit_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be cleared")
        return v

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetDraft(BaseModel):
    """Fields supplied when setting a budget."""

    user_id: str = Field(
        ...,
        min_length=1,
        description="Account the budget applies to"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Spending limit for one period"
    )
    period: BudgetPeriod = Field(
        default=BudgetPeriod.MONTHLY,
        description="weekly or monthly"
    )
    category_limits: Optional[dict[ExpenseCategory, Decimal]] = Field(
        default=None,
        description="Optional per-category sub-limits"
    )

    _round_amount = field_validator("amount", mode="before")(round_float_amount)

    @field_validator("category_limits")
    @classmethod
    def validate_category_limits(
        cls, v: Optional[dict[ExpenseCategory, Decimal]]
    ) -> Optional[dict[ExpenseCategory, Decimal]]:
        if v is None:
            return v
        for category, limit in v.items():
            if limit <= 0:
                raise ValueError(f"Limit for {category.value} must be positive")
        return v


class Budget(BudgetDraft):
    """A stored budget. One per user_id."""

    id: str = Field(
        ...,
        min_length=1,
        description="Record id"
    )
    created_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)
    updated_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)

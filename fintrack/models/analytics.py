"""
Analytics result models.

Plain data computed from stored records; nothing here is persisted.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class CategoryBreakdown(BaseModel):
    category: str
    total_spent: Decimal
    item_count: int
    percentage: float


class PurchaseAnalytics(BaseModel):
    total_spent: Decimal = Decimal("0")
    monthly_spent: Decimal = Decimal("0")
    planned_count: int = 0
    purchased_count: int = 0
    cancelled_count: int = 0
    top_category: Optional[str] = None
    category_breakdown: list[CategoryBreakdown] = Field(default_factory=list)


class CurrencyLendBorrowBreakdown(BaseModel):
    currency: str
    total_lent: Decimal = Decimal("0")
    total_borrowed: Decimal = Decimal("0")
    outstanding_lent: Decimal = Decimal("0")
    outstanding_borrowed: Decimal = Decimal("0")


class PartialReturnStats(BaseModel):
    total_partial_returns: int = 0
    total_partial_return_amount: Decimal = Decimal("0")
    average_partial_return_amount: Decimal = Decimal("0")


class LendBorrowAnalytics(BaseModel):
    total_lent: Decimal = Decimal("0")
    total_borrowed: Decimal = Decimal("0")
    outstanding_lent: Decimal = Decimal("0")
    outstanding_borrowed: Decimal = Decimal("0")
    overdue_count: int = 0
    active_count: int = 0
    settled_count: int = 0
    top_person: Optional[str] = None
    currency_breakdown: list[CurrencyLendBorrowBreakdown] = Field(default_factory=list)
    partial_return_stats: PartialReturnStats = Field(default_factory=PartialReturnStats)


class MonthlyDonationBreakdown(BaseModel):
    month: str  # YYYY-MM
    saved: Decimal = Decimal("0")
    donated: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class ShareBreakdown(BaseModel):
    """Total, count and share of the grand total for one group."""
    key: str
    total: Decimal
    count: int
    percentage: float


class DonationSavingAnalytics(BaseModel):
    total_saved: Decimal = Decimal("0")
    total_donated: Decimal = Decimal("0")
    top_month: Optional[str] = None
    monthly_breakdown: list[MonthlyDonationBreakdown] = Field(default_factory=list)
    type_breakdown: list[ShareBreakdown] = Field(default_factory=list)
    mode_breakdown: list[ShareBreakdown] = Field(default_factory=list)


class CurrencyDashboardStats(BaseModel):
    currency: str
    total_balance: Decimal = Decimal("0")
    monthly_income: Decimal = Decimal("0")
    monthly_expenses: Decimal = Decimal("0")
    savings_rate: float = Field(
        default=0.0,
        description="Share of this month's income not spent, in percent"
    )


class DashboardStats(BaseModel):
    by_currency: list[CurrencyDashboardStats] = Field(default_factory=list)
    accounts_count: int = 0
    transactions_count: int = 0

"""
Core Data Models for fintrack

These models define the schemas for every record the tracker stores:
profiles, accounts, transactions, purchases, lend/borrow records and
donation/saving records.

They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for every storage backend
4. Support the activity history

DESIGN DECISION: Money is always a Decimal quantized to cents.
Floats never touch a balance.
"""

import random
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary value to cents (half up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


Money = Annotated[Decimal, Field(ge=0), AfterValidator(quantize_money)]
SignedMoney = Annotated[Decimal, AfterValidator(quantize_money)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"
    CASH = "cash"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class DpsType(str, Enum):
    """Deposit pension scheme contribution schedule."""
    MONTHLY = "monthly"
    FLEXIBLE = "flexible"


class DpsAmountType(str, Enum):
    FIXED = "fixed"
    CUSTOM = "custom"


class PurchaseStatus(str, Enum):
    PLANNED = "planned"
    PURCHASED = "purchased"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LendBorrowType(str, Enum):
    LEND = "lend"
    BORROW = "borrow"


class LendBorrowStatus(str, Enum):
    """
    Lend/borrow record status.

    A record is SETTLED only once the returned amount covers the
    full amount. OVERDUE is set by the overdue sweep, never by hand.
    """
    ACTIVE = "active"
    SETTLED = "settled"
    OVERDUE = "overdue"


class DonationSavingType(str, Enum):
    SAVING = "saving"
    DONATION = "donation"


class DonationMode(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"


class DonationStatus(str, Enum):
    PENDING = "pending"
    DONATED = "donated"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class SubscriptionPlan(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


# =============================================================================
# TRANSACTION IDS
# =============================================================================

TRANSACTION_ID_DIGITS = 7


def generate_transaction_id(prefix: str = "F") -> str:
    """
    Generate a short human-facing transaction id.

    Format: prefix followed by 7 random digits (e.g. F0384721).
    These ids tag user actions (a transfer writes two rows with
    one id) and are shown in confirmation messages.
    """
    digits = random.randint(0, 10 ** TRANSACTION_ID_DIGITS - 1)
    return f"{prefix}{digits:0{TRANSACTION_ID_DIGITS}d}"


def is_valid_transaction_id(transaction_id: Optional[str], prefix: str = "F") -> bool:
    """Check that an id has the prefix + 7 digits shape."""
    if not transaction_id:
        return False
    pattern = rf"^{re.escape(prefix)}\d{{{TRANSACTION_ID_DIGITS}}}$"
    return re.match(pattern, transaction_id) is not None


# =============================================================================
# BASE RECORD
# =============================================================================

class FinanceRecord(BaseModel):
    """
    Base class for every stored record.

    Every record has a UUID primary key and bookkeeping timestamps.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique record ID"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the record was created (UTC)"
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Last update timestamp (UTC)"
    )

    def with_changes(self, **changes: Any) -> "FinanceRecord":
        """
        Return a re-validated copy with the given fields replaced.

        Unknown field names raise ValueError rather than being dropped.
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(
                f"Unknown fields for {type(self).__name__}: {sorted(unknown)}"
            )
        data = self.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.utcnow()
        return type(self).model_validate(data)


# =============================================================================
# PROFILE
# =============================================================================

class Profile(FinanceRecord):
    """
    A registered user.

    The profile id IS the user id referenced by every other record.
    """

    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        description="Login email address"
    )
    full_name: Optional[str] = Field(
        default=None,
        max_length=200,
    )
    local_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
    )
    subscription: SubscriptionPlan = SubscriptionPlan.FREE
    profile_picture: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        local, sep, domain = v.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError(f"Invalid email address: {v}")
        return v

    @field_validator("local_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


# =============================================================================
# ACCOUNTS & TRANSACTIONS
# =============================================================================

class Account(FinanceRecord):
    """
    A money account (bank, card, wallet, cash).

    calculated_balance is derived: initial_balance plus income minus
    expenses of the account's transactions. The ledger recomputes it
    after every write; nothing else should set it.
    """

    user_id: UUID
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    type: AccountType
    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
    )
    initial_balance: SignedMoney = Decimal("0")
    calculated_balance: SignedMoney = Decimal("0")
    is_active: bool = True
    description: Optional[str] = Field(default=None, max_length=500)

    # Deposit pension scheme: a linked savings account fed by transfers
    has_dps: bool = False
    dps_type: Optional[DpsType] = None
    dps_amount_type: Optional[DpsAmountType] = None
    dps_fixed_amount: Optional[Money] = None
    dps_savings_account_id: Optional[UUID] = None

    donation_preference: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        description="Default donation percentage for income on this account"
    )
    transaction_id: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def validate_dps(self) -> "Account":
        if not self.has_dps:
            if self.dps_type or self.dps_amount_type or self.dps_fixed_amount is not None:
                raise ValueError("DPS settings require has_dps")
            return self
        if self.dps_amount_type == DpsAmountType.FIXED and self.dps_fixed_amount is None:
            raise ValueError("Fixed DPS accounts need dps_fixed_amount")
        return self


class Transaction(FinanceRecord):
    """A single income or expense entry against one account."""

    user_id: UUID
    account_id: UUID
    type: TransactionType
    amount: Money
    description: str = Field(default="", max_length=500)
    date: datetime = Field(default_factory=datetime.utcnow)
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_frequency: Optional[str] = None
    saving_amount: Optional[Money] = None
    donation_amount: Optional[Money] = None
    to_account_id: Optional[UUID] = None
    transaction_id: Optional[str] = Field(
        default=None,
        description="Human-facing id shared by every row of one user action"
    )

    @model_validator(mode="after")
    def validate_accounts(self) -> "Transaction":
        if self.to_account_id and self.to_account_id == self.account_id:
            raise ValueError("Source and destination accounts must be different")
        return self

    @property
    def is_transfer(self) -> bool:
        """Transfer legs move money between own accounts, not in or out."""
        if self.category.lower() == "transfer":
            return True
        return any(
            tag == "transfer" or tag.startswith("dps_transfer")
            for tag in self.tags
        )

    @property
    def signed_amount(self) -> Decimal:
        if self.type == TransactionType.INCOME:
            return self.amount
        return -self.amount


# =============================================================================
# PURCHASES
# =============================================================================

class Purchase(FinanceRecord):
    user_id: UUID
    item_name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    price: Money
    currency: str = Field(default="USD", min_length=3, max_length=3)
    purchase_date: date = Field(default_factory=date.today)
    status: PurchaseStatus = PurchaseStatus.PLANNED
    priority: Priority = Priority.MEDIUM
    notes: Optional[str] = Field(default=None, max_length=1000)
    transaction_id: Optional[str] = Field(
        default=None,
        description="Transaction id of the expense that paid for this purchase"
    )


class PurchaseCategory(FinanceRecord):
    user_id: UUID
    category_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    monthly_budget: Money = Decimal("0")
    category_color: str = "#3B82F6"
    currency: str = Field(default="USD", min_length=3, max_length=3)


class PurchaseAttachment(FinanceRecord):
    """A file (receipt, warranty) attached to a purchase."""

    purchase_id: UUID
    user_id: UUID
    file_name: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., description="Public URL of the stored file")
    file_size: int = Field(ge=0)
    file_type: str = ""
    mime_type: str = "application/octet-stream"
    public_id: Optional[str] = Field(
        default=None,
        description="Identifier of the file in the attachment store"
    )


# =============================================================================
# LEND / BORROW
# =============================================================================

class LendBorrow(FinanceRecord):
    user_id: UUID
    type: LendBorrowType
    person_name: str = Field(..., min_length=1, max_length=200)
    amount: Money
    currency: str = Field(default="USD", min_length=3, max_length=3)
    due_date: Optional[date] = None
    status: LendBorrowStatus = LendBorrowStatus.ACTIVE
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("amount")
    @classmethod
    def positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount must be greater than zero")
        return v


class LendBorrowReturn(FinanceRecord):
    """
    A partial (or final) repayment against a lend/borrow record.

    Owned through its parent record; it has no user_id of its own.
    """

    lend_borrow_id: UUID
    amount: Money
    return_date: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("amount")
    @classmethod
    def positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Return amount must be greater than zero")
        return v


# =============================================================================
# DONATIONS, SAVINGS, GOALS, NOTIFICATIONS
# =============================================================================

class DonationSavingRecord(FinanceRecord):
    """
    Money set aside from a transaction, either saved or pledged.

    Manual donations have no linked transaction and carry a
    custom_transaction_id instead.
    """

    user_id: UUID
    transaction_id: Optional[UUID] = None
    custom_transaction_id: Optional[str] = None
    type: DonationSavingType
    amount: Money
    mode: DonationMode = DonationMode.FIXED
    mode_value: Optional[Decimal] = None
    note: Optional[str] = Field(default=None, max_length=500)
    status: DonationStatus = DonationStatus.PENDING

    @model_validator(mode="after")
    def validate_mode(self) -> "DonationSavingRecord":
        if self.mode == DonationMode.PERCENT:
            if self.mode_value is None or not (0 < self.mode_value <= 100):
                raise ValueError("Percent mode needs a mode_value between 0 and 100")
        if self.transaction_id is None and not self.custom_transaction_id:
            raise ValueError("Either transaction_id or custom_transaction_id is required")
        return self


class SavingsGoal(FinanceRecord):
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Money
    current_amount: Money = Decimal("0")
    source_account_id: UUID
    savings_account_id: UUID
    description: Optional[str] = None

    @property
    def progress(self) -> float:
        """Percent of the target saved so far."""
        if self.target_amount == 0:
            return 0.0
        return round(float(self.current_amount / self.target_amount * 100), 2)


class Notification(FinanceRecord):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    body: Optional[str] = None
    type: NotificationType = NotificationType.INFO
    is_read: bool = False


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (required values, positive amounts)
    Stage 2: Semantic validation (dates, limits, account state)
    """

    subject_id: UUID = Field(
        ...,
        description="ID of the record being validated"
    )
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# QUERY MODELS
# =============================================================================

class TransactionQuery(BaseModel):
    """
    A structured query over a user's transactions.

    Executed deterministically by the report executor.
    """

    query_id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    created_at: datetime = Field(default_factory=datetime.utcnow)

    query_type: str = Field(
        ...,
        pattern="^(list|aggregate|exists)$",
        description="Type of query to execute"
    )

    # Filters
    account_id: Optional[UUID] = None
    type_filter: Optional[TransactionType] = None
    category_filter: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    include_transfers: bool = False

    # For aggregations
    group_by: Optional[str] = Field(
        default=None,
        pattern="^(category|month|account)$"
    )

    limit: int = Field(
        default=50,
        ge=1,
        le=1000
    )


class QueryResult(BaseModel):
    """Result of executing a structured query."""

    query_id: UUID
    executed_at: datetime = Field(default_factory=datetime.utcnow)

    success: bool
    error_message: Optional[str] = None

    data_found: bool
    result_count: int = Field(ge=0)
    results: list[dict] = Field(default_factory=list)
    aggregation_result: Optional[dict] = None

    query_description: str

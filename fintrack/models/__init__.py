"""
Data Models Package

This package contains all Pydantic models used in fintrack.
All data flowing through the system must conform to these schemas.
"""

from fintrack.models.finance import (
    Account,
    AccountType,
    DonationMode,
    DonationSavingRecord,
    DonationSavingType,
    DonationStatus,
    DpsAmountType,
    DpsType,
    FinanceRecord,
    LendBorrow,
    LendBorrowReturn,
    LendBorrowStatus,
    LendBorrowType,
    Notification,
    NotificationType,
    Priority,
    Profile,
    Purchase,
    PurchaseAttachment,
    PurchaseCategory,
    PurchaseStatus,
    QueryResult,
    SavingsGoal,
    SubscriptionPlan,
    Transaction,
    TransactionQuery,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    generate_transaction_id,
    is_valid_transaction_id,
    quantize_money,
)
from fintrack.models.activity import (
    ActivityEntry,
    ActivityEntryBuilder,
    ActivitySeverity,
    ActivityType,
    diff_records,
)
from fintrack.models.lifecycle import (
    DeletionJob,
    DeletionReport,
    DeletionStatus,
    DeletionStep,
    DeletionStepStatus,
    DeliveryStatus,
    LastWishDelivery,
    LastWishIncludeData,
    LastWishRecipient,
    LastWishSettings,
    OverdueUser,
)
from fintrack.models.tables import Table, model_for, owner_field

__all__ = [
    # Finance records
    "Account",
    "AccountType",
    "DonationMode",
    "DonationSavingRecord",
    "DonationSavingType",
    "DonationStatus",
    "DpsAmountType",
    "DpsType",
    "FinanceRecord",
    "LendBorrow",
    "LendBorrowReturn",
    "LendBorrowStatus",
    "LendBorrowType",
    "Notification",
    "NotificationType",
    "Priority",
    "Profile",
    "Purchase",
    "PurchaseAttachment",
    "PurchaseCategory",
    "PurchaseStatus",
    "QueryResult",
    "SavingsGoal",
    "SubscriptionPlan",
    "Transaction",
    "TransactionQuery",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    "generate_transaction_id",
    "is_valid_transaction_id",
    "quantize_money",
    # Activity models
    "ActivityEntry",
    "ActivityEntryBuilder",
    "ActivitySeverity",
    "ActivityType",
    "diff_records",
    # Lifecycle models
    "DeletionJob",
    "DeletionReport",
    "DeletionStatus",
    "DeletionStep",
    "DeletionStepStatus",
    "DeliveryStatus",
    "LastWishDelivery",
    "LastWishIncludeData",
    "LastWishRecipient",
    "LastWishSettings",
    "OverdueUser",
    # Table registry
    "Table",
    "model_for",
    "owner_field",
]

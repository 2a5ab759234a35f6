"""
Table registry.

Maps every stored table to the model its rows validate against and to
the field that names the owning user.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from fintrack.models.activity import ActivityEntry
from fintrack.models.finance import (
    Account,
    DonationSavingRecord,
    LendBorrow,
    LendBorrowReturn,
    Notification,
    Profile,
    Purchase,
    PurchaseAttachment,
    PurchaseCategory,
    SavingsGoal,
    Transaction,
)
from fintrack.models.lifecycle import DeletionJob, LastWishDelivery, LastWishSettings


class Table(str, Enum):
    PROFILES = "profiles"
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    PURCHASES = "purchases"
    PURCHASE_CATEGORIES = "purchase_categories"
    PURCHASE_ATTACHMENTS = "purchase_attachments"
    LEND_BORROW = "lend_borrow"
    LEND_BORROW_RETURNS = "lend_borrow_returns"
    DONATION_SAVING_RECORDS = "donation_saving_records"
    SAVINGS_GOALS = "savings_goals"
    NOTIFICATIONS = "notifications"
    LAST_WISH_SETTINGS = "last_wish_settings"
    LAST_WISH_DELIVERIES = "last_wish_deliveries"
    DELETION_JOBS = "deletion_jobs"
    ACTIVITY_HISTORY = "activity_history"


TABLE_MODELS: dict[Table, type[BaseModel]] = {
    Table.PROFILES: Profile,
    Table.ACCOUNTS: Account,
    Table.TRANSACTIONS: Transaction,
    Table.PURCHASES: Purchase,
    Table.PURCHASE_CATEGORIES: PurchaseCategory,
    Table.PURCHASE_ATTACHMENTS: PurchaseAttachment,
    Table.LEND_BORROW: LendBorrow,
    Table.LEND_BORROW_RETURNS: LendBorrowReturn,
    Table.DONATION_SAVING_RECORDS: DonationSavingRecord,
    Table.SAVINGS_GOALS: SavingsGoal,
    Table.NOTIFICATIONS: Notification,
    Table.LAST_WISH_SETTINGS: LastWishSettings,
    Table.LAST_WISH_DELIVERIES: LastWishDelivery,
    Table.DELETION_JOBS: DeletionJob,
    Table.ACTIVITY_HISTORY: ActivityEntry,
}

# Field holding the owner's user id. LendBorrowReturn rows are owned
# through their parent record.
OWNER_FIELDS: dict[Table, Optional[str]] = {
    table: "user_id" for table in Table
}
OWNER_FIELDS[Table.PROFILES] = "id"
OWNER_FIELDS[Table.LEND_BORROW_RETURNS] = None


def model_for(table: Table) -> type[BaseModel]:
    return TABLE_MODELS[table]


def owner_field(table: Table) -> Optional[str]:
    return OWNER_FIELDS[table]

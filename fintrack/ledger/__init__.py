"""Ledger package: accounts, transactions, purchases, lend/borrow, set-asides and savings goals."""

from fintrack.ledger.donations import DonationSavingService
from fintrack.ledger.lend_borrow import LendBorrowService
from fintrack.ledger.purchases import PurchaseService
from fintrack.ledger.savings_goals import SavingsGoalService
from fintrack.ledger.service import LedgerService, TransferResult

__all__ = [
    "DonationSavingService",
    "LedgerService",
    "LendBorrowService",
    "PurchaseService",
    "SavingsGoalService",
    "TransferResult",
]

"""
Two-Stage Transaction Validation

DESIGN DECISION: A transaction is checked in two passes before the
ledger writes it.

STRUCTURE (stage 1):
- Required values present (account, category)
- Positive amount
- The account belongs to the transaction's user

MEANING (stage 2, only when stage 1 passed):
- Future date detection
- Absurd amount detection
- Account state (inactive accounts take no new entries)
- Saving + donation split cannot exceed the amount
- Cross-currency transfers without an exchange rate

Nothing is corrected here. Errors make the ledger refuse the write;
warnings travel back to the caller with the saved record.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from fintrack.config import AppSettings, get_settings
from fintrack.models.finance import (
    Account,
    Transaction,
    ValidationIssue,
    ValidationResult,
)


class TransactionValidator:
    """
    Validates a transaction before it is written.

    Stage 1: Schema validation
    Stage 2: Semantic validation (only if stage 1 passes)
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        transaction: Transaction,
        account: Optional[Account],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if transaction.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Enter a positive amount",
            ))

        if not transaction.category or not transaction.category.strip():
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
                severity="error",
                suggested_fix="Pick a category for this transaction",
            ))

        if account is None or account.id != transaction.account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message=f"Account {transaction.account_id} does not exist",
                severity="error",
                suggested_fix="Choose one of your accounts",
            ))
        elif account.user_id != transaction.user_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="invalid_value",
                message="Account belongs to another user",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        transaction: Transaction,
        account: Account,
        to_account: Optional[Account],
        exchange_rate: Decimal,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        # Future date check (with tolerance)
        max_future = datetime.utcnow() + timedelta(
            days=self._settings.future_date_tolerance_days
        )
        if transaction.date > max_future:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Transaction date ({transaction.date.date()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        # Absurd amount check
        max_amount = Decimal(str(self._settings.max_transaction_amount))
        if transaction.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({transaction.amount:,.2f} {account.currency}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        if not account.is_active:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="inactive_account",
                message=f"Account '{account.name}' is inactive",
                severity="error",
                suggested_fix="Reactivate the account or choose another one",
            ))

        set_aside = (transaction.saving_amount or Decimal("0")) + (
            transaction.donation_amount or Decimal("0")
        )
        if set_aside > transaction.amount:
            issues.append(ValidationIssue(
                field="saving_amount",
                issue_type="inconsistent",
                message=(
                    f"Saving and donation ({set_aside}) exceed the "
                    f"transaction amount ({transaction.amount})"
                ),
                severity="error",
                suggested_fix="Lower the saving or donation amount",
            ))

        if (
            to_account is not None
            and to_account.currency != account.currency
            and exchange_rate == Decimal("1")
        ):
            issues.append(ValidationIssue(
                field="exchange_rate",
                issue_type="currency_mismatch",
                message=(
                    f"Transfer from {account.currency} to {to_account.currency} "
                    "uses an exchange rate of 1"
                ),
                severity="warning",
                suggested_fix="Provide the exchange rate for this transfer",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        transaction: Transaction,
        account: Optional[Account],
        to_account: Optional[Account] = None,
        exchange_rate: Decimal = Decimal("1"),
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            transaction: The transaction about to be written
            account: The account it is booked against (None if missing)
            to_account: Destination account for transfers
            exchange_rate: Rate applied to a transfer's destination leg

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = self._validate_schema(transaction, account)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(
                transaction, account, to_account, exchange_rate
            )
            all_issues.extend(semantic_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            subject_id=transaction.id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("This transaction cannot be saved:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     Fix: {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)

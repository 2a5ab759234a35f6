"""Tests for two-stage transaction validation."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from fintrack.config import AppSettings
from fintrack.models.finance import Account, AccountType, Transaction, TransactionType
from fintrack.validation import TransactionValidator


@pytest.fixture
def validator():
    return TransactionValidator(AppSettings(
        max_transaction_amount=1000.0,
        future_date_tolerance_days=7,
    ))


@pytest.fixture
def account():
    return Account(user_id=uuid4(), name="Checking", type=AccountType.CHECKING, currency="USD")


def make_transaction(account, **kwargs):
    data = dict(
        user_id=account.user_id,
        account_id=account.id,
        type=TransactionType.EXPENSE,
        amount=Decimal("25.00"),
        category="Food",
    )
    data.update(kwargs)
    return Transaction(**data)


class TestSchemaStage:

    def test_valid_transaction(self, validator, account):
        result = validator.validate(make_transaction(account), account)
        assert result.is_valid
        assert result.issues == []
        assert validator.get_user_friendly_summary(result) == "All checks passed."

    def test_zero_amount_is_an_error(self, validator, account):
        result = validator.validate(make_transaction(account, amount=Decimal("0")), account)
        assert not result.schema_valid
        assert not result.is_valid
        assert result.issues[0].field == "amount"

    def test_missing_account(self, validator, account):
        result = validator.validate(make_transaction(account), None)
        assert not result.is_valid
        assert any(i.field == "account_id" for i in result.issues)

    def test_account_of_another_user(self, validator, account):
        transaction = make_transaction(account, user_id=uuid4())
        result = validator.validate(transaction, account)
        assert not result.is_valid
        assert "another user" in result.issues[0].message

    def test_semantic_stage_skipped_on_schema_errors(self, validator, account):
        inactive = account.with_changes(is_active=False)
        result = validator.validate(make_transaction(inactive, amount=Decimal("0")), inactive)
        assert not result.semantic_valid
        assert all(i.issue_type != "inactive_account" for i in result.issues)


class TestSemanticStage:

    def test_future_date_is_a_warning(self, validator, account):
        transaction = make_transaction(account, date=datetime.utcnow() + timedelta(days=30))
        result = validator.validate(transaction, account)
        assert result.is_valid
        assert len(result.warnings) == 1
        assert "future" in result.warnings[0]

    def test_date_within_tolerance_passes(self, validator, account):
        transaction = make_transaction(account, date=datetime.utcnow() + timedelta(days=2))
        assert validator.validate(transaction, account).warnings == []

    def test_large_amount_is_a_warning(self, validator, account):
        result = validator.validate(make_transaction(account, amount=Decimal("5000")), account)
        assert result.is_valid
        assert "unusually high" in result.warnings[0]

    def test_inactive_account_is_an_error(self, validator, account):
        inactive = account.with_changes(is_active=False)
        result = validator.validate(make_transaction(inactive), inactive)
        assert not result.is_valid
        assert result.issues[0].issue_type == "inactive_account"

    def test_set_asides_cannot_exceed_amount(self, validator, account):
        transaction = make_transaction(
            account,
            amount=Decimal("100"),
            saving_amount=Decimal("60"),
            donation_amount=Decimal("50"),
        )
        result = validator.validate(transaction, account)
        assert not result.is_valid
        assert result.error_count == 1

    def test_currency_mismatch_without_rate_warns(self, validator, account):
        euro = Account(user_id=account.user_id, name="Euro", type=AccountType.SAVINGS, currency="EUR")
        transaction = make_transaction(account, to_account_id=euro.id, category="Transfer")

        result = validator.validate(transaction, account, to_account=euro)
        assert result.is_valid
        assert any("exchange rate" in w for w in result.warnings)

        with_rate = validator.validate(
            transaction, account, to_account=euro, exchange_rate=Decimal("0.9")
        )
        assert with_rate.warnings == []

    def test_summary_lists_errors_and_warnings(self, validator, account):
        inactive = account.with_changes(is_active=False)
        transaction = make_transaction(inactive, amount=Decimal("5000"))
        summary = validator.get_user_friendly_summary(validator.validate(transaction, inactive))
        assert "cannot be saved" in summary
        assert "Please verify" in summary

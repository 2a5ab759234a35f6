"""Tests for report queries and dashboard stats."""

import pytest
from datetime import date, datetime
from decimal import Decimal

from fintrack.models.finance import TransactionQuery, TransactionType
from fintrack.queries import ReportExecutor
from fintrack.services.storage import StorageError


@pytest.fixture
def reports(storage):
    return ReportExecutor(storage)


@pytest.fixture
async def booked(ledger, checking, savings, user_id):
    async def book(type, amount, category, day):
        return await ledger.add_transaction(
            user_id=user_id, account_id=checking.id, type=type,
            amount=Decimal(amount), category=category, date=day,
        )

    await book(TransactionType.INCOME, "1000", "Salary", datetime(2024, 3, 1, 9))
    await book(TransactionType.EXPENSE, "200", "Food", datetime(2024, 3, 5, 12))
    await book(TransactionType.EXPENSE, "50", "Food", datetime(2024, 2, 20, 18))
    await book(TransactionType.EXPENSE, "80", "Travel", datetime(2024, 3, 9, 8))
    await ledger.transfer(checking.id, savings.id, Decimal("100"))


class TestListQueries:

    async def test_list_excludes_transfers(self, reports, booked, user_id):
        result = await reports.execute(TransactionQuery(user_id=user_id, query_type="list"))
        assert result.success
        assert result.result_count == 4
        assert [r["date"][:10] for r in result.results] == [
            "2024-03-09", "2024-03-05", "2024-03-01", "2024-02-20",
        ]

    async def test_list_with_transfers(self, reports, booked, user_id):
        query = TransactionQuery(user_id=user_id, query_type="list", include_transfers=True)
        result = await reports.execute(query)
        assert result.result_count == 6

    async def test_filters_and_limit(self, reports, booked, user_id):
        query = TransactionQuery(
            user_id=user_id,
            query_type="list",
            type_filter=TransactionType.EXPENSE,
            date_from=date(2024, 3, 1),
            date_to=date(2024, 3, 31),
            limit=1,
        )
        result = await reports.execute(query)
        assert result.result_count == 1
        assert result.results[0]["category"] == "Travel"
        assert "in March 2024" in result.query_description

    async def test_no_data(self, reports, user_id):
        result = await reports.execute(TransactionQuery(user_id=user_id, query_type="list"))
        assert result.success
        assert not result.data_found


class TestAggregateQueries:

    async def test_totals(self, reports, booked, user_id):
        result = await reports.execute(TransactionQuery(user_id=user_id, query_type="aggregate"))
        totals = result.aggregation_result
        assert totals["total_income"] == 1000.0
        assert totals["total_expense"] == 330.0
        assert totals["net"] == 670.0
        assert totals["transaction_count"] == 4

    async def test_grouped_by_month(self, reports, booked, user_id):
        query = TransactionQuery(user_id=user_id, query_type="aggregate", group_by="month")
        result = await reports.execute(query)
        breakdown = result.aggregation_result["breakdown"]
        assert list(breakdown) == ["2024-02", "2024-03"]
        assert breakdown["2024-03"]["total_expense"] == 280.0
        assert "grouped by month" in result.query_description

    async def test_grouped_by_category(self, reports, booked, user_id):
        query = TransactionQuery(
            user_id=user_id, query_type="aggregate",
            type_filter=TransactionType.EXPENSE, group_by="category",
        )
        breakdown = (await reports.execute(query)).aggregation_result["breakdown"]
        assert breakdown["Food"]["total_expense"] == 250.0
        assert breakdown["Food"]["transaction_count"] == 2

    async def test_nothing_to_aggregate(self, reports, user_id):
        result = await reports.execute(TransactionQuery(user_id=user_id, query_type="aggregate"))
        assert not result.data_found
        assert result.aggregation_result is None


class TestExistsQueries:

    async def test_exists(self, reports, booked, user_id):
        query = TransactionQuery(user_id=user_id, query_type="exists", category_filter="Travel")
        result = await reports.execute(query)
        assert result.results[0] == {"exists": True, "answer": "yes"}
        assert result.results[1]["amount"] == 80.0

    async def test_does_not_exist(self, reports, booked, user_id):
        query = TransactionQuery(user_id=user_id, query_type="exists", category_filter="Rent")
        result = await reports.execute(query)
        assert result.results == [{"exists": False, "answer": "no"}]


class TestFailures:

    async def test_storage_failure_is_reported(self, reports, storage, user_id, monkeypatch):
        async def broken(*args, **kwargs):
            raise StorageError("database is locked")

        monkeypatch.setattr(storage, "list_records", broken)
        result = await reports.execute(TransactionQuery(user_id=user_id, query_type="list"))
        assert not result.success
        assert result.error_message == "database is locked"


class TestDashboard:

    async def test_dashboard_stats(self, reports, booked, ledger, user_id):
        await ledger.create_account(
            user_id=user_id, name="Euro", type="savings", currency="EUR",
            initial_balance=Decimal("40"),
        )
        await ledger.create_account(
            user_id=user_id, name="Old", type="cash", initial_balance=Decimal("999"),
            is_active=False,
        )

        stats = await reports.dashboard_stats(user_id, today=date(2024, 3, 15))

        assert stats.accounts_count == 3
        assert stats.transactions_count == 6
        assert [c.currency for c in stats.by_currency] == ["EUR", "USD"]

        eur, usd = stats.by_currency
        assert eur.total_balance == Decimal("40.00")
        assert eur.savings_rate == 0.0
        assert usd.total_balance == Decimal("1670.00")
        assert usd.monthly_income == Decimal("1000.00")
        assert usd.monthly_expenses == Decimal("280.00")
        assert usd.savings_rate == 72.0

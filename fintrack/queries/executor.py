"""
Report Execution Engine

DESIGN DECISION: Reports are DETERMINISTIC.
A TransactionQuery states exactly what to look at; this engine runs it
against stored transactions and returns only what it found. A report
never estimates and says clearly when nothing matched.

Transfers move money between a user's own accounts. They are left out
of income and expense figures unless a query asks for them.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fintrack.ledger.base import ZERO, money_sum, percentage
from fintrack.models.analytics import CurrencyDashboardStats, DashboardStats
from fintrack.models.finance import (
    QueryResult,
    Transaction,
    TransactionQuery,
    TransactionType,
)
from fintrack.models.tables import Table
from fintrack.services.storage import FinanceStorageInterface


class ReportExecutor:
    """
    Executes transaction queries against finance storage.

    GUARANTEES:
    - Only returns real data from storage
    - Never invents or estimates
    - Clear "no data found" if nothing matches
    """

    def __init__(self, storage: FinanceStorageInterface):
        self._storage = storage

    async def execute(self, query: TransactionQuery) -> QueryResult:
        """
        Execute a query and return results.

        Failures are reported in the result, never raised.
        """
        try:
            if query.query_type == "aggregate":
                return await self._execute_aggregate(query)
            elif query.query_type == "exists":
                return await self._execute_exists(query)
            else:
                return await self._execute_list(query)

        except Exception as e:
            return QueryResult(
                query_id=query.query_id,
                success=False,
                error_message=str(e),
                data_found=False,
                result_count=0,
                query_description=f"Query failed: {str(e)}",
            )

    async def _matching(self, query: TransactionQuery) -> list[Transaction]:
        """Transactions matching every filter, newest first."""
        filters = {}
        if query.account_id:
            filters["account_id"] = query.account_id
        if query.type_filter:
            filters["type"] = query.type_filter
        if query.category_filter:
            filters["category"] = query.category_filter

        transactions = await self._storage.list_records(
            Table.TRANSACTIONS,
            user_id=query.user_id,
            filters=filters or None,
            order_by="date",
            descending=True,
        )
        return [
            t for t in transactions
            if (query.include_transfers or not t.is_transfer)
            and (query.date_from is None or t.date.date() >= query.date_from)
            and (query.date_to is None or t.date.date() <= query.date_to)
        ]

    async def _execute_list(self, query: TransactionQuery) -> QueryResult:
        transactions = (await self._matching(query))[:query.limit]
        results = [self._transaction_to_dict(t) for t in transactions]

        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=len(results) > 0,
            result_count=len(results),
            results=results,
            query_description=" | ".join(["Listing transactions"] + self._filter_parts(query)),
        )

    async def _execute_aggregate(self, query: TransactionQuery) -> QueryResult:
        transactions = await self._matching(query)

        if not transactions:
            return QueryResult(
                query_id=query.query_id,
                success=True,
                data_found=False,
                result_count=0,
                query_description="No transactions found for aggregation",
            )

        aggregation_result = self._totals(transactions)
        if query.group_by:
            aggregation_result["breakdown"] = self._grouped(transactions, query.group_by)

        desc_parts = ["Calculating totals"] + self._filter_parts(query)
        if query.group_by:
            desc_parts.append(f"grouped by {query.group_by}")

        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=True,
            result_count=len(transactions),
            aggregation_result=aggregation_result,
            query_description=" ".join(desc_parts),
        )

    async def _execute_exists(self, query: TransactionQuery) -> QueryResult:
        transactions = await self._matching(query)
        exists = len(transactions) > 0

        result_data = [{"exists": exists, "answer": "yes" if exists else "no"}]
        if exists:
            # Include the newest match for context
            result_data.append(self._transaction_to_dict(transactions[0]))

        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=exists,
            result_count=1 if exists else 0,
            results=result_data,
            query_description=" ".join(["Checking for transactions"] + self._filter_parts(query)),
        )

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    async def dashboard_stats(self, user_id: UUID, today: Optional[date] = None) -> DashboardStats:
        """Per-currency balance and this month's income/expenses over active accounts."""
        today = today or date.today()
        accounts = await self._storage.list_records(
            Table.ACCOUNTS, user_id=user_id, filters={"is_active": True}
        )
        transactions = await self._storage.list_records(Table.TRANSACTIONS, user_id=user_id)
        currency_of = {a.id: a.currency for a in accounts}

        balances: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for account in accounts:
            balances[account.currency] += account.calculated_balance

        income: dict[str, Decimal] = defaultdict(lambda: ZERO)
        expenses: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for t in transactions:
            currency = currency_of.get(t.account_id)
            if currency is None or t.is_transfer:
                continue
            if (t.date.year, t.date.month) != (today.year, today.month):
                continue
            if t.type == TransactionType.INCOME:
                income[currency] += t.amount
            else:
                expenses[currency] += t.amount

        by_currency = [
            CurrencyDashboardStats(
                currency=currency,
                total_balance=money_sum([balances[currency]]),
                monthly_income=money_sum([income[currency]]),
                monthly_expenses=money_sum([expenses[currency]]),
                savings_rate=percentage(income[currency] - expenses[currency], income[currency]),
            )
            for currency in sorted(balances)
        ]
        return DashboardStats(
            by_currency=by_currency,
            accounts_count=len(accounts),
            transactions_count=len(transactions),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _totals(transactions: list[Transaction]) -> dict:
        income = sum((t.amount for t in transactions if t.type == TransactionType.INCOME), ZERO)
        expense = sum((t.amount for t in transactions if t.type == TransactionType.EXPENSE), ZERO)
        return {
            "total_income": float(income),
            "total_expense": float(expense),
            "net": float(income - expense),
            "transaction_count": len(transactions),
        }

    def _grouped(self, transactions: list[Transaction], group_by: str) -> dict:
        groups: dict[str, list[Transaction]] = defaultdict(list)
        for t in transactions:
            if group_by == "category":
                key = t.category
            elif group_by == "month":
                key = t.date.strftime("%Y-%m")
            elif group_by == "account":
                key = str(t.account_id)
            else:
                key = "other"
            groups[key].append(t)
        return {key: self._totals(items) for key, items in sorted(groups.items())}

    def _transaction_to_dict(self, transaction: Transaction) -> dict:
        return {
            "id": str(transaction.id),
            "transaction_id": transaction.transaction_id,
            "account_id": str(transaction.account_id),
            "type": transaction.type.value,
            "amount": float(transaction.amount),
            "category": transaction.category,
            "description": transaction.description,
            "date": transaction.date.isoformat(),
            "tags": list(transaction.tags),
        }

    def _filter_parts(self, query: TransactionQuery) -> list[str]:
        parts = []
        if query.type_filter:
            parts.append(f"type: {query.type_filter.value}")
        if query.category_filter:
            parts.append(f"category: {query.category_filter}")
        if query.account_id:
            parts.append(f"account: {query.account_id}")
        if query.date_from or query.date_to:
            parts.append(self._date_range_str(query.date_from, query.date_to))
        return parts

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%b')} to {date_to.strftime('%b %Y')}"
            else:
                return f"from {date_from.strftime('%b %Y')} to {date_to.strftime('%b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return ""

"""
Lend & Borrow

Money lent to or borrowed from other people, repaid in one or more
returns. The remaining amount is always derived from the returns, never
stored, so a record can't drift out of sync with its repayments.
"""

from collections import Counter
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fintrack.errors import InvalidReturnAmountError
from fintrack.ledger.base import RecordService, ZERO, money_sum
from fintrack.models.activity import ActivityEntryBuilder
from fintrack.models.analytics import (
    CurrencyLendBorrowBreakdown,
    LendBorrowAnalytics,
    PartialReturnStats,
)
from fintrack.models.finance import (
    LendBorrow,
    LendBorrowReturn,
    LendBorrowStatus,
    LendBorrowType,
    quantize_money,
)
from fintrack.models.tables import Table


ENTITY = "lend_borrow"


class LendBorrowService(RecordService):

    async def add_record(
        self,
        user_id: UUID,
        type: LendBorrowType,
        person_name: str,
        amount: Decimal,
        currency: str = "USD",
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> LendBorrow:
        record = LendBorrow(
            user_id=user_id,
            type=type,
            person_name=person_name,
            amount=amount,
            currency=currency,
            due_date=due_date,
            notes=notes,
        )
        await self._storage.insert(Table.LEND_BORROW, record)
        await self._activity.record_created(ENTITY, record, user_id)
        return record

    async def update_record(
        self,
        record_id: UUID,
        user_id: Optional[UUID] = None,
        **changes: Any,
    ) -> LendBorrow:
        old = await self._require(Table.LEND_BORROW, record_id, ENTITY, user_id)
        new = old.with_changes(**changes)

        returned = await self.returned_amount(record_id)
        if returned > new.amount:
            raise InvalidReturnAmountError(
                f"Amount {new.amount} is below the {returned} already returned"
            )
        if "status" not in changes:
            new = self._reconcile_status(new, returned)

        await self._storage.update(Table.LEND_BORROW, new)
        await self._activity.record_updated(ENTITY, old, new, new.user_id)
        return new

    async def delete_record(self, record_id: UUID, user_id: Optional[UUID] = None) -> bool:
        """Delete a record and its returns (returns first)."""
        record = await self._find(Table.LEND_BORROW, record_id, user_id)
        if record is None:
            return False
        await self._storage.delete_where(Table.LEND_BORROW_RETURNS, lend_borrow_id=record_id)
        await self._storage.delete(Table.LEND_BORROW, record_id)
        await self._activity.record_deleted(ENTITY, record, record.user_id)
        return True

    # =========================================================================
    # RETURNS
    # =========================================================================

    async def returns_for(self, record_id: UUID) -> list[LendBorrowReturn]:
        return await self._storage.list_records(
            Table.LEND_BORROW_RETURNS,
            filters={"lend_borrow_id": record_id},
            order_by="return_date",
        )

    async def returned_amount(self, record_id: UUID) -> Decimal:
        return money_sum(r.amount for r in await self.returns_for(record_id))

    async def remaining_amount(self, record_id: UUID) -> Decimal:
        record = await self._require(Table.LEND_BORROW, record_id, ENTITY)
        return quantize_money(record.amount - await self.returned_amount(record_id))

    async def record_return(
        self,
        record_id: UUID,
        amount: Decimal,
        return_date: Optional[datetime] = None,
        user_id: Optional[UUID] = None,
    ) -> LendBorrowReturn:
        """
        Record a (partial) repayment.

        The amount must be positive and no more than what is still owed.
        The record is settled once nothing remains.

        Raises:
            InvalidReturnAmountError: If the amount is out of range
        """
        record = await self._require(Table.LEND_BORROW, record_id, ENTITY, user_id)
        amount = quantize_money(Decimal(amount))
        if amount <= 0:
            raise InvalidReturnAmountError("Return amount must be greater than zero")

        remaining = quantize_money(record.amount - await self.returned_amount(record_id))
        if amount > remaining:
            raise InvalidReturnAmountError(
                f"Return of {amount} exceeds the remaining {remaining}"
            )

        repayment = LendBorrowReturn(
            lend_borrow_id=record_id,
            amount=amount,
            return_date=return_date or datetime.utcnow(),
        )
        await self._storage.insert(Table.LEND_BORROW_RETURNS, repayment)

        remaining -= amount
        settled = remaining == 0
        if settled and record.status != LendBorrowStatus.SETTLED:
            await self._storage.update(
                Table.LEND_BORROW,
                record.with_changes(status=LendBorrowStatus.SETTLED),
            )

        await self._activity.log(ActivityEntryBuilder.lend_borrow_return(
            user_id=record.user_id,
            record_id=record_id,
            person_name=record.person_name,
            amount=amount,
            remaining=remaining,
            settled=settled,
        ))
        return repayment

    @staticmethod
    def _reconcile_status(record: LendBorrow, returned: Decimal) -> LendBorrow:
        if returned >= record.amount:
            if record.status != LendBorrowStatus.SETTLED:
                return record.with_changes(status=LendBorrowStatus.SETTLED)
        elif record.status == LendBorrowStatus.SETTLED:
            return record.with_changes(status=LendBorrowStatus.ACTIVE)
        return record

    # =========================================================================
    # OVERDUE SWEEP
    # =========================================================================

    async def mark_overdue(self, today: Optional[date] = None, user_id: Optional[UUID] = None) -> int:
        """
        Flag active records whose due date has passed.

        Returns the number of records changed. Running it again the
        same day changes nothing.
        """
        today = today or date.today()
        active = await self._storage.list_records(
            Table.LEND_BORROW,
            user_id=user_id,
            filters={"status": LendBorrowStatus.ACTIVE},
        )
        changed = 0
        for record in active:
            if record.due_date is None or record.due_date >= today:
                continue
            new = record.with_changes(status=LendBorrowStatus.OVERDUE)
            await self._storage.update(Table.LEND_BORROW, new)
            await self._activity.record_updated(ENTITY, record, new, record.user_id)
            changed += 1

        self._logger.info("lend_borrow_overdue_marked", count=changed, today=today.isoformat())
        return changed

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    async def analytics(self, user_id: UUID) -> LendBorrowAnalytics:
        records = await self._storage.list_records(Table.LEND_BORROW, user_id=user_id)
        if not records:
            return LendBorrowAnalytics()

        returns = await self._storage.list_records(
            Table.LEND_BORROW_RETURNS,
            filters={"lend_borrow_id": [r.id for r in records]},
        )
        returned_by_record: dict[UUID, Decimal] = {}
        for repayment in returns:
            returned_by_record[repayment.lend_borrow_id] = (
                returned_by_record.get(repayment.lend_borrow_id, ZERO) + repayment.amount
            )

        def outstanding(record: LendBorrow) -> Decimal:
            if record.status == LendBorrowStatus.SETTLED:
                return ZERO
            return record.amount - returned_by_record.get(record.id, ZERO)

        lent = [r for r in records if r.type == LendBorrowType.LEND]
        borrowed = [r for r in records if r.type == LendBorrowType.BORROW]

        by_currency: dict[str, CurrencyLendBorrowBreakdown] = {}
        for record in records:
            bucket = by_currency.setdefault(
                record.currency, CurrencyLendBorrowBreakdown(currency=record.currency)
            )
            if record.type == LendBorrowType.LEND:
                bucket.total_lent += record.amount
                bucket.outstanding_lent += outstanding(record)
            else:
                bucket.total_borrowed += record.amount
                bucket.outstanding_borrowed += outstanding(record)

        person_totals: Counter = Counter()
        for record in records:
            person_totals[record.person_name] += record.amount

        return_total = money_sum(r.amount for r in returns)
        statuses = Counter(r.status for r in records)

        return LendBorrowAnalytics(
            total_lent=money_sum(r.amount for r in lent),
            total_borrowed=money_sum(r.amount for r in borrowed),
            outstanding_lent=money_sum(outstanding(r) for r in lent),
            outstanding_borrowed=money_sum(outstanding(r) for r in borrowed),
            overdue_count=statuses[LendBorrowStatus.OVERDUE],
            active_count=statuses[LendBorrowStatus.ACTIVE],
            settled_count=statuses[LendBorrowStatus.SETTLED],
            top_person=person_totals.most_common(1)[0][0],
            currency_breakdown=sorted(by_currency.values(), key=lambda c: c.currency),
            partial_return_stats=PartialReturnStats(
                total_partial_returns=len(returns),
                total_partial_return_amount=return_total,
                average_partial_return_amount=(
                    quantize_money(return_total / len(returns)) if returns else ZERO
                ),
            ),
        )

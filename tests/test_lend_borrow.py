"""Tests for lend/borrow records and their returns."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from fintrack.errors import InvalidReturnAmountError, RecordNotFoundError
from fintrack.models.activity import ActivityType
from fintrack.models.finance import LendBorrowStatus, LendBorrowType
from fintrack.models.tables import Table


@pytest.fixture
async def loan(lend_borrow, user_id):
    return await lend_borrow.add_record(
        user_id=user_id,
        type=LendBorrowType.LEND,
        person_name="Sam",
        amount=Decimal("100"),
        due_date=date(2024, 6, 1),
    )


class TestReturns:

    async def test_partial_returns_reduce_remaining(self, lend_borrow, loan):
        await lend_borrow.record_return(loan.id, Decimal("30"))
        await lend_borrow.record_return(loan.id, Decimal("20"))

        assert await lend_borrow.remaining_amount(loan.id) == Decimal("50.00")
        record = await lend_borrow._storage.get(Table.LEND_BORROW, loan.id)
        assert record.status == LendBorrowStatus.ACTIVE

    async def test_final_return_settles(self, lend_borrow, activity_logger, loan, user_id):
        await lend_borrow.record_return(loan.id, Decimal("60"))
        await lend_borrow.record_return(loan.id, Decimal("40"))

        record = await lend_borrow._storage.get(Table.LEND_BORROW, loan.id)
        assert record.status == LendBorrowStatus.SETTLED
        assert await lend_borrow.remaining_amount(loan.id) == Decimal("0.00")

        entries = await activity_logger.history_for_user(
            user_id, activity_types=[ActivityType.LEND_BORROW_RETURN_RECORDED]
        )
        assert "settled" in entries[0].description

    @pytest.mark.parametrize("amount", ["0", "-5", "100.01"])
    async def test_out_of_range_returns_rejected(self, lend_borrow, loan, amount):
        with pytest.raises(InvalidReturnAmountError):
            await lend_borrow.record_return(loan.id, Decimal(amount))
        assert await lend_borrow.returns_for(loan.id) == []

    async def test_return_cannot_exceed_what_is_left(self, lend_borrow, loan):
        await lend_borrow.record_return(loan.id, Decimal("90"))
        with pytest.raises(InvalidReturnAmountError, match="remaining 10.00"):
            await lend_borrow.record_return(loan.id, Decimal("11"))


class TestRecords:

    async def test_amount_below_returns_rejected(self, lend_borrow, loan):
        await lend_borrow.record_return(loan.id, Decimal("60"))
        with pytest.raises(InvalidReturnAmountError):
            await lend_borrow.update_record(loan.id, amount=Decimal("50"))

    async def test_raising_amount_reopens_settled_record(self, lend_borrow, loan):
        await lend_borrow.record_return(loan.id, Decimal("100"))
        updated = await lend_borrow.update_record(loan.id, amount=Decimal("150"))
        assert updated.status == LendBorrowStatus.ACTIVE
        assert await lend_borrow.remaining_amount(loan.id) == Decimal("50.00")

    async def test_delete_removes_returns(self, lend_borrow, storage, loan):
        await lend_borrow.record_return(loan.id, Decimal("10"))
        assert await lend_borrow.delete_record(loan.id) is True
        assert await storage.count(Table.LEND_BORROW_RETURNS) == 0
        assert await lend_borrow.delete_record(loan.id) is False

    async def test_other_user_cannot_change_record(self, lend_borrow, storage, loan):
        other = uuid4()

        with pytest.raises(RecordNotFoundError):
            await lend_borrow.update_record(loan.id, user_id=other, amount=Decimal("1"))
        with pytest.raises(RecordNotFoundError):
            await lend_borrow.record_return(loan.id, Decimal("10"), user_id=other)
        assert await lend_borrow.delete_record(loan.id, user_id=other) is False

        stored = await storage.get(Table.LEND_BORROW, loan.id)
        assert stored.amount == Decimal("100.00")
        assert await lend_borrow.returns_for(loan.id) == []


class TestOverdueSweep:

    async def test_marks_past_due_records(self, lend_borrow, loan, user_id):
        await lend_borrow.add_record(
            user_id=user_id, type=LendBorrowType.BORROW, person_name="Kim",
            amount=Decimal("10"),
        )
        assert await lend_borrow.mark_overdue(today=date(2024, 6, 1)) == 0
        assert await lend_borrow.mark_overdue(today=date(2024, 6, 2)) == 1
        # Running again changes nothing
        assert await lend_borrow.mark_overdue(today=date(2024, 6, 2)) == 0

        record = await lend_borrow._storage.get(Table.LEND_BORROW, loan.id)
        assert record.status == LendBorrowStatus.OVERDUE

    async def test_settled_records_are_not_overdue(self, lend_borrow, loan):
        await lend_borrow.record_return(loan.id, Decimal("100"))
        assert await lend_borrow.mark_overdue(today=date(2025, 1, 1)) == 0


class TestLendBorrowAnalytics:

    async def test_empty(self, lend_borrow, user_id):
        analytics = await lend_borrow.analytics(user_id)
        assert analytics.total_lent == Decimal("0")
        assert analytics.top_person is None

    async def test_totals_and_outstanding(self, lend_borrow, loan, user_id):
        await lend_borrow.record_return(loan.id, Decimal("25"))
        await lend_borrow.record_return(loan.id, Decimal("15"))
        await lend_borrow.add_record(
            user_id=user_id, type=LendBorrowType.BORROW, person_name="Kim",
            amount=Decimal("40"), currency="EUR",
        )

        analytics = await lend_borrow.analytics(user_id)

        assert analytics.total_lent == Decimal("100.00")
        assert analytics.outstanding_lent == Decimal("60.00")
        assert analytics.total_borrowed == Decimal("40.00")
        assert analytics.outstanding_borrowed == Decimal("40.00")
        assert analytics.active_count == 2
        assert analytics.top_person == "Sam"
        assert [c.currency for c in analytics.currency_breakdown] == ["EUR", "USD"]

        stats = analytics.partial_return_stats
        assert stats.total_partial_returns == 2
        assert stats.total_partial_return_amount == Decimal("40.00")
        assert stats.average_partial_return_amount == Decimal("20.00")

"""
Donations & Savings

Money set aside from a transaction: either saved or pledged to a
cause. Records created from a transaction point at it; manual
donations carry their own F-format id instead.

Percent mode stores the percentage in mode_value and the computed
amount (transaction amount x percent / 100) in amount.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fintrack.ledger.base import RecordService, ZERO, group_totals, money_sum, percentage
from fintrack.models.analytics import (
    DonationSavingAnalytics,
    MonthlyDonationBreakdown,
    ShareBreakdown,
)
from fintrack.models.finance import (
    DonationMode,
    DonationSavingRecord,
    DonationSavingType,
    DonationStatus,
    Transaction,
    generate_transaction_id,
    quantize_money,
)
from fintrack.models.tables import Table


ENTITY = "donation_saving"


class DonationSavingService(RecordService):

    def __init__(self, storage, activity_logger=None, transaction_id_prefix: str = "F"):
        super().__init__(storage, activity_logger)
        self._prefix = transaction_id_prefix

    @staticmethod
    def compute_amount(
        base_amount: Decimal,
        mode: DonationMode,
        mode_value: Optional[Decimal],
        amount: Optional[Decimal] = None,
    ) -> Decimal:
        """Resolve the amount set aside for a given mode."""
        if mode == DonationMode.PERCENT:
            if mode_value is None or not (0 < mode_value <= 100):
                raise ValueError("Percent mode needs a mode_value between 0 and 100")
            return quantize_money(base_amount * Decimal(mode_value) / Decimal("100"))
        if amount is None:
            if mode_value is None:
                raise ValueError("Fixed mode needs an amount")
            amount = Decimal(mode_value)
        return quantize_money(Decimal(amount))

    async def record_from_transaction(
        self,
        transaction: Transaction,
        type: DonationSavingType,
        amount: Optional[Decimal] = None,
        mode: DonationMode = DonationMode.FIXED,
        mode_value: Optional[Decimal] = None,
        note: Optional[str] = None,
    ) -> DonationSavingRecord:
        record = DonationSavingRecord(
            user_id=transaction.user_id,
            transaction_id=transaction.id,
            type=type,
            amount=self.compute_amount(transaction.amount, mode, mode_value, amount),
            mode=mode,
            mode_value=mode_value,
            note=note,
        )
        await self._storage.insert(Table.DONATION_SAVING_RECORDS, record)
        await self._activity.record_created(
            ENTITY, record, record.user_id,
            transaction_id=transaction.transaction_id,
        )
        return record

    async def add_manual_donation(
        self,
        user_id: UUID,
        amount: Decimal,
        custom_transaction_id: Optional[str] = None,
        note: Optional[str] = None,
        status: DonationStatus = DonationStatus.PENDING,
    ) -> DonationSavingRecord:
        """A donation not tied to any transaction."""
        record = DonationSavingRecord(
            user_id=user_id,
            custom_transaction_id=custom_transaction_id or generate_transaction_id(self._prefix),
            type=DonationSavingType.DONATION,
            amount=amount,
            mode=DonationMode.FIXED,
            note=note,
            status=status,
        )
        await self._storage.insert(Table.DONATION_SAVING_RECORDS, record)
        await self._activity.record_created(
            ENTITY, record, user_id,
            transaction_id=record.custom_transaction_id,
        )
        return record

    async def mark_donated(
        self,
        record_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> DonationSavingRecord:
        old = await self._require(Table.DONATION_SAVING_RECORDS, record_id, ENTITY, user_id)
        if old.status == DonationStatus.DONATED:
            return old
        new = old.with_changes(status=DonationStatus.DONATED)
        await self._storage.update(Table.DONATION_SAVING_RECORDS, new)
        await self._activity.record_updated(ENTITY, old, new, new.user_id)
        return new

    async def delete_record(self, record_id: UUID, user_id: Optional[UUID] = None) -> bool:
        record = await self._find(Table.DONATION_SAVING_RECORDS, record_id, user_id)
        if record is None:
            return False
        await self._storage.delete(Table.DONATION_SAVING_RECORDS, record_id)
        await self._activity.record_deleted(ENTITY, record, record.user_id)
        return True

    async def records_for_transaction(self, transaction_id: UUID) -> list[DonationSavingRecord]:
        return await self._storage.list_records(
            Table.DONATION_SAVING_RECORDS,
            filters={"transaction_id": transaction_id},
        )

    async def delete_for_transaction(self, transaction_id: UUID) -> int:
        """Remove every record set aside from one transaction."""
        records = await self.records_for_transaction(transaction_id)
        for record in records:
            await self.delete_record(record.id)
        return len(records)

    async def analytics(self, user_id: UUID) -> DonationSavingAnalytics:
        records = await self._storage.list_records(
            Table.DONATION_SAVING_RECORDS, user_id=user_id
        )
        if not records:
            return DonationSavingAnalytics()

        total_saved = money_sum(r.amount for r in records if r.type == DonationSavingType.SAVING)
        total_donated = money_sum(r.amount for r in records if r.type == DonationSavingType.DONATION)
        grand_total = total_saved + total_donated

        monthly: dict[str, MonthlyDonationBreakdown] = {}
        for record in records:
            month = _month_key(record.created_at)
            bucket = monthly.setdefault(month, MonthlyDonationBreakdown(month=month))
            if record.type == DonationSavingType.SAVING:
                bucket.saved += record.amount
            else:
                bucket.donated += record.amount
            bucket.total = bucket.saved + bucket.donated
        monthly_breakdown = sorted(monthly.values(), key=lambda m: m.month, reverse=True)

        # Highest total wins; on a tie the most recent month
        top = max(monthly_breakdown, key=lambda m: (m.total, m.month))

        def shares(groups: dict[str, tuple[Decimal, int]], keys: list[str]) -> list[ShareBreakdown]:
            return [
                ShareBreakdown(
                    key=key,
                    total=groups.get(key, (ZERO, 0))[0],
                    count=groups.get(key, (ZERO, 0))[1],
                    percentage=percentage(groups.get(key, (ZERO, 0))[0], grand_total),
                )
                for key in keys
            ]

        by_type = group_totals(records, lambda r: r.type.value, lambda r: r.amount)
        by_mode = group_totals(records, lambda r: r.mode.value, lambda r: r.amount)

        return DonationSavingAnalytics(
            total_saved=total_saved,
            total_donated=total_donated,
            top_month=top.month,
            monthly_breakdown=monthly_breakdown,
            type_breakdown=shares(by_type, [t.value for t in DonationSavingType]),
            mode_breakdown=shares(by_mode, [m.value for m in DonationMode]),
        )


def _month_key(moment: datetime) -> str:
    return f"{moment.year}-{moment.month:02d}"

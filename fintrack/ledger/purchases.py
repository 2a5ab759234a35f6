"""
Purchases

Planned and completed purchases, their categories (with monthly
budgets) and attached files.

A purchase made through an expense transaction keeps that
transaction's human-facing id, so editing the expense can follow it.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fintrack.ledger.base import RecordService, group_totals, money_sum, percentage
from fintrack.models.analytics import CategoryBreakdown, PurchaseAnalytics
from fintrack.models.finance import (
    Priority,
    Purchase,
    PurchaseAttachment,
    PurchaseCategory,
    PurchaseStatus,
)
from fintrack.models.tables import Table
from fintrack.services.attachments import AttachmentError, AttachmentStoreInterface


ENTITY = "purchase"
CATEGORY_ENTITY = "purchase_category"


class PurchaseService(RecordService):

    def __init__(
        self,
        storage,
        activity_logger=None,
        attachment_store: Optional[AttachmentStoreInterface] = None,
    ):
        super().__init__(storage, activity_logger)
        self._attachments = attachment_store

    # =========================================================================
    # PURCHASES
    # =========================================================================

    async def add_purchase(
        self,
        user_id: UUID,
        item_name: str,
        category: str,
        price: Decimal,
        currency: str = "USD",
        purchase_date: Optional[date] = None,
        status: PurchaseStatus = PurchaseStatus.PLANNED,
        priority: Priority = Priority.MEDIUM,
        notes: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Purchase:
        purchase = Purchase(
            user_id=user_id,
            item_name=item_name,
            category=category,
            price=price,
            currency=currency,
            purchase_date=purchase_date or date.today(),
            status=status,
            priority=priority,
            notes=notes,
            transaction_id=transaction_id,
        )
        await self._storage.insert(Table.PURCHASES, purchase)
        await self._activity.record_created(
            ENTITY, purchase, user_id, transaction_id=transaction_id
        )
        return purchase

    async def update_purchase(
        self,
        purchase_id: UUID,
        user_id: Optional[UUID] = None,
        **changes: Any,
    ) -> Purchase:
        old = await self._require(Table.PURCHASES, purchase_id, ENTITY, user_id)
        new = old.with_changes(**changes)
        await self._storage.update(Table.PURCHASES, new)
        await self._activity.record_updated(
            ENTITY, old, new, new.user_id, transaction_id=new.transaction_id
        )
        return new

    async def delete_purchase(self, purchase_id: UUID, user_id: Optional[UUID] = None) -> bool:
        """Delete a purchase and its attachments, stored files included."""
        purchase = await self._find(Table.PURCHASES, purchase_id, user_id)
        if purchase is None:
            return False

        attachments = await self._storage.list_records(
            Table.PURCHASE_ATTACHMENTS, filters={"purchase_id": purchase_id}
        )
        for attachment in attachments:
            await self._remove_attachment_record(attachment)

        await self._storage.delete(Table.PURCHASES, purchase_id)
        await self._activity.record_deleted(
            ENTITY, purchase, purchase.user_id, transaction_id=purchase.transaction_id
        )
        return True

    async def bulk_update(
        self,
        purchase_ids: list[UUID],
        user_id: Optional[UUID] = None,
        **changes: Any,
    ) -> list[Purchase]:
        """Apply the same change (e.g. status) to several purchases."""
        return [await self.update_purchase(pid, user_id, **changes) for pid in purchase_ids]

    async def find_by_transaction_id(self, transaction_id: str) -> list[Purchase]:
        return await self._storage.list_records(
            Table.PURCHASES, filters={"transaction_id": transaction_id}
        )

    async def list_purchases(
        self,
        user_id: UUID,
        status: Optional[PurchaseStatus] = None,
    ) -> list[Purchase]:
        filters = {"status": status} if status else None
        return await self._storage.list_records(
            Table.PURCHASES, user_id=user_id, filters=filters,
            order_by="purchase_date", descending=True,
        )

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def add_category(
        self,
        user_id: UUID,
        category_name: str,
        monthly_budget: Decimal = Decimal("0"),
        currency: str = "USD",
        description: Optional[str] = None,
        category_color: str = "#3B82F6",
    ) -> PurchaseCategory:
        category = PurchaseCategory(
            user_id=user_id,
            category_name=category_name,
            monthly_budget=monthly_budget,
            currency=currency,
            description=description,
            category_color=category_color,
        )
        await self._storage.insert(Table.PURCHASE_CATEGORIES, category)
        await self._activity.record_created(CATEGORY_ENTITY, category, user_id)
        return category

    async def update_category(
        self,
        category_id: UUID,
        user_id: Optional[UUID] = None,
        **changes: Any,
    ) -> PurchaseCategory:
        old = await self._require(Table.PURCHASE_CATEGORIES, category_id, CATEGORY_ENTITY, user_id)
        new = old.with_changes(**changes)
        await self._storage.update(Table.PURCHASE_CATEGORIES, new)
        await self._activity.record_updated(CATEGORY_ENTITY, old, new, new.user_id)
        return new

    async def delete_category(self, category_id: UUID, user_id: Optional[UUID] = None) -> bool:
        """Existing purchases keep their category name."""
        category = await self._find(Table.PURCHASE_CATEGORIES, category_id, user_id)
        if category is None:
            return False
        await self._storage.delete(Table.PURCHASE_CATEGORIES, category_id)
        await self._activity.record_deleted(CATEGORY_ENTITY, category, category.user_id)
        return True

    async def list_categories(self, user_id: UUID) -> list[PurchaseCategory]:
        return await self._storage.list_records(Table.PURCHASE_CATEGORIES, user_id=user_id)

    async def is_purchase_category(self, user_id: UUID, category: str) -> bool:
        names = {c.category_name for c in await self.list_categories(user_id)}
        return category in names

    # =========================================================================
    # ATTACHMENTS
    # =========================================================================

    async def attach_file(
        self,
        purchase_id: UUID,
        content: bytes,
        file_name: str,
        mime_type: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> PurchaseAttachment:
        if self._attachments is None:
            raise AttachmentError("No attachment store configured")
        purchase = await self._require(Table.PURCHASES, purchase_id, ENTITY, user_id)
        attachment = await self._attachments.upload(
            content, file_name, purchase.id, purchase.user_id, mime_type=mime_type
        )
        await self._storage.insert(Table.PURCHASE_ATTACHMENTS, attachment)
        return attachment

    async def remove_attachment(self, attachment_id: UUID, user_id: Optional[UUID] = None) -> bool:
        attachment = await self._find(Table.PURCHASE_ATTACHMENTS, attachment_id, user_id)
        if attachment is None:
            return False
        await self._remove_attachment_record(attachment)
        return True

    async def _remove_attachment_record(self, attachment: PurchaseAttachment) -> None:
        # File first: a row without a file is harmless, the reverse leaks storage
        if attachment.public_id and self._attachments is not None:
            await self._attachments.delete(attachment.public_id)
        await self._storage.delete(Table.PURCHASE_ATTACHMENTS, attachment.id)

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    async def analytics(self, user_id: UUID, today: Optional[date] = None) -> PurchaseAnalytics:
        """Spending on purchased items; planned and cancelled only count."""
        today = today or date.today()
        purchases = await self._storage.list_records(Table.PURCHASES, user_id=user_id)
        purchased = [p for p in purchases if p.status == PurchaseStatus.PURCHASED]

        total_spent = money_sum(p.price for p in purchased)
        monthly_spent = money_sum(
            p.price for p in purchased
            if p.purchase_date.year == today.year and p.purchase_date.month == today.month
        )

        breakdown = [
            CategoryBreakdown(
                category=category,
                total_spent=total,
                item_count=count,
                percentage=percentage(total, total_spent),
            )
            for category, (total, count) in group_totals(
                purchased, lambda p: p.category, lambda p: p.price
            ).items()
        ]
        breakdown.sort(key=lambda c: c.total_spent, reverse=True)

        return PurchaseAnalytics(
            total_spent=total_spent,
            monthly_spent=monthly_spent,
            planned_count=sum(1 for p in purchases if p.status == PurchaseStatus.PLANNED),
            purchased_count=len(purchased),
            cancelled_count=sum(1 for p in purchases if p.status == PurchaseStatus.CANCELLED),
            top_category=breakdown[0].category if breakdown else None,
            category_breakdown=breakdown,
        )

"""
Ledger: accounts, transactions and transfers.

DESIGN DECISION: An account's calculated_balance is stored for fast
reads but is never adjusted incrementally. After every write the ledger
recomputes it from scratch:

    initial_balance + sum(income) - sum(expense)

over all of the account's transactions, transfer legs included. A
missed or duplicated update can therefore never leave a wrong balance
behind; the next write (or recalculate_balance) repairs it.

Transfers are two ordinary transactions, an expense on the source and
an income on the destination, sharing one human-facing transaction id
and a transfer UUID in their tags.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from fintrack.audit import create_correlation_id
from fintrack.config import AppSettings, get_settings
from fintrack.errors import FinanceError, InsufficientFundsError, ValidationFailedError
from fintrack.ledger.base import RecordService, ZERO
from fintrack.ledger.donations import DonationSavingService
from fintrack.ledger.purchases import PurchaseService
from fintrack.models.activity import ActivityEntryBuilder
from fintrack.models.finance import (
    Account,
    AccountType,
    DonationSavingType,
    DpsAmountType,
    DpsType,
    Priority,
    PurchaseStatus,
    Transaction,
    TransactionType,
    generate_transaction_id,
    quantize_money,
)
from fintrack.models.tables import Table
from fintrack.services.storage import StorageError
from fintrack.validation import TransactionValidator


TRANSFER_CATEGORY = "Transfer"
DPS_CATEGORY = "DPS"
DPS_FIELDS = ("dps_type", "dps_amount_type", "dps_fixed_amount", "dps_savings_account_id")


class TransferResult(BaseModel):
    """Both legs of a transfer."""

    transfer_id: UUID
    transaction_id: str
    from_leg: Transaction
    to_leg: Transaction
    exchange_rate: Decimal = Decimal("1")


class LedgerService(RecordService):
    """
    Accounts, transactions and transfers for one storage backend.

    Purchases and donation/saving records created as a side effect of a
    transaction go through their own services so they are logged the
    same way as direct edits.
    """

    def __init__(
        self,
        storage,
        activity_logger=None,
        validator: Optional[TransactionValidator] = None,
        purchases: Optional[PurchaseService] = None,
        donations: Optional[DonationSavingService] = None,
        settings: Optional[AppSettings] = None,
    ):
        super().__init__(storage, activity_logger)
        self._settings = settings or get_settings().app
        self._validator = validator or TransactionValidator(self._settings)
        self._purchases = purchases or PurchaseService(storage, self._activity)
        self._donations = donations or DonationSavingService(
            storage, self._activity, self._settings.transaction_id_prefix
        )

    def _new_transaction_id(self) -> str:
        return generate_transaction_id(self._settings.transaction_id_prefix)

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(
        self,
        user_id: UUID,
        name: str,
        type: AccountType,
        currency: Optional[str] = None,
        initial_balance: Decimal = ZERO,
        description: Optional[str] = None,
        is_active: bool = True,
        has_dps: bool = False,
        dps_type: Optional[DpsType] = None,
        dps_amount_type: Optional[DpsAmountType] = None,
        dps_fixed_amount: Optional[Decimal] = None,
        dps_initial_balance: Decimal = ZERO,
        donation_preference: Optional[Decimal] = None,
        transaction_id: Optional[str] = None,
    ) -> Account:
        """
        Create an account.

        With has_dps, a linked savings account "<name> (DPS)" is created
        first and its id stored on the new account.
        """
        currency = currency or self._settings.default_currency
        transaction_id = transaction_id or self._new_transaction_id()

        account = Account(
            user_id=user_id,
            name=name,
            type=type,
            currency=currency,
            initial_balance=initial_balance,
            calculated_balance=initial_balance,
            description=description,
            is_active=is_active,
            has_dps=has_dps,
            dps_type=dps_type,
            dps_amount_type=dps_amount_type,
            dps_fixed_amount=dps_fixed_amount,
            donation_preference=donation_preference,
            transaction_id=transaction_id,
        )

        if has_dps:
            dps_account = await self._create_dps_account(account, dps_initial_balance)
            account = account.with_changes(dps_savings_account_id=dps_account.id)

        await self._storage.insert(Table.ACCOUNTS, account)
        await self._activity.record_created(
            "account", account, user_id, transaction_id=transaction_id
        )
        return account

    async def _create_dps_account(self, parent: Account, initial_balance: Decimal) -> Account:
        dps_account = Account(
            user_id=parent.user_id,
            name=f"{parent.name[:94]} (DPS)",
            type=AccountType.SAVINGS,
            currency=parent.currency,
            initial_balance=initial_balance,
            calculated_balance=initial_balance,
            description=f"DPS savings account for {parent.name}",
            transaction_id=parent.transaction_id,
        )
        await self._storage.insert(Table.ACCOUNTS, dps_account)
        await self._activity.record_created(
            "account", dps_account, parent.user_id,
            transaction_id=parent.transaction_id,
        )
        return dps_account

    async def get_account(self, account_id: UUID, user_id: Optional[UUID] = None) -> Account:
        return await self._require(Table.ACCOUNTS, account_id, "account", user_id)

    async def list_accounts(self, user_id: UUID, active_only: bool = False) -> list[Account]:
        filters = {"is_active": True} if active_only else None
        return await self._storage.list_records(Table.ACCOUNTS, user_id=user_id, filters=filters)

    async def update_account(
        self,
        account_id: UUID,
        user_id: Optional[UUID] = None,
        **changes: Any,
    ) -> Account:
        """
        Update account fields. With user_id, another user's account is
        reported as not found.

        calculated_balance cannot be set directly. Turning has_dps off
        clears the DPS settings (the savings account itself is kept);
        turning it on creates the savings account if there is none.
        """
        changes.pop("calculated_balance", None)
        dps_initial_balance = changes.pop("dps_initial_balance", ZERO)
        old = await self.get_account(account_id, user_id)

        if changes.get("has_dps") is False:
            for field in DPS_FIELDS:
                changes.setdefault(field, None)

        new = old.with_changes(**changes)
        if new.has_dps and new.dps_savings_account_id is None:
            dps_account = await self._create_dps_account(new, dps_initial_balance)
            new = new.with_changes(dps_savings_account_id=dps_account.id)

        await self._storage.update(Table.ACCOUNTS, new)
        await self._activity.record_updated(
            "account", old, new, new.user_id, transaction_id=new.transaction_id
        )

        if new.initial_balance != old.initial_balance:
            await self.recalculate_balance(account_id)
            new = await self.get_account(account_id)
        return new

    async def delete_account(self, account_id: UUID, user_id: Optional[UUID] = None) -> bool:
        """
        Delete an account with everything booked against it.

        Its transactions (with their purchases and donation records) go
        first, then savings goals using it, then the account. A parent
        account that used it as DPS savings loses its DPS link.
        """
        account = await self._find(Table.ACCOUNTS, account_id, user_id)
        if account is None:
            return False

        transactions = await self._storage.list_records(
            Table.TRANSACTIONS, filters={"account_id": account_id}
        )
        for transaction in transactions:
            await self._delete_transaction_row(transaction)

        for column in ("source_account_id", "savings_account_id"):
            await self._storage.delete_where(Table.SAVINGS_GOALS, **{column: account_id})

        parents = await self._storage.list_records(
            Table.ACCOUNTS,
            user_id=account.user_id,
            filters={"dps_savings_account_id": account_id},
        )
        for parent in parents:
            await self.update_account(parent.id, has_dps=False)

        await self._storage.delete(Table.ACCOUNTS, account_id)
        await self._activity.record_deleted(
            "account", account, account.user_id, transaction_id=account.transaction_id
        )
        return True

    # =========================================================================
    # BALANCES
    # =========================================================================

    async def recalculate_balance(self, account_id: UUID) -> Decimal:
        """Recompute and store initial_balance + income - expense."""
        account = await self.get_account(account_id)
        transactions = await self._storage.list_records(
            Table.TRANSACTIONS, filters={"account_id": account_id}
        )
        balance = quantize_money(
            account.initial_balance + sum((t.signed_amount for t in transactions), ZERO)
        )
        if balance != account.calculated_balance:
            await self._storage.update(
                Table.ACCOUNTS, account.with_changes(calculated_balance=balance)
            )
            self._logger.debug(
                "balance_recalculated",
                account_id=str(account_id),
                old=str(account.calculated_balance),
                new=str(balance),
            )
        return balance

    async def recalculate_all_balances(self, user_id: UUID) -> dict[UUID, Decimal]:
        return {
            account.id: await self.recalculate_balance(account.id)
            for account in await self.list_accounts(user_id)
        }

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def _validate(
        self,
        transaction: Transaction,
        account: Optional[Account],
        to_account: Optional[Account] = None,
        exchange_rate: Decimal = Decimal("1"),
    ) -> None:
        result = self._validator.validate(transaction, account, to_account, exchange_rate)
        if not result.is_valid:
            self._logger.info(
                "transaction_rejected",
                transaction_id=transaction.transaction_id,
                summary=self._validator.get_user_friendly_summary(result),
            )
            raise ValidationFailedError(result)
        if result.warnings:
            self._logger.warning(
                "transaction_warnings",
                transaction_id=transaction.transaction_id,
                warnings=result.warnings,
            )

    async def add_transaction(
        self,
        user_id: UUID,
        account_id: UUID,
        type: TransactionType,
        amount: Decimal,
        category: str,
        description: str = "",
        date: Optional[datetime] = None,
        tags: Optional[list[str]] = None,
        saving_amount: Optional[Decimal] = None,
        donation_amount: Optional[Decimal] = None,
        transaction_id: Optional[str] = None,
        is_recurring: bool = False,
        recurring_frequency: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
        notes: Optional[str] = None,
    ) -> Transaction:
        """
        Book an income or expense.

        Also:
        - recalculates the account balance
        - records a purchase when an expense's category is one of the
          user's purchase categories
        - records saving/donation amounts set aside from it

        Raises:
            ValidationFailedError: If validation finds errors
        """
        transaction = Transaction(
            user_id=user_id,
            account_id=account_id,
            type=type,
            amount=amount,
            category=category,
            description=description,
            date=date or datetime.utcnow(),
            tags=tags or [],
            saving_amount=saving_amount,
            donation_amount=donation_amount,
            is_recurring=is_recurring,
            recurring_frequency=recurring_frequency,
            transaction_id=transaction_id or self._new_transaction_id(),
        )
        account = await self._storage.get(Table.ACCOUNTS, account_id)
        self._validate(transaction, account)

        await self._storage.insert(Table.TRANSACTIONS, transaction)
        await self._activity.record_created(
            "transaction", transaction, user_id,
            transaction_id=transaction.transaction_id,
        )
        await self.recalculate_balance(account_id)

        if type == TransactionType.EXPENSE:
            await self._record_purchase(transaction, account, priority, notes)
        await self._record_set_asides(transaction)
        return transaction

    async def _record_purchase(
        self,
        transaction: Transaction,
        account: Account,
        priority: Priority,
        notes: Optional[str],
    ) -> None:
        if not await self._purchases.is_purchase_category(transaction.user_id, transaction.category):
            return
        try:
            await self._purchases.add_purchase(
                user_id=transaction.user_id,
                item_name=transaction.description or "Purchase",
                category=transaction.category,
                price=transaction.amount,
                currency=account.currency,
                purchase_date=transaction.date.date(),
                status=PurchaseStatus.PURCHASED,
                priority=priority,
                notes=notes,
                transaction_id=transaction.transaction_id,
            )
        except StorageError as e:
            # The expense stands even if its purchase row can't be written
            self._logger.error(
                "purchase_from_transaction_failed",
                transaction_id=transaction.transaction_id,
                error=str(e),
            )
            await self._activity.log_error(
                "purchase_from_transaction_failed", str(e),
                user_id=transaction.user_id,
            )

    async def _record_set_asides(self, transaction: Transaction) -> None:
        if transaction.saving_amount:
            await self._donations.record_from_transaction(
                transaction, DonationSavingType.SAVING, amount=transaction.saving_amount
            )
        if transaction.donation_amount:
            await self._donations.record_from_transaction(
                transaction, DonationSavingType.DONATION, amount=transaction.donation_amount
            )

    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Transaction:
        return await self._require(Table.TRANSACTIONS, transaction_id, "transaction", user_id)

    async def list_transactions(
        self,
        user_id: UUID,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        filters = {"account_id": account_id} if account_id else None
        return await self._storage.list_records(
            Table.TRANSACTIONS, user_id=user_id, filters=filters,
            limit=limit, order_by="date", descending=True,
        )

    async def update_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
        **changes: Any,
    ) -> Transaction:
        """
        Edit a transaction and keep dependent rows consistent.

        Balances of the old and new account are recomputed, a purchase
        recorded from the expense follows its description, amount and
        category, and changed saving/donation amounts replace the
        records set aside from it.
        """
        old = await self.get_transaction(transaction_id, user_id)
        new = old.with_changes(**changes)
        account = await self._storage.get(Table.ACCOUNTS, new.account_id)
        self._validate(new, account)

        await self._storage.update(Table.TRANSACTIONS, new)
        await self._activity.record_updated(
            "transaction", old, new, new.user_id, transaction_id=new.transaction_id
        )

        await self.recalculate_balance(new.account_id)
        if old.account_id != new.account_id:
            await self.recalculate_balance(old.account_id)

        if old.type == TransactionType.EXPENSE and old.transaction_id:
            await self._sync_purchases(old, new)

        if (old.saving_amount, old.donation_amount) != (new.saving_amount, new.donation_amount):
            await self._donations.delete_for_transaction(new.id)
            await self._record_set_asides(new)
        return new

    async def _sync_purchases(self, old: Transaction, new: Transaction) -> None:
        purchase_changes: dict[str, Any] = {}
        if new.description != old.description:
            purchase_changes["item_name"] = new.description or "Purchase"
        if new.amount != old.amount:
            purchase_changes["price"] = new.amount
        if new.category != old.category:
            purchase_changes["category"] = new.category
        if not purchase_changes:
            return
        for purchase in await self._purchases.find_by_transaction_id(old.transaction_id):
            await self._purchases.update_purchase(purchase.id, **purchase_changes)

    async def delete_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a transaction. Deleting either leg of a transfer deletes
        both legs.
        """
        transaction = await self._find(Table.TRANSACTIONS, transaction_id, user_id)
        if transaction is None:
            return False

        rows = [transaction]
        if transaction.is_transfer and transaction.transaction_id:
            rows = [
                t for t in await self._storage.list_records(
                    Table.TRANSACTIONS,
                    user_id=transaction.user_id,
                    filters={"transaction_id": transaction.transaction_id},
                )
                if t.is_transfer
            ]

        for row in rows:
            await self._delete_transaction_row(row)
        for account_id in {row.account_id for row in rows}:
            await self.recalculate_balance(account_id)
        return True

    async def _delete_transaction_row(self, transaction: Transaction) -> None:
        await self._donations.delete_for_transaction(transaction.id)
        if (
            transaction.type == TransactionType.EXPENSE
            and transaction.transaction_id
            and not transaction.is_transfer
        ):
            for purchase in await self._purchases.find_by_transaction_id(transaction.transaction_id):
                await self._purchases.delete_purchase(purchase.id)
        await self._storage.delete(Table.TRANSACTIONS, transaction.id)
        await self._activity.record_deleted(
            "transaction", transaction, transaction.user_id,
            transaction_id=transaction.transaction_id,
        )

    # =========================================================================
    # TRANSFERS
    # =========================================================================

    async def transfer(
        self,
        from_account_id: UUID,
        to_account_id: UUID,
        amount: Decimal,
        exchange_rate: Decimal = Decimal("1"),
        note: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> TransferResult:
        """
        Move money between two of a user's accounts.

        The destination receives amount x exchange_rate.

        Raises:
            FinanceError: Same account, different owners or bad amount
            InsufficientFundsError: Source balance below the amount
            ValidationFailedError: If either leg fails validation
        """
        if from_account_id == to_account_id:
            raise FinanceError("Source and destination accounts must be different")

        source = await self.get_account(from_account_id)
        destination = await self.get_account(to_account_id)
        if source.user_id != destination.user_id:
            raise FinanceError("Transfers are only possible between your own accounts")

        amount = quantize_money(Decimal(amount))
        exchange_rate = Decimal(exchange_rate)
        if exchange_rate <= 0:
            raise FinanceError("Exchange rate must be positive")
        to_amount = quantize_money(amount * exchange_rate)
        transfer_id = create_correlation_id()

        result = await self.write_transfer(
            source=source,
            destination=destination,
            amount=amount,
            to_amount=to_amount,
            category=TRANSFER_CATEGORY,
            out_tags=["transfer", str(transfer_id), str(destination.id), str(to_amount)],
            in_tags=["transfer", str(transfer_id), str(source.id), str(amount)],
            out_description=note or f"Transfer to {destination.name}",
            in_description=note or f"Transfer from {source.name}",
            transfer_id=transfer_id,
            transaction_id=transaction_id,
            exchange_rate=exchange_rate,
        )

        await self._activity.log(ActivityEntryBuilder.transfer_created(
            user_id=source.user_id,
            transfer_id=transfer_id,
            from_name=source.name,
            to_name=destination.name,
            details={
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "from_amount": amount,
                "to_amount": to_amount,
                "exchange_rate": exchange_rate,
                "note": note,
            },
            transaction_id=result.transaction_id,
        ))
        return result

    async def transfer_dps(
        self,
        from_account_id: UUID,
        amount: Optional[Decimal] = None,
        transaction_id: Optional[str] = None,
    ) -> TransferResult:
        """
        Move money into an account's linked DPS savings account.

        Fixed-amount DPS accounts default to their configured amount.
        """
        source = await self.get_account(from_account_id)
        if not source.has_dps:
            raise FinanceError("Account does not have DPS enabled")
        if source.dps_savings_account_id is None:
            raise FinanceError("DPS savings account not found")
        destination = await self.get_account(source.dps_savings_account_id)

        if amount is None:
            if source.dps_amount_type != DpsAmountType.FIXED or source.dps_fixed_amount is None:
                raise FinanceError("An amount is required for this DPS account")
            amount = source.dps_fixed_amount
        amount = quantize_money(Decimal(amount))

        transfer_id = create_correlation_id()
        tags = [f"dps_transfer_{transfer_id}"]
        result = await self.write_transfer(
            source=source,
            destination=destination,
            amount=amount,
            to_amount=amount,
            category=DPS_CATEGORY,
            out_tags=tags,
            in_tags=tags,
            out_description=f"DPS Transfer to {destination.name}",
            in_description=f"DPS Transfer from {source.name}",
            transfer_id=transfer_id,
            transaction_id=transaction_id,
        )

        await self._activity.log(ActivityEntryBuilder.transfer_created(
            user_id=source.user_id,
            transfer_id=transfer_id,
            from_name=source.name,
            to_name=destination.name,
            details={
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "amount": amount,
            },
            transaction_id=result.transaction_id,
            dps=True,
        ))
        return result

    async def write_transfer(
        self,
        source: Account,
        destination: Account,
        amount: Decimal,
        to_amount: Decimal,
        category: str,
        out_tags: list[str],
        in_tags: list[str],
        out_description: str,
        in_description: str,
        transfer_id: UUID,
        transaction_id: Optional[str],
        exchange_rate: Decimal = Decimal("1"),
    ) -> TransferResult:
        """
        Write both legs of a transfer; the first is removed again if the
        second fails. Callers log their own transfer activity.

        Raises:
            FinanceError: Amount not positive
            InsufficientFundsError: Source balance below the amount
        """
        if amount <= 0:
            raise FinanceError("Transfer amount must be greater than zero")

        available = await self.recalculate_balance(source.id)
        if available < amount:
            raise InsufficientFundsError(source.id, available, amount)

        transaction_id = transaction_id or self._new_transaction_id()
        now = datetime.utcnow()

        out_leg = Transaction(
            user_id=source.user_id,
            account_id=source.id,
            type=TransactionType.EXPENSE,
            amount=amount,
            description=out_description,
            date=now,
            category=category,
            tags=out_tags,
            to_account_id=destination.id,
            transaction_id=transaction_id,
        )
        in_leg = Transaction(
            user_id=destination.user_id,
            account_id=destination.id,
            type=TransactionType.INCOME,
            amount=to_amount,
            description=in_description,
            date=now,
            category=category,
            tags=in_tags,
            transaction_id=transaction_id,
        )
        self._validate(out_leg, source, destination, exchange_rate)
        self._validate(in_leg, destination)

        await self._storage.insert(Table.TRANSACTIONS, out_leg)
        try:
            await self._storage.insert(Table.TRANSACTIONS, in_leg)
        except StorageError:
            # Roll back the source leg if the destination fails
            await self._storage.delete(Table.TRANSACTIONS, out_leg.id)
            self._logger.error(
                "transfer_rolled_back",
                transfer_id=str(transfer_id),
                transaction_id=transaction_id,
            )
            raise

        await self.recalculate_balance(source.id)
        await self.recalculate_balance(destination.id)

        return TransferResult(
            transfer_id=transfer_id,
            transaction_id=transaction_id,
            from_leg=out_leg,
            to_leg=in_leg,
            exchange_rate=exchange_rate,
        )

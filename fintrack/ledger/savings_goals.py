"""
Savings Goals

A goal is a target amount saved from one account into a savings
account created for it. Saving towards a goal is an ordinary transfer
(two transaction legs) plus an increase of the goal's current_amount.

DESIGN DECISION: current_amount only moves through save_to_goal. It
is not editable through update_goal, the same way an account's
calculated_balance is not.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fintrack.audit import create_correlation_id
from fintrack.ledger.base import RecordService
from fintrack.ledger.service import TRANSFER_CATEGORY, LedgerService, TransferResult
from fintrack.models.activity import ActivityEntryBuilder
from fintrack.models.finance import AccountType, SavingsGoal, quantize_money
from fintrack.models.tables import Table


ENTITY = "savings_goal"
READ_ONLY_FIELDS = ("current_amount", "savings_account_id", "user_id")


class SavingsGoalService(RecordService):

    def __init__(self, storage, activity_logger=None, ledger: Optional[LedgerService] = None):
        super().__init__(storage, activity_logger)
        self._ledger = ledger or LedgerService(storage, self._activity)

    async def create_goal(
        self,
        user_id: UUID,
        name: str,
        target_amount: Decimal,
        source_account_id: UUID,
        description: Optional[str] = None,
    ) -> SavingsGoal:
        """
        Create a goal and the savings account "<name> (Savings)" it fills.

        The savings account takes the source account's currency and
        starts empty.
        """
        source = await self._ledger.get_account(source_account_id, user_id)
        savings_account = await self._ledger.create_account(
            user_id=user_id,
            name=f"{name[:90]} (Savings)",
            type=AccountType.SAVINGS,
            currency=source.currency,
            description=description,
        )
        goal = SavingsGoal(
            user_id=user_id,
            name=name,
            target_amount=target_amount,
            source_account_id=source.id,
            savings_account_id=savings_account.id,
            description=description,
        )
        await self._storage.insert(Table.SAVINGS_GOALS, goal)
        await self._activity.record_created(ENTITY, goal, user_id)
        return goal

    async def get_goal(self, goal_id: UUID, user_id: Optional[UUID] = None) -> SavingsGoal:
        return await self._require(Table.SAVINGS_GOALS, goal_id, ENTITY, user_id)

    async def list_goals(self, user_id: UUID) -> list[SavingsGoal]:
        return await self._storage.list_records(Table.SAVINGS_GOALS, user_id=user_id)

    async def update_goal(
        self,
        goal_id: UUID,
        user_id: Optional[UUID] = None,
        **changes: Any,
    ) -> SavingsGoal:
        """Rename, retarget or repoint a goal's source account."""
        for field in READ_ONLY_FIELDS:
            changes.pop(field, None)
        old = await self.get_goal(goal_id, user_id)
        if "source_account_id" in changes:
            await self._ledger.get_account(changes["source_account_id"], old.user_id)

        new = old.with_changes(**changes)
        await self._storage.update(Table.SAVINGS_GOALS, new)
        await self._activity.record_updated(ENTITY, old, new, new.user_id)
        return new

    async def delete_goal(self, goal_id: UUID, user_id: Optional[UUID] = None) -> bool:
        """Delete a goal. Its savings account and the money in it stay."""
        goal = await self._find(Table.SAVINGS_GOALS, goal_id, user_id)
        if goal is None:
            return False
        await self._storage.delete(Table.SAVINGS_GOALS, goal_id)
        await self._activity.record_deleted(ENTITY, goal, goal.user_id)
        return True

    async def save_to_goal(
        self,
        goal_id: UUID,
        amount: Decimal,
        user_id: Optional[UUID] = None,
    ) -> TransferResult:
        """
        Move money from the goal's source account into its savings account.

        Raises:
            RecordNotFoundError: Unknown goal or account
            InsufficientFundsError: Source balance below the amount
        """
        goal = await self.get_goal(goal_id, user_id)
        source = await self._ledger.get_account(goal.source_account_id)
        destination = await self._ledger.get_account(goal.savings_account_id)
        amount = quantize_money(Decimal(amount))

        transfer_id = create_correlation_id()
        description = f"Savings: {goal.name}"
        result = await self._ledger.write_transfer(
            source=source,
            destination=destination,
            amount=amount,
            to_amount=amount,
            category=TRANSFER_CATEGORY,
            out_tags=["transfer", str(transfer_id), str(destination.id), "savings"],
            in_tags=["transfer", str(transfer_id), str(source.id), "savings"],
            out_description=description,
            in_description=description,
            transfer_id=transfer_id,
            transaction_id=None,
        )

        updated = goal.with_changes(current_amount=goal.current_amount + amount)
        await self._storage.update(Table.SAVINGS_GOALS, updated)
        await self._activity.log(ActivityEntryBuilder.savings_goal_deposit(
            user_id=goal.user_id,
            goal_id=goal.id,
            goal_name=goal.name,
            amount=amount,
            current_amount=updated.current_amount,
            transfer_id=transfer_id,
            transaction_id=result.transaction_id,
        ))
        return result

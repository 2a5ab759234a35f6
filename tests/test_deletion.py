"""Tests for the user deletion workflow."""

import pytest
from decimal import Decimal
from uuid import uuid4

from fintrack.errors import DeletionJobError, RecordNotFoundError
from fintrack.lifecycle import STEP_NAMES
from fintrack.models.activity import ActivityType
from fintrack.models.finance import LendBorrowType, TransactionType
from fintrack.models.lifecycle import DeletionStatus, DeletionStepStatus, LastWishRecipient
from fintrack.models.tables import Table


@pytest.fixture
def storage(backend_storage):
    return backend_storage


@pytest.fixture
async def populated(
    ledger, purchases, lend_borrow, last_wish, notifications, savings_goals, checking, user_id
):
    """A user with at least one row in most tables."""
    await purchases.add_category(user_id, "Books")
    expense = await ledger.add_transaction(
        user_id=user_id, account_id=checking.id, type=TransactionType.EXPENSE,
        amount=Decimal("20"), category="Books", description="Novel",
    )
    await ledger.add_transaction(
        user_id=user_id, account_id=checking.id, type=TransactionType.INCOME,
        amount=Decimal("500"), category="Salary", donation_amount=Decimal("50"),
    )
    purchase = (await purchases.find_by_transaction_id(expense.transaction_id))[0]
    attachment = await purchases.attach_file(purchase.id, b"receipt", "receipt.jpg")

    loan = await lend_borrow.add_record(
        user_id=user_id, type=LendBorrowType.LEND, person_name="Sam", amount=Decimal("100"),
    )
    await lend_borrow.record_return(loan.id, Decimal("10"))

    await notifications.notify(user_id, "Welcome")
    goal = await savings_goals.create_goal(user_id, "Bike", Decimal("300"), checking.id)
    await savings_goals.save_to_goal(goal.id, Decimal("40"))
    await last_wish.configure(
        user_id, is_enabled=True, recipients=[LastWishRecipient(email="heir@example.com")],
    )
    return {"attachment": attachment, "loan": loan}


async def owned_rows(storage, user_id):
    counts = {}
    for table in Table:
        if table in (Table.LEND_BORROW_RETURNS, Table.DELETION_JOBS):
            continue
        if table == Table.PROFILES:
            counts[table] = int(await storage.get(table, user_id) is not None)
        else:
            counts[table] = await storage.count(table, user_id=user_id)
    return counts


class TestDeletionRun:

    async def test_request_returns_open_job(self, deletion, profile, user_id):
        job = await deletion.request_deletion(user_id, reason="closing account")
        assert job.status == DeletionStatus.PENDING
        assert [s.name for s in job.steps] == STEP_NAMES

        again = await deletion.request_deletion(user_id)
        assert again.id == job.id

    async def test_run_removes_everything(
        self, deletion, storage, attachment_store, populated, user_id
    ):
        job = await deletion.request_deletion(user_id)
        report = await deletion.run(job.id)

        assert report.status == DeletionStatus.COMPLETED
        assert report.failed_step is None
        # Two plain transactions plus both legs of the savings transfer
        assert report.deleted_counts["transactions"] == 4
        assert report.deleted_counts["savings_goals"] == 1
        assert report.deleted_counts["accounts"] == 2
        assert report.deleted_counts["purchases"] == 1
        assert report.deleted_counts["lend_borrow_returns"] == 1
        assert report.deleted_counts["profile"] == 1
        assert report.deleted_counts["activity_history"] > 0

        assert set((await owned_rows(storage, user_id)).values()) == {0}
        assert await storage.count(Table.LEND_BORROW_RETURNS) == 0
        assert attachment_store.deleted == [populated["attachment"].public_id]

        stored = await deletion.get_job(job.id)
        assert stored.snapshot is None
        assert stored.finished_at is not None

    async def test_job_history_survives(self, deletion, storage, populated, user_id):
        job = await deletion.request_deletion(user_id)
        await deletion.run(job.id)

        assert await storage.get_entries_by_user(user_id) == []
        events = await storage.get_entries_by_entity("deletion_job", job.id)
        types = [e.activity_type for e in events]
        assert types[0] == ActivityType.USER_DELETION_REQUESTED
        assert types[-1] == ActivityType.USER_DELETION_COMPLETED
        assert types.count(ActivityType.USER_DELETION_STEP_COMPLETED) == len(STEP_NAMES)

    async def test_running_completed_job_is_a_noop(self, deletion, populated, user_id):
        job = await deletion.request_deletion(user_id)
        first = await deletion.run(job.id)
        second = await deletion.run(job.id)
        assert second.deleted_counts == first.deleted_counts

    async def test_user_without_data(self, deletion):
        job = await deletion.request_deletion(uuid4())
        report = await deletion.run(job.id)
        assert report.status == DeletionStatus.COMPLETED
        assert report.total_deleted == 0

    async def test_unknown_job(self, deletion):
        with pytest.raises(RecordNotFoundError):
            await deletion.run(uuid4())


class TestDeletionFailures:

    async def test_transient_failure_is_retried(
        self, deletion, attachment_store, populated, user_id
    ):
        attachment_store.fail_deletes = 1
        job = await deletion.request_deletion(user_id)
        report = await deletion.run(job.id)

        assert report.status == DeletionStatus.COMPLETED
        stored = await deletion.get_job(job.id)
        assert stored.step("purchase_attachments").attempts == 2

    async def test_persistent_failure_stops_and_resumes(
        self, deletion, storage, attachment_store, populated, user_id
    ):
        attachment_store.fail_deletes = 2
        job = await deletion.request_deletion(user_id)
        report = await deletion.run(job.id)

        assert report.status == DeletionStatus.FAILED
        assert report.failed_step == "purchase_attachments"
        assert "unavailable" in report.error

        stored = await deletion.get_job(job.id)
        assert stored.step("lend_borrow").status == DeletionStepStatus.COMPLETED
        assert stored.step("purchases").status == DeletionStepStatus.PENDING
        assert stored.snapshot is not None
        # Later steps have not run
        assert await storage.get(Table.PROFILES, user_id) is not None

        failures = await storage.get_entries_by_entity("deletion_job", job.id)
        assert ActivityType.USER_DELETION_STEP_FAILED in [e.activity_type for e in failures]

        # The open job is picked up again and resumes at the failed step
        reports = await deletion.run_pending()
        assert [r.status for r in reports] == [DeletionStatus.COMPLETED]
        assert reports[0].deleted_counts["notifications"] == 1
        assert await storage.get(Table.PROFILES, user_id) is None


class TestDeletionCancel:

    async def test_cancel_restores_deleted_rows(
        self, deletion, storage, attachment_store, populated, user_id
    ):
        before = await owned_rows(storage, user_id)

        attachment_store.fail_deletes = 2
        job = await deletion.request_deletion(user_id)
        await deletion.run(job.id)
        assert await storage.count(Table.NOTIFICATIONS, user_id=user_id) == 0

        report = await deletion.cancel(job.id)

        assert report.status == DeletionStatus.CANCELLED
        assert report.restored_counts["notifications"] == 1
        assert report.restored_counts["lend_borrow_returns"] == 1
        assert report.restored_counts["accounts"] == 0

        after = await owned_rows(storage, user_id)
        after[Table.ACTIVITY_HISTORY] = before[Table.ACTIVITY_HISTORY]
        assert after == before
        assert await storage.count(
            Table.LEND_BORROW_RETURNS, lend_borrow_id=populated["loan"].id
        ) == 1

        stored = await deletion.get_job(job.id)
        assert stored.snapshot is None

    async def test_cancel_twice_restores_nothing_more(self, deletion, populated, user_id):
        job = await deletion.request_deletion(user_id)
        await deletion.cancel(job.id)
        second = await deletion.cancel(job.id)
        assert second.status == DeletionStatus.CANCELLED

    async def test_cancelled_job_cannot_run(self, deletion, populated, user_id):
        job = await deletion.request_deletion(user_id)
        await deletion.cancel(job.id)
        with pytest.raises(DeletionJobError, match="cancelled"):
            await deletion.run(job.id)

    async def test_completed_job_cannot_be_cancelled(self, deletion, populated, user_id):
        job = await deletion.request_deletion(user_id)
        await deletion.run(job.id)
        with pytest.raises(DeletionJobError, match="already completed"):
            await deletion.cancel(job.id)

    async def test_new_request_after_cancel(self, deletion, populated, user_id):
        job = await deletion.request_deletion(user_id)
        await deletion.cancel(job.id)
        fresh = await deletion.request_deletion(user_id)
        assert fresh.id != job.id

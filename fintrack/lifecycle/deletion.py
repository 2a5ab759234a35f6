"""
User Deletion Workflow

Removes every row a user owns, as a durable job.

Flow:
1. request_deletion → a pending job with one step per table
2. run → snapshot the user's rows once, then run the steps in order,
   saving the job after each one
3. A step that keeps failing marks the job failed and stops; running
   the job again resumes at that step
4. cancel → put back every snapshot row that is missing

DESIGN DECISION: Steps delete "whatever is left for this user", so
repeating a step that half-finished is always safe. Children go before
their parents, so the foreign keys of the SQL backend are never
violated mid-job.

Entries about the job itself carry no user id. They survive the
activity_history step and remain as the record that the deletion
happened.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from fintrack.config import AppSettings, get_settings
from fintrack.errors import DeletionJobError
from fintrack.ledger.base import RecordService
from fintrack.models.activity import ActivityEntryBuilder, ActivityType
from fintrack.models.lifecycle import (
    DeletionJob,
    DeletionReport,
    DeletionStatus,
    DeletionStep,
    DeletionStepStatus,
    OPEN_DELETION_STATUSES,
)
from fintrack.models.tables import Table, model_for
from fintrack.services.attachments import AttachmentStoreInterface


# Step name -> table it empties, children before parents
DELETION_STEPS: list[tuple[str, Table]] = [
    ("notifications", Table.NOTIFICATIONS),
    ("donation_saving_records", Table.DONATION_SAVING_RECORDS),
    ("lend_borrow_returns", Table.LEND_BORROW_RETURNS),
    ("lend_borrow", Table.LEND_BORROW),
    ("purchase_attachments", Table.PURCHASE_ATTACHMENTS),
    ("purchases", Table.PURCHASES),
    ("purchase_categories", Table.PURCHASE_CATEGORIES),
    ("transactions", Table.TRANSACTIONS),
    ("savings_goals", Table.SAVINGS_GOALS),
    ("accounts", Table.ACCOUNTS),
    ("last_wish_deliveries", Table.LAST_WISH_DELIVERIES),
    ("last_wish_settings", Table.LAST_WISH_SETTINGS),
    ("activity_history", Table.ACTIVITY_HISTORY),
    ("profile", Table.PROFILES),
]

STEP_NAMES = [name for name, _ in DELETION_STEPS]
STEP_TABLES = dict(DELETION_STEPS)


class UserDeletionWorkflow(RecordService):
    """
    Runs, resumes and cancels user deletion jobs.

    Usage:
        workflow = UserDeletionWorkflow(storage, activity_logger)
        job = await workflow.request_deletion(user_id, reason="user request")
        report = await workflow.run(job.id)
    """

    def __init__(
        self,
        storage,
        activity_logger=None,
        attachment_store: Optional[AttachmentStoreInterface] = None,
        settings: Optional[AppSettings] = None,
        retry_wait_seconds: float = 1.0,
    ):
        super().__init__(storage, activity_logger)
        self._attachments = attachment_store
        self._settings = settings or get_settings().app
        self._retry_wait = retry_wait_seconds

        self._step_handlers: dict[str, Callable[[UUID], Awaitable[int]]] = {
            name: self._delete_owned(table) for name, table in DELETION_STEPS
        }
        self._step_handlers["lend_borrow_returns"] = self._delete_lend_borrow_returns
        self._step_handlers["purchase_attachments"] = self._delete_attachments
        self._step_handlers["activity_history"] = self._storage.delete_entries_for_user
        self._step_handlers["profile"] = self._delete_profile

    # =========================================================================
    # JOB LIFECYCLE
    # =========================================================================

    async def request_deletion(self, user_id: UUID, reason: Optional[str] = None) -> DeletionJob:
        """Create a deletion job, or return the user's open one."""
        existing = await self._storage.list_records(
            Table.DELETION_JOBS,
            user_id=user_id,
            filters={"status": list(OPEN_DELETION_STATUSES)},
        )
        if existing:
            return existing[0]

        job = DeletionJob(
            user_id=user_id,
            reason=reason,
            steps=[DeletionStep(name=name) for name in STEP_NAMES],
        )
        await self._storage.insert(Table.DELETION_JOBS, job)
        await self._activity.log(ActivityEntryBuilder.deletion_event(
            ActivityType.USER_DELETION_REQUESTED,
            job.id,
            "User deletion requested",
            details={"user_id": user_id, "reason": reason},
        ))
        return job

    async def get_job(self, job_id: UUID) -> DeletionJob:
        return await self._require(Table.DELETION_JOBS, job_id, "deletion_job")

    async def run(self, job_id: UUID) -> DeletionReport:
        """
        Run a job's remaining steps.

        Raises:
            DeletionJobError: If the job was cancelled
        """
        job = await self.get_job(job_id)
        if job.status == DeletionStatus.COMPLETED:
            return self._report(job)
        if job.status == DeletionStatus.CANCELLED:
            raise DeletionJobError(f"Deletion job {job_id} was cancelled")

        job.status = DeletionStatus.RUNNING
        job.error = None
        job.started_at = job.started_at or datetime.utcnow()
        if job.snapshot is None:
            job.snapshot = await self._take_snapshot(job.user_id)
        await self._save(job)

        self._logger.info("deletion_job_started", job_id=str(job.id), user_id=str(job.user_id))

        step = job.next_step()
        while step is not None:
            if not await self._run_step(job, step):
                return self._report(job)
            step = job.next_step()

        job.status = DeletionStatus.COMPLETED
        job.snapshot = None
        job.finished_at = datetime.utcnow()
        await self._save(job)

        report = self._report(job)
        await self._activity.log(ActivityEntryBuilder.deletion_event(
            ActivityType.USER_DELETION_COMPLETED,
            job.id,
            f"User deletion completed: {report.total_deleted} rows removed",
            details={"user_id": job.user_id, "deleted_counts": report.deleted_counts},
        ))
        return report

    async def run_pending(self) -> list[DeletionReport]:
        """Run (or resume) every open job, oldest first."""
        jobs = await self._storage.list_records(
            Table.DELETION_JOBS,
            filters={"status": list(OPEN_DELETION_STATUSES)},
            order_by="created_at",
        )
        return [await self.run(job.id) for job in jobs]

    async def cancel(self, job_id: UUID) -> DeletionReport:
        """
        Stop a job and restore what it deleted from the snapshot.

        Only rows whose id is missing are written back, parents first,
        so cancelling twice restores nothing the second time. Files
        already removed from the attachment store cannot be restored.

        Raises:
            DeletionJobError: If the job already completed
        """
        job = await self.get_job(job_id)
        if job.status == DeletionStatus.COMPLETED:
            raise DeletionJobError(f"Deletion job {job_id} already completed")
        if job.status == DeletionStatus.CANCELLED:
            return self._report(job)

        restored: dict[str, int] = {}
        for name, table in reversed(DELETION_STEPS):
            rows = (job.snapshot or {}).get(table.value, [])
            restored[name] = await self._restore_rows(table, rows)

        job.status = DeletionStatus.CANCELLED
        job.snapshot = None
        job.finished_at = datetime.utcnow()
        await self._save(job)

        report = self._report(job, restored_counts=restored)
        await self._activity.log(ActivityEntryBuilder.deletion_event(
            ActivityType.USER_DELETION_CANCELLED,
            job.id,
            f"User deletion cancelled: {sum(restored.values())} rows restored",
            details={"user_id": job.user_id, "restored_counts": restored},
        ))
        return report

    # =========================================================================
    # STEPS
    # =========================================================================

    async def _run_step(self, job: DeletionJob, step: DeletionStep) -> bool:
        """Run one step with retries. Returns False if it failed for good."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.deletion_step_attempts),
                wait=wait_exponential(multiplier=self._retry_wait, max=10),
                reraise=True,
            ):
                with attempt:
                    step.attempts += 1
                    deleted = await self._step_handlers[step.name](job.user_id)
        except Exception as e:
            step.status = DeletionStepStatus.FAILED
            step.error = str(e)
            job.status = DeletionStatus.FAILED
            job.error = f"Step {step.name} failed: {e}"
            await self._save(job)

            self._logger.error(
                "deletion_step_failed",
                job_id=str(job.id),
                step=step.name,
                attempts=step.attempts,
                error=str(e),
            )
            await self._activity.log(ActivityEntryBuilder.deletion_event(
                ActivityType.USER_DELETION_STEP_FAILED,
                job.id,
                f"Deletion step failed: {step.name}",
                details={"step": step.name, "attempts": step.attempts},
                error_message=str(e),
            ))
            return False

        step.status = DeletionStepStatus.COMPLETED
        step.deleted_count += deleted
        step.error = None
        step.completed_at = datetime.utcnow()
        await self._save(job)

        await self._activity.log(ActivityEntryBuilder.deletion_event(
            ActivityType.USER_DELETION_STEP_COMPLETED,
            job.id,
            f"Deletion step completed: {step.name} ({deleted} rows)",
            details={"step": step.name, "deleted_count": deleted},
        ))
        return True

    def _delete_owned(self, table: Table) -> Callable[[UUID], Awaitable[int]]:
        async def delete(user_id: UUID) -> int:
            return await self._storage.delete_where(table, user_id=user_id)
        return delete

    async def _lend_borrow_ids(self, user_id: UUID) -> list[UUID]:
        records = await self._storage.list_records(Table.LEND_BORROW, user_id=user_id)
        return [r.id for r in records]

    async def _delete_lend_borrow_returns(self, user_id: UUID) -> int:
        ids = await self._lend_borrow_ids(user_id)
        if not ids:
            return 0
        return await self._storage.delete_where(Table.LEND_BORROW_RETURNS, lend_borrow_id=ids)

    async def _delete_attachments(self, user_id: UUID) -> int:
        attachments = await self._storage.list_records(Table.PURCHASE_ATTACHMENTS, user_id=user_id)
        if self._attachments is not None:
            for attachment in attachments:
                if attachment.public_id:
                    await self._attachments.delete(attachment.public_id)
        return await self._storage.delete_where(Table.PURCHASE_ATTACHMENTS, user_id=user_id)

    async def _delete_profile(self, user_id: UUID) -> int:
        return int(await self._storage.delete(Table.PROFILES, user_id))

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    async def _take_snapshot(self, user_id: UUID) -> dict[str, list[dict]]:
        snapshot: dict[str, list[dict]] = {}
        for _, table in DELETION_STEPS:
            if table == Table.LEND_BORROW_RETURNS:
                ids = await self._lend_borrow_ids(user_id)
                rows = await self._storage.list_records(
                    table, filters={"lend_borrow_id": ids}
                ) if ids else []
            elif table == Table.PROFILES:
                profile = await self._storage.get(table, user_id)
                rows = [profile] if profile else []
            else:
                rows = await self._storage.list_records(table, user_id=user_id)
            snapshot[table.value] = [row.model_dump(mode="json") for row in rows]

        self._logger.info(
            "deletion_snapshot_taken",
            user_id=str(user_id),
            rows=sum(len(rows) for rows in snapshot.values()),
        )
        return snapshot

    async def _restore_rows(self, table: Table, rows: list[dict]) -> int:
        model = model_for(table)
        restored = 0
        for row in rows:
            record = model.model_validate(row)
            if await self._storage.get(table, record.id) is not None:
                continue
            await self._storage.insert(table, record)
            restored += 1
        if table == Table.PURCHASE_ATTACHMENTS and restored:
            self._logger.warning(
                "attachment_rows_restored_without_files",
                count=restored,
            )
        return restored

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _save(self, job: DeletionJob) -> None:
        job.updated_at = datetime.utcnow()
        await self._storage.update(Table.DELETION_JOBS, job)

    @staticmethod
    def _report(job: DeletionJob, restored_counts: Optional[dict[str, int]] = None) -> DeletionReport:
        failed = next(
            (s for s in job.steps if s.status == DeletionStepStatus.FAILED), None
        )
        return DeletionReport(
            job_id=job.id,
            user_id=job.user_id,
            status=job.status,
            deleted_counts={s.name: s.deleted_count for s in job.steps},
            restored_counts=restored_counts or {},
            failed_step=failed.name if failed else None,
            error=job.error,
        )

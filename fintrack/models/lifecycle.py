"""
Account Lifecycle Models

Models for the two workflows that outlive a single request:

1. User deletion: a durable job that removes every row a user owns,
   one idempotent step at a time.
2. Last wish: periodic check-ins; when a user stops checking in, their
   chosen data is delivered to the people they named.

DESIGN DECISION: Workflow state is stored like any other record.
A crashed run is resumed from what was persisted, never from memory.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from fintrack.models.finance import FinanceRecord


# =============================================================================
# USER DELETION
# =============================================================================

class DeletionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeletionStepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


OPEN_DELETION_STATUSES = frozenset({
    DeletionStatus.PENDING,
    DeletionStatus.RUNNING,
    DeletionStatus.FAILED,
})


class DeletionStep(BaseModel):
    """Progress of one table's cleanup inside a deletion job."""

    name: str
    status: DeletionStepStatus = DeletionStepStatus.PENDING
    deleted_count: int = Field(default=0, ge=0)
    attempts: int = Field(default=0, ge=0)
    error: Optional[str] = None
    completed_at: Optional[datetime] = None


class DeletionJob(FinanceRecord):
    """
    A request to delete everything a user owns.

    The snapshot holds the user's rows (JSON form, keyed by table name)
    from before the first destructive step. It exists only while the
    job can still be cancelled and is dropped on completion.
    """

    user_id: UUID
    status: DeletionStatus = DeletionStatus.PENDING
    reason: Optional[str] = Field(default=None, max_length=500)
    steps: list[DeletionStep] = Field(default_factory=list)
    snapshot: Optional[dict[str, list[dict[str, Any]]]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_DELETION_STATUSES

    def next_step(self) -> Optional[DeletionStep]:
        for step in self.steps:
            if step.status != DeletionStepStatus.COMPLETED:
                return step
        return None

    def step(self, name: str) -> DeletionStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)


class DeletionReport(BaseModel):
    """Outcome of running (or cancelling) a deletion job."""

    job_id: UUID
    user_id: UUID
    status: DeletionStatus
    deleted_counts: dict[str, int] = Field(default_factory=dict)
    restored_counts: dict[str, int] = Field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted_counts.values())


# =============================================================================
# LAST WISH
# =============================================================================

class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class LastWishRecipient(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    name: Optional[str] = None
    relationship: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError(f"Invalid recipient email: {v}")
        return v.strip()


class LastWishIncludeData(BaseModel):
    """Which parts of the user's data each recipient receives."""

    accounts: bool = True
    transactions: bool = True
    purchases: bool = True
    lend_borrow: bool = True
    savings: bool = True


class LastWishSettings(FinanceRecord):
    user_id: UUID
    is_enabled: bool = False
    is_active: bool = Field(
        default=True,
        description="False once the data has been delivered"
    )
    check_in_frequency: int = Field(
        default=30,
        ge=1,
        le=3650,
        description="Days allowed between check-ins"
    )
    last_check_in: Optional[datetime] = None
    recipients: list[LastWishRecipient] = Field(default_factory=list)
    include_data: LastWishIncludeData = Field(default_factory=LastWishIncludeData)
    message: Optional[str] = Field(default=None, max_length=5000)

    @property
    def next_check_in_due(self) -> Optional[datetime]:
        if self.last_check_in is None:
            return None
        return self.last_check_in + timedelta(days=self.check_in_frequency)


class LastWishDelivery(FinanceRecord):
    user_id: UUID
    recipient_email: str
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None


class OverdueUser(BaseModel):
    user_id: UUID
    email: str
    days_overdue: int = Field(ge=0)

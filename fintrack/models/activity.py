"""
Activity History Models for fintrack

Every create, update and delete of a user's financial records is
recorded as an ActivityEntry. This provides:
1. A change history the user can browse (what changed, when)
2. Debugging information when balances look wrong
3. A trail for account deletion and last-wish deliveries

DESIGN DECISION: Updates store only the fields that changed.
A save that changes nothing writes nothing.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


# Fields that change on every save and carry no meaning in a diff
IGNORED_DIFF_FIELDS = frozenset({"updated_at", "calculated_balance"})


class ActivityType(str, Enum):
    """
    Types of activity we record.

    Entity lifecycle events follow the <ENTITY>_<ACTION> pattern.
    """
    # Accounts
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_UPDATED = "ACCOUNT_UPDATED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"

    # Transactions
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_UPDATED = "TRANSACTION_UPDATED"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    TRANSFER_CREATED = "TRANSFER_CREATED"
    DPS_TRANSFER_CREATED = "DPS_TRANSFER_CREATED"

    # Purchases
    PURCHASE_CREATED = "PURCHASE_CREATED"
    PURCHASE_UPDATED = "PURCHASE_UPDATED"
    PURCHASE_DELETED = "PURCHASE_DELETED"
    PURCHASE_CATEGORY_CREATED = "PURCHASE_CATEGORY_CREATED"
    PURCHASE_CATEGORY_UPDATED = "PURCHASE_CATEGORY_UPDATED"
    PURCHASE_CATEGORY_DELETED = "PURCHASE_CATEGORY_DELETED"

    # Lend / borrow
    LEND_BORROW_CREATED = "LEND_BORROW_CREATED"
    LEND_BORROW_UPDATED = "LEND_BORROW_UPDATED"
    LEND_BORROW_DELETED = "LEND_BORROW_DELETED"
    LEND_BORROW_RETURN_RECORDED = "LEND_BORROW_RETURN_RECORDED"

    # Donations & savings
    DONATION_SAVING_CREATED = "DONATION_SAVING_CREATED"
    DONATION_SAVING_UPDATED = "DONATION_SAVING_UPDATED"
    DONATION_SAVING_DELETED = "DONATION_SAVING_DELETED"

    # Savings goals
    SAVINGS_GOAL_CREATED = "SAVINGS_GOAL_CREATED"
    SAVINGS_GOAL_UPDATED = "SAVINGS_GOAL_UPDATED"
    SAVINGS_GOAL_DELETED = "SAVINGS_GOAL_DELETED"
    SAVINGS_GOAL_DEPOSIT = "SAVINGS_GOAL_DEPOSIT"

    # Profiles
    PROFILE_REGISTERED = "PROFILE_REGISTERED"
    PROFILE_UPDATED = "PROFILE_UPDATED"

    # Account deletion workflow
    USER_DELETION_REQUESTED = "USER_DELETION_REQUESTED"
    USER_DELETION_STEP_COMPLETED = "USER_DELETION_STEP_COMPLETED"
    USER_DELETION_STEP_FAILED = "USER_DELETION_STEP_FAILED"
    USER_DELETION_COMPLETED = "USER_DELETION_COMPLETED"
    USER_DELETION_CANCELLED = "USER_DELETION_CANCELLED"

    # Last wish
    LAST_WISH_CHECK_IN = "LAST_WISH_CHECK_IN"
    LAST_WISH_DELIVERED = "LAST_WISH_DELIVERED"

    # System events
    SYSTEM_ERROR = "SYSTEM_ERROR"


class ActivitySeverity(str, Enum):
    """Severity level for activity entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# Entity type name -> (created, updated, deleted)
ENTITY_ACTIVITY_TYPES: dict[str, tuple[ActivityType, ActivityType, ActivityType]] = {
    "account": (
        ActivityType.ACCOUNT_CREATED,
        ActivityType.ACCOUNT_UPDATED,
        ActivityType.ACCOUNT_DELETED,
    ),
    "transaction": (
        ActivityType.TRANSACTION_CREATED,
        ActivityType.TRANSACTION_UPDATED,
        ActivityType.TRANSACTION_DELETED,
    ),
    "purchase": (
        ActivityType.PURCHASE_CREATED,
        ActivityType.PURCHASE_UPDATED,
        ActivityType.PURCHASE_DELETED,
    ),
    "purchase_category": (
        ActivityType.PURCHASE_CATEGORY_CREATED,
        ActivityType.PURCHASE_CATEGORY_UPDATED,
        ActivityType.PURCHASE_CATEGORY_DELETED,
    ),
    "lend_borrow": (
        ActivityType.LEND_BORROW_CREATED,
        ActivityType.LEND_BORROW_UPDATED,
        ActivityType.LEND_BORROW_DELETED,
    ),
    "donation_saving": (
        ActivityType.DONATION_SAVING_CREATED,
        ActivityType.DONATION_SAVING_UPDATED,
        ActivityType.DONATION_SAVING_DELETED,
    ),
    "savings_goal": (
        ActivityType.SAVINGS_GOAL_CREATED,
        ActivityType.SAVINGS_GOAL_UPDATED,
        ActivityType.SAVINGS_GOAL_DELETED,
    ),
}

# How an entity type reads in descriptions, where "_" -> "/" does not fit
ENTITY_LABELS = {
    "purchase_category": "purchase category",
    "savings_goal": "savings goal",
}


def entity_label(entity_type: str) -> str:
    return ENTITY_LABELS.get(entity_type, entity_type.replace("_", "/"))


class ActivityEntry(BaseModel):
    """
    A single activity history entry.

    The changes payload is:
    - created: {"new": {...full record...}}
    - updated: {"old": {...changed fields...}, "new": {...changed fields...}}
    - deleted: {"old": {...full record...}}
    """

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the activity occurred (UTC)"
    )

    # Owner. None for entries about system jobs rather than user data.
    user_id: Optional[UUID] = None

    # Classification
    activity_type: ActivityType
    severity: ActivitySeverity = ActivitySeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'purchase', 'deletion_job')"
    )
    entity_id: Optional[UUID] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related entries (e.g., both legs of a transfer)"
    )
    transaction_id: Optional[str] = Field(
        default=None,
        description="Human-facing transaction id of the user action"
    )

    description: str = Field(
        ...,
        max_length=500,
    )
    changes: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "activity_id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "activity_type": self.activity_type.value,
            "severity": self.severity.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "transaction_id": self.transaction_id,
            "description": self.description,
            "changed_fields": sorted(self.changes.get("new", self.changes.get("old", {}))),
            "error_message": self.error_message,
        }

    @property
    def changed_fields(self) -> list[str]:
        if "old" in self.changes and "new" in self.changes:
            return sorted(set(self.changes["old"]) | set(self.changes["new"]))
        return []


def _as_json_dict(record: Union[BaseModel, dict, None]) -> dict:
    """Normalize a record to a JSON-compatible dict."""
    if record is None:
        return {}
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    # Round-trip plain dicts so UUIDs, dates and Decimals become JSON values
    return json.loads(json.dumps(record, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def diff_records(
    old: Union[BaseModel, dict, None],
    new: Union[BaseModel, dict, None],
) -> dict[str, dict]:
    """
    Compute the changed fields between two versions of a record.

    Returns {"old": {...}, "new": {...}} holding only the fields whose
    values differ, or an empty dict when nothing meaningful changed.
    Fields present on only one side count as changed.
    """
    before = _as_json_dict(old)
    after = _as_json_dict(new)

    old_changed: dict[str, Any] = {}
    new_changed: dict[str, Any] = {}

    for key in sorted(set(before) | set(after)):
        if key in IGNORED_DIFF_FIELDS:
            continue
        if before.get(key) != after.get(key):
            old_changed[key] = before.get(key)
            new_changed[key] = after.get(key)

    if not new_changed:
        return {}
    return {"old": old_changed, "new": new_changed}


class ActivityEntryBuilder:
    """
    Helper class to build activity entries with common patterns.

    Usage:
        entry = ActivityEntryBuilder.created("transaction", tx, user_id)
        entry = ActivityEntryBuilder.updated("purchase", old, new, user_id)
    """

    @staticmethod
    def _types_for(entity_type: str) -> tuple[ActivityType, ActivityType, ActivityType]:
        try:
            return ENTITY_ACTIVITY_TYPES[entity_type]
        except KeyError:
            raise ValueError(f"No activity types registered for entity: {entity_type}")

    @staticmethod
    def created(
        entity_type: str,
        record: BaseModel,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
        transaction_id: Optional[str] = None,
    ) -> ActivityEntry:
        created_type, _, _ = ActivityEntryBuilder._types_for(entity_type)
        label = entity_label(entity_type)
        return ActivityEntry(
            user_id=user_id,
            activity_type=created_type,
            entity_type=entity_type,
            entity_id=getattr(record, "id", None),
            correlation_id=correlation_id,
            transaction_id=transaction_id,
            description=f"New {label} created",
            changes={"new": _as_json_dict(record)},
        )

    @staticmethod
    def updated(
        entity_type: str,
        old: BaseModel,
        new: BaseModel,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
        transaction_id: Optional[str] = None,
    ) -> Optional[ActivityEntry]:
        """Returns None when the update changed nothing."""
        changes = diff_records(old, new)
        if not changes:
            return None
        _, updated_type, _ = ActivityEntryBuilder._types_for(entity_type)
        label = entity_label(entity_type).capitalize()
        fields = ", ".join(sorted(changes["new"]))
        return ActivityEntry(
            user_id=user_id,
            activity_type=updated_type,
            entity_type=entity_type,
            entity_id=getattr(new, "id", None),
            correlation_id=correlation_id,
            transaction_id=transaction_id,
            description=f"{label} updated: {fields}"[:500],
            changes=changes,
        )

    @staticmethod
    def deleted(
        entity_type: str,
        record: BaseModel,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
        transaction_id: Optional[str] = None,
    ) -> ActivityEntry:
        _, _, deleted_type = ActivityEntryBuilder._types_for(entity_type)
        label = entity_label(entity_type).capitalize()
        return ActivityEntry(
            user_id=user_id,
            activity_type=deleted_type,
            entity_type=entity_type,
            entity_id=getattr(record, "id", None),
            correlation_id=correlation_id,
            transaction_id=transaction_id,
            description=f"{label} deleted",
            changes={"old": _as_json_dict(record)},
        )

    @staticmethod
    def transfer_created(
        user_id: UUID,
        transfer_id: UUID,
        from_name: str,
        to_name: str,
        details: dict,
        transaction_id: str,
        dps: bool = False,
    ) -> ActivityEntry:
        return ActivityEntry(
            user_id=user_id,
            activity_type=(
                ActivityType.DPS_TRANSFER_CREATED if dps else ActivityType.TRANSFER_CREATED
            ),
            entity_type="transfer",
            entity_id=transfer_id,
            correlation_id=transfer_id,
            transaction_id=transaction_id,
            description=f"Transfer created: {from_name} -> {to_name}",
            changes={"new": _as_json_dict(details)},
        )

    @staticmethod
    def lend_borrow_return(
        user_id: UUID,
        record_id: UUID,
        person_name: str,
        amount: Decimal,
        remaining: Decimal,
        settled: bool,
    ) -> ActivityEntry:
        status = "settled" if settled else f"{remaining} remaining"
        return ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.LEND_BORROW_RETURN_RECORDED,
            entity_type="lend_borrow",
            entity_id=record_id,
            description=f"Return of {amount} recorded for {person_name} ({status})",
            changes={"new": {"amount": str(amount), "remaining": str(remaining)}},
        )

    @staticmethod
    def savings_goal_deposit(
        user_id: UUID,
        goal_id: UUID,
        goal_name: str,
        amount: Decimal,
        current_amount: Decimal,
        transfer_id: UUID,
        transaction_id: str,
    ) -> ActivityEntry:
        return ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.SAVINGS_GOAL_DEPOSIT,
            entity_type="savings_goal",
            entity_id=goal_id,
            correlation_id=transfer_id,
            transaction_id=transaction_id,
            description=f"Saved {amount} towards {goal_name}",
            changes={"new": {"amount": str(amount), "current_amount": str(current_amount)}},
        )

    @staticmethod
    def profile_registered(user_id: UUID, email: str) -> ActivityEntry:
        return ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.PROFILE_REGISTERED,
            entity_type="profile",
            entity_id=user_id,
            description=f"Profile registered: {email}",
        )

    @staticmethod
    def deletion_event(
        activity_type: ActivityType,
        job_id: UUID,
        description: str,
        details: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> ActivityEntry:
        """
        Entries about a deletion job are keyed to the job, not the user,
        so they survive the activity_history step of that job.
        """
        failed = activity_type == ActivityType.USER_DELETION_STEP_FAILED
        return ActivityEntry(
            user_id=None,
            activity_type=activity_type,
            severity=ActivitySeverity.ERROR if failed else ActivitySeverity.INFO,
            entity_type="deletion_job",
            entity_id=job_id,
            correlation_id=job_id,
            description=description,
            changes={"new": _as_json_dict(details)} if details else {},
            error_message=error_message,
        )

    @staticmethod
    def last_wish_check_in(user_id: UUID, settings_id: UUID) -> ActivityEntry:
        return ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.LAST_WISH_CHECK_IN,
            entity_type="last_wish",
            entity_id=settings_id,
            description="Last wish check-in recorded",
        )

    @staticmethod
    def last_wish_delivered(
        user_id: UUID,
        settings_id: UUID,
        sent: list[str],
        failed: list[str],
    ) -> ActivityEntry:
        return ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.LAST_WISH_DELIVERED,
            severity=ActivitySeverity.WARNING if failed else ActivitySeverity.INFO,
            entity_type="last_wish",
            entity_id=settings_id,
            description=f"Last wish delivered to {len(sent)} of {len(sent) + len(failed)} recipients",
            changes={"new": {"sent": sent, "failed": failed}},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        user_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEntry:
        return ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.SYSTEM_ERROR,
            severity=ActivitySeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            changes={"new": _as_json_dict(details)} if details else {},
            correlation_id=correlation_id,
        )

"""
Activity Logger

DESIGN DECISION: Every mutation of a user's financial records is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. User can see history of their changes

The activity logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Skips updates that changed nothing
- Supports correlation IDs to trace related entries
"""

from typing import Iterable, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel

from fintrack.models.activity import (
    ActivityEntry,
    ActivityEntryBuilder,
    ActivitySeverity,
    ActivityType,
)
from fintrack.services.storage import ActivityStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


UPDATE_HISTORY_TYPES = (
    ActivityType.TRANSACTION_UPDATED,
    ActivityType.PURCHASE_UPDATED,
)


class ActivityLogger:
    """
    Central activity history service.

    Logs entries both to:
    1. Structured local log (for debugging)
    2. The activity_history table (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[ActivityStorageInterface] = None,
    ):
        """
        Initialize activity logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, entry: ActivityEntry) -> bool:
        """
        Log an activity entry.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = entry.to_log_dict()

        if entry.severity in (ActivitySeverity.ERROR, ActivitySeverity.CRITICAL):
            self._logger.error("activity", **log_dict)
        elif entry.severity == ActivitySeverity.WARNING:
            self._logger.warning("activity", **log_dict)
        elif entry.severity == ActivitySeverity.DEBUG:
            self._logger.debug("activity", **log_dict)
        else:
            self._logger.info("activity", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_entry(entry)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "activity_storage_failed",
                    error=str(e),
                    activity_id=str(entry.id),
                )
                return False

        return True

    async def record_created(
        self,
        entity_type: str,
        record: BaseModel,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
        transaction_id: Optional[str] = None,
    ) -> ActivityEntry:
        entry = ActivityEntryBuilder.created(
            entity_type, record, user_id,
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        )
        await self.log(entry)
        return entry

    async def record_updated(
        self,
        entity_type: str,
        old: BaseModel,
        new: BaseModel,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
        transaction_id: Optional[str] = None,
    ) -> Optional[ActivityEntry]:
        """Log an update. Returns None, writing nothing, if no field changed."""
        entry = ActivityEntryBuilder.updated(
            entity_type, old, new, user_id,
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        )
        if entry is None:
            return None
        await self.log(entry)
        return entry

    async def record_deleted(
        self,
        entity_type: str,
        record: BaseModel,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
        transaction_id: Optional[str] = None,
    ) -> ActivityEntry:
        entry = ActivityEntryBuilder.deleted(
            entity_type, record, user_id,
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        )
        await self.log(entry)
        return entry

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        user_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        entry = ActivityEntryBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(entry)

    # =========================================================================
    # HISTORY QUERIES
    # =========================================================================

    async def history_for_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[ActivityEntry]:
        """All entries for one record, oldest first."""
        if not self._storage:
            return []
        return await self._storage.get_entries_by_entity(entity_type, entity_id)

    async def history_for_user(
        self,
        user_id: UUID,
        entity_types: Optional[Iterable[str]] = None,
        activity_types: Optional[Iterable[ActivityType]] = None,
        limit: int = 100,
    ) -> list[ActivityEntry]:
        """A user's entries, newest first, optionally narrowed by type."""
        if not self._storage:
            return []
        entries = await self._storage.get_entries_by_user(user_id)
        if entity_types is not None:
            wanted_entities = set(entity_types)
            entries = [e for e in entries if e.entity_type in wanted_entities]
        if activity_types is not None:
            wanted_types = set(activity_types)
            entries = [e for e in entries if e.activity_type in wanted_types]
        return entries[:limit]

    async def update_history(
        self,
        user_id: UUID,
        limit: int = 100,
    ) -> list[ActivityEntry]:
        """Transaction and purchase edits, newest first."""
        return await self.history_for_user(
            user_id,
            activity_types=UPDATE_HISTORY_TYPES,
            limit=limit,
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related entries.

    Use this at the start of a multi-record action (e.g., a transfer).
    Pass it through all subsequent operations.
    """
    return uuid4()

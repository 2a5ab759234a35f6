"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the same services on SQL, Google Sheets or memory
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Every table is addressed through the Table registry and rows are the
pydantic records themselves.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from fintrack.models.activity import ActivityEntry
from fintrack.models.finance import Profile
from fintrack.models.tables import Table


class FinanceStorageInterface(ABC):
    """
    Abstract interface for record storage.

    Criteria and filters map field names to values. A list, tuple or
    set value matches any of its members; None matches a missing value.
    """

    @abstractmethod
    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        """
        Insert a new record.

        Raises:
            DuplicateError: If a record with the same id already exists.
                The SQL backend also rejects a second profile email.
            IntegrityError: If a referenced parent row is missing
        """
        pass

    @abstractmethod
    async def get(self, table: Table, record_id: UUID) -> Optional[BaseModel]:
        """Retrieve a record by id, or None if it doesn't exist."""
        pass

    @abstractmethod
    async def update(self, table: Table, record: BaseModel) -> BaseModel:
        """
        Replace an existing record.

        Raises:
            NotFoundError: If no record has this id
        """
        pass

    @abstractmethod
    async def delete(self, table: Table, record_id: UUID) -> bool:
        """Delete a record by id. Returns False if it didn't exist."""
        pass

    @abstractmethod
    async def list_records(
        self,
        table: Table,
        user_id: Optional[UUID] = None,
        filters: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[BaseModel]:
        """
        List records with optional filters.

        Args:
            table: Table to read
            user_id: Only rows owned by this user
            filters: Field criteria
            limit: Maximum number of results
            offset: Number of results to skip
            order_by: Field to sort on (defaults to creation time)
            descending: Sort newest/largest first

        Returns:
            List of matching records
        """
        pass

    @abstractmethod
    async def delete_where(self, table: Table, **criteria: Any) -> int:
        """
        Delete every row matching the criteria.

        Returns the number of rows deleted. Deleting nothing is not
        an error, which keeps cleanup steps idempotent.
        """
        pass

    @abstractmethod
    async def count(self, table: Table, **criteria: Any) -> int:
        """Count rows matching the criteria."""
        pass

    @abstractmethod
    async def find_profile_by_email(self, email: str) -> Optional[Profile]:
        """
        Find a profile by email, ignoring case and surrounding whitespace.
        """
        pass


class ActivityStorageInterface(ABC):
    """
    Abstract interface for activity history storage.

    Callers only append. The user deletion workflow is the one place
    entries are removed.
    """

    @abstractmethod
    async def append_entry(self, entry: ActivityEntry) -> bool:
        """Append an entry. Returns True if stored."""
        pass

    @abstractmethod
    async def get_entries_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[ActivityEntry]:
        """Get all entries for one entity in chronological order."""
        pass

    @abstractmethod
    async def get_entries_by_user(
        self,
        user_id: UUID,
        limit: Optional[int] = None,
    ) -> list[ActivityEntry]:
        """Get a user's entries, newest first."""
        pass

    @abstractmethod
    async def get_recent_entries(
        self,
        limit: int = 100,
    ) -> list[ActivityEntry]:
        """Get the most recent entries (newest first)."""
        pass

    @abstractmethod
    async def delete_entries_for_user(self, user_id: UUID) -> int:
        """Remove every entry owned by a user. Returns the count removed."""
        pass


class TableActivityStorage(ActivityStorageInterface):
    """
    Activity storage on top of the activity_history table.

    Mixed into every record backend so entries live next to the data
    they describe.
    """

    async def append_entry(self, entry: ActivityEntry) -> bool:
        await self.insert(Table.ACTIVITY_HISTORY, entry)
        return True

    async def get_entries_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[ActivityEntry]:
        return await self.list_records(
            Table.ACTIVITY_HISTORY,
            filters={"entity_type": entity_type, "entity_id": entity_id},
            order_by="timestamp",
        )

    async def get_entries_by_user(
        self,
        user_id: UUID,
        limit: Optional[int] = None,
    ) -> list[ActivityEntry]:
        return await self.list_records(
            Table.ACTIVITY_HISTORY,
            user_id=user_id,
            limit=limit,
            order_by="timestamp",
            descending=True,
        )

    async def get_recent_entries(
        self,
        limit: int = 100,
    ) -> list[ActivityEntry]:
        return await self.list_records(
            Table.ACTIVITY_HISTORY,
            limit=limit,
            order_by="timestamp",
            descending=True,
        )

    async def delete_entries_for_user(self, user_id: UUID) -> int:
        return await self.delete_where(Table.ACTIVITY_HISTORY, user_id=user_id)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class IntegrityError(StorageError):
    """A write would leave a row pointing at a missing parent."""
    pass

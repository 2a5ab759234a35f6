"""
In-Memory Storage Implementation

Used by tests and by the default "memory" backend. Records are deep
copied on the way in and out so callers can never mutate stored state
by accident.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from fintrack.models.finance import Profile
from fintrack.models.tables import Table, model_for, owner_field
from fintrack.services.storage.codec import (
    default_order_field,
    matches,
    paginate,
    sort_records,
)
from fintrack.services.storage.interface import (
    DuplicateError,
    FinanceStorageInterface,
    NotFoundError,
    StorageError,
    TableActivityStorage,
)


class InMemoryStorage(FinanceStorageInterface, TableActivityStorage):
    """Dict of table -> {id: record}."""

    def __init__(self):
        self._tables: dict[Table, dict[UUID, BaseModel]] = {
            table: {} for table in Table
        }

    @staticmethod
    def _check_type(table: Table, record: BaseModel) -> None:
        expected = model_for(table)
        if not isinstance(record, expected):
            raise StorageError(
                f"{table.value} stores {expected.__name__}, got {type(record).__name__}"
            )

    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        self._check_type(table, record)
        rows = self._tables[table]
        if record.id in rows:
            raise DuplicateError(f"{table.value} already has a record {record.id}")
        rows[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def get(self, table: Table, record_id: UUID) -> Optional[BaseModel]:
        record = self._tables[table].get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    async def update(self, table: Table, record: BaseModel) -> BaseModel:
        self._check_type(table, record)
        rows = self._tables[table]
        if record.id not in rows:
            raise NotFoundError(f"{table.value} has no record {record.id}")
        rows[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def delete(self, table: Table, record_id: UUID) -> bool:
        return self._tables[table].pop(record_id, None) is not None

    def _select(
        self,
        table: Table,
        user_id: Optional[UUID],
        criteria: dict[str, Any],
    ) -> list[BaseModel]:
        criteria = dict(criteria)
        if user_id is not None:
            owner = owner_field(table)
            if owner is None:
                raise StorageError(f"{table.value} has no owner column")
            criteria[owner] = user_id
        return [r for r in self._tables[table].values() if matches(r, criteria)]

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
        records = self._select(table, user_id, filters or {})
        records = sort_records(
            records,
            order_by or default_order_field(model_for(table)),
            descending,
        )
        return [r.model_copy(deep=True) for r in paginate(records, limit, offset)]

    async def delete_where(self, table: Table, **criteria: Any) -> int:
        doomed = self._select(table, None, criteria)
        for record in doomed:
            del self._tables[table][record.id]
        return len(doomed)

    async def count(self, table: Table, **criteria: Any) -> int:
        return len(self._select(table, None, criteria))

    async def find_profile_by_email(self, email: str) -> Optional[Profile]:
        wanted = email.strip().lower()
        for profile in self._tables[Table.PROFILES].values():
            if profile.email.strip().lower() == wanted:
                return profile.model_copy(deep=True)
        return None

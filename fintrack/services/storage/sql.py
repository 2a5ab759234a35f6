"""
SQL Storage Implementation (SQLAlchemy Core)

DESIGN DECISION: Tables are derived from the pydantic models so the
schema can never drift from the records it stores. Relationships are
declared explicitly as foreign keys; the deletion workflow relies on
them to prove children are gone before their parents.

Each call runs in its own transaction (engine.begin()). There is no
cross-call unit of work: multi-row operations are ordered so that a
crash leaves nothing dangling.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

import sqlalchemy as sa
import structlog
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fintrack.models.finance import Profile
from fintrack.models.tables import TABLE_MODELS, Table, model_for, owner_field
from fintrack.services.storage.codec import (
    default_order_field,
    is_json_annotation,
    json_fields,
    unwrap_optional,
)
from fintrack.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    IntegrityError,
    NotFoundError,
    StorageError,
    TableActivityStorage,
)


logger = structlog.get_logger()

metadata = sa.MetaData()

# (table, column) -> referenced "table.column". Activity history and
# deletion jobs carry no user FK: they must outlive the profile.
FOREIGN_KEYS: dict[tuple[Table, str], str] = {
    (Table.ACCOUNTS, "user_id"): "profiles.id",
    (Table.TRANSACTIONS, "user_id"): "profiles.id",
    (Table.TRANSACTIONS, "account_id"): "accounts.id",
    (Table.PURCHASES, "user_id"): "profiles.id",
    (Table.PURCHASE_CATEGORIES, "user_id"): "profiles.id",
    (Table.PURCHASE_ATTACHMENTS, "user_id"): "profiles.id",
    (Table.PURCHASE_ATTACHMENTS, "purchase_id"): "purchases.id",
    (Table.LEND_BORROW, "user_id"): "profiles.id",
    (Table.LEND_BORROW_RETURNS, "lend_borrow_id"): "lend_borrow.id",
    (Table.DONATION_SAVING_RECORDS, "user_id"): "profiles.id",
    (Table.DONATION_SAVING_RECORDS, "transaction_id"): "transactions.id",
    (Table.SAVINGS_GOALS, "user_id"): "profiles.id",
    (Table.SAVINGS_GOALS, "source_account_id"): "accounts.id",
    (Table.SAVINGS_GOALS, "savings_account_id"): "accounts.id",
    (Table.NOTIFICATIONS, "user_id"): "profiles.id",
    (Table.LAST_WISH_SETTINGS, "user_id"): "profiles.id",
    (Table.LAST_WISH_DELIVERIES, "user_id"): "profiles.id",
}


def _column_type(annotation: Any) -> sa.types.TypeEngine:
    if is_json_annotation(annotation):
        return sa.JSON()
    inner, _ = unwrap_optional(annotation)
    if isinstance(inner, type):
        if issubclass(inner, Enum):
            return sa.String(32)
        if issubclass(inner, bool):
            return sa.Boolean()
        if issubclass(inner, int):
            return sa.Integer()
        if issubclass(inner, Decimal):
            return sa.Numeric(18, 4)
        if issubclass(inner, UUID):
            return sa.Uuid()
        if issubclass(inner, datetime):
            return sa.DateTime()
        if issubclass(inner, date):
            return sa.Date()
    return sa.Text()


def _build_table(table: Table) -> sa.Table:
    model = TABLE_MODELS[table]
    columns = []
    for name, field in model.model_fields.items():
        args: list[Any] = [name, _column_type(field.annotation)]
        target = FOREIGN_KEYS.get((table, name))
        if target is not None:
            args.append(sa.ForeignKey(target))
        columns.append(
            sa.Column(
                *args,
                primary_key=(name == "id"),
                nullable=(name != "id"),
            )
        )
    return sa.Table(table.value, metadata, *columns)


SQL_TABLES: dict[Table, sa.Table] = {table: _build_table(table) for table in Table}

sa.Index(
    "ix_profiles_email_lower",
    sa.func.lower(SQL_TABLES[Table.PROFILES].c.email),
    unique=True,
)

for _table, _sql_table in SQL_TABLES.items():
    _owner = owner_field(_table)
    if _owner and _owner != "id":
        sa.Index(f"ix_{_table.value}_{_owner}", _sql_table.c[_owner])


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sql_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


_retry_transient = retry(
    retry=retry_if_exception_type(sa.exc.OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class SqlAlchemyStorage(FinanceStorageInterface, TableActivityStorage):
    """
    SQL implementation of record and activity storage.

    Works with any SQLAlchemy-supported database; SQLite gets foreign
    key enforcement switched on per connection.
    """

    def __init__(self, engine: sa.Engine, create_tables: bool = True):
        self._engine = engine
        if engine.dialect.name == "sqlite":
            sa.event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        if create_tables:
            self.create_tables()

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "SqlAlchemyStorage":
        try:
            engine = sa.create_engine(url, echo=echo)
        except sa.exc.ArgumentError as e:
            raise ConnectionError(f"Invalid database URL: {e}")
        return cls(engine)

    def create_tables(self) -> None:
        try:
            metadata.create_all(self._engine)
        except sa.exc.SQLAlchemyError as e:
            raise ConnectionError(f"Failed to create tables: {e}")

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    @staticmethod
    def _record_to_values(record: BaseModel) -> dict[str, Any]:
        nested = json_fields(type(record))
        python_data = record.model_dump()
        json_data = record.model_dump(mode="json") if nested else {}
        return {
            name: json_data[name] if name in nested else _sql_value(python_data[name])
            for name in python_data
        }

    @staticmethod
    def _row_to_record(table: Table, row: sa.RowMapping) -> BaseModel:
        return model_for(table).model_validate(dict(row))

    def _where(
        self,
        sql_table: sa.Table,
        criteria: dict[str, Any],
    ) -> list[sa.ColumnElement]:
        clauses = []
        for field, expected in criteria.items():
            column = sql_table.c[field]
            if isinstance(expected, (list, tuple, set, frozenset)):
                clauses.append(column.in_([_sql_value(v) for v in expected]))
            elif expected is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == _sql_value(expected))
        return clauses

    # =========================================================================
    # EXECUTION
    # =========================================================================

    @_retry_transient
    def _execute(self, statement: sa.Executable) -> Any:
        with self._engine.begin() as conn:
            result = conn.execute(statement)
            if result.returns_rows:
                # Buffer before the connection is released
                return result.mappings().all()
            return result.rowcount

    def _run(self, statement: sa.Executable, action: str) -> Any:
        try:
            return self._execute(statement)
        except sa.exc.IntegrityError as e:
            message = str(e.orig).lower()
            if "unique" in message or "duplicate" in message:
                raise DuplicateError(f"Failed to {action}: {e.orig}")
            raise IntegrityError(f"Failed to {action}: {e.orig}")
        except sa.exc.OperationalError as e:
            raise ConnectionError(f"Failed to {action}: {e}")
        except sa.exc.SQLAlchemyError as e:
            raise StorageError(f"Failed to {action}: {e}")

    # =========================================================================
    # INTERFACE
    # =========================================================================

    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        sql_table = SQL_TABLES[table]
        self._run(
            sa.insert(sql_table).values(**self._record_to_values(record)),
            f"insert into {table.value}",
        )
        return record

    async def get(self, table: Table, record_id: UUID) -> Optional[BaseModel]:
        sql_table = SQL_TABLES[table]
        rows = self._run(
            sa.select(sql_table).where(sql_table.c.id == record_id),
            f"read {table.value}",
        )
        return self._row_to_record(table, rows[0]) if rows else None

    async def update(self, table: Table, record: BaseModel) -> BaseModel:
        sql_table = SQL_TABLES[table]
        values = self._record_to_values(record)
        values.pop("id")
        updated = self._run(
            sa.update(sql_table).where(sql_table.c.id == record.id).values(**values),
            f"update {table.value}",
        )
        if not updated:
            raise NotFoundError(f"{table.value} has no record {record.id}")
        return record

    async def delete(self, table: Table, record_id: UUID) -> bool:
        sql_table = SQL_TABLES[table]
        deleted = self._run(
            sa.delete(sql_table).where(sql_table.c.id == record_id),
            f"delete from {table.value}",
        )
        return deleted > 0

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
        sql_table = SQL_TABLES[table]
        criteria = dict(filters or {})
        if user_id is not None:
            owner = owner_field(table)
            if owner is None:
                raise StorageError(f"{table.value} has no owner column")
            criteria[owner] = user_id

        order_column = sql_table.c[order_by or default_order_field(model_for(table))]
        ordering = order_column.desc() if descending else order_column.asc()

        statement = (
            sa.select(sql_table)
            .where(*self._where(sql_table, criteria))
            .order_by(order_column.is_(None), ordering)
            .offset(offset)
        )
        if limit is not None:
            statement = statement.limit(limit)

        rows = self._run(statement, f"list {table.value}")
        return [self._row_to_record(table, row) for row in rows]

    async def delete_where(self, table: Table, **criteria: Any) -> int:
        sql_table = SQL_TABLES[table]
        deleted = self._run(
            sa.delete(sql_table).where(*self._where(sql_table, criteria)),
            f"delete from {table.value}",
        )
        logger.debug("sql_delete_where", table=table.value, deleted=deleted)
        return deleted

    async def count(self, table: Table, **criteria: Any) -> int:
        sql_table = SQL_TABLES[table]
        rows = self._run(
            sa.select(sa.func.count().label("n"))
            .select_from(sql_table)
            .where(*self._where(sql_table, criteria)),
            f"count {table.value}",
        )
        return rows[0]["n"]

    async def find_profile_by_email(self, email: str) -> Optional[Profile]:
        profiles = SQL_TABLES[Table.PROFILES]
        rows = self._run(
            sa.select(profiles).where(
                sa.func.lower(sa.func.trim(profiles.c.email)) == email.strip().lower()
            ),
            "find profile by email",
        )
        return self._row_to_record(Table.PROFILES, rows[0]) if rows else None

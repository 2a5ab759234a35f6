"""
Tests for the storage backends.

The same contract runs against the in-memory backend, SQLite through
SQLAlchemy, and Google Sheets backed by a fake worksheet.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from fintrack.models.activity import ActivityEntry, ActivityType
from fintrack.models.finance import (
    Account,
    AccountType,
    LendBorrow,
    LendBorrowReturn,
    LendBorrowType,
    Money,
    Profile,
    Transaction,
    TransactionType,
)
from fintrack.models.lifecycle import DeletionJob, DeletionStep
from fintrack.models.tables import Table, model_for
from fintrack.services.storage import (
    DuplicateError,
    GoogleSheetsStorage,
    InMemoryStorage,
    IntegrityError,
    NotFoundError,
    StorageError,
)
from fintrack.services.storage.codec import (
    columns_for,
    record_to_row,
    row_to_record,
    unwrap_optional,
)


# =============================================================================
# FAKE GOOGLE SHEETS
# =============================================================================

class FakeWorksheet:
    """The subset of gspread.Worksheet the storage uses."""

    def __init__(self, header):
        self.values = [list(header)]

    def get_all_values(self):
        return [list(row) for row in self.values]

    def append_row(self, row, value_input_option=None):
        self.values.append([str(v) for v in row])

    def update_cell(self, row, col, value):
        cells = self.values[row - 1]
        while len(cells) < col:
            cells.append("")
        cells[col - 1] = str(value)

    def delete_rows(self, index):
        del self.values[index - 1]


class FakeSheetsClient:
    def __init__(self):
        self.sheets = {}

    def get_table_sheet(self, table):
        if table not in self.sheets:
            self.sheets[table] = FakeWorksheet(columns_for(model_for(table)))
        return self.sheets[table]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(params=["memory", "sql", "sheets"])
def backend(request):
    if request.param == "memory":
        return InMemoryStorage()
    if request.param == "sql":
        return request.getfixturevalue("sql_storage")
    return GoogleSheetsStorage(FakeSheetsClient())


@pytest.fixture
async def owner(backend):
    profile = Profile(email="Owner@Example.com", full_name="Owner")
    await backend.insert(Table.PROFILES, profile)
    return profile


def make_account(user_id, name="Checking", **kwargs):
    return Account(user_id=user_id, name=name, type=AccountType.CHECKING, **kwargs)


# =============================================================================
# CONTRACT
# =============================================================================

class TestStorageContract:
    """Every backend behaves the same for these operations."""

    async def test_insert_and_get(self, backend, owner):
        account = make_account(owner.id, initial_balance=Decimal("12.50"))
        await backend.insert(Table.ACCOUNTS, account)

        loaded = await backend.get(Table.ACCOUNTS, account.id)
        assert loaded.id == account.id
        assert loaded.name == "Checking"
        assert loaded.initial_balance == Decimal("12.50")
        assert loaded.type == AccountType.CHECKING

    async def test_get_missing_returns_none(self, backend):
        assert await backend.get(Table.ACCOUNTS, uuid4()) is None

    async def test_insert_existing_id_is_duplicate(self, backend, owner):
        account = make_account(owner.id)
        await backend.insert(Table.ACCOUNTS, account)
        with pytest.raises(DuplicateError):
            await backend.insert(Table.ACCOUNTS, account)

    async def test_update(self, backend, owner):
        account = make_account(owner.id)
        await backend.insert(Table.ACCOUNTS, account)
        await backend.update(Table.ACCOUNTS, account.with_changes(name="Main", is_active=False))

        loaded = await backend.get(Table.ACCOUNTS, account.id)
        assert loaded.name == "Main"
        assert loaded.is_active is False

    async def test_update_missing_is_not_found(self, backend, owner):
        with pytest.raises(NotFoundError):
            await backend.update(Table.ACCOUNTS, make_account(owner.id))

    async def test_delete(self, backend, owner):
        account = make_account(owner.id)
        await backend.insert(Table.ACCOUNTS, account)
        assert await backend.delete(Table.ACCOUNTS, account.id) is True
        assert await backend.delete(Table.ACCOUNTS, account.id) is False
        assert await backend.get(Table.ACCOUNTS, account.id) is None

    async def test_nested_fields_round_trip(self, backend, owner):
        account = make_account(owner.id)
        await backend.insert(Table.ACCOUNTS, account)
        transaction = Transaction(
            user_id=owner.id,
            account_id=account.id,
            type=TransactionType.EXPENSE,
            amount=Decimal("3.20"),
            category="Food",
            tags=["lunch", "work"],
        )
        await backend.insert(Table.TRANSACTIONS, transaction)
        loaded = await backend.get(Table.TRANSACTIONS, transaction.id)
        assert loaded.tags == ["lunch", "work"]
        assert loaded.amount == Decimal("3.20")

    async def test_list_records_filters_and_orders(self, backend, owner):
        base = datetime(2024, 1, 1)
        for offset, name in enumerate(["A", "B", "C"]):
            await backend.insert(Table.ACCOUNTS, make_account(
                owner.id, name=name,
                is_active=name != "B",
                created_at=base + timedelta(days=offset),
            ))

        names = [a.name for a in await backend.list_records(Table.ACCOUNTS, user_id=owner.id)]
        assert names == ["A", "B", "C"]

        newest = await backend.list_records(
            Table.ACCOUNTS, user_id=owner.id, descending=True, limit=2
        )
        assert [a.name for a in newest] == ["C", "B"]

        active = await backend.list_records(
            Table.ACCOUNTS, user_id=owner.id, filters={"is_active": True}
        )
        assert [a.name for a in active] == ["A", "C"]

        picked = await backend.list_records(
            Table.ACCOUNTS, filters={"name": ["A", "B"]}, offset=1
        )
        assert [a.name for a in picked] == ["B"]

    async def test_list_records_scoped_to_owner(self, backend, owner):
        other = Profile(email="other@example.com")
        await backend.insert(Table.PROFILES, other)
        await backend.insert(Table.ACCOUNTS, make_account(owner.id))
        await backend.insert(Table.ACCOUNTS, make_account(other.id))

        mine = await backend.list_records(Table.ACCOUNTS, user_id=owner.id)
        assert len(mine) == 1
        assert mine[0].user_id == owner.id

    async def test_unowned_table_rejects_user_scope(self, backend, owner):
        with pytest.raises(StorageError):
            await backend.list_records(Table.LEND_BORROW_RETURNS, user_id=owner.id)

    async def test_delete_where_and_count(self, backend, owner):
        record = LendBorrow(
            user_id=owner.id,
            type=LendBorrowType.LEND,
            person_name="Sam",
            amount=Decimal("100"),
        )
        await backend.insert(Table.LEND_BORROW, record)
        for amount in ("10", "20", "30"):
            await backend.insert(Table.LEND_BORROW_RETURNS, LendBorrowReturn(
                lend_borrow_id=record.id, amount=Decimal(amount)
            ))

        assert await backend.count(Table.LEND_BORROW_RETURNS, lend_borrow_id=record.id) == 3
        deleted = await backend.delete_where(
            Table.LEND_BORROW_RETURNS, lend_borrow_id=[record.id]
        )
        assert deleted == 3
        assert await backend.count(Table.LEND_BORROW_RETURNS) == 0

    async def test_find_profile_by_email_ignores_case(self, backend, owner):
        found = await backend.find_profile_by_email("  owner@EXAMPLE.com ")
        assert found.id == owner.id
        assert await backend.find_profile_by_email("nobody@example.com") is None

    async def test_nested_model_fields_round_trip(self, backend, owner):
        job = DeletionJob(
            user_id=owner.id,
            steps=[DeletionStep(name="notifications"), DeletionStep(name="profile")],
            snapshot={"accounts": [{"name": "Checking"}]},
        )
        await backend.insert(Table.DELETION_JOBS, job)
        loaded = await backend.get(Table.DELETION_JOBS, job.id)
        assert [s.name for s in loaded.steps] == ["notifications", "profile"]
        assert loaded.snapshot == {"accounts": [{"name": "Checking"}]}


class TestActivityStorage:
    """Activity history storage on every backend."""

    async def test_entries_by_user_newest_first(self, backend, owner):
        start = datetime(2024, 5, 1)
        for minutes in (0, 5, 10):
            await backend.append_entry(ActivityEntry(
                user_id=owner.id,
                timestamp=start + timedelta(minutes=minutes),
                activity_type=ActivityType.ACCOUNT_UPDATED,
                description=f"update {minutes}",
            ))

        entries = await backend.get_entries_by_user(owner.id)
        assert [e.description for e in entries] == ["update 10", "update 5", "update 0"]
        assert len(await backend.get_entries_by_user(owner.id, limit=2)) == 2

    async def test_entries_by_entity(self, backend, owner):
        entity_id = uuid4()
        await backend.append_entry(ActivityEntry(
            user_id=owner.id,
            activity_type=ActivityType.PURCHASE_CREATED,
            entity_type="purchase",
            entity_id=entity_id,
            description="New purchase created",
        ))
        await backend.append_entry(ActivityEntry(
            user_id=owner.id,
            activity_type=ActivityType.PURCHASE_CREATED,
            entity_type="purchase",
            entity_id=uuid4(),
            description="Another purchase",
        ))
        entries = await backend.get_entries_by_entity("purchase", entity_id)
        assert [e.entity_id for e in entries] == [entity_id]

    async def test_delete_entries_for_user(self, backend, owner):
        await backend.append_entry(ActivityEntry(
            user_id=owner.id,
            activity_type=ActivityType.ACCOUNT_CREATED,
            description="mine",
        ))
        await backend.append_entry(ActivityEntry(
            activity_type=ActivityType.USER_DELETION_REQUESTED,
            description="system",
        ))
        assert await backend.delete_entries_for_user(owner.id) == 1
        remaining = await backend.get_recent_entries()
        assert [e.description for e in remaining] == ["system"]


# =============================================================================
# BACKEND SPECIFICS
# =============================================================================

class TestInMemoryStorage:

    async def test_returns_copies(self, storage):
        profile = Profile(email="a@example.com")
        await storage.insert(Table.PROFILES, profile)
        loaded = await storage.get(Table.PROFILES, profile.id)
        loaded.full_name = "Changed"
        assert (await storage.get(Table.PROFILES, profile.id)).full_name is None

    async def test_rejects_wrong_model(self, storage):
        with pytest.raises(StorageError):
            await storage.insert(Table.ACCOUNTS, Profile(email="a@example.com"))


class TestSqlAlchemyStorage:

    async def test_email_unique_ignoring_case(self, sql_storage):
        await sql_storage.insert(Table.PROFILES, Profile(email="Same@Example.com"))
        with pytest.raises(DuplicateError):
            await sql_storage.insert(Table.PROFILES, Profile(email="same@example.com"))

    async def test_foreign_keys_enforced(self, sql_storage):
        with pytest.raises(IntegrityError):
            await sql_storage.insert(Table.ACCOUNTS, make_account(uuid4()))

    async def test_parent_with_children_cannot_be_deleted(self, sql_storage):
        profile = Profile(email="p@example.com")
        await sql_storage.insert(Table.PROFILES, profile)
        await sql_storage.insert(Table.ACCOUNTS, make_account(profile.id))
        with pytest.raises(IntegrityError):
            await sql_storage.delete(Table.PROFILES, profile.id)


class TestGoogleSheetsStorage:

    async def test_rows_follow_existing_header(self):
        client = FakeSheetsClient()
        storage = GoogleSheetsStorage(client)
        profile = Profile(email="a@example.com", full_name="Ann")
        await storage.insert(Table.PROFILES, profile)

        sheet = client.get_table_sheet(Table.PROFILES)
        header = sheet.values[0]
        row = sheet.values[1]
        assert row[header.index("email")] == "a@example.com"
        assert row[header.index("profile_picture")] == ""

    async def test_unparseable_rows_are_skipped(self):
        client = FakeSheetsClient()
        storage = GoogleSheetsStorage(client)
        sheet = client.get_table_sheet(Table.PROFILES)
        header = sheet.values[0]
        broken = [""] * len(header)
        broken[header.index("id")] = "not-a-uuid"
        broken[header.index("email")] = "x@example.com"
        sheet.values.append(broken)

        good = Profile(email="good@example.com")
        await storage.insert(Table.PROFILES, good)
        assert [p.id for p in await storage.list_records(Table.PROFILES)] == [good.id]


class TestRowCodec:

    def test_row_round_trip_keeps_defaults_for_empty_cells(self):
        account = make_account(uuid4(), description=None)
        columns = columns_for(Account)
        row = record_to_row(account, columns)
        assert row[columns.index("is_active")] == "true"
        assert row[columns.index("description")] == ""

        loaded = row_to_record(Account, columns, row)
        assert loaded == account

    @pytest.mark.parametrize("annotation, expected", [
        (Optional[Money], (Decimal, True)),
        (Money, (Decimal, False)),
        (Optional[int], (int, True)),
        (str, (str, False)),
    ])
    def test_unwrap_optional_drops_annotated_metadata(self, annotation, expected):
        assert unwrap_optional(annotation) == expected

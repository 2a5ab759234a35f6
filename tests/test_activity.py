"""Tests for the activity logger."""

import pytest
from decimal import Decimal
from uuid import uuid4

from fintrack.audit import ActivityLogger, create_correlation_id
from fintrack.models.activity import ActivityEntry, ActivityType
from fintrack.models.finance import Account, AccountType
from fintrack.services.storage import InMemoryStorage, StorageError


class BrokenActivityStorage(InMemoryStorage):
    async def append_entry(self, entry):
        raise StorageError("activity table unavailable")


def make_account(user_id):
    return Account(user_id=user_id, name="Cash", type=AccountType.CASH)


class TestActivityLogger:

    async def test_log_persists_entry(self, storage, activity_logger, user_id):
        entry = ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.ACCOUNT_CREATED,
            description="New account created",
        )
        assert await activity_logger.log(entry) is True
        assert [e.id for e in await storage.get_recent_entries()] == [entry.id]

    async def test_log_without_storage_succeeds(self):
        """Local-only logging never fails."""
        logger = ActivityLogger()
        entry = ActivityEntry(activity_type=ActivityType.SYSTEM_ERROR, description="x")
        assert await logger.log(entry) is True
        assert await logger.history_for_user(uuid4()) == []

    async def test_storage_failure_is_reported_not_raised(self, user_id):
        logger = ActivityLogger(BrokenActivityStorage())
        entry = ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType.ACCOUNT_CREATED,
            description="New account created",
        )
        assert await logger.log(entry) is False

    async def test_record_updated_skips_noop(self, storage, activity_logger, user_id):
        """An update that changed nothing writes nothing."""
        account = make_account(user_id)
        result = await activity_logger.record_updated(
            "account", account, account.with_changes(), user_id
        )
        assert result is None
        assert await storage.get_entries_by_user(user_id) == []

    async def test_record_updated_stores_only_changes(self, activity_logger, user_id):
        account = make_account(user_id)
        entry = await activity_logger.record_updated(
            "account", account, account.with_changes(name="Wallet"), user_id
        )
        assert entry.activity_type == ActivityType.ACCOUNT_UPDATED
        assert entry.changes == {"old": {"name": "Cash"}, "new": {"name": "Wallet"}}

    async def test_history_for_entity_is_chronological(self, activity_logger, user_id):
        account = make_account(user_id)
        renamed = account.with_changes(name="Wallet")
        await activity_logger.record_created("account", account, user_id)
        await activity_logger.record_updated("account", account, renamed, user_id)
        await activity_logger.record_deleted("account", renamed, user_id)

        history = await activity_logger.history_for_entity("account", account.id)
        assert [e.activity_type for e in history] == [
            ActivityType.ACCOUNT_CREATED,
            ActivityType.ACCOUNT_UPDATED,
            ActivityType.ACCOUNT_DELETED,
        ]

    async def test_history_for_user_filters(self, activity_logger, user_id):
        account = make_account(user_id)
        await activity_logger.record_created("account", account, user_id)
        await activity_logger.record_updated(
            "account", account, account.with_changes(initial_balance=Decimal("5")), user_id
        )
        await activity_logger.record_created("account", make_account(uuid4()), uuid4())

        mine = await activity_logger.history_for_user(user_id)
        assert len(mine) == 2
        assert all(e.user_id == user_id for e in mine)

        updates = await activity_logger.history_for_user(
            user_id, activity_types=[ActivityType.ACCOUNT_UPDATED]
        )
        assert len(updates) == 1
        assert await activity_logger.history_for_user(user_id, entity_types=["purchase"]) == []
        assert len(await activity_logger.history_for_user(user_id, limit=1)) == 1

    async def test_correlation_ids_are_unique(self):
        assert create_correlation_id() != create_correlation_id()

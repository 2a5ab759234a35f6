"""Tests for last-wish check-ins and deliveries."""

import json

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from fintrack.errors import RecordNotFoundError
from fintrack.lifecycle import EXPORT_FILE_NAME, LastWishService
from fintrack.models.activity import ActivityType
from fintrack.models.finance import LendBorrowType
from fintrack.models.lifecycle import (
    DeliveryStatus,
    LastWishIncludeData,
    LastWishRecipient,
    OverdueUser,
)
from fintrack.models.tables import Table


START = datetime(2024, 1, 1, 9, 0)


@pytest.fixture
async def configured(last_wish, checking, lend_borrow, user_id):
    await lend_borrow.add_record(
        user_id=user_id, type=LendBorrowType.BORROW, person_name="Kim", amount=Decimal("30"),
    )
    return await last_wish.configure(
        user_id,
        is_enabled=True,
        check_in_frequency=30,
        recipients=[
            LastWishRecipient(email="heir@example.com", name="Heir"),
            LastWishRecipient(email="friend@example.com"),
        ],
        include_data=LastWishIncludeData(transactions=False),
        message="Look after <the> cat",
        now=START,
    )


class TestConfiguration:

    async def test_enabling_starts_the_clock(self, configured):
        assert configured.is_enabled
        assert configured.is_active
        assert configured.last_check_in == START
        assert configured.next_check_in_due == START + timedelta(days=30)

    async def test_default_frequency(self, last_wish, user_id, app_settings):
        settings = await last_wish.configure(user_id, is_enabled=False)
        assert settings.check_in_frequency == app_settings.last_wish_default_frequency_days
        assert settings.last_check_in is None

    async def test_configure_updates_existing(self, last_wish, configured, user_id):
        updated = await last_wish.configure(user_id, check_in_frequency=7)
        assert updated.id == configured.id
        assert updated.check_in_frequency == 7
        assert updated.last_check_in == START

    async def test_check_in_resets_deadline(self, last_wish, activity_logger, configured, user_id):
        later = START + timedelta(days=20)
        settings = await last_wish.check_in(user_id, now=later)
        assert settings.last_check_in == later

        entries = await activity_logger.history_for_user(
            user_id, activity_types=[ActivityType.LAST_WISH_CHECK_IN]
        )
        assert len(entries) == 1

    async def test_check_in_without_settings(self, last_wish):
        with pytest.raises(RecordNotFoundError):
            await last_wish.check_in(uuid4())


class TestOverdue:

    async def test_not_overdue_on_the_due_date(self, last_wish, configured):
        assert await last_wish.find_overdue(START + timedelta(days=30)) == []

    async def test_overdue_after_due_date(self, last_wish, configured, user_id):
        overdue = await last_wish.find_overdue(START + timedelta(days=35, hours=1))
        assert overdue == [OverdueUser(user_id=user_id, email="owner@example.com", days_overdue=5)]

    async def test_disabled_users_are_skipped(self, last_wish, configured, user_id):
        await last_wish.configure(user_id, is_enabled=False)
        assert await last_wish.find_overdue(START + timedelta(days=90)) == []

    async def test_missing_profile_is_skipped(self, last_wish, storage, configured, user_id):
        await storage.delete(Table.PROFILES, user_id)
        assert await last_wish.find_overdue(START + timedelta(days=90)) == []


class TestDelivery:

    def test_filter_data(self):
        data = {"accounts": [{"id": 1}], "transactions": [{"id": 2}], "donation_savings": []}
        filtered = LastWishService.filter_data(
            data, LastWishIncludeData(transactions=False, savings=False)
        )
        assert filtered == {"accounts": [{"id": 1}], "purchases": [], "lend_borrow": []}

    async def test_run_delivers_to_every_recipient(
        self, last_wish, mailer, storage, configured, user_id
    ):
        now = START + timedelta(days=40)
        assert await last_wish.run(now) == 1

        assert [m.to for m in mailer.sent] == ["heir@example.com", "friend@example.com"]
        message = mailer.sent[0]
        assert "owner@example.com" in message.subject
        assert "Look after <the> cat" in message.text_body
        assert "Look after &lt;the&gt; cat" in message.html_body

        attachment = message.attachments[0]
        assert attachment.file_name == EXPORT_FILE_NAME
        payload = json.loads(attachment.content)
        assert set(payload) == {"accounts", "purchases", "lend_borrow", "donation_savings"}
        assert payload["lend_borrow"][0]["person_name"] == "Kim"

        deliveries = await storage.list_records(Table.LAST_WISH_DELIVERIES, user_id=user_id)
        assert {d.delivery_status for d in deliveries} == {DeliveryStatus.SENT}
        assert (await last_wish.get_settings(user_id)).is_active is False

        # Delivered settings are no longer overdue
        assert await last_wish.run(now + timedelta(days=1)) == 0
        assert len(mailer.sent) == 2

    async def test_failed_recipient_is_retried_alone(
        self, last_wish, mailer, storage, activity_logger, configured, user_id
    ):
        mailer.fail_for.add("friend@example.com")
        now = START + timedelta(days=40)

        await last_wish.run(now)
        assert [m.to for m in mailer.sent] == ["heir@example.com"]
        settings = await last_wish.get_settings(user_id)
        assert settings.is_active is True

        failed = await storage.list_records(
            Table.LAST_WISH_DELIVERIES, user_id=user_id,
            filters={"delivery_status": DeliveryStatus.FAILED},
        )
        assert failed[0].recipient_email == "friend@example.com"
        assert "mailbox unavailable" in failed[0].error_message

        entries = await activity_logger.history_for_user(
            user_id, activity_types=[ActivityType.LAST_WISH_DELIVERED]
        )
        assert entries[0].changes["new"] == {
            "sent": ["heir@example.com"],
            "failed": ["friend@example.com"],
        }

        mailer.fail_for.clear()
        await last_wish.run(now + timedelta(days=1))
        assert [m.to for m in mailer.sent] == ["heir@example.com", "friend@example.com"]
        assert (await last_wish.get_settings(user_id)).is_active is False

    async def test_check_in_after_delivery_rearms(self, last_wish, mailer, configured, user_id):
        await last_wish.run(START + timedelta(days=40))
        await last_wish.check_in(user_id, now=START + timedelta(days=41))

        assert await last_wish.find_overdue(START + timedelta(days=50)) == []
        await last_wish.run(START + timedelta(days=80))
        assert len(mailer.sent) == 4

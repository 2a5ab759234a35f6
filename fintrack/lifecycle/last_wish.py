"""
Last Wish

Users check in periodically. When someone misses their check-in
window, the data they chose is mailed to the people they named, as a
JSON attachment (financial-data.json).

Flow:
1. find_overdue → enabled, active settings past last_check_in + frequency
2. process_overdue_user → one mail per recipient, one delivery row each
3. Once every recipient has been served the settings are deactivated;
   a recipient whose mail failed is retried on the next run, recipients
   already served are not mailed again

DESIGN DECISION: A failing recipient never stops the others. Each
delivery row records its own outcome.
"""

import html
import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fintrack.config import AppSettings, get_settings
from fintrack.errors import RecordNotFoundError
from fintrack.ledger.base import RecordService
from fintrack.models.activity import ActivityEntryBuilder
from fintrack.models.lifecycle import (
    DeliveryStatus,
    LastWishDelivery,
    LastWishIncludeData,
    LastWishRecipient,
    LastWishSettings,
    OverdueUser,
)
from fintrack.models.tables import Table
from fintrack.services.mail import MailAttachment, MailDeliveryError, MailerInterface, MailMessage
from fintrack.services.storage import StorageError


EXPORT_FILE_NAME = "financial-data.json"

# Export section -> (table, include_data flag)
EXPORT_SECTIONS: dict[str, tuple[Table, str]] = {
    "accounts": (Table.ACCOUNTS, "accounts"),
    "transactions": (Table.TRANSACTIONS, "transactions"),
    "purchases": (Table.PURCHASES, "purchases"),
    "lend_borrow": (Table.LEND_BORROW, "lend_borrow"),
    "donation_savings": (Table.DONATION_SAVING_RECORDS, "savings"),
}


class LastWishService(RecordService):

    def __init__(
        self,
        storage,
        mailer: MailerInterface,
        activity_logger=None,
        settings: Optional[AppSettings] = None,
    ):
        super().__init__(storage, activity_logger)
        self._mailer = mailer
        self._settings = settings or get_settings().app

    # =========================================================================
    # SETTINGS & CHECK-IN
    # =========================================================================

    async def get_settings(self, user_id: UUID) -> Optional[LastWishSettings]:
        rows = await self._storage.list_records(Table.LAST_WISH_SETTINGS, user_id=user_id, limit=1)
        return rows[0] if rows else None

    async def configure(
        self,
        user_id: UUID,
        is_enabled: Optional[bool] = None,
        check_in_frequency: Optional[int] = None,
        recipients: Optional[list[LastWishRecipient]] = None,
        include_data: Optional[LastWishIncludeData] = None,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LastWishSettings:
        """
        Create or update a user's settings.

        Enabling starts the clock (last_check_in = now) and makes the
        settings active again.
        """
        now = now or datetime.utcnow()
        changes: dict[str, Any] = {
            key: value for key, value in {
                "is_enabled": is_enabled,
                "check_in_frequency": check_in_frequency,
                "recipients": recipients,
                "include_data": include_data,
                "message": message,
            }.items()
            if value is not None
        }

        existing = await self.get_settings(user_id)
        if existing is None:
            changes.setdefault("check_in_frequency", self._settings.last_wish_default_frequency_days)
            settings = LastWishSettings(user_id=user_id, **changes)
            if settings.is_enabled:
                settings = settings.with_changes(last_check_in=now)
            await self._storage.insert(Table.LAST_WISH_SETTINGS, settings)
        else:
            if is_enabled and not existing.is_enabled:
                changes.update(last_check_in=now, is_active=True)
            settings = existing.with_changes(**changes)
            await self._storage.update(Table.LAST_WISH_SETTINGS, settings)

        self._logger.info(
            "last_wish_configured",
            user_id=str(user_id),
            enabled=settings.is_enabled,
            recipients=len(settings.recipients),
        )
        return settings

    async def check_in(self, user_id: UUID, now: Optional[datetime] = None) -> LastWishSettings:
        """Reset the user's deadline. A check-in also reactivates delivered settings."""
        settings = await self.get_settings(user_id)
        if settings is None:
            raise RecordNotFoundError("last_wish_settings", user_id)

        settings = settings.with_changes(last_check_in=now or datetime.utcnow(), is_active=True)
        await self._storage.update(Table.LAST_WISH_SETTINGS, settings)
        await self._activity.log(ActivityEntryBuilder.last_wish_check_in(user_id, settings.id))
        return settings

    # =========================================================================
    # OVERDUE CHECK
    # =========================================================================

    async def find_overdue(self, now: Optional[datetime] = None) -> list[OverdueUser]:
        now = now or datetime.utcnow()
        candidates = await self._storage.list_records(
            Table.LAST_WISH_SETTINGS,
            filters={"is_enabled": True, "is_active": True},
        )

        overdue: list[OverdueUser] = []
        for settings in candidates:
            due = settings.next_check_in_due
            if due is None or now <= due:
                continue
            profile = await self._storage.get(Table.PROFILES, settings.user_id)
            if profile is None:
                self._logger.warning("last_wish_profile_missing", user_id=str(settings.user_id))
                continue
            overdue.append(OverdueUser(
                user_id=settings.user_id,
                email=profile.email,
                days_overdue=(now - due).days,
            ))

        self._logger.info("last_wish_overdue_checked", count=len(overdue))
        return overdue

    # =========================================================================
    # DATA EXPORT
    # =========================================================================

    async def gather_user_data(self, user_id: UUID) -> dict[str, list[dict]]:
        data: dict[str, list[dict]] = {}
        for section, (table, _) in EXPORT_SECTIONS.items():
            rows = await self._storage.list_records(table, user_id=user_id)
            data[section] = [row.model_dump(mode="json") for row in rows]
        return data

    @staticmethod
    def filter_data(data: dict[str, list[dict]], include_data: LastWishIncludeData) -> dict[str, list[dict]]:
        """Keep only the sections the user chose to share."""
        return {
            section: data.get(section, [])
            for section, (_, flag) in EXPORT_SECTIONS.items()
            if getattr(include_data, flag)
        }

    # =========================================================================
    # DELIVERY
    # =========================================================================

    async def process_overdue_user(
        self,
        user: OverdueUser,
        now: Optional[datetime] = None,
    ) -> list[LastWishDelivery]:
        """Mail every recipient not yet served. Returns the new delivery rows."""
        now = now or datetime.utcnow()
        settings = await self.get_settings(user.user_id)
        if settings is None:
            raise RecordNotFoundError("last_wish_settings", user.user_id)

        self._logger.info(
            "last_wish_processing",
            user_id=str(user.user_id),
            days_overdue=user.days_overdue,
        )

        data = self.filter_data(await self.gather_user_data(user.user_id), settings.include_data)
        payload = json.dumps(data, indent=2).encode("utf-8")
        already_served = await self._served_recipients(settings)

        deliveries: list[LastWishDelivery] = []
        for recipient in settings.recipients:
            if recipient.email.lower() in already_served:
                continue
            delivery = await self._deliver(user, recipient, settings, data, payload, now)
            await self._storage.insert(Table.LAST_WISH_DELIVERIES, delivery)
            deliveries.append(delivery)

        sent = [d.recipient_email for d in deliveries if d.delivery_status == DeliveryStatus.SENT]
        failed = [d.recipient_email for d in deliveries if d.delivery_status == DeliveryStatus.FAILED]

        if not failed:
            await self._storage.update(
                Table.LAST_WISH_SETTINGS, settings.with_changes(is_active=False)
            )
        await self._activity.log(
            ActivityEntryBuilder.last_wish_delivered(user.user_id, settings.id, sent, failed)
        )
        return deliveries

    async def _served_recipients(self, settings: LastWishSettings) -> set[str]:
        """Recipients already mailed for the current missed deadline."""
        deliveries = await self._storage.list_records(
            Table.LAST_WISH_DELIVERIES,
            user_id=settings.user_id,
            filters={"delivery_status": DeliveryStatus.SENT},
        )
        return {
            d.recipient_email.lower()
            for d in deliveries
            if d.sent_at is not None
            and (settings.last_check_in is None or d.sent_at >= settings.last_check_in)
        }

    async def _deliver(
        self,
        user: OverdueUser,
        recipient: LastWishRecipient,
        settings: LastWishSettings,
        data: dict[str, list[dict]],
        payload: bytes,
        now: datetime,
    ) -> LastWishDelivery:
        message = MailMessage(
            to=recipient.email,
            subject=f"Important: Financial Data from {user.email}",
            text_body=self._text_body(user, data, settings, now),
            html_body=self._html_body(user, data, settings, now),
            attachments=[MailAttachment(file_name=EXPORT_FILE_NAME, content=payload)],
        )
        try:
            await self._mailer.send(message)
        except MailDeliveryError as e:
            self._logger.error(
                "last_wish_delivery_failed",
                user_id=str(user.user_id),
                recipient=recipient.email,
                error=str(e),
            )
            return LastWishDelivery(
                user_id=user.user_id,
                recipient_email=recipient.email,
                delivery_status=DeliveryStatus.FAILED,
                error_message=str(e)[:1000],
            )

        self._logger.info(
            "last_wish_delivered",
            user_id=str(user.user_id),
            recipient=recipient.email,
        )
        return LastWishDelivery(
            user_id=user.user_id,
            recipient_email=recipient.email,
            delivery_status=DeliveryStatus.SENT,
            sent_at=now,
        )

    async def run(self, now: Optional[datetime] = None) -> int:
        """Check for overdue users and deliver their data. Returns users processed."""
        now = now or datetime.utcnow()
        processed = 0
        for user in await self.find_overdue(now):
            try:
                await self.process_overdue_user(user, now)
            except StorageError as e:
                self._logger.error(
                    "last_wish_user_failed",
                    user_id=str(user.user_id),
                    error=str(e),
                )
                await self._activity.log_error(
                    "last_wish_user_failed", str(e), user_id=user.user_id
                )
                continue
            processed += 1
        self._logger.info("last_wish_run_completed", processed=processed)
        return processed

    # =========================================================================
    # MAIL CONTENT
    # =========================================================================

    @staticmethod
    def _summary_lines(data: dict[str, list[dict]]) -> list[str]:
        labels = {
            "accounts": "Accounts",
            "transactions": "Transactions",
            "purchases": "Purchases",
            "lend_borrow": "Lend/Borrow Records",
            "donation_savings": "Savings Records",
        }
        return [f"{labels[key]}: {len(rows)}" for key, rows in data.items() if rows]

    def _text_body(
        self,
        user: OverdueUser,
        data: dict[str, list[dict]],
        settings: LastWishSettings,
        now: datetime,
    ) -> str:
        lines = [
            "Important: Financial Data Delivery",
            "",
            f"This data has been delivered automatically because the account owner "
            f"({user.email}) has not checked in for an extended period.",
            "",
        ]
        if settings.message:
            lines += ["Personal message:", settings.message, ""]
        lines += ["Data summary:"]
        lines += [f"- {line}" for line in self._summary_lines(data)] or ["- (no records)"]
        lines += [
            "",
            f"The full data is attached as {EXPORT_FILE_NAME}.",
            f"Delivery date: {now.date().isoformat()}",
        ]
        return "\n".join(lines)

    def _html_body(
        self,
        user: OverdueUser,
        data: dict[str, list[dict]],
        settings: LastWishSettings,
        now: datetime,
    ) -> str:
        message = (
            f"<h3>Personal Message:</h3><p>{html.escape(settings.message)}</p>"
            if settings.message else ""
        )
        items = "".join(f"<li>{html.escape(line)}</li>" for line in self._summary_lines(data))
        return (
            "<html><body>"
            "<h2>Important: Financial Data Delivery</h2>"
            f"<p>This data has been delivered automatically because the account owner "
            f"({html.escape(user.email)}) has not checked in for an extended period.</p>"
            f"{message}"
            f"<h3>Data Summary:</h3><ul>{items}</ul>"
            f"<p>A JSON file with the data is attached ({EXPORT_FILE_NAME}).</p>"
            f"<p>Delivery Date: {now.date().isoformat()}</p>"
            "</body></html>"
        )

"""
In-app notifications shown to a user.

Notifications are messages to the user, not records of their money,
so they are logged to the structured log only and never reach the
activity history.
"""

from typing import Optional
from uuid import UUID

from fintrack.ledger.base import RecordService
from fintrack.models.finance import Notification, NotificationType
from fintrack.models.tables import Table


class NotificationService(RecordService):

    async def notify(
        self,
        user_id: UUID,
        title: str,
        type: NotificationType = NotificationType.INFO,
        body: Optional[str] = None,
    ) -> Notification:
        notification = Notification(user_id=user_id, title=title, type=type, body=body)
        await self._storage.insert(Table.NOTIFICATIONS, notification)
        self._logger.info(
            "notification_created",
            user_id=str(user_id),
            notification_id=str(notification.id),
            type=notification.type.value,
        )
        return notification

    async def list_notifications(
        self,
        user_id: UUID,
        unread_only: bool = False,
    ) -> list[Notification]:
        """Newest first."""
        filters = {"is_read": False} if unread_only else None
        return await self._storage.list_records(
            Table.NOTIFICATIONS, user_id=user_id, filters=filters, descending=True,
        )

    async def unread_count(self, user_id: UUID) -> int:
        return await self._storage.count(Table.NOTIFICATIONS, user_id=user_id, is_read=False)

    async def mark_read(self, notification_id: UUID, user_id: Optional[UUID] = None) -> Notification:
        notification = await self._require(
            Table.NOTIFICATIONS, notification_id, "notification", user_id
        )
        if notification.is_read:
            return notification
        notification = notification.with_changes(is_read=True)
        await self._storage.update(Table.NOTIFICATIONS, notification)
        return notification

    async def mark_all_read(self, user_id: UUID) -> int:
        unread = await self.list_notifications(user_id, unread_only=True)
        for notification in unread:
            await self._storage.update(Table.NOTIFICATIONS, notification.with_changes(is_read=True))
        return len(unread)

    async def delete_notification(
        self,
        notification_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> bool:
        if await self._find(Table.NOTIFICATIONS, notification_id, user_id) is None:
            return False
        return await self._storage.delete(Table.NOTIFICATIONS, notification_id)

    async def clear_all(self, user_id: UUID) -> int:
        removed = await self._storage.delete_where(Table.NOTIFICATIONS, user_id=user_id)
        self._logger.info("notifications_cleared", user_id=str(user_id), count=removed)
        return removed

"""
ITSM Realtime Notification Service

Per-user notification inbox with real-time push.

Flow:
1. Domain service (ticket, project, SLA...) calls create()
2. Notification is persisted in the recipient's inbox
3. Same notification is pushed to every open session of the recipient

Push is best-effort: an offline user still finds the notification
in the inbox on next load.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..models.notification import (
    Announcement,
    EventType,
    Notification,
    NotificationListResponse,
    NotificationType,
    RealtimeEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive filter dates are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NotificationError(Exception):
    """Base error for notification operations."""
    pass


class NotificationNotFoundError(NotificationError):
    pass


class NotificationForbiddenError(NotificationError):
    """Raised when a user touches someone else's notification."""
    pass


class RecipientNotFoundError(NotificationError):
    pass


class NotificationService:
    """
    Creates, lists and updates notifications.

    `hub` may be None, in which case notifications are only stored.
    """

    def __init__(self, notification_repo, user_repo, hub=None):
        self.notifications = notification_repo
        self.users = user_repo
        self.hub = hub

    async def create(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        link_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """
        Store a notification for a user and push it to their open sessions.
        """
        recipient = await self.users.get(user_id)
        if recipient is None:
            raise RecipientNotFoundError(f"Recipient {user_id} not found")

        notification = await self.notifications.add(Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            link_url=link_url,
            metadata=metadata or {},
        ))

        if self.hub is not None:
            self.hub.send_to_user(
                user_id,
                RealtimeEvent(type=EventType.NOTIFICATION, payload=notification)
            )
            logger.info(
                "Notification pushed: user_id=%s id=%s title=%r",
                user_id, notification.id, notification.title
            )

        return notification

    async def announce(
        self,
        title: str,
        message: str,
        user_ids: Optional[Iterable[int]] = None
    ) -> Announcement:
        """
        Push an ephemeral announcement.

        Everyone connected when `user_ids` is None, else only those users.
        Nothing is stored.
        """
        announcement = Announcement(title=title, message=message)
        event = RealtimeEvent(type=EventType.ANNOUNCEMENT, payload=announcement)

        if self.hub is None:
            return announcement
        if user_ids is None:
            self.hub.broadcast(event)
        else:
            self.hub.send_to_users(user_ids, event)
        return announcement

    async def get(self, notification_id: int) -> Notification:
        notification = await self.notifications.get(notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return notification

    async def list_for_user(self, user_id: int) -> List[Notification]:
        return await self.notifications.find_by_user(user_id)

    async def list_unread(self, user_id: int) -> List[Notification]:
        return await self.notifications.find_by_user(user_id, is_read=False)

    async def list_by_type(
        self,
        user_id: int,
        notification_type: NotificationType
    ) -> List[Notification]:
        return await self.notifications.find_by_user(user_id, type=notification_type)

    async def history(
        self,
        user_id: int,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        is_read: Optional[bool] = None,
        search: str = "",
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None
    ) -> NotificationListResponse:
        """
        Paginated, filtered inbox history.

        Out-of-range paging falls back to page 1 / DEFAULT_PAGE_SIZE.
        """
        if page < 1:
            page = 1
        if limit < 1 or limit > MAX_PAGE_SIZE:
            limit = DEFAULT_PAGE_SIZE

        items, total = await self.notifications.find_with_filters(
            user_id,
            page=page,
            limit=limit,
            is_read=is_read,
            search=(search or "").strip(),
            date_from=_as_utc(date_from),
            date_to=_as_utc(date_to)
        )
        unread = await self.notifications.count_unread(user_id)

        return NotificationListResponse(
            notifications=items,
            unread_count=unread,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit)
        )

    async def mark_as_read(self, notification_id: int, user_id: int) -> Notification:
        await self._get_owned(notification_id, user_id)
        await self.notifications.mark_as_read(notification_id)
        return await self.get(notification_id)

    async def mark_all_as_read(self, user_id: int) -> int:
        return await self.notifications.mark_all_as_read(user_id)

    async def delete(self, notification_id: int, user_id: int) -> None:
        await self._get_owned(notification_id, user_id)
        await self.notifications.delete(notification_id)

    async def unread_count(self, user_id: int) -> int:
        return await self.notifications.count_unread(user_id)

    # =========================================================================
    # Private methods
    # =========================================================================

    async def _get_owned(self, notification_id: int, user_id: int) -> Notification:
        notification = await self.get(notification_id)
        if notification.user_id != user_id:
            raise NotificationForbiddenError(
                f"Notification {notification_id} belongs to another user"
            )
        return notification

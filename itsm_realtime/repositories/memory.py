"""
ITSM Realtime In-Memory Repositories

Async data-access for users and notifications, backed by dicts.
Same method surface a database-backed repository would expose.
"""

import threading
from datetime import datetime, timezone
from itertools import count
from typing import Dict, List, Optional, Tuple

from ..models.notification import Notification, NotificationType, User


class InMemoryUserRepository:
    """Users known to the notification layer."""

    def __init__(self, users: Optional[List[User]] = None):
        self._users: Dict[int, User] = {u.id: u for u in users or []}

    async def get(self, user_id: int) -> Optional[User]:
        return self._users.get(user_id)

    async def save(self, user: User) -> User:
        self._users[user.id] = user
        return user


class InMemoryNotificationRepository:
    """Notification inbox storage with filtered, paginated queries."""

    def __init__(self):
        self._items: Dict[int, Notification] = {}
        self._ids = count(1)
        self._lock = threading.Lock()

    async def add(self, notification: Notification) -> Notification:
        with self._lock:
            notification.id = next(self._ids)
            self._items[notification.id] = notification
        return notification

    async def get(self, notification_id: int) -> Optional[Notification]:
        return self._items.get(notification_id)

    async def delete(self, notification_id: int) -> None:
        with self._lock:
            self._items.pop(notification_id, None)

    async def find_by_user(
        self,
        user_id: int,
        is_read: Optional[bool] = None,
        type: Optional[NotificationType] = None
    ) -> List[Notification]:
        """Newest first."""
        items = [
            n for n in list(self._items.values())
            if n.user_id == user_id
            and (is_read is None or n.is_read == is_read)
            and (type is None or n.type == type)
        ]
        return sorted(items, key=lambda n: (n.created_at, n.id), reverse=True)

    async def find_with_filters(
        self,
        user_id: int,
        page: int,
        limit: int,
        is_read: Optional[bool] = None,
        search: str = "",
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None
    ) -> Tuple[List[Notification], int]:
        """Returns one page plus the total number of matches."""
        needle = search.lower()
        matches = [
            n for n in await self.find_by_user(user_id, is_read=is_read)
            if (not needle or needle in n.title.lower() or needle in n.message.lower())
            and (date_from is None or n.created_at >= date_from)
            and (date_to is None or n.created_at <= date_to)
        ]
        start = (page - 1) * limit
        return matches[start:start + limit], len(matches)

    async def mark_as_read(self, notification_id: int) -> None:
        notification = self._items.get(notification_id)
        if notification and not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)

    async def mark_all_as_read(self, user_id: int) -> int:
        """Returns how many notifications changed."""
        changed = 0
        now = datetime.now(timezone.utc)
        for notification in list(self._items.values()):
            if notification.user_id == user_id and not notification.is_read:
                notification.is_read = True
                notification.read_at = now
                changed += 1
        return changed

    async def count_unread(self, user_id: int) -> int:
        return sum(
            1 for n in list(self._items.values())
            if n.user_id == user_id and not n.is_read
        )

"""
ITSM Realtime Models
"""

from .notification import (
    # Enums
    NotificationType,
    EventType,

    # Core models
    User,
    Notification,
    Announcement,
    RealtimeEvent,

    # Responses
    NotificationListResponse,
    UnreadCount,
)

__all__ = [
    "NotificationType", "EventType",
    "User", "Notification", "Announcement", "RealtimeEvent",
    "NotificationListResponse", "UnreadCount",
]

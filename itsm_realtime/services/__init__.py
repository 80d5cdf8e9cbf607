"""
ITSM Realtime Services
"""

from .notification import (
    NotificationService,
    NotificationError,
    NotificationNotFoundError,
    NotificationForbiddenError,
    RecipientNotFoundError,
)

__all__ = [
    "NotificationService",
    "NotificationError", "NotificationNotFoundError",
    "NotificationForbiddenError", "RecipientNotFoundError",
]

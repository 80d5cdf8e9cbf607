"""
ITSM Realtime Notification Models

Per-user inbox entries and the events pushed over the WebSocket.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class NotificationType(str, Enum):
    DELAY_ALERT = "delay_alert"
    BUDGET_ALERT = "budget_alert"
    VALIDATION_PENDING = "validation_pending"
    TICKET_INTERNAL_ASSIGNED = "ticket_internal_assigned"
    PROJECT_MEMBER_ADDED = "project_member_added"
    PROJECT_PHASE_MEMBER_ADDED = "project_phase_member_added"
    PROJECT_TASK_ASSIGNED = "project_task_assigned"
    ANNOUNCEMENT = "announcement"


class EventType(str, Enum):
    NOTIFICATION = "notification"
    ANNOUNCEMENT = "announcement"


# =============================================================================
# CORE MODELS
# =============================================================================

class User(BaseModel):
    """Notification recipient."""
    id: int
    username: str
    email: Optional[str] = None
    role: str = "user"
    is_active: bool = True


class Notification(BaseModel):
    """
    One entry of a user's notification inbox.

    `id` is assigned by the repository on insert.
    """
    id: Optional[int] = None
    user_id: int

    type: NotificationType
    title: str
    message: str

    is_read: bool = False
    read_at: Optional[datetime] = None

    link_url: Optional[str] = None  # Resource the notification points to
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=_utcnow)


class Announcement(BaseModel):
    """Ephemeral message, pushed but never stored."""
    title: str
    message: str
    created_at: datetime = Field(default_factory=_utcnow)


class RealtimeEvent(BaseModel):
    """Envelope for everything sent down the WebSocket."""
    type: EventType
    payload: Any


# =============================================================================
# RESPONSES
# =============================================================================

class NotificationListResponse(BaseModel):
    notifications: List[Notification]
    unread_count: int
    total: int
    page: int
    limit: int
    total_pages: int


class UnreadCount(BaseModel):
    count: int

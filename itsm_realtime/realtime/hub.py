"""
ITSM Realtime Notification Hub

Fan-out broker for connected client sessions.

Guarantees:
- Producers are never blocked: delivery is a non-blocking offer
- A stalled session is evicted, not buffered indefinitely
- Each message is encoded once per delivery call
- A session is removed from the active set before its buffer is closed,
  under the same lock, so nothing ever offers into a closed buffer
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Set

from pydantic_core import to_json

from .buffer import OutboundBuffer

logger = logging.getLogger(__name__)

# Output must be UTF-8: the write pump sends it as WebSocket text
Encoder = Callable[[Any], bytes]


def encode_message(message: Any) -> bytes:
    """Compact UTF-8 JSON. Understands pydantic models, datetimes, UUIDs, enums."""
    return to_json(message)


# =============================================================================
# SESSION
# =============================================================================

@dataclass(eq=False)
class Session:
    """
    One connected client.

    Compared and hashed by identity: two tabs of the same user are two
    distinct sessions.
    """
    user_id: int
    username: str
    buffer: OutboundBuffer = field(default_factory=OutboundBuffer)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"<Session user_id={self.user_id} username={self.username!r}>"


# =============================================================================
# HUB
# =============================================================================

class NotificationHub:
    """
    Holds the active session set and delivers messages to it.

    One instance per process, created by the application factory and
    passed to whoever needs it. Every operation is safe to call from any
    thread and returns immediately.
    """

    def __init__(self, encoder: Optional[Encoder] = None):
        self._encode = encoder or encode_message
        self._sessions: Set[Session] = set()
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def register(self, session: Session) -> None:
        """Make a session eligible for delivery."""
        with self._lock:
            self._sessions.add(session)
            active = len(self._sessions)
        logger.info(
            "WebSocket session connected: user_id=%s username=%s active=%d",
            session.user_id, session.username, active
        )

    def unregister(self, session: Session) -> None:
        """Remove a session and close its buffer. Unknown sessions are ignored."""
        with self._lock:
            removed = self._remove_locked(session)
            active = len(self._sessions)
        if removed:
            logger.info(
                "WebSocket session disconnected: user_id=%s username=%s active=%d",
                session.user_id, session.username, active
            )

    def active_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # -------------------------------------------------------------------------
    # Delivery (fire-and-forget)
    # -------------------------------------------------------------------------

    def broadcast(self, message: Any) -> None:
        """Deliver to every active session."""
        self._deliver(message, lambda session: True)

    def send_to_user(self, user_id: int, message: Any) -> None:
        """Deliver to every session of one user. No session, no-op."""
        self._deliver(message, lambda session: session.user_id == user_id)

    def send_to_users(self, user_ids: Iterable[int], message: Any) -> None:
        """Deliver to every session whose user is in `user_ids`."""
        wanted = frozenset(user_ids)
        self._deliver(message, lambda session: session.user_id in wanted)

    # -------------------------------------------------------------------------
    # Private methods
    # -------------------------------------------------------------------------

    def _deliver(self, message: Any, select: Callable[[Session], bool]) -> None:
        try:
            data = self._encode(message)
        except Exception:
            logger.exception("Failed to encode notification, delivery abandoned")
            return

        evicted: List[Session] = []
        with self._lock:
            for session in [s for s in self._sessions if select(s)]:
                if not session.buffer.offer(data):
                    self._remove_locked(session)
                    evicted.append(session)
            active = len(self._sessions)

        for session in evicted:
            logger.warning(
                "WebSocket session evicted (send buffer full): user_id=%s username=%s active=%d",
                session.user_id, session.username, active
            )

    def _remove_locked(self, session: Session) -> bool:
        # Caller holds self._lock. Remove first, then close.
        if session not in self._sessions:
            return False
        self._sessions.discard(session)
        session.buffer.close()
        return True

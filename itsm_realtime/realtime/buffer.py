"""
ITSM Realtime Outbound Buffer

Fixed-capacity FIFO of encoded messages for one session.

Producer side (the hub) is synchronous and non-blocking: offer() either
appends or reports that the buffer is full. Consumer side (the connection
write pump) is async: get() waits until a message arrives or the buffer
is closed. Producers may run on any thread; the waiting reader is woken
through its event loop.
"""

import asyncio
import threading
from collections import deque
from typing import Deque, List, Optional, Tuple

DEFAULT_CAPACITY = 256


def _release(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)


class OutboundBuffer:
    """
    Bounded single-reader message queue with drop-on-full semantics.

    - offer() never blocks; returns False when full or closed
    - close() is idempotent; pending messages stay readable
    - get() returns None once the buffer is closed and drained
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("Buffer capacity must be at least 1")
        self.capacity = capacity
        self._items: Deque[bytes] = deque()
        self._lock = threading.Lock()
        self._closed = False
        self._waiter: Optional[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, message: bytes) -> bool:
        """Append without blocking. False means full (or already closed)."""
        with self._lock:
            if self._closed or len(self._items) >= self.capacity:
                return False
            self._items.append(message)
            self._wake()
            return True

    def close(self) -> bool:
        """Close the buffer. Returns False if it was already closed."""
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._wake()
            return True

    def drain_nowait(self) -> List[bytes]:
        """Pop every pending message without waiting."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
            return items

    async def get(self) -> Optional[bytes]:
        """Wait for the next message. None means closed and fully drained."""
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                if self._items:
                    return self._items.popleft()
                if self._closed:
                    return None
                waiter = loop.create_future()
                self._waiter = (loop, waiter)
            try:
                await waiter
            finally:
                with self._lock:
                    if self._waiter is not None and self._waiter[1] is waiter:
                        self._waiter = None

    def _wake(self) -> None:
        # Caller holds self._lock
        if self._waiter is None:
            return
        loop, waiter = self._waiter
        self._waiter = None
        if not loop.is_closed():
            loop.call_soon_threadsafe(_release, waiter)

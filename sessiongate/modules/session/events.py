"""
Observer fan-out for session events.

Supervisors publish challenge and status changes here; the SSE endpoint and
any other in-process observer subscribe with a bounded queue. A slow
subscriber loses events rather than stalling a supervisor.
"""

import asyncio
import logging
from collections import deque
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Deque, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class SessionEvents:
    """In-process publish/subscribe hub for session events."""

    def __init__(self, queue_size: int = 100, history_size: int = 1000):
        """
        Initialize the hub.

        Args:
            queue_size: Max undelivered events per subscriber
            history_size: Number of recent events kept for inspection
        """
        self.queue_size = queue_size
        self._subscribers: List[tuple[Optional[str], asyncio.Queue]] = []
        self.history: Deque[Dict[str, Any]] = deque(maxlen=history_size)

    def publish(self, session_id: str, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event to every matching subscriber without blocking."""
        event = {
            "type": event_type,
            "session_id": session_id,
            "timestamp": datetime.now(UTC).isoformat(),
            "data": data or {},
        }
        self.history.append(event)

        for wanted, queue in list(self._subscribers):
            if wanted is not None and wanted != session_id:
                continue
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event_type} event for {session_id}: subscriber queue full")

    @contextmanager
    def subscribe(self, session_id: Optional[str] = None) -> Iterator[asyncio.Queue]:
        """
        Register a subscriber queue for the duration of the context.

        Args:
            session_id: Only receive events for this session (None = all)
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        entry = (session_id, queue)
        self._subscribers.append(entry)
        try:
            yield queue
        finally:
            self._subscribers.remove(entry)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

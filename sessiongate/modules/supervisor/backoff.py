"""
Reconnect backoff policy and the cancellable restart scheduler.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_BASE_MS = 2000
DEFAULT_CAP_MS = 30000
DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded exponential backoff: delay(N) = min(cap, base * 2**(N-1))."""

    base_ms: int = DEFAULT_BASE_MS
    cap_ms: int = DEFAULT_CAP_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self):
        if self.base_ms <= 0 or self.cap_ms <= 0:
            raise ValueError("Backoff base and cap must be positive")
        if self.max_attempts < 0:
            raise ValueError("max_attempts cannot be negative")

    def delay_ms(self, attempt: int) -> int:
        """Delay before restart attempt number `attempt` (1-based)."""
        if attempt < 1:
            raise ValueError(f"Restart attempts are numbered from 1, got {attempt}")
        return min(self.cap_ms, self.base_ms * 2 ** (attempt - 1))

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000

    def exhausted(self, retry_count: int) -> bool:
        """True once no further automatic restart is allowed."""
        return retry_count >= self.max_attempts


class RestartScheduler:
    """
    Pending restarts keyed by session id.

    At most one timer exists per session. A timer is removed from the table
    the moment it fires, so the callback itself may schedule the next one.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep
        self._pending: Dict[str, asyncio.Task] = {}

    def schedule(
        self, session_id: str, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> bool:
        """
        Schedule a restart.

        Returns:
            False if a restart is already pending for the session
        """
        if self.is_pending(session_id):
            logger.debug(f"Restart already pending for {session_id}, not scheduling another")
            return False

        task = asyncio.create_task(
            self._fire(session_id, delay, callback), name=f"restart:{session_id}"
        )
        self._pending[session_id] = task
        return True

    async def _fire(
        self, session_id: str, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> None:
        await self._sleep(delay)
        if self._pending.get(session_id) is asyncio.current_task():
            del self._pending[session_id]
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Scheduled restart failed for {session_id}")

    def is_pending(self, session_id: str) -> bool:
        task = self._pending.get(session_id)
        return task is not None and not task.done()

    def cancel(self, session_id: str) -> bool:
        """Cancel the pending restart, if any. Returns True if one was cancelled."""
        task = self._pending.pop(session_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Cancelled pending restart for {session_id}")
        return True

    async def cancel_all(self) -> None:
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending_count(self) -> int:
        return sum(1 for t in self._pending.values() if not t.done())

    def pending_task(self, session_id: str) -> Optional[asyncio.Task]:
        return self._pending.get(session_id)

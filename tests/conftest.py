"""
Shared pytest fixtures for SessionGate tests.

This module provides common fixtures including:
- FakeTransport: Scriptable in-process transport that tracks live handles
- Redis mocks for credential store tests
- Credential store / bridge / scheduler fixtures
"""

import asyncio
import os
import sys
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sessiongate.modules.auth import AuthStateBridge, InMemoryCredentialStore
from sessiongate.modules.supervisor import BackoffPolicy, RestartScheduler
from sessiongate.modules.transport import TransportError


# =============================================================================
# Transport Fake
# =============================================================================

class FakeHandle:
    """Live connection handed out by FakeTransport."""

    def __init__(self, transport: "FakeTransport", session_id: str, credential: Any):
        self.transport = transport
        self.session_id = session_id
        self.credential = credential
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self._open = True
        self._queue: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, target: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self._open:
            raise TransportError("handle is closed", retriable=False)
        if self.transport.send_error is not None:
            raise self.transport.send_error
        self.sent.append((target, payload))
        return {"id": f"msg-{len(self.sent)}", "status": "sent"}

    async def close(self) -> None:
        if self._open:
            self._open = False
            self.transport.open_handles[self.session_id] -= 1
            self._queue.put_nowait(None)

    def emit(self, event: Any) -> None:
        """Queue a transport event for the supervisor."""
        self._queue.put_nowait(event)

    def end_stream(self) -> None:
        """End the event stream without a close event."""
        self._queue.put_nowait(None)

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class FakeTransport:
    """
    Scriptable transport.

    Usage:
        transport.on_connect = lambda handle, attempt: [ChallengeEvent("ref,key")]
        transport.connect_errors = [TransportError("refused")]
    """

    def __init__(self):
        self.connects: List[Tuple[str, Any]] = []
        self.handles: List[FakeHandle] = []
        self.open_handles: Dict[str, int] = defaultdict(int)
        self.max_open: Dict[str, int] = defaultdict(int)
        self.on_connect: Optional[Callable[[FakeHandle, int], List[Any]]] = None
        self.connect_errors: List[Exception] = []
        self.send_error: Optional[Exception] = None

    async def connect(self, credential: Any, *, session_id: str):
        self.connects.append((session_id, credential))
        if self.connect_errors:
            raise self.connect_errors.pop(0)

        handle = FakeHandle(self, session_id, credential)
        self.handles.append(handle)
        self.open_handles[session_id] += 1
        self.max_open[session_id] = max(self.max_open[session_id], self.open_handles[session_id])

        if self.on_connect is not None:
            attempt = sum(1 for sid, _ in self.connects if sid == session_id)
            for event in self.on_connect(handle, attempt):
                handle.emit(event)
        return handle, handle.events()

    def latest(self, session_id: str) -> FakeHandle:
        return [h for h in self.handles if h.session_id == session_id][-1]

    def connect_count(self, session_id: str) -> int:
        return sum(1 for sid, _ in self.connects if sid == session_id)


@pytest.fixture
def fake_transport():
    """Fresh scriptable transport."""
    return FakeTransport()


# =============================================================================
# Lifecycle Fixtures
# =============================================================================

@pytest.fixture
def memory_store():
    return InMemoryCredentialStore()


@pytest.fixture
def bridge(memory_store):
    return AuthStateBridge(memory_store)


@pytest.fixture
def recorded_delays():
    """Delays (seconds) requested from the restart scheduler."""
    return []


@pytest.fixture
def scheduler(recorded_delays):
    """Restart scheduler whose timers fire immediately but record the delay."""

    async def fast_sleep(delay: float) -> None:
        recorded_delays.append(delay)
        await asyncio.sleep(0)

    return RestartScheduler(sleep=fast_sleep)


@pytest.fixture
def policy():
    return BackoffPolicy(base_ms=2000, cap_ms=30000, max_attempts=5)


@pytest.fixture
def wait_until():
    """Poll a condition while letting background tasks run."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait


# =============================================================================
# Redis Mocking Infrastructure
# =============================================================================

@pytest.fixture
def mock_redis():
    """Create a mock Redis client for async hash/set operations."""
    redis = AsyncMock()

    # Basic operations
    redis.delete = AsyncMock(return_value=1)
    redis.ping = AsyncMock(return_value=True)

    # Set operations
    redis.sadd = AsyncMock()
    redis.srem = AsyncMock()
    redis.smembers = AsyncMock(return_value=set())

    # Hash operations
    redis.hset = AsyncMock()
    redis.hsetnx = AsyncMock(return_value=1)
    redis.hgetall = AsyncMock(return_value={})
    redis.hdel = AsyncMock()

    return redis


@pytest.fixture
def mock_redis_with_data():
    """
    Redis mock with in-memory hash and set storage for more realistic tests.

    This allows testing code that reads back what it writes.
    """
    hashes: Dict[str, Dict[str, str]] = {}
    sets: Dict[str, set] = {}

    redis = AsyncMock()

    async def mock_hset(key, mapping=None, **kwargs):
        hashes.setdefault(key, {}).update(mapping or {})
        return len(mapping or {})

    async def mock_hsetnx(key, field, value):
        data = hashes.setdefault(key, {})
        if field in data:
            return 0
        data[field] = value
        return 1

    async def mock_hdel(key, *fields):
        data = hashes.get(key, {})
        return sum(1 for f in fields if data.pop(f, None) is not None)

    async def mock_hgetall(key):
        return dict(hashes.get(key, {}))

    async def mock_delete(*keys):
        return sum(1 for k in keys if hashes.pop(k, None) is not None)

    async def mock_sadd(key, *members):
        sets.setdefault(key, set()).update(members)
        return len(members)

    async def mock_srem(key, *members):
        current = sets.get(key, set())
        removed = len(current & set(members))
        current.difference_update(members)
        return removed

    async def mock_smembers(key):
        return set(sets.get(key, set()))

    redis.hset = AsyncMock(side_effect=mock_hset)
    redis.hsetnx = AsyncMock(side_effect=mock_hsetnx)
    redis.hdel = AsyncMock(side_effect=mock_hdel)
    redis.hgetall = AsyncMock(side_effect=mock_hgetall)
    redis.delete = AsyncMock(side_effect=mock_delete)
    redis.sadd = AsyncMock(side_effect=mock_sadd)
    redis.srem = AsyncMock(side_effect=mock_srem)
    redis.smembers = AsyncMock(side_effect=mock_smembers)
    redis._hashes = hashes  # Expose for test assertions
    redis._sets = sets

    return redis


# =============================================================================
# Test Markers Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring infrastructure"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )

import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sessiongate.modules.session import (
    MaxRetriesExceeded,
    PersistenceFailure,
    SessionEvents,
    SessionNotReady,
    SessionState,
)
from sessiongate.modules.supervisor import (
    MAX_RETRIES_EXCEEDED,
    PERSISTENCE_FAILURE,
    ConnectionSupervisor,
    RestartScheduler,
)
from sessiongate.modules.transport import (
    ChallengeEvent,
    CredentialsUpdatedEvent,
    DisconnectReason,
    MessagesArrivedEvent,
    StatusChangedEvent,
    TransportError,
)


def closed(code):
    return StatusChangedEvent(status="closed", reason=code, detail=f"closed with {code}")


OPEN = StatusChangedEvent(status="open", device={"platform": "web"})


@pytest.fixture
def events():
    return SessionEvents()


@pytest_asyncio.fixture
async def make_supervisor(fake_transport, bridge, scheduler, policy, events):
    """Build a supervisor for session 's1' wired to the shared fakes."""
    created = []

    def _make(session_id="s1", **overrides):
        kwargs = dict(
            transport=fake_transport,
            bridge=bridge,
            scheduler=scheduler,
            policy=policy,
            events=events,
        )
        kwargs.update(overrides)
        supervisor = ConnectionSupervisor(session_id, **kwargs)
        created.append(supervisor)
        return supervisor

    yield _make

    for supervisor in created:
        await supervisor.stop()


@pytest.mark.asyncio
async def test_start_opens_transport_without_credential(make_supervisor, fake_transport):
    supervisor = make_supervisor()

    await supervisor.start()

    assert supervisor.state == SessionState.CONNECTING
    assert fake_transport.connects == [("s1", None)]
    assert supervisor.has_live_handle


@pytest.mark.asyncio
async def test_start_passes_stored_credential(make_supervisor, fake_transport, memory_store):
    await memory_store.upsert("s1", status="connected", credential='{"me":"1"}')
    supervisor = make_supervisor()

    await supervisor.start()

    assert fake_transport.connects == [("s1", {"me": "1"})]


@pytest.mark.asyncio
async def test_start_is_noop_after_first_call(make_supervisor, fake_transport):
    supervisor = make_supervisor()

    await supervisor.start()
    await supervisor.start()

    assert fake_transport.connect_count("s1") == 1


@pytest.mark.asyncio
async def test_challenge_moves_to_awaiting(make_supervisor, fake_transport, memory_store, events, wait_until):
    """A challenge is stored on the session and in the record, and observers hear about it."""
    fake_transport.on_connect = lambda handle, attempt: [ChallengeEvent("ref-1,key,id")]
    supervisor = make_supervisor()

    with events.subscribe("s1") as queue:
        await supervisor.start()
        await wait_until(lambda: supervisor.state == SessionState.AWAITING_CHALLENGE)

        received = []
        while not queue.empty():
            received.append(queue.get_nowait())

    assert supervisor.session.challenge == "ref-1,key,id"
    record = await memory_store.get("s1")
    assert record.status == "awaiting_challenge"
    assert record.challenge == "ref-1,key,id"
    assert "challenge" in [e["type"] for e in received]


@pytest.mark.asyncio
async def test_open_clears_challenge_and_persists(make_supervisor, fake_transport, memory_store, wait_until):
    fake_transport.on_connect = lambda handle, attempt: [
        ChallengeEvent("ref-1,key,id"),
        CredentialsUpdatedEvent({"me": "1"}),
        OPEN,
    ]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.CONNECTED)

    assert supervisor.session.challenge is None
    assert supervisor.session.retry_count == 0
    record = await memory_store.get("s1")
    assert record.status == "connected"
    assert record.challenge is None
    assert json.loads(record.credential) == {"me": "1"}
    assert json.loads(record.device) == {"platform": "web"}


@pytest.mark.asyncio
async def test_identical_credential_updates_write_once(make_supervisor, fake_transport, memory_store, wait_until):
    memory_store.upsert = AsyncMock(wraps=memory_store.upsert)
    fake_transport.on_connect = lambda handle, attempt: [
        OPEN,
        CredentialsUpdatedEvent({"me": "1"}),
        CredentialsUpdatedEvent({"me": "1"}),
        MessagesArrivedEvent([{"chat_id": "c1"}]),
    ]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: len(supervisor.chats) == 1)

    credential_writes = [c for c in memory_store.upsert.call_args_list if "credential" in c.kwargs]
    assert len(credential_writes) == 1


@pytest.mark.asyncio
async def test_non_retriable_close_terminates_immediately(
    make_supervisor, fake_transport, scheduler, memory_store, wait_until
):
    fake_transport.on_connect = lambda handle, attempt: [closed(DisconnectReason.LOGGED_OUT)]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.TERMINATED)

    assert supervisor.session.retry_count == 0
    assert not scheduler.is_pending("s1")
    assert fake_transport.connect_count("s1") == 1
    assert fake_transport.open_handles["s1"] == 0
    assert (await memory_store.get("s1")).status == "terminated"


@pytest.mark.asyncio
async def test_unknown_close_code_is_not_retried(make_supervisor, fake_transport, wait_until):
    fake_transport.on_connect = lambda handle, attempt: [closed(499)]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.TERMINATED)

    assert fake_transport.connect_count("s1") == 1


@pytest.mark.asyncio
async def test_retriable_closures_back_off_then_terminate(
    make_supervisor, fake_transport, recorded_delays, scheduler, wait_until
):
    """Five retriable closures restart with 2s..30s delays; the sixth terminates."""
    fake_transport.on_connect = lambda handle, attempt: [closed(DisconnectReason.CONNECTION_CLOSED)]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.TERMINATED)

    assert recorded_delays == [2.0, 4.0, 8.0, 16.0, 30.0]
    assert fake_transport.connect_count("s1") == 6
    assert supervisor.session.retry_count == 5
    assert supervisor.session.last_error == MAX_RETRIES_EXCEEDED
    assert supervisor.session.last_restart_at is not None
    assert not scheduler.is_pending("s1")
    assert fake_transport.max_open["s1"] == 1

    with pytest.raises(MaxRetriesExceeded):
        await supervisor.send("123@s.whatsapp.net", {"text": "hi"})


@pytest.mark.asyncio
async def test_successful_reconnect_resets_retry_count(make_supervisor, fake_transport, recorded_delays, wait_until):
    def script(handle, attempt):
        if attempt < 3:
            return [closed(DisconnectReason.RESTART_REQUIRED)]
        return [OPEN]

    fake_transport.on_connect = script
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.CONNECTED)

    assert recorded_delays == [2.0, 4.0]
    assert supervisor.session.retry_count == 0
    assert fake_transport.max_open["s1"] == 1
    assert fake_transport.open_handles["s1"] == 1


@pytest.mark.asyncio
async def test_connect_error_is_a_closure(make_supervisor, fake_transport, recorded_delays, wait_until):
    fake_transport.connect_errors = [TransportError("connection refused", retriable=True)]
    fake_transport.on_connect = lambda handle, attempt: [OPEN]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.CONNECTED)

    assert recorded_delays == [2.0]
    assert fake_transport.connect_count("s1") == 2


@pytest.mark.asyncio
async def test_non_retriable_connect_error_terminates(make_supervisor, fake_transport):
    fake_transport.connect_errors = [TransportError("bad credentials", retriable=False)]
    supervisor = make_supervisor()

    await supervisor.start()

    assert supervisor.state == SessionState.TERMINATED


@pytest.mark.asyncio
async def test_stream_end_without_close_event_restarts(make_supervisor, fake_transport, recorded_delays, wait_until):
    supervisor = make_supervisor()
    await supervisor.start()

    fake_transport.on_connect = lambda handle, attempt: [OPEN]
    fake_transport.latest("s1").end_stream()
    await wait_until(lambda: supervisor.state == SessionState.CONNECTED)

    assert recorded_delays == [2.0]
    assert fake_transport.max_open["s1"] == 1


@pytest.mark.asyncio
async def test_backoff_starts_before_slow_close_finishes(
    make_supervisor, fake_transport, recorded_delays, scheduler, wait_until
):
    """The restart timer runs while the old handle is still closing; reconnect waits for the close."""
    close_gate = asyncio.Event()

    def script(handle, attempt):
        if attempt == 1:
            original_close = handle.close

            async def slow_close():
                await close_gate.wait()
                await original_close()

            handle.close = slow_close
            return [closed(DisconnectReason.RESTART_REQUIRED)]
        return [OPEN]

    fake_transport.on_connect = script
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: recorded_delays == [2.0])

    assert supervisor.state == SessionState.RESTARTING
    assert fake_transport.connect_count("s1") == 1
    assert fake_transport.open_handles["s1"] == 1

    close_gate.set()
    await wait_until(lambda: supervisor.state == SessionState.CONNECTED)

    assert fake_transport.connect_count("s1") == 2
    assert fake_transport.max_open["s1"] == 1


@pytest.mark.asyncio
async def test_stop_cancels_pending_restart(make_supervisor, fake_transport, wait_until):
    scheduler = RestartScheduler()  # real sleep: the restart stays pending
    fake_transport.on_connect = lambda handle, attempt: [closed(DisconnectReason.CONNECTION_LOST)]
    supervisor = make_supervisor(scheduler=scheduler)

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.RESTARTING)
    assert scheduler.is_pending("s1")

    await supervisor.stop()

    assert not scheduler.is_pending("s1")
    assert fake_transport.connect_count("s1") == 1
    assert fake_transport.open_handles["s1"] == 0


@pytest.mark.asyncio
async def test_stop_closes_live_handle(make_supervisor, fake_transport):
    supervisor = make_supervisor()
    await supervisor.start()
    handle = fake_transport.latest("s1")

    await supervisor.stop()

    assert not handle.is_open
    assert not supervisor.has_live_handle


@pytest.mark.asyncio
async def test_send_requires_connected_session(make_supervisor, fake_transport, wait_until):
    supervisor = make_supervisor()
    await supervisor.start()

    with pytest.raises(SessionNotReady) as exc_info:
        await supervisor.send("123@s.whatsapp.net", {"text": "hi"})
    assert exc_info.value.state == "connecting"

    fake_transport.latest("s1").emit(OPEN)
    await wait_until(lambda: supervisor.state == SessionState.CONNECTED)

    result = await supervisor.send("123@s.whatsapp.net", {"text": "hi"})

    assert result["status"] == "sent"
    assert fake_transport.latest("s1").sent == [("123@s.whatsapp.net", {"text": "hi"})]


@pytest.mark.asyncio
async def test_challenge_ignored_once_connected(make_supervisor, fake_transport, wait_until):
    fake_transport.on_connect = lambda handle, attempt: [OPEN, ChallengeEvent("late"), MessagesArrivedEvent([])]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: supervisor.state == SessionState.CONNECTED)
    await asyncio.sleep(0.01)

    assert supervisor.state == SessionState.CONNECTED
    assert supervisor.session.challenge is None


@pytest.mark.asyncio
async def test_messages_feed_chat_index(make_supervisor, fake_transport, wait_until):
    fake_transport.on_connect = lambda handle, attempt: [
        OPEN,
        MessagesArrivedEvent(
            [
                {"key": {"remote_jid": "a@s.whatsapp.net"}, "push_name": "Alice", "timestamp": 10},
                {"key": {"remote_jid": "a@s.whatsapp.net"}, "from_me": True, "timestamp": 11},
                {"chat_id": "b@g.us", "chat_name": "Group"},
                {"text": "no chat id"},
            ]
        ),
    ]
    supervisor = make_supervisor()

    await supervisor.start()
    await wait_until(lambda: len(supervisor.chats) == 2)

    chats = {c.id: c for c in supervisor.list_chats()}
    assert chats["a@s.whatsapp.net"].name == "Alice"
    assert chats["a@s.whatsapp.net"].unread == 1
    assert chats["a@s.whatsapp.net"].last_message_at == 11
    assert chats["b@g.us"].name == "Group"


@pytest.mark.asyncio
async def test_credential_persistence_failure_is_reported(
    make_supervisor, fake_transport, memory_store, events, wait_until
):
    """A failed credential write is recorded and published, not raised."""
    original_upsert = memory_store.upsert

    async def failing_upsert(session_id, **fields):
        if "credential" in fields:
            raise PersistenceFailure(session_id, "write credential")
        await original_upsert(session_id, **fields)

    memory_store.upsert = failing_upsert
    fake_transport.on_connect = lambda handle, attempt: [OPEN, CredentialsUpdatedEvent({"me": "1"})]
    supervisor = make_supervisor()

    with events.subscribe("s1") as queue:
        await supervisor.start()
        await wait_until(lambda: supervisor.session.last_error == PERSISTENCE_FAILURE)
        types = []
        while not queue.empty():
            types.append(queue.get_nowait()["type"])

    assert supervisor.state == SessionState.CONNECTED
    assert PERSISTENCE_FAILURE in types

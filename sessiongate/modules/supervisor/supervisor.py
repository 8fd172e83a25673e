"""
Connection supervisor.

Owns the state machine of a single session:

    pending -> connecting -> awaiting_challenge -> connected
                   |               |                 |
                   +-------- closed (retriable) -----+--> restarting -> connecting
                   +-------- closed (revoked) -------+--> terminated

Every event of the session (transport events, scheduled restarts, stop) is
applied under one lock, so transitions happen strictly in arrival order.
Other sessions run their own supervisors and never wait on this one.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, List, Optional

from ..auth.bridge import AuthStateBridge
from ..qr import render_ascii
from ..session.chats import ChatIndex, ChatSummary
from ..session.errors import MaxRetriesExceeded, PersistenceFailure, SessionNotReady
from ..session.events import SessionEvents
from ..session.models import Session, SessionState
from ..transport.interfaces import (
    DEFAULT_RETRIABLE_CODES,
    ChallengeEvent,
    CredentialsUpdatedEvent,
    MessagesArrivedEvent,
    StatusChangedEvent,
    Transport,
    TransportClosed,
    TransportError,
    TransportEvent,
    TransportHandle,
    is_retriable,
)
from .backoff import BackoffPolicy, RestartScheduler

logger = logging.getLogger(__name__)
qr_logger = logging.getLogger("sessiongate.qr")

MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
PERSISTENCE_FAILURE = "persistence_failure"


class ConnectionSupervisor:
    """Lifecycle owner for one session's transport connection."""

    def __init__(
        self,
        session_id: str,
        transport: Transport,
        bridge: AuthStateBridge,
        scheduler: RestartScheduler,
        policy: Optional[BackoffPolicy] = None,
        events: Optional[SessionEvents] = None,
        retriable_codes: Iterable[int] = DEFAULT_RETRIABLE_CODES,
        print_qr_console: bool = False,
    ):
        self.session = Session(id=session_id)
        self.transport = transport
        self.bridge = bridge
        self.scheduler = scheduler
        self.policy = policy or BackoffPolicy()
        self.events = events
        self.retriable_codes: FrozenSet[int] = frozenset(int(c) for c in retriable_codes)
        self.print_qr_console = print_qr_console
        self.chats = ChatIndex()

        self._lock = asyncio.Lock()
        self._handle: Optional[TransportHandle] = None
        self._consumer: Optional[asyncio.Task] = None
        self._credential: Optional[Any] = None
        self._stopped = False

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def has_live_handle(self) -> bool:
        return self._handle is not None

    def snapshot(self) -> Session:
        return self.session.snapshot()

    # Lifecycle

    async def start(self) -> None:
        """
        Leave pending: load the stored credential and open the transport.

        Raises:
            PersistenceFailure: If the credential cannot be loaded
        """
        async with self._lock:
            if self._stopped or self.session.state != SessionState.PENDING:
                return
            await self._open()

    async def stop(self) -> None:
        """Cancel any pending restart and fully release the transport."""
        self._stopped = True
        self.scheduler.cancel(self.session_id)
        async with self._lock:
            await self._release_transport()
        logger.info(f"Supervisor for {self.session_id} stopped")

    async def _open(self) -> None:
        self._set_state(SessionState.CONNECTING)
        self._credential = await self.bridge.load(self.session_id)

        try:
            handle, stream = await self.transport.connect(
                self._credential, session_id=self.session_id
            )
        except TransportError as e:
            logger.warning(f"Transport connect failed for {self.session_id}: {e}")
            closed = e if isinstance(e, TransportClosed) else TransportClosed(
                None, str(e), retriable=e.retriable
            )
            await self._on_closed(closed)
            return
        except Exception as e:
            logger.exception(f"Unexpected error connecting {self.session_id}")
            await self._on_closed(TransportClosed(None, str(e), retriable=True))
            return

        self._handle = handle
        self._consumer = asyncio.create_task(
            self._consume(handle, stream), name=f"session:{self.session_id}"
        )
        logger.info(f"Transport opened for {self.session_id} (stored credential: {self._credential is not None})")

    async def _consume(self, handle: TransportHandle, stream: AsyncIterator[TransportEvent]) -> None:
        """Apply the handle's events in order until it closes or is replaced."""
        try:
            async for event in stream:
                async with self._lock:
                    if self._handle is not handle:
                        return
                    await self._apply(event)
                    if self._handle is not handle:
                        return
            closed = TransportClosed(None, "event stream ended", retriable=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Event stream for {self.session_id} failed: {type(e).__name__}: {e}")
            closed = TransportClosed(None, f"event stream failed: {e}", retriable=True)

        async with self._lock:
            if self._handle is handle:
                await self._on_closed(closed)

    async def _release_transport(self) -> None:
        """Close the live handle and retire its consumer before anything new opens."""
        handle, self._handle = self._handle, None
        consumer, self._consumer = self._consumer, None

        if consumer is not None and consumer is not asyncio.current_task() and not consumer.done():
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)

        if handle is not None:
            try:
                await handle.close()
            except Exception as e:
                logger.warning(f"Error closing transport for {self.session_id}: {e}")
            logger.debug(f"Released transport handle for {self.session_id}")

    # Event handling

    async def _apply(self, event: TransportEvent) -> None:
        if isinstance(event, ChallengeEvent):
            await self._on_challenge(event.challenge)
        elif isinstance(event, CredentialsUpdatedEvent):
            await self._on_credentials(event.credential)
        elif isinstance(event, StatusChangedEvent):
            if event.status == "open":
                await self._on_open(event.device)
            elif event.status == "closed":
                retriable = is_retriable(event.reason, self.retriable_codes)
                await self._on_closed(TransportClosed(event.reason, event.detail, retriable=retriable))
            else:
                logger.warning(f"Unknown status {event.status!r} for {self.session_id}")
        elif isinstance(event, MessagesArrivedEvent):
            recorded = self.chats.record(event.messages)
            logger.debug(f"{len(event.messages)} messages arrived for {self.session_id}")
            self._notify("messages", count=len(event.messages), recorded=recorded)
        else:
            logger.warning(f"Ignoring unknown transport event for {self.session_id}: {event!r}")

    async def _on_challenge(self, challenge: str) -> None:
        if self.session.state not in (SessionState.CONNECTING, SessionState.AWAITING_CHALLENGE):
            logger.warning(f"Challenge received for {self.session_id} in state {self.session.state.value}, ignoring")
            return
        if not challenge:
            return

        self._set_state(SessionState.AWAITING_CHALLENGE)
        self.session.challenge = challenge
        logger.info(f"Session {self.session_id} has a QR")

        try:
            await self.bridge.on_challenge(self.session_id, challenge)
        except PersistenceFailure as e:
            logger.warning(f"Could not persist challenge for {self.session_id}: {e}")

        if self.print_qr_console:
            self._print_challenge(challenge)
        self._notify("challenge", challenge=challenge)

    async def _on_credentials(self, credential: Any) -> None:
        if self.session.state not in (
            SessionState.CONNECTING,
            SessionState.AWAITING_CHALLENGE,
            SessionState.CONNECTED,
        ):
            logger.warning(f"Credential update for {self.session_id} in state {self.session.state.value}, ignoring")
            return

        self._credential = credential
        try:
            written = await self.bridge.on_credential_updated(self.session_id, credential)
        except PersistenceFailure as e:
            self._persistence_failed(e)
            return
        if written:
            self._notify("credentials", persisted=True)

    async def _on_open(self, device: Optional[Dict[str, Any]]) -> None:
        if self.session.state not in (SessionState.CONNECTING, SessionState.AWAITING_CHALLENGE):
            logger.debug(f"Duplicate open for {self.session_id} ignored")
            return

        self.session.retry_count = 0
        self.session.last_error = None
        self._set_state(SessionState.CONNECTED)
        logger.info(f"Session {self.session_id} connected")

        try:
            await self.bridge.on_connected(self.session_id, self._credential, device)
        except PersistenceFailure as e:
            self._persistence_failed(e)

    async def _on_closed(self, closed: TransportClosed) -> None:
        logger.warning(f"Session {self.session_id} disconnected: {closed}")
        self._set_state(SessionState.CLOSED)
        self.session.last_error = closed.detail or (str(closed.code) if closed.code else None)

        # The backoff timer starts now; the restart still waits on our lock
        # until the old handle is released below.
        terminate_reason = None
        scheduled = False
        if self._stopped:
            pass
        elif not closed.retriable:
            terminate_reason = f"closed: {closed.code}" if closed.code else "closed"
        elif self.scheduler.is_pending(self.session_id):
            logger.debug(f"Restart already scheduled for {self.session_id}")
        elif self.policy.exhausted(self.session.retry_count):
            logger.error(
                f"Session {self.session_id} exceeded max restart attempts ({self.policy.max_attempts}). Manual reset required."
            )
            terminate_reason = MAX_RETRIES_EXCEEDED
        else:
            self.session.retry_count += 1
            self.session.last_restart_at = datetime.now(UTC)
            delay_ms = self.policy.delay_ms(self.session.retry_count)
            self._set_state(SessionState.RESTARTING)
            logger.warning(
                f"Session {self.session_id} stream error {closed.code} - scheduling restart in {delay_ms}ms "
                f"(attempt {self.session.retry_count}/{self.policy.max_attempts})"
            )
            scheduled = self.scheduler.schedule(self.session_id, delay_ms / 1000, self._restart)

        await self._release_transport()

        if self._stopped:
            return
        if terminate_reason is not None:
            await self._terminate(terminate_reason)
        elif scheduled:
            await self.bridge.mark_status(self.session_id, SessionState.RESTARTING)

    async def _restart(self) -> None:
        async with self._lock:
            if self._stopped or self.session.state != SessionState.RESTARTING:
                logger.debug(f"Dropping stale restart for {self.session_id}")
                return
            try:
                await self._open()
            except PersistenceFailure as e:
                self._persistence_failed(e)
                await self._on_closed(TransportClosed(None, "credential load failed", retriable=True))
                return
        logger.info(f"Session {self.session_id} restarted (auto)")

    async def _terminate(self, reason: str) -> None:
        self.scheduler.cancel(self.session_id)
        self.session.last_error = reason
        self._set_state(SessionState.TERMINATED)
        await self.bridge.mark_status(self.session_id, SessionState.TERMINATED)

    # Operations

    async def send(self, target: str, payload: Dict[str, Any]) -> Any:
        """
        Send through the live transport handle.

        Raises:
            SessionNotReady: No open handle (MaxRetriesExceeded after exhausting restarts)
            TransportError: The transport rejected the send
        """
        handle = self._handle
        if self.session.state != SessionState.CONNECTED or handle is None or not handle.is_open:
            if self.session.state == SessionState.TERMINATED and self.session.last_error == MAX_RETRIES_EXCEEDED:
                raise MaxRetriesExceeded(self.session_id, self.policy.max_attempts)
            raise SessionNotReady(self.session_id, self.session.state.value)
        return await handle.send(target, payload)

    def list_chats(self) -> List[ChatSummary]:
        return self.chats.list()

    # Helpers

    def _set_state(self, state: SessionState) -> None:
        previous = self.session.state
        self.session.transition(state)
        if previous != state:
            self._notify("state", previous=previous.value, **self.session.summary())

    def _persistence_failed(self, error: PersistenceFailure) -> None:
        logger.error(f"Credential persistence failed for {self.session_id}: {error}")
        self.session.last_error = PERSISTENCE_FAILURE
        self._notify(PERSISTENCE_FAILURE, operation=error.operation, error=str(error))

    def _notify(self, event_type: str, **data: Any) -> None:
        if self.events is not None:
            self.events.publish(self.session_id, event_type, data)

    def _print_challenge(self, challenge: str) -> None:
        try:
            qr_logger.info(f"[QR][{self.session_id}] raw: {challenge}\n{render_ascii(challenge)}")
        except Exception as e:
            logger.warning(f"Failed to print QR to console: {e}")

"""
Session registry.

Maps session ids to their ConnectionSupervisor. Mutations for one id are
serialized by a per-id lock; different ids never wait on each other.
"""

import asyncio
import logging
import weakref
from typing import Any, Dict, Iterable, List, Optional

from ..auth.bridge import AuthStateBridge
from ..qr import QRChannel
from ..supervisor import BackoffPolicy, ConnectionSupervisor, RestartScheduler
from ..transport.interfaces import DEFAULT_RETRIABLE_CODES, Transport
from ..session.chats import ChatSummary
from ..session.errors import PersistenceFailure, SessionNotFound
from ..session.events import SessionEvents
from ..session.models import Session, SessionState

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        bridge: AuthStateBridge,
        transport: Transport,
        policy: Optional[BackoffPolicy] = None,
        scheduler: Optional[RestartScheduler] = None,
        events: Optional[SessionEvents] = None,
        retriable_codes: Iterable[int] = DEFAULT_RETRIABLE_CODES,
        print_qr_console: bool = False,
    ):
        """
        Initialize session registry.

        Args:
            bridge: Credential bridge shared by all supervisors
            transport: Transport used to open connections
            policy: Reconnect backoff policy
            scheduler: Restart scheduler (one timer per session id)
            events: Observer hub receiving challenge/status events
            retriable_codes: Close codes that trigger an automatic restart
            print_qr_console: Log new challenges as ASCII QR codes
        """
        self.bridge = bridge
        self.transport = transport
        self.policy = policy or BackoffPolicy()
        self.scheduler = scheduler or RestartScheduler()
        self.events = events or SessionEvents()
        self.retriable_codes = frozenset(int(c) for c in retriable_codes)
        self.print_qr_console = print_qr_console

        self._supervisors: Dict[str, ConnectionSupervisor] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self.qr = QRChannel(self.get)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        # Weak values: the entry lives only while a caller holds or awaits the lock
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _build(self, session_id: str) -> ConnectionSupervisor:
        return ConnectionSupervisor(
            session_id,
            transport=self.transport,
            bridge=self.bridge,
            scheduler=self.scheduler,
            policy=self.policy,
            events=self.events,
            retriable_codes=self.retriable_codes,
            print_qr_console=self.print_qr_console,
        )

    async def create(self, session_id: str) -> Session:
        """
        Create a session, or return the live one for this id.

        Args:
            session_id: Caller-chosen session id

        Returns:
            Session snapshot

        Raises:
            ValueError: Empty session id
            PersistenceFailure: Placeholder write or credential load failed

        Logic:
        1. Return the existing supervisor unless it is terminated
        2. Persist a placeholder record
        3. Start a fresh supervisor (loads credential, opens transport)
        """
        if not session_id or not session_id.strip():
            raise ValueError("session id required")

        async with self._lock_for(session_id):
            return await self._create_locked(session_id)

    async def _create_locked(self, session_id: str) -> Session:
        existing = self._supervisors.get(session_id)
        if existing is not None:
            if existing.state != SessionState.TERMINATED:
                return existing.snapshot()
            logger.info(f"Replacing terminated supervisor for {session_id}")
            self._supervisors.pop(session_id, None)
            await existing.stop()

        await self.bridge.register(session_id)

        supervisor = self._build(session_id)
        self._supervisors[session_id] = supervisor
        try:
            await supervisor.start()
        except Exception:
            self._supervisors.pop(session_id, None)
            await supervisor.stop()
            raise

        logger.info(f"Session {session_id} created")
        self.events.publish(session_id, "created", supervisor.session.summary())
        return supervisor.snapshot()

    def get(self, session_id: str) -> Session:
        """
        Raises:
            SessionNotFound: No registry entry for the id
        """
        return self.supervisor(session_id).snapshot()

    def supervisor(self, session_id: str) -> ConnectionSupervisor:
        supervisor = self._supervisors.get(session_id)
        if supervisor is None:
            raise SessionNotFound(session_id)
        return supervisor

    def list(self) -> List[Session]:
        return [s.snapshot() for s in list(self._supervisors.values())]

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._supervisors

    def __len__(self) -> int:
        return len(self._supervisors)

    async def reset(self, session_id: str) -> Session:
        """
        Tear a session down completely and start it fresh.

        Logic:
        1. Stop the supervisor (cancels pending restart, closes transport)
        2. Delete persisted credential and challenge
        3. Drop the in-memory entry
        4. Create as new
        """
        if not session_id or not session_id.strip():
            raise ValueError("session id required")

        async with self._lock_for(session_id):
            supervisor = self._supervisors.pop(session_id, None)
            if supervisor is not None:
                await supervisor.stop()
            else:
                self.scheduler.cancel(session_id)

            await self.bridge.wipe(session_id)
            logger.info(f"Session {session_id} reset")
            self.events.publish(session_id, "reset", {})
            return await self._create_locked(session_id)

    async def send(self, session_id: str, target: str, payload: Dict[str, Any]) -> Any:
        """
        Raises:
            SessionNotFound: Unknown session
            SessionNotReady: No live transport handle
            TransportError: Transport rejected the send
        """
        return await self.supervisor(session_id).send(target, payload)

    def challenge(self, session_id: str) -> str:
        """
        Raises:
            SessionNotFound: Unknown session
            ChallengeNotAvailable: Session is not waiting for a QR scan
        """
        return self.qr.challenge(session_id)

    def chats(self, session_id: str) -> List[ChatSummary]:
        return self.supervisor(session_id).list_chats()

    async def restore(self) -> List[str]:
        """
        Start supervisors for every session persisted as connected.

        Returns:
            Ids that were started
        """
        started = []
        try:
            session_ids = await self.bridge.connected_session_ids()
        except PersistenceFailure as e:
            logger.warning(f"Error while restoring sessions: {e}")
            return started

        for session_id in session_ids:
            try:
                await self.create(session_id)
                started.append(session_id)
            except PersistenceFailure as e:
                logger.warning(f"Failed to restore session {session_id}: {e}")
        if started:
            logger.info(f"Restored sessions: {', '.join(started)}")
        return started

    async def shutdown(self) -> None:
        """Close every live transport and cancel every pending restart."""
        supervisors = list(self._supervisors.values())
        self._supervisors.clear()
        await asyncio.gather(*(s.stop() for s in supervisors), return_exceptions=True)
        await self.scheduler.cancel_all()
        logger.info(f"Registry shut down ({len(supervisors)} sessions stopped)")

    def count_by_state(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for supervisor in self._supervisors.values():
            counts[supervisor.state.value] = counts.get(supervisor.state.value, 0) + 1
        return counts

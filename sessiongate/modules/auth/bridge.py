"""
Auth state bridge between the transport and the credential store.

Credentials cross the store boundary as an opaque string blob. Strings pass
through unchanged; anything else is stored as canonical JSON and decoded on
load.

Write policy for credentials: the first non-empty credential persisted for a
session is authoritative until the session is reset. Identical updates are
suppressed and later distinct values are not written.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from ..session.errors import PersistenceFailure
from ..session.models import SessionState
from .store import CredentialStore

logger = logging.getLogger(__name__)

_EMPTY_BLOBS = {"", "{}", "null", "[]"}


def encode_credential(credential: Any) -> Optional[str]:
    """Serialize a credential to its stored blob, or None if it is empty."""
    if credential is None:
        return None
    if isinstance(credential, bytes):
        credential = credential.decode()
    if isinstance(credential, str):
        blob = credential
    else:
        blob = json.dumps(credential, sort_keys=True, separators=(",", ":"), default=str)
    return None if blob.strip() in _EMPTY_BLOBS else blob


def decode_credential(blob: Optional[str]) -> Optional[Any]:
    """Inverse of encode_credential; unparseable blobs are returned as strings."""
    if not blob or blob.strip() in _EMPTY_BLOBS:
        return None
    try:
        return json.loads(blob)
    except ValueError:
        return blob


class AuthStateBridge:
    """Adapts a CredentialStore to what the supervisor and transport need."""

    def __init__(self, store: CredentialStore):
        self.store = store
        # session_id -> blob last known to be persisted
        self._persisted: Dict[str, str] = {}

    async def register(self, session_id: str) -> None:
        """Write the placeholder record so the id is visible before connecting."""
        await self.store.upsert(session_id, status=SessionState.PENDING.value, challenge=None)

    async def load(self, session_id: str) -> Optional[Any]:
        """
        Load the stored credential.

        Returns:
            Decoded credential, or None when the transport must start pairing

        Raises:
            PersistenceFailure: If the store cannot be read
        """
        record = await self.store.get(session_id)
        blob = encode_credential(record.credential) if record else None
        if blob is None:
            self._persisted.pop(session_id, None)
            logger.info(f"No stored credential for {session_id}, pairing required")
            return None

        self._persisted[session_id] = blob
        return decode_credential(blob)

    async def _current_blob(self, session_id: str) -> Optional[str]:
        if session_id in self._persisted:
            return self._persisted[session_id]
        record = await self.store.get(session_id)
        blob = encode_credential(record.credential) if record else None
        if blob is not None:
            self._persisted[session_id] = blob
        return blob

    async def on_credential_updated(self, session_id: str, credential: Any) -> bool:
        """
        Write new credential material through to the store.

        Returns:
            True if the store was written

        Raises:
            PersistenceFailure: If the write fails
        """
        blob = encode_credential(credential)
        if blob is None:
            logger.debug(f"Ignoring empty credential update for {session_id}")
            return False

        existing = await self._current_blob(session_id)
        if existing == blob:
            logger.debug(f"Credential for {session_id} unchanged, skipping write")
            return False
        if existing is not None:
            logger.info(f"Credential for {session_id} already persisted; keeping it until reset")
            return False

        await self.store.upsert(session_id, credential=blob)
        self._persisted[session_id] = blob
        logger.info(f"Persisted credential for {session_id}")
        return True

    async def on_challenge(self, session_id: str, challenge: str) -> None:
        """Store the latest challenge, replacing any earlier one."""
        await self.store.upsert(
            session_id, status=SessionState.AWAITING_CHALLENGE.value, challenge=challenge
        )

    async def on_connected(
        self, session_id: str, credential: Any = None, device_info: Optional[Dict[str, Any]] = None
    ) -> None:
        """Persist connected status, clear the stored challenge and record the device."""
        fields: Dict[str, Optional[str]] = {
            "status": SessionState.CONNECTED.value,
            "challenge": None,
        }
        if device_info:
            fields["device"] = json.dumps(device_info, sort_keys=True, default=str)
        await self.store.upsert(session_id, **fields)

        if credential is not None:
            await self.on_credential_updated(session_id, credential)

    async def mark_status(self, session_id: str, state: SessionState) -> bool:
        """
        Best-effort status write.

        Returns:
            False if the store rejected the write (logged, not raised)
        """
        try:
            await self.store.upsert(session_id, status=state.value, challenge=None)
            return True
        except PersistenceFailure as e:
            logger.warning(f"Could not persist status {state.value} for {session_id}: {e}")
            return False

    async def wipe(self, session_id: str) -> None:
        """Delete all persisted state for the session."""
        self._persisted.pop(session_id, None)
        await self.store.delete(session_id)
        logger.info(f"Wiped persisted state for {session_id}")

    async def connected_session_ids(self) -> List[str]:
        """Ids whose persisted status is connected."""
        records = await self.store.list_records()
        return sorted(r.session_id for r in records if r.status == SessionState.CONNECTED.value)

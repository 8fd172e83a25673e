"""
Credential store.

Durable per-session record of status, pending challenge and credential blob.
The Redis implementation is the production backend; the in-memory one backs
local runs without Redis and the test suite.

Redis layout:
- session:{id}   hash {session_id, status, challenge, credential, device, created_at, updated_at}
- sessions:all   set of known session ids
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as redis

from ..session.errors import PersistenceFailure

logger = logging.getLogger(__name__)

RECORD_FIELDS = ("status", "challenge", "credential", "device")


@dataclass
class CredentialRecord:
    """Persisted state of one session."""

    session_id: str
    status: Optional[str] = None
    challenge: Optional[str] = None
    credential: Optional[str] = None
    device: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialRecord":
        """Create from a stored mapping, treating empty strings as missing."""

        def value(key: str) -> Optional[str]:
            raw = data.get(key)
            if isinstance(raw, bytes):
                raw = raw.decode()
            return raw or None

        return cls(
            session_id=value("session_id") or "",
            status=value("status"),
            challenge=value("challenge"),
            credential=value("credential"),
            device=value("device"),
            created_at=value("created_at"),
            updated_at=value("updated_at"),
        )


class CredentialStore(Protocol):
    """Protocol for credential persistence backends."""

    async def get(self, session_id: str) -> Optional[CredentialRecord]:
        ...

    async def upsert(self, session_id: str, **fields: Optional[str]) -> None:
        """Create or update a record. Fields set to None are cleared."""
        ...

    async def delete(self, session_id: str) -> None:
        ...

    async def list_records(self) -> List[CredentialRecord]:
        ...


def _check_fields(fields: Dict[str, Optional[str]]) -> None:
    unknown = set(fields) - set(RECORD_FIELDS)
    if unknown:
        raise ValueError(f"Unknown credential record fields: {', '.join(sorted(unknown))}")


class RedisCredentialStore:
    """Credential store backed by one Redis hash per session."""

    INDEX_KEY = "sessions:all"

    def __init__(self, redis_client):
        """
        Initialize credential store.

        Args:
            redis_client: Async Redis client (decode_responses=True)
        """
        self.redis = redis_client

    def _key(self, session_id: str) -> str:
        return f"session:{session_id}"

    async def get(self, session_id: str) -> Optional[CredentialRecord]:
        try:
            data = await self.redis.hgetall(self._key(session_id))
        except redis.RedisError as e:
            raise PersistenceFailure(session_id, "read session record", e) from e

        if not data:
            return None
        record = CredentialRecord.from_dict(data)
        record.session_id = record.session_id or session_id
        return record

    async def upsert(self, session_id: str, **fields: Optional[str]) -> None:
        """
        Create or update a session record.

        Logic:
        1. Write non-null fields plus updated_at
        2. Remove fields explicitly set to None
        3. Stamp created_at only if absent
        4. Index the session id
        """
        _check_fields(fields)
        key = self._key(session_id)
        now = datetime.now(UTC).isoformat()

        mapping = {k: v for k, v in fields.items() if v is not None}
        mapping["session_id"] = session_id
        mapping["updated_at"] = now
        cleared = [k for k, v in fields.items() if v is None]

        try:
            await self.redis.hset(key, mapping=mapping)
            if cleared:
                await self.redis.hdel(key, *cleared)
            await self.redis.hsetnx(key, "created_at", now)
            await self.redis.sadd(self.INDEX_KEY, session_id)
        except redis.RedisError as e:
            raise PersistenceFailure(session_id, f"write {', '.join(fields) or 'record'}", e) from e

    async def delete(self, session_id: str) -> None:
        try:
            await self.redis.delete(self._key(session_id))
            await self.redis.srem(self.INDEX_KEY, session_id)
        except redis.RedisError as e:
            raise PersistenceFailure(session_id, "delete session record", e) from e

    async def list_records(self) -> List[CredentialRecord]:
        """Return every indexed record, pruning ids whose hash disappeared."""
        try:
            session_ids = await self.redis.smembers(self.INDEX_KEY)
        except redis.RedisError as e:
            raise PersistenceFailure("*", "list session records", e) from e

        records = []
        for session_id in session_ids:
            if isinstance(session_id, bytes):
                session_id = session_id.decode()
            record = await self.get(session_id)
            if record:
                records.append(record)
            else:
                # Clean up stale entry
                try:
                    await self.redis.srem(self.INDEX_KEY, session_id)
                except redis.RedisError as e:
                    logger.warning(f"Could not prune stale index entry {session_id}: {e}")
        return records


class InMemoryCredentialStore:
    """Process-local credential store (no durability)."""

    def __init__(self):
        self._records: Dict[str, CredentialRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[CredentialRecord]:
        record = self._records.get(session_id)
        return CredentialRecord(**record.to_dict()) if record else None

    async def upsert(self, session_id: str, **fields: Optional[str]) -> None:
        _check_fields(fields)
        now = datetime.now(UTC).isoformat()
        async with self._lock:
            record = self._records.get(session_id)
            if record is None:
                record = CredentialRecord(session_id=session_id, created_at=now)
                self._records[session_id] = record
            for name, value in fields.items():
                setattr(record, name, value)
            record.updated_at = now

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._records.pop(session_id, None)

    async def list_records(self) -> List[CredentialRecord]:
        return [CredentialRecord(**r.to_dict()) for r in self._records.values()]

"""
Session data model.

A Session is the in-memory view of one account connection lifecycle. The
supervisor that owns it is the only writer; everyone else works on snapshots.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, Optional


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    PENDING = "pending"
    CONNECTING = "connecting"
    AWAITING_CHALLENGE = "awaiting_challenge"
    CONNECTED = "connected"
    CLOSED = "closed"
    RESTARTING = "restarting"
    TERMINATED = "terminated"


@dataclass
class Session:
    """Lifecycle metadata for one session id."""

    id: str
    state: SessionState = SessionState.PENDING
    challenge: Optional[str] = None
    retry_count: int = 0
    last_restart_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_challenge(self) -> bool:
        return bool(self.challenge)

    def transition(self, state: SessionState) -> None:
        """Move to a new state, clearing the challenge when leaving the QR phase."""
        self.state = state
        if state != SessionState.AWAITING_CHALLENGE:
            self.challenge = None
        self.updated_at = datetime.now(UTC)

    def snapshot(self) -> "Session":
        """Return a detached copy safe to hand to callers."""
        return replace(self)

    def summary(self) -> Dict[str, Any]:
        """Summary used by the API and observer events."""
        return {
            "id": self.id,
            "state": self.state.value,
            "has_challenge": self.has_challenge,
            "retry_count": self.retry_count,
            "last_restart_at": self.last_restart_at.isoformat() if self.last_restart_at else None,
            "last_error": self.last_error,
        }

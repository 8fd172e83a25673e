"""
Session Module - Black Box Interface

Purpose: Manage account session lifecycles
Interface: Session, SessionState, SessionEvents, ChatIndex, error taxonomy
Hidden: Snapshot copying, observer queue management

Shared vocabulary for the auth, supervisor and registry modules.
"""

from .chats import ChatIndex, ChatSummary
from .errors import (
    ChallengeNotAvailable,
    MaxRetriesExceeded,
    PersistenceFailure,
    SessionError,
    SessionNotFound,
    SessionNotReady,
)
from .events import SessionEvents
from .models import Session, SessionState

__all__ = [
    "ChallengeNotAvailable",
    "ChatIndex",
    "ChatSummary",
    "MaxRetriesExceeded",
    "PersistenceFailure",
    "Session",
    "SessionError",
    "SessionEvents",
    "SessionNotFound",
    "SessionNotReady",
    "SessionState",
]

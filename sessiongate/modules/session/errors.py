"""
Session error taxonomy.

Errors raised to direct callers (API handlers) of the registry. Failures that
happen inside a supervisor's state machine are never raised outward; they are
reflected as state transitions instead.
"""

from typing import Optional


class SessionError(Exception):
    """Base class for session lifecycle errors."""

    def __init__(self, session_id: str, message: Optional[str] = None):
        self.session_id = session_id
        super().__init__(message or f"Session {session_id}: {self.__class__.__name__}")


class SessionNotFound(SessionError):
    """The referenced session id has no registry entry."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session not found: {session_id}")


class SessionNotReady(SessionError):
    """The operation needs a live transport handle that does not exist."""

    def __init__(self, session_id: str, state: Optional[str] = None):
        self.state = state
        detail = f" (state: {state})" if state else ""
        super().__init__(session_id, f"Session {session_id} not ready{detail}")


class MaxRetriesExceeded(SessionNotReady):
    """The session exhausted its automatic restarts and needs an explicit reset."""

    def __init__(self, session_id: str, attempts: int):
        self.attempts = attempts
        SessionError.__init__(
            self,
            session_id,
            f"Session {session_id} exceeded max restart attempts ({attempts}). Manual reset required.",
        )
        self.state = "terminated"


class ChallengeNotAvailable(SessionError):
    """No login challenge is currently pending for the session."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"QR not available for session {session_id}")


class PersistenceFailure(SessionError):
    """A credential store operation failed."""

    def __init__(self, session_id: str, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(session_id, f"Failed to {operation} for session {session_id}{reason}")

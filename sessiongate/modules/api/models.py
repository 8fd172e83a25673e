"""
SessionGate API data models.

Request and response bodies of the HTTP binding. Field names follow the
routes' JSON contract (`session`, `to`, `message`, ...).
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..session.models import Session, SessionState

SESSION_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.@:-]*$"


# Request Models (API Input)


class SessionRequest(BaseModel):
    """Body naming a session."""

    session: str = Field(
        ...,
        description="Session identifier",
        min_length=1,
        max_length=128,
        pattern=SESSION_ID_PATTERN,
    )


class CreateSessionRequest(SessionRequest):
    """Request to create (or re-attach to) a session."""


class SendRequest(SessionRequest):
    """Common fields of an outbound message."""

    to: str = Field(..., description="Recipient address", min_length=1)

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        """Reject whitespace-only recipients."""
        if not v.strip():
            raise ValueError("Recipient must not be blank")
        return v.strip()


class SendTextRequest(SendRequest):
    """Send a text message."""

    message: str = Field(..., description="Message text", min_length=1)


class SendImageRequest(SendRequest):
    """Send an image given as URL or data: URI."""

    image: str = Field(..., description="Image URL or data: URI", min_length=1)
    caption: Optional[str] = Field(None, description="Optional caption")


class SendFileRequest(SendRequest):
    """Send a document given as URL or data: URI."""

    file: str = Field(..., description="File URL or data: URI", min_length=1)
    mimetype: Optional[str] = Field(None, description="MIME type of the document")
    filename: Optional[str] = Field(None, description="File name shown to the recipient")


# Response Models (API Output)


class SessionResponse(BaseModel):
    """Session summary."""

    id: str
    state: SessionState
    has_challenge: bool
    retry_count: int
    last_restart_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            state=session.state,
            has_challenge=session.has_challenge,
            retry_count=session.retry_count,
            last_restart_at=session.last_restart_at,
            last_error=session.last_error,
        )


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]
    count: int


class ChallengeResponse(BaseModel):
    """Reference to the current login challenge of a session."""

    session: str
    challenge: str = Field(..., description="Raw challenge string")
    qr_url: str = Field(..., description="Relative URL of the PNG rendering")


class ChatResponse(BaseModel):
    id: str
    name: Optional[str] = None
    unread: int = 0
    last_message_at: Optional[Any] = None


class ChatListResponse(BaseModel):
    session: str
    chats: List[ChatResponse]


class SendResponse(BaseModel):
    session: str
    to: str
    result: Any = None

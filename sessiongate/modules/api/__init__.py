"""
API Module - Black Box Interface

Purpose: HTTP request/response contracts
Interface: Request/response models, outbound payload builders
Hidden: Field validation, media reference decoding

The API module only describes the wire contract - it contains no lifecycle logic.
All logic is delegated to the registry.
"""

from .models import (
    SESSION_ID_PATTERN,
    ChallengeResponse,
    ChatListResponse,
    ChatResponse,
    CreateSessionRequest,
    SendFileRequest,
    SendImageRequest,
    SendResponse,
    SendTextRequest,
    SessionListResponse,
    SessionRequest,
    SessionResponse,
)
from .payloads import file_payload, image_payload, parse_data_uri, text_payload

__all__ = [
    "SESSION_ID_PATTERN",
    "ChallengeResponse",
    "ChatListResponse",
    "ChatResponse",
    "CreateSessionRequest",
    "SendFileRequest",
    "SendImageRequest",
    "SendResponse",
    "SendTextRequest",
    "SessionListResponse",
    "SessionRequest",
    "SessionResponse",
    "file_payload",
    "image_payload",
    "parse_data_uri",
    "text_payload",
]

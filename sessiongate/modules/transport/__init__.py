"""
Transport Module - Black Box Interface

Purpose: Boundary to the external messaging wire protocol
Interface: Transport.connect(), TransportHandle.send()/close(), transport events
Hidden: Handshake, encryption, framing (all owned by the configured transport)

Any implementation satisfying the Transport protocol can be plugged in via
TRANSPORT_FACTORY.
"""

from .factory import load_transport
from .interfaces import (
    DEFAULT_RETRIABLE_CODES,
    ChallengeEvent,
    CredentialsUpdatedEvent,
    DisconnectReason,
    MessagesArrivedEvent,
    StatusChangedEvent,
    Transport,
    TransportClosed,
    TransportError,
    TransportEvent,
    TransportHandle,
    is_retriable,
)

__all__ = [
    "DEFAULT_RETRIABLE_CODES",
    "ChallengeEvent",
    "CredentialsUpdatedEvent",
    "DisconnectReason",
    "MessagesArrivedEvent",
    "StatusChangedEvent",
    "Transport",
    "TransportClosed",
    "TransportError",
    "TransportEvent",
    "TransportHandle",
    "is_retriable",
    "load_transport",
]

"""Transport interfaces following Black Box Design principles."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, List, Literal, Optional, Protocol, Tuple, Union


class DisconnectReason(IntEnum):
    """Close codes reported by the messaging endpoint."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    FORBIDDEN = 403
    MULTIDEVICE_MISMATCH = 411
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


# Stream-level failures worth reconnecting for. Everything else means the
# remote end revoked or replaced the session.
DEFAULT_RETRIABLE_CODES: FrozenSet[int] = frozenset(
    {
        DisconnectReason.RESTART_REQUIRED,
        DisconnectReason.CONNECTION_CLOSED,
        DisconnectReason.CONNECTION_LOST,
        DisconnectReason.UNAVAILABLE_SERVICE,
    }
)


def is_retriable(code: Optional[int], retriable_codes: Iterable[int] = DEFAULT_RETRIABLE_CODES) -> bool:
    """Classify a close code. Unknown or missing codes are not retried."""
    if code is None:
        return False
    return int(code) in set(retriable_codes)


class TransportError(Exception):
    """Raised by a transport when an operation cannot be performed."""

    def __init__(self, message: str, retriable: bool = True):
        super().__init__(message)
        self.retriable = retriable


class TransportClosed(TransportError):
    """A connection closure, carrying the reason used to pick restart or terminate."""

    def __init__(self, code: Optional[int], detail: Optional[str] = None, retriable: bool = False):
        self.code = code
        self.detail = detail
        super().__init__(f"connection closed (code={code}): {detail or 'no detail'}", retriable=retriable)


# Events


@dataclass(frozen=True)
class ChallengeEvent:
    """A pairing challenge the operator must present out-of-band."""

    challenge: str


@dataclass(frozen=True)
class CredentialsUpdatedEvent:
    """New credential material (opaque to everyone but the transport and bridge)."""

    credential: Any


@dataclass(frozen=True)
class StatusChangedEvent:
    """Connection opened or closed."""

    status: Literal["open", "closed"]
    reason: Optional[int] = None
    detail: Optional[str] = None
    device: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class MessagesArrivedEvent:
    """Batch of incoming messages."""

    messages: List[Dict[str, Any]] = field(default_factory=list)


TransportEvent = Union[ChallengeEvent, CredentialsUpdatedEvent, StatusChangedEvent, MessagesArrivedEvent]


class TransportHandle(Protocol):
    """Protocol for a live connection."""

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, target: str, payload: Dict[str, Any]) -> Any:
        """
        Send a payload to a target.

        Raises:
            TransportError: If the handle is not open
        """
        ...

    async def close(self) -> None:
        """Close the connection and release its resources."""
        ...


class Transport(Protocol):
    """Protocol for the messaging wire protocol implementation."""

    async def connect(
        self, credential: Optional[Any], *, session_id: str
    ) -> Tuple[TransportHandle, AsyncIterator[TransportEvent]]:
        """
        Open a connection.

        Args:
            credential: Stored credential, or None to start challenge pairing
            session_id: Session the connection belongs to

        Returns:
            Tuple of (handle, ordered event stream)
        """
        ...

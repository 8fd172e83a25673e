"""
Chat index built from a session's incoming message stream.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional


@dataclass
class ChatSummary:
    """Minimal view of one chat seen on the message stream."""

    id: str
    name: Optional[str] = None
    unread: int = 0
    last_message_at: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _chat_id(message: Dict[str, Any]) -> Optional[str]:
    key = message.get("key")
    if isinstance(key, dict) and key.get("remote_jid"):
        return key["remote_jid"]
    return message.get("chat_id") or message.get("remote_jid")


class ChatIndex:
    """Per-session record of chats, updated from messagesArrived events."""

    def __init__(self):
        self._chats: Dict[str, ChatSummary] = {}

    def record(self, messages: Iterable[Dict[str, Any]]) -> int:
        """
        Fold a batch of messages into the index.

        Returns:
            Number of messages that could be attributed to a chat
        """
        recorded = 0
        for message in messages:
            if not isinstance(message, dict):
                continue
            chat_id = _chat_id(message)
            if not chat_id:
                continue

            chat = self._chats.setdefault(chat_id, ChatSummary(id=chat_id))
            name = message.get("chat_name") or message.get("push_name")
            if name:
                chat.name = name
            if not message.get("from_me"):
                chat.unread += 1
            chat.last_message_at = message.get("timestamp", chat.last_message_at)
            recorded += 1
        return recorded

    def list(self) -> List[ChatSummary]:
        return list(self._chats.values())

    def clear(self) -> None:
        self._chats.clear()

    def __len__(self) -> int:
        return len(self._chats)

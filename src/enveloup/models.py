"""Models for chat messages, conversations and received files."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid


class MessageDirection(Enum):
    """Direction of a message relative to the current user."""
    SENT = "sent"
    RECEIVED = "received"


@dataclass
class ChatMessage:
    """
    A chat message exchanged with a peer.

    ``content`` is None when the message arrived encrypted and could not be
    decrypted; ``error`` then says why.
    """
    peer: str
    content: Optional[str]
    direction: MessageDirection
    encrypted: bool
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    @property
    def undecryptable(self) -> bool:
        """Whether the message could not be decrypted."""
        return self.content is None

    def display_text(self) -> str:
        """Text to show for the message."""
        if self.content is None:
            return "[undecryptable message]"
        return self.content


class Conversation:
    """A conversation with one peer."""

    def __init__(self, peer: str) -> None:
        self.peer = peer
        self._messages: list[ChatMessage] = []

    @property
    def messages(self) -> list[ChatMessage]:
        """Returns all messages in the conversation."""
        return list(self._messages)

    def last_message(self) -> Optional[ChatMessage]:
        return self._messages[-1] if self._messages else None

    def received_messages(self) -> list[ChatMessage]:
        return [m for m in self._messages if m.direction == MessageDirection.RECEIVED]

    def sent_messages(self) -> list[ChatMessage]:
        return [m for m in self._messages if m.direction == MessageDirection.SENT]

    def is_empty(self) -> bool:
        return len(self._messages) == 0

    def append(self, message: ChatMessage) -> None:
        """Adds a message, ignoring duplicates by id."""
        if any(m.id == message.id for m in self._messages):
            return
        self._messages.append(message)


@dataclass
class ReceivedFile:
    """A downloaded file after decryption."""
    file_id: str
    file_name: str
    mime_type: str
    data: bytes
    encrypted: bool
    lossless: bool = True

    @property
    def size(self) -> int:
        return len(self.data)

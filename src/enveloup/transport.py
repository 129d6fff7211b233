"""
Duplex channel abstraction and inbound message routing.

A single duplex channel per client session carries chat text, encrypted
envelopes and file frames. Inbound frames are decoded once by the
MessageRouter and dispatched either to the handler registered for their
transfer id (file frames) or to every chat handler (everything else).
"""

import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import ChannelConfig
from .messages import (
    EncryptedMessage,
    FileError,
    Message,
    TextMessage,
    parse_message,
    transfer_id_of,
)
from .registry import HandlerRegistry
from .types import ChannelError, MalformedMessageError

logger = logging.getLogger(__name__)

Handler = Callable[[Message], Union[None, Awaitable[None]]]
Frame = Union[Message, dict]
CloseListener = Callable[[str], None]


def to_frame(message: Frame) -> dict:
    """JSON-compatible form of a message or raw frame."""
    if isinstance(message, dict):
        return message
    return message.to_dict()


async def _invoke(handler: Handler, message: Message) -> None:
    result = handler(message)
    if inspect.isawaitable(result):
        await result


class MessageRouter:
    """Decodes inbound frames and dispatches them to registered handlers."""

    def __init__(self) -> None:
        self.file_handlers: HandlerRegistry[str, Handler] = HandlerRegistry("file handlers")
        self.message_handlers: HandlerRegistry[str, Handler] = HandlerRegistry("message handlers")

    async def dispatch(self, frame: Union[str, bytes, dict]) -> Optional[Message]:
        """
        Decode and route one inbound frame.

        Malformed frames are logged and dropped; handler exceptions are
        logged and do not stop delivery to other handlers.

        Returns:
            The decoded message, or None if the frame was dropped
        """
        try:
            message = parse_message(frame)
        except MalformedMessageError as e:
            logger.warning("Dropping inbound frame: %s", e)
            return None

        if isinstance(message, (TextMessage, EncryptedMessage)):
            for key, handler in self.message_handlers.items():
                await self._deliver(key, handler, message)
            return message

        transfer_id = transfer_id_of(message)
        if transfer_id is None and isinstance(message, FileError) and len(self.file_handlers) == 1:
            # Unattributed error while exactly one transfer is active
            transfer_id = next(key for key, _ in self.file_handlers.items())

        handler = self.file_handlers.get(transfer_id) if transfer_id is not None else None
        if handler is None:
            logger.debug("No handler for %s frame (transfer %s)", type(message).__name__, transfer_id)
            return message

        await self._deliver(transfer_id, handler, message)
        return message

    async def _deliver(self, key: str, handler: Handler, message: Message) -> None:
        try:
            await _invoke(handler, message)
        except Exception:
            logger.exception("Handler %r failed on %s", key, type(message).__name__)


class DuplexChannel(ABC):
    """A persistent, message-oriented, bidirectional channel."""

    def __init__(self, router: Optional[MessageRouter] = None) -> None:
        self.router = router or MessageRouter()
        self._close_listeners: List[CloseListener] = []

    def on_close(self, listener: CloseListener) -> None:
        """Call listener with a reason when the channel closes or the connection drops."""
        self._close_listeners.append(listener)

    def _notify_closed(self, reason: str) -> None:
        for listener in list(self._close_listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Close listener failed")

    @abstractmethod
    async def send(self, message: Frame) -> None:
        """Send one frame, raising ChannelError if the channel is unusable."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and drop all handlers."""
        ...


class MemoryChannel(DuplexChannel):
    """
    In-memory channel (for testing).

    Every sent frame is recorded in ``sent`` and, when a peer channel is
    linked, routed to the peer's router as a JSON round trip.
    """

    def __init__(self, router: Optional[MessageRouter] = None) -> None:
        super().__init__(router)
        self.sent: List[dict] = []
        self.peer: Optional["MemoryChannel"] = None
        self.closed = False

    @classmethod
    def pair(cls) -> "tuple[MemoryChannel, MemoryChannel]":
        """Two channels wired to each other."""
        a, b = cls(), cls()
        a.peer, b.peer = b, a
        return a, b

    async def send(self, message: Frame) -> None:
        if self.closed:
            raise ChannelError("Channel is closed")
        frame = to_frame(message)
        self.sent.append(frame)
        if self.peer is not None:
            await self.peer.router.dispatch(json.dumps(frame))

    async def receive(self, frame: Union[str, bytes, dict]) -> Optional[Message]:
        """Inject an inbound frame as if it arrived from the remote side."""
        return await self.router.dispatch(frame)

    async def close(self) -> None:
        self.closed = True
        self._notify_closed("channel closed")
        self.router.file_handlers.clear()
        self.router.message_handlers.clear()


class WebSocketChannel(DuplexChannel):
    """
    Duplex channel over a WebSocket.

    The bearer token is passed as the WebSocket sub-protocol at connect
    time rather than in-band.

    Example usage:
        ```python
        channel = WebSocketChannel(ChannelConfig.localhost(token))
        await channel.connect()
        reader = asyncio.create_task(channel.run())
        await channel.send(TextMessage("hello"))
        ```
    """

    def __init__(self, config: ChannelConfig, router: Optional[MessageRouter] = None) -> None:
        super().__init__(router)
        self.config = config
        self._ws: Any = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """Open the connection, raising ChannelError on failure."""
        if self._ws is not None:
            logger.warning("WebSocket already connected")
            return
        try:
            self._ws = await websockets.connect(self.config.url, subprotocols=[self.config.token])
        except (OSError, WebSocketException) as e:
            raise ChannelError(f"Could not connect to {self.config.url}: {e}") from e
        logger.info("WebSocket connected to %s", self.config.url)

    async def run(self) -> None:
        """Read frames until the connection closes, routing each one."""
        if self._ws is None:
            raise ChannelError("WebSocket is not connected")
        try:
            async for frame in self._ws:
                await self.router.dispatch(frame)
        except ConnectionClosed as e:
            logger.info("WebSocket closed: %s", e)
        finally:
            self._ws = None
            self._notify_closed("connection lost")

    async def send(self, message: Frame) -> None:
        if self._ws is None:
            raise ChannelError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(to_frame(message)))
        except (ConnectionClosed, WebSocketException) as e:
            raise ChannelError(f"Send failed: {e}") from e

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        self._notify_closed("channel closed")
        self.router.file_handlers.clear()
        self.router.message_handlers.clear()

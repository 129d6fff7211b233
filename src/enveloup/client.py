"""
Secure chat client.

The SecureChatClient ties the session core together: it establishes a
shared secret per peer, encrypts outgoing text and files with it, decrypts
inbound messages and downloads, and falls back to plaintext when the key
exchange could not finish and the configuration allows it.
"""

import asyncio
import inspect
import json
import logging
from typing import Awaitable, Callable, Dict, Optional, Set, Union

from .cipher import CipherEngine, CryptographyCipherEngine
from .config import EnveloupConfig
from .crypto import EncryptedFile, decrypt_file, decrypt_text, encrypt_file, encrypt_text
from .envelope import is_encrypted_message
from .handshake import HandshakeResult, KeyExchangeCoordinator, KeyExchangeService
from .messages import EncryptedMessage, Message, TextMessage
from .models import ChatMessage, Conversation, MessageDirection, ReceivedFile
from .storage import InMemorySecretStore, SecretStore
from .transfer import ChunkedTransferManager, UploadResult
from .transport import DuplexChannel
from .types import (
    CipherEngineError,
    KeyUnavailableError,
    MalformedEnvelopeError,
    RegistryError,
)

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ChatMessage], Union[None, Awaitable[None]]]

# Leading bytes of a JSON-encoded EncryptedFile
ENCRYPTED_FILE_PREFIX = b'{"encrypted"'


class SecureChatClient:
    """
    High-level client for end-to-end encrypted chat over a duplex channel.

    Example usage:
        ```python
        channel = WebSocketChannel(ChannelConfig.localhost(token))
        await channel.connect()
        client = SecureChatClient("alice", channel, key_service, on_message=print)
        asyncio.create_task(channel.run())

        await client.open_conversation("bob")
        await client.send_text("bob", "Hello!")
        ```
    """

    def __init__(
        self,
        local_user: str,
        channel: DuplexChannel,
        key_service: KeyExchangeService,
        store: Optional[SecretStore] = None,
        config: Optional[EnveloupConfig] = None,
        engine: Optional[CipherEngine] = None,
        on_message: Optional[MessageCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the client and subscribe to inbound chat messages.

        Args:
            local_user: Our username.
            channel: Duplex channel to the chat server.
            key_service: Remote key-exchange service.
            store: Secret store (default: in-memory).
            config: Handshake, transfer and cipher settings.
            engine: Cipher engine (default: CryptographyCipherEngine).
            on_message: Called with every inbound ChatMessage.
            sleep: Coroutine used between handshake polls.

        Raises:
            RegistryError: If a client for local_user is already subscribed
                on this channel.
        """
        self.local_user = local_user
        self.channel = channel
        self.config = config or EnveloupConfig()
        self.store = store or InMemorySecretStore()
        self.engine = engine or CryptographyCipherEngine()
        self.on_message = on_message
        self.coordinator = KeyExchangeCoordinator(
            local_user,
            key_service,
            self.store,
            config=self.config.handshake,
            sleep=sleep,
        )
        self.transfers = ChunkedTransferManager(channel, self.config.transfer)
        self._conversations: Dict[str, Conversation] = {}
        self._insecure: Set[str] = set()

        if not channel.router.message_handlers.register(self._handler_key, self._handle_message):
            raise RegistryError(f"A chat client for {local_user} is already subscribed")

    @property
    def _handler_key(self) -> str:
        return f"chat:{self.local_user}"

    # MARK: - Conversations

    def conversation(self, peer: str) -> Conversation:
        """Get or create the local conversation with a peer."""
        conv = self._conversations.get(peer)
        if conv is None:
            conv = Conversation(peer)
            self._conversations[peer] = conv
        return conv

    async def open_conversation(self, peer: str) -> HandshakeResult:
        """
        Establish (or restore) the shared secret with a peer.

        When the exchange fails and insecure fallback is allowed, the result
        has no secret and later sends to this peer go out in plaintext until
        the conversation is opened again.

        Raises:
            HandshakeError: If the exchange fails and fallback is disabled.
        """
        self._insecure.discard(peer)
        result = await self.coordinator.establish(peer)
        if not result.secure:
            self._insecure.add(peer)
        self.conversation(peer)
        return result

    async def is_secure(self, peer: str) -> bool:
        """Whether a shared secret exists for a peer."""
        return await self.coordinator.shared_secret(peer) is not None

    async def delete_conversation(self, peer: str) -> None:
        """Drop the conversation and erase all key material for the peer."""
        self._conversations.pop(peer, None)
        self._insecure.discard(peer)
        await self.coordinator.forget(peer)

    # MARK: - Text Messages

    async def send_text(self, peer: str, text: str) -> ChatMessage:
        """
        Send a text message, encrypted when a shared secret exists.

        Raises:
            KeyUnavailableError: If there is no secret and fallback is disabled.
            HandshakeError: If establishing the secret fails and fallback is disabled.
            ChannelError: If the channel cannot send.
        """
        secret = await self._secret_for(peer)

        if secret is not None:
            envelope = encrypt_text(text, secret, self.config.cipher, self.engine, peer)
            await self.channel.send(EncryptedMessage(envelope=envelope, sender=self.local_user))
        else:
            logger.warning("Sending unencrypted message to %s", peer)
            await self.channel.send(TextMessage(content=text, sender=self.local_user))

        message = ChatMessage(
            peer=peer,
            content=text,
            direction=MessageDirection.SENT,
            encrypted=secret is not None,
        )
        self.conversation(peer).append(message)
        return message

    # MARK: - Files

    async def send_file(
        self,
        peer: str,
        data: bytes,
        file_name: str,
        mime_type: str = "application/octet-stream",
    ) -> UploadResult:
        """
        Upload a file for a peer, encrypted when a shared secret exists.

        The encrypted form is the JSON envelope of the file body and its
        metadata; the server only ever stores that.

        Raises:
            KeyUnavailableError: If there is no secret and fallback is disabled.
            ChannelError: If the upload fails.
            TransferTimeoutError: If the transfer timeout elapses.
        """
        secret = await self._secret_for(peer)

        if secret is not None:
            encrypted = encrypt_file(data, file_name, mime_type, secret, self.config.cipher, self.engine, peer)
            body = json.dumps(encrypted.to_dict()).encode("utf-8")
        else:
            logger.warning("Uploading %s to %s unencrypted", file_name, peer)
            body = data

        return await self.transfers.upload(body, file_name, mime_type, peer)

    async def download_file(self, peer: str, file_id: str) -> ReceivedFile:
        """
        Download a stored file and decrypt it with the peer's secret.

        A transfer that completed below 100% of its chunks cannot be
        decrypted and raises MalformedEnvelopeError or CipherEngineError.

        Raises:
            KeyUnavailableError: If the file is encrypted and no secret exists.
            MalformedEnvelopeError: If the encrypted body is damaged.
            CipherEngineError: If decryption fails.
            ChannelError: If the download fails.
        """
        result = await self.transfers.download(file_id)
        encrypted = self._parse_encrypted_file(result.data)

        if encrypted is None:
            return ReceivedFile(
                file_id=file_id,
                file_name=result.file_name,
                mime_type=result.mime_type,
                data=result.data,
                encrypted=False,
                lossless=result.lossless,
            )

        secret = await self.coordinator.shared_secret(peer)
        data = decrypt_file(encrypted, secret, self.engine, peer)
        return ReceivedFile(
            file_id=file_id,
            file_name=encrypted.file_name,
            mime_type=encrypted.mime_type,
            data=data,
            encrypted=True,
            lossless=result.lossless,
        )

    async def close(self) -> None:
        """Unsubscribe from the channel and close it."""
        self.channel.router.message_handlers.unregister(self._handler_key)
        await self.channel.close()

    # MARK: - Private Helpers

    async def _secret_for(self, peer: str) -> Optional[bytes]:
        secret = await self.coordinator.shared_secret(peer)
        if secret is None and peer not in self._insecure:
            result = await self.open_conversation(peer)
            secret = result.shared_secret

        if secret is None and not self.config.handshake.allow_insecure_fallback:
            raise KeyUnavailableError(peer)
        return secret

    async def _handle_message(self, message: Message) -> None:
        if isinstance(message, EncryptedMessage):
            chat = await self._decrypt_inbound(message)
        elif isinstance(message, TextMessage):
            chat = ChatMessage(
                peer=message.sender or "",
                content=message.content,
                direction=MessageDirection.RECEIVED,
                encrypted=False,
            )
        else:
            return

        self.conversation(chat.peer).append(chat)
        if self.on_message is not None:
            result = self.on_message(chat)
            if inspect.isawaitable(result):
                await result

    async def _decrypt_inbound(self, message: EncryptedMessage) -> ChatMessage:
        peer = message.sender or ""
        try:
            secret = await self.coordinator.shared_secret(peer)
            content = decrypt_text(message.envelope, secret, self.engine, peer)
            error = None
        except (KeyUnavailableError, MalformedEnvelopeError, CipherEngineError) as e:
            logger.warning("Could not decrypt message from %s: %s", peer, e)
            content = None
            error = str(e)

        return ChatMessage(
            peer=peer,
            content=content,
            direction=MessageDirection.RECEIVED,
            encrypted=True,
            error=error,
        )

    def _parse_encrypted_file(self, body: bytes) -> Optional[EncryptedFile]:
        """The encrypted file carried by a download body, or None for plain files."""
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            if body.startswith(ENCRYPTED_FILE_PREFIX):
                raise MalformedEnvelopeError(f"Encrypted file body is damaged: {e}") from e
            return None
        if not isinstance(data, dict) or not is_encrypted_message(data):
            return None
        return EncryptedFile.from_dict(data)

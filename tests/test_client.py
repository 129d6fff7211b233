"""End-to-end tests for the secure chat client."""

import asyncio
import os

import pytest
from enveloup.client import SecureChatClient
from enveloup.config import EnveloupConfig, HandshakeConfig, TransferConfig
from enveloup.models import MessageDirection
from enveloup.transport import MemoryChannel
from enveloup.types import (
    CipherEngineError,
    HandshakeTimeoutError,
    MalformedEnvelopeError,
    RegistryError,
)

from .fakes import FakeFileServer, KeyExchangeRelay

FAST = EnveloupConfig(
    handshake=HandshakeConfig(poll_interval=0, max_attempts=3),
    transfer=TransferConfig(chunk_size=64, send_delay=0),
)
STRICT = EnveloupConfig(
    handshake=HandshakeConfig(poll_interval=0, max_attempts=1, allow_insecure_fallback=False),
)
NO_RESPONDER = EnveloupConfig(handshake=HandshakeConfig(poll_interval=0, max_attempts=1))


class ChatPair:
    """Alice and Bob connected by a channel pair and a shared relay."""

    def __init__(self, config: EnveloupConfig = FAST) -> None:
        self.relay = KeyExchangeRelay()
        alice_channel, bob_channel = MemoryChannel.pair()
        self.alice_inbox = []
        self.bob_inbox = []
        self.alice = SecureChatClient(
            "alice", alice_channel, self.relay.service("alice"), config=config,
            on_message=self.alice_inbox.append,
        )
        self.bob = SecureChatClient(
            "bob", bob_channel, self.relay.service("bob"), config=config,
            on_message=self.bob_inbox.append,
        )

    async def connect(self) -> None:
        await asyncio.gather(
            self.alice.open_conversation("bob"),
            self.bob.open_conversation("alice"),
        )


class TestTextMessages:
    """Test encrypted chat between two clients."""

    def test_encrypted_exchange(self) -> None:
        pair = ChatPair()

        async def scenario():
            await pair.connect()
            await pair.alice.send_text("bob", "Hi Bob!")
            await pair.bob.send_text("alice", "Hi Alice!")

        asyncio.run(scenario())

        (received,) = pair.bob_inbox
        assert received.content == "Hi Bob!"
        assert received.encrypted
        assert received.peer == "alice"
        assert received.direction == MessageDirection.RECEIVED
        assert pair.alice_inbox[0].content == "Hi Alice!"

        wire = pair.alice.channel.sent[0]
        assert wire["encrypted"] is True
        assert "Hi Bob!" not in str(wire)

    def test_conversation_history(self) -> None:
        pair = ChatPair()

        async def scenario():
            await pair.connect()
            await pair.alice.send_text("bob", "one")
            await pair.bob.send_text("alice", "two")

        asyncio.run(scenario())

        conv = pair.alice.conversation("bob")
        assert [m.content for m in conv.sent_messages()] == ["one"]
        assert [m.content for m in conv.received_messages()] == ["two"]
        assert conv.last_message().content == "two"

    def test_send_establishes_session(self) -> None:
        """Sending to a peer without a session first runs the handshake."""
        pair = ChatPair()

        async def scenario():
            await asyncio.gather(
                pair.alice.send_text("bob", "first"),
                pair.bob.open_conversation("alice"),
            )

        asyncio.run(scenario())
        assert pair.bob_inbox[0].content == "first"
        assert pair.bob_inbox[0].encrypted

    def test_plaintext_fallback(self) -> None:
        """When nobody answers the exchange, text goes out unencrypted."""
        pair = ChatPair(NO_RESPONDER)

        async def scenario():
            result = await pair.alice.open_conversation("bob")
            sent = await pair.alice.send_text("bob", "hello anyway")
            return result, sent

        result, sent = asyncio.run(scenario())

        assert not result.secure
        assert not sent.encrypted
        assert pair.alice.channel.sent[-1] == {
            "type": "text",
            "content": "hello anyway",
            "senderUsername": "alice",
        }
        assert pair.bob_inbox[0].content == "hello anyway"
        assert not pair.bob_inbox[0].encrypted

    def test_fallback_does_not_repeat_handshake(self) -> None:
        pair = ChatPair(NO_RESPONDER)

        async def scenario():
            await pair.alice.send_text("bob", "one")
            calls = len(pair.relay.calls)
            await pair.alice.send_text("bob", "two")
            return calls

        calls = asyncio.run(scenario())
        assert len(pair.relay.calls) == calls

    def test_strict_mode_blocks_send(self) -> None:
        pair = ChatPair(STRICT)

        with pytest.raises(HandshakeTimeoutError):
            asyncio.run(pair.alice.send_text("bob", "must be private"))
        assert pair.alice.channel.sent == []

    def test_undecryptable_message(self) -> None:
        """A message the receiver has no key for is surfaced, not fatal."""
        pair = ChatPair()

        async def scenario():
            await pair.connect()
            await pair.bob.delete_conversation("alice")
            await pair.alice.send_text("bob", "lost in transit")
            await pair.alice.send_text("bob", "still lost")

        asyncio.run(scenario())

        assert len(pair.bob_inbox) == 2
        assert all(m.undecryptable for m in pair.bob_inbox)
        assert pair.bob_inbox[0].display_text() == "[undecryptable message]"
        assert "bob" in pair.bob_inbox[0].error or "alice" in pair.bob_inbox[0].error

    def test_async_callback(self) -> None:
        relay = KeyExchangeRelay()
        alice_channel, bob_channel = MemoryChannel.pair()
        seen = []

        async def on_message(message):
            seen.append(message.content)

        alice = SecureChatClient("alice", alice_channel, relay.service("alice"), config=NO_RESPONDER)
        SecureChatClient("bob", bob_channel, relay.service("bob"), config=NO_RESPONDER, on_message=on_message)

        asyncio.run(alice.send_text("bob", "ping"))
        assert seen == ["ping"]

    def test_duplicate_client(self) -> None:
        relay = KeyExchangeRelay()
        channel = MemoryChannel()
        SecureChatClient("alice", channel, relay.service("alice"))

        with pytest.raises(RegistryError):
            SecureChatClient("alice", channel, relay.service("alice"))


class TestConversationDeletion:
    """Test erasing a conversation."""

    def test_delete_erases_key_material(self) -> None:
        pair = ChatPair()

        async def scenario():
            await pair.connect()
            await pair.alice.delete_conversation("bob")
            return await pair.alice.is_secure("bob"), await pair.alice.store.keys()

        secure, keys = asyncio.run(scenario())
        assert not secure
        assert keys == []
        assert pair.alice.conversation("bob").is_empty()


class TestFiles:
    """Test encrypted file transfer through the file server."""

    @pytest.fixture
    def clients(self):
        relay = KeyExchangeRelay()
        server = FakeFileServer(chunk_size=64)
        alice = SecureChatClient("alice", server, relay.service("alice"), config=FAST)
        bob = SecureChatClient("bob", server, relay.service("bob"), config=FAST)
        asyncio.run(self._connect(alice, bob))
        return server, alice, bob

    async def _connect(self, alice, bob) -> None:
        await asyncio.gather(alice.open_conversation("bob"), bob.open_conversation("alice"))

    def test_encrypted_file_round_trip(self, clients) -> None:
        server, alice, bob = clients
        data = os.urandom(1000)

        uploaded = asyncio.run(alice.send_file("bob", data, "photo.jpg", "image/jpeg"))
        received = asyncio.run(bob.download_file("alice", uploaded.file_id))

        assert received.data == data
        assert received.file_name == "photo.jpg"
        assert received.mime_type == "image/jpeg"
        assert received.encrypted
        assert received.lossless

        stored = server.files[uploaded.file_id][2]
        assert data not in stored
        assert stored.startswith(b'{"encrypted": true')

    def test_damaged_encrypted_download(self, clients) -> None:
        server, alice, bob = clients
        uploaded = asyncio.run(alice.send_file("bob", os.urandom(600), "a.bin"))

        server.chunk_size = 16
        server.drop = {5}

        with pytest.raises((MalformedEnvelopeError, CipherEngineError)):
            asyncio.run(bob.download_file("alice", uploaded.file_id))

    def test_plain_file_download(self, clients) -> None:
        server, alice, bob = clients
        file_id = server.store(b"just text", "readme.txt", "text/plain")

        received = asyncio.run(bob.download_file("alice", file_id))

        assert received.data == b"just text"
        assert not received.encrypted
        assert received.file_name == "readme.txt"

    def test_unencrypted_upload_in_fallback(self) -> None:
        relay = KeyExchangeRelay()
        server = FakeFileServer()
        config = EnveloupConfig(
            handshake=HandshakeConfig(poll_interval=0, max_attempts=1),
            transfer=TransferConfig(chunk_size=64, send_delay=0),
        )
        alice = SecureChatClient("alice", server, relay.service("alice"), config=config)

        uploaded = asyncio.run(alice.send_file("bob", b"plain bytes", "a.txt", "text/plain"))
        assert server.files[uploaded.file_id][2] == b"plain bytes"

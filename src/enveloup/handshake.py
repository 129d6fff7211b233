"""
Diffie-Hellman handshake coordination between two chat participants.

The KeyExchangeCoordinator drives one HandshakeSession per peer through
NOT_STARTED -> INITIATED -> COMPLETED using a remote key-exchange service
that relays public values. The initiator publishes its value and polls; the
responder completes the exchange as soon as it sees the initiator's value.
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Awaitable, Callable, Optional

from .config import HandshakeConfig
from .dh import (
    DHParameters,
    compute_public_value,
    derive_shared_secret,
    generate_private_exponent,
)
from .modmath import format_uint, parse_uint
from .storage import SecretStore, private_exponent_key, shared_secret_key
from .types import HandshakeError, HandshakeTimeoutError, KeyDerivationError

logger = logging.getLogger(__name__)


class HandshakeState(IntEnum):
    """Handshake progress; values match the remote status codes."""
    NOT_STARTED = 0
    INITIATED = 1
    COMPLETED = 2


@dataclass
class KeyExchangeStatus:
    """Remote view of a pair's exchange, with numbers as wire strings."""
    state: HandshakeState
    prime: Optional[str] = None
    generator: Optional[str] = None
    initiator_public: Optional[str] = None
    responder_public: Optional[str] = None


class KeyExchangeService(ABC):
    """
    Remote procedures relaying public values between the two peers.

    Implementations should raise HandshakeError; any other exception is
    wrapped in one by the coordinator.
    """

    @abstractmethod
    async def initiate(self, peer: str, generator: str, prime: str, public_value: str) -> bool:
        """Publish the initiator's parameters and public value."""
        ...

    @abstractmethod
    async def complete(self, peer: str, public_value: str) -> bool:
        """Publish the responder's public value."""
        ...

    @abstractmethod
    async def query_status(self, peer: str) -> KeyExchangeStatus:
        """Fetch the current exchange status for the pair."""
        ...


@dataclass
class HandshakeSession:
    """Handshake state for one (local user, peer) pair."""
    peer: str
    params: DHParameters
    private_exponent: int
    state: HandshakeState = HandshakeState.NOT_STARTED
    peer_public: Optional[int] = None
    shared_secret: Optional[bytes] = None

    @property
    def local_public(self) -> int:
        """generator^private mod prime."""
        return compute_public_value(self.private_exponent, self.params)

    @property
    def is_completed(self) -> bool:
        return self.state == HandshakeState.COMPLETED

    def advance(self, state: HandshakeState) -> None:
        """Move forward to a later state; moving backwards is an error."""
        if state < self.state:
            raise HandshakeError(f"Cannot move handshake with {self.peer} from {self.state.name} to {state.name}")
        if state == HandshakeState.COMPLETED and self.shared_secret is None:
            raise HandshakeError("A completed handshake requires a shared secret")
        self.state = state

    def complete(self, peer_public: int) -> bytes:
        """Derive the shared secret from the peer's value and mark the session completed."""
        if self.is_completed:
            return self.shared_secret
        self.shared_secret = derive_shared_secret(peer_public, self.private_exponent, self.params)
        self.peer_public = peer_public
        self.advance(HandshakeState.COMPLETED)
        return self.shared_secret


@dataclass
class HandshakeResult:
    """Outcome of establishing a session with a peer."""
    peer: str
    state: HandshakeState
    shared_secret: Optional[bytes] = None
    error: Optional[Exception] = None

    @property
    def secure(self) -> bool:
        """True when a shared secret is available for encryption."""
        return self.shared_secret is not None


class KeyExchangeCoordinator:
    """
    Establishes and caches shared secrets with peers.

    Example usage:
        ```python
        coordinator = KeyExchangeCoordinator("alice", service, store)
        result = await coordinator.establish("bob")
        if result.secure:
            envelope = encrypt_text("hi", result.shared_secret)
        ```
    """

    def __init__(
        self,
        local_user: str,
        service: KeyExchangeService,
        store: SecretStore,
        params: Optional[DHParameters] = None,
        config: Optional[HandshakeConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            local_user: Our identity.
            service: Remote key-exchange service.
            store: Store for shared secrets and private exponents.
            params: Domain parameters for exchanges we initiate (default: 2048-bit group).
            config: Polling and fallback settings.
            sleep: Coroutine used to wait between polls.
        """
        self.local_user = local_user
        self.service = service
        self.store = store
        self.params = params or DHParameters.default()
        self.config = config or HandshakeConfig()
        self._sleep = sleep
        self._sessions: dict[str, HandshakeSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def session(self, peer: str) -> Optional[HandshakeSession]:
        """The in-memory session for a peer, if any."""
        return self._sessions.get(peer)

    async def shared_secret(self, peer: str) -> Optional[bytes]:
        """Shared secret for a peer from the session cache or the store."""
        session = self._sessions.get(peer)
        if session is not None and session.is_completed:
            return session.shared_secret

        stored = await self.store.get(shared_secret_key(self.local_user, peer))
        if stored is None:
            return None
        return base64.b64decode(stored)

    async def establish(self, peer: str) -> HandshakeResult:
        """
        Drive the handshake with a peer to completion.

        Re-entering for a completed session returns the cached secret. When
        the retry budget runs out and insecure fallback is allowed, the result
        carries no secret and the error instead of raising.

        Args:
            peer: The other participant.

        Returns:
            HandshakeResult

        Raises:
            HandshakeError: If the exchange fails and fallback is disabled.
        """
        lock = self._locks.setdefault(peer, asyncio.Lock())
        async with lock:
            try:
                secret = await self._establish(peer)
            except (HandshakeError, KeyDerivationError) as e:
                if not self.config.allow_insecure_fallback:
                    raise
                logger.warning("Key exchange with %s failed, continuing without encryption: %s", peer, e)
                session = self._sessions.get(peer)
                state = session.state if session else HandshakeState.NOT_STARTED
                return HandshakeResult(peer=peer, state=state, error=e)

        return HandshakeResult(peer=peer, state=HandshakeState.COMPLETED, shared_secret=secret)

    async def accept_peer_public(self, peer: str, peer_public: str) -> Optional[bytes]:
        """
        Complete an initiated session from a pushed notification.

        Waits for any establish() running for the same peer.

        Returns:
            The shared secret, or None if we have no pending session or the
            pushed value is rejected and insecure fallback is allowed.

        Raises:
            HandshakeError: If the value cannot be parsed and fallback is disabled.
            KeyDerivationError: If the value is out of range and fallback is disabled.
        """
        lock = self._locks.setdefault(peer, asyncio.Lock())
        async with lock:
            session = self._sessions.get(peer)
            if session is None:
                return None
            if session.is_completed:
                return session.shared_secret

            try:
                secret = session.complete(self._parse(peer_public))
            except (HandshakeError, KeyDerivationError) as e:
                if not self.config.allow_insecure_fallback:
                    raise
                logger.warning("Rejected pushed key from %s: %s", peer, e)
                return None

            await self._persist_secret(peer, secret)
            logger.info("Key exchange with %s completed from notification", peer)
            return secret

    async def forget(self, peer: str) -> None:
        """Erase all handshake material for a peer (conversation deleted)."""
        self._sessions.pop(peer, None)
        self._locks.pop(peer, None)
        await self.store.delete(shared_secret_key(self.local_user, peer))
        await self.store.delete(private_exponent_key(self.local_user, peer))
        logger.info("Erased key material for %s", peer)

    # MARK: - Private Helpers

    async def _establish(self, peer: str) -> bytes:
        session = self._sessions.get(peer)
        if session is not None and session.is_completed:
            return session.shared_secret

        stored = await self.shared_secret(peer)
        if stored is not None:
            session = session or await self._load_session(peer)
            session.shared_secret = stored
            session.advance(HandshakeState.COMPLETED)
            return stored

        session = session or await self._load_session(peer)
        status = await self._query(peer)

        if status.state == HandshakeState.INITIATED and not self._is_ours(session, status):
            return await self._respond(session, status)

        if status.state == HandshakeState.COMPLETED:
            secret = await self._try_complete(session, status)
            if secret is not None:
                return secret
            raise HandshakeError(f"Exchange with {peer} completed with a key we do not hold")

        if status.state == HandshakeState.NOT_STARTED:
            await self._initiate(session)

        session.advance(HandshakeState.INITIATED)
        return await self._poll(session)

    async def _load_session(self, peer: str) -> HandshakeSession:
        """Restore the persisted private exponent or generate a new one."""
        key = private_exponent_key(self.local_user, peer)
        stored = await self.store.get(key)
        if stored is not None:
            private_exponent = int(stored, 16)
        else:
            private_exponent = generate_private_exponent(self.params)
            await self.store.put(key, format(private_exponent, "x"))

        session = HandshakeSession(peer=peer, params=self.params, private_exponent=private_exponent)
        self._sessions[peer] = session
        return session

    async def _initiate(self, session: HandshakeSession) -> None:
        base = self.config.number_base
        prime, generator = session.params.to_strings(base)
        accepted = await self._call(
            self.service.initiate(
                session.peer, generator, prime, format_uint(session.local_public, base)
            )
        )
        if not accepted:
            raise HandshakeError(f"Key exchange initiation with {session.peer} rejected")
        logger.info("Initiated key exchange with %s", session.peer)

    async def _respond(self, session: HandshakeSession, status: KeyExchangeStatus) -> bytes:
        base = self.config.number_base
        if status.initiator_public is None:
            raise HandshakeError(f"Initiator value missing for {session.peer}")

        if status.prime is not None and status.generator is not None:
            remote_params = self._parse_params(status)
            if remote_params != session.params:
                session.params = remote_params
                session.private_exponent = generate_private_exponent(remote_params)
                await self.store.put(
                    private_exponent_key(self.local_user, session.peer),
                    format(session.private_exponent, "x"),
                )

        initiator_public = self._parse(status.initiator_public)
        accepted = await self._call(
            self.service.complete(session.peer, format_uint(session.local_public, base))
        )
        if not accepted:
            raise HandshakeError(f"Key exchange completion with {session.peer} rejected")

        secret = session.complete(initiator_public)
        await self._persist_secret(session.peer, secret)
        logger.info("Completed key exchange with %s as responder", session.peer)
        return secret

    async def _poll(self, session: HandshakeSession) -> bytes:
        for attempt in range(1, self.config.max_attempts + 1):
            await self._sleep(self.config.poll_interval)

            if session.is_completed:
                return session.shared_secret

            try:
                status = await self._query(session.peer)
            except HandshakeError as e:
                logger.debug("Status poll %d for %s failed: %s", attempt, session.peer, e)
                continue

            if status.state == HandshakeState.COMPLETED:
                secret = await self._try_complete(session, status)
                if secret is not None:
                    logger.info("Completed key exchange with %s as initiator", session.peer)
                    return secret

            logger.debug("Key exchange with %s pending (attempt %d/%d)",
                         session.peer, attempt, self.config.max_attempts)

        raise HandshakeTimeoutError(session.peer, self.config.max_attempts)

    async def _try_complete(self, session: HandshakeSession, status: KeyExchangeStatus) -> Optional[bytes]:
        """Derive the secret from a completed status if it involves our public value."""
        base = self.config.number_base
        ours = format_uint(session.local_public, base)

        if status.initiator_public is not None and self._same(status.initiator_public, ours):
            peer_value = status.responder_public
        elif status.responder_public is not None and self._same(status.responder_public, ours):
            peer_value = status.initiator_public
        else:
            return None

        if peer_value is None:
            return None

        secret = session.complete(self._parse(peer_value))
        await self._persist_secret(session.peer, secret)
        return secret

    def _is_ours(self, session: HandshakeSession, status: KeyExchangeStatus) -> bool:
        if status.initiator_public is None:
            return False
        return self._same(status.initiator_public, format_uint(session.local_public, self.config.number_base))

    def _same(self, wire_value: str, ours: str) -> bool:
        try:
            return self._parse(wire_value) == self._parse(ours)
        except HandshakeError:
            return False

    def _parse(self, wire_value: str) -> int:
        try:
            return parse_uint(wire_value, self.config.number_base)
        except ValueError as e:
            raise HandshakeError(f"Invalid number on the wire: {wire_value!r}") from e

    def _parse_params(self, status: KeyExchangeStatus) -> DHParameters:
        try:
            return DHParameters.from_strings(status.prime, status.generator, self.config.number_base)
        except ValueError as e:
            raise HandshakeError(f"Invalid domain parameters: {e}") from e

    async def _persist_secret(self, peer: str, secret: bytes) -> None:
        await self.store.put(
            shared_secret_key(self.local_user, peer),
            base64.b64encode(secret).decode("ascii"),
        )

    async def _query(self, peer: str) -> KeyExchangeStatus:
        status = await self._call(self.service.query_status(peer))
        if not isinstance(status, KeyExchangeStatus):
            raise HandshakeError(f"Unexpected status response for {peer}")
        return status

    async def _call(self, awaitable: Awaitable):
        """Await a remote call, normalising failures to HandshakeError."""
        try:
            return await awaitable
        except HandshakeError:
            raise
        except Exception as e:
            raise HandshakeError(f"Key exchange service error: {e}") from e

"""Type definitions for Enveloup."""

# Handshake constants
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 3

# Transfer constants
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_SEND_DELAY = 0.01
DEFAULT_ACCEPTANCE_THRESHOLD = 0.3
PROGRESS_LOG_EVERY = 10

# Cipher constants
BLOCK_SIZE = 16
GCM_NONCE_SIZE = 12

# Secret store key prefixes
SHARED_KEY_PREFIX = "dh_shared_key_"
PRIVATE_KEY_PREFIX = "dh_private_key_"


# Exception types
class EnveloupError(Exception):
    """Base exception for Enveloup errors."""
    pass


class HandshakeError(EnveloupError):
    """The remote key-exchange service rejected or failed a request."""
    pass


class HandshakeTimeoutError(HandshakeError):
    """Retry budget exhausted before the peer completed the handshake."""

    def __init__(self, peer: str, attempts: int) -> None:
        self.peer = peer
        self.attempts = attempts
        super().__init__(f"Key exchange with {peer} not completed after {attempts} attempts")


class KeyUnavailableError(EnveloupError):
    """No shared secret exists for a peer."""

    def __init__(self, peer: str) -> None:
        self.peer = peer
        super().__init__(f"Shared key not available for peer: {peer}")


class MalformedEnvelopeError(EnveloupError):
    """Envelope is missing ciphertext, IV or parameters."""
    pass


class CipherEngineError(EnveloupError):
    """The cipher engine failed to encrypt or decrypt."""
    pass


class MalformedMessageError(EnveloupError):
    """A transport frame could not be decoded."""
    pass


class UnknownMessageTypeError(MalformedMessageError):
    """A transport frame carries an unsupported type tag."""

    def __init__(self, message_type: object) -> None:
        self.message_type = message_type
        super().__init__(f"Unknown message type: {message_type!r}")


class ChunkDecodeError(EnveloupError):
    """A single chunk payload could not be decoded."""

    def __init__(self, transfer_id: str, chunk_index: int, reason: str) -> None:
        self.transfer_id = transfer_id
        self.chunk_index = chunk_index
        super().__init__(f"Chunk {chunk_index} of {transfer_id} undecodable: {reason}")


class InsufficientChunksError(EnveloupError):
    """Fewer chunks than the acceptance threshold have arrived."""

    def __init__(self, transfer_id: str, valid: int, expected: int) -> None:
        self.transfer_id = transfer_id
        self.valid = valid
        self.expected = expected
        super().__init__(f"Transfer {transfer_id}: {valid}/{expected} chunks received")


class ChannelError(EnveloupError):
    """The transport signalled an explicit failure."""
    pass


class RegistryError(EnveloupError):
    """Handler registration conflict."""
    pass


class StorageError(EnveloupError):
    """Storage operation failed."""
    pass


class PasswordRequiredError(StorageError):
    """Raised when password is required but not set."""

    def __init__(self) -> None:
        super().__init__("Password is required for file secret storage")


class DecryptionFailedError(StorageError):
    """Raised when the secret file cannot be decrypted."""

    def __init__(self) -> None:
        super().__init__("Decryption failed - incorrect password or corrupted data")


class KeyDerivationError(EnveloupError):
    """Shared secret derivation failed."""
    pass


class TransferTimeoutError(ChannelError):
    """A transfer did not finish within its deadline."""

    def __init__(self, transfer_id: str, timeout: float) -> None:
        self.transfer_id = transfer_id
        self.timeout = timeout
        super().__init__(f"Transfer {transfer_id} timed out after {timeout}s")

"""
Enveloup - secure session core for peer-to-peer encrypted chat

Diffie-Hellman key exchange over a relaying service, symmetric message and
file envelopes, and chunked file transfer over a duplex channel.
"""

from .modmath import parse_uint, format_uint, pow_mod, int_to_bytes, bytes_to_int, HEX, DECIMAL
from .dh import (
    DEFAULT_PRIME,
    DEFAULT_GENERATOR,
    DHParameters,
    generate_private_exponent,
    compute_public_value,
    generate_keypair,
    derive_shared_secret,
)
from .cipher import CipherParams, CipherEngine, CryptographyCipherEngine, adapt_key
from .envelope import EncryptedEnvelope, encode_envelope, decode_envelope, is_encrypted_message
from .crypto import (
    EncryptedFile,
    encrypt_payload,
    decrypt_payload,
    encrypt_text,
    decrypt_text,
    encrypt_file,
    decrypt_file,
)
from .types import (
    EnveloupError,
    HandshakeError,
    HandshakeTimeoutError,
    KeyUnavailableError,
    MalformedEnvelopeError,
    CipherEngineError,
    MalformedMessageError,
    UnknownMessageTypeError,
    ChunkDecodeError,
    InsufficientChunksError,
    ChannelError,
    RegistryError,
    StorageError,
    PasswordRequiredError,
    DecryptionFailedError,
    KeyDerivationError,
    TransferTimeoutError,
)
from .storage import (
    SecretStore,
    InMemorySecretStore,
    FileSecretStore,
    pair_key,
)
from .config import HandshakeConfig, TransferConfig, ChannelConfig, EnveloupConfig
from .handshake import (
    HandshakeState,
    KeyExchangeStatus,
    KeyExchangeService,
    HandshakeSession,
    HandshakeResult,
    KeyExchangeCoordinator,
)
from .messages import (
    TextMessage,
    EncryptedMessage,
    FileUploadInit,
    FileChunk,
    FileInfo,
    FileUploadComplete,
    FileDownloadRequest,
    FileError,
    parse_message,
)
from .registry import HandlerRegistry
from .transport import MessageRouter, DuplexChannel, MemoryChannel, WebSocketChannel
from .transfer import (
    TransferStatus,
    TransferDirection,
    TransferJob,
    UploadResult,
    DownloadResult,
    ChunkedTransferManager,
)
from .models import MessageDirection, ChatMessage, Conversation, ReceivedFile
from .client import SecureChatClient

__version__ = "0.1.0"

__all__ = [
    # Modular arithmetic
    "parse_uint",
    "format_uint",
    "pow_mod",
    "int_to_bytes",
    "bytes_to_int",
    "HEX",
    "DECIMAL",
    # Diffie-Hellman
    "DEFAULT_PRIME",
    "DEFAULT_GENERATOR",
    "DHParameters",
    "generate_private_exponent",
    "compute_public_value",
    "generate_keypair",
    "derive_shared_secret",
    # Cipher
    "CipherParams",
    "CipherEngine",
    "CryptographyCipherEngine",
    "adapt_key",
    # Envelope
    "EncryptedEnvelope",
    "encode_envelope",
    "decode_envelope",
    "is_encrypted_message",
    "EncryptedFile",
    "encrypt_payload",
    "decrypt_payload",
    "encrypt_text",
    "decrypt_text",
    "encrypt_file",
    "decrypt_file",
    # Errors
    "EnveloupError",
    "HandshakeError",
    "HandshakeTimeoutError",
    "KeyUnavailableError",
    "MalformedEnvelopeError",
    "CipherEngineError",
    "MalformedMessageError",
    "UnknownMessageTypeError",
    "ChunkDecodeError",
    "InsufficientChunksError",
    "ChannelError",
    "RegistryError",
    "StorageError",
    "PasswordRequiredError",
    "DecryptionFailedError",
    "KeyDerivationError",
    "TransferTimeoutError",
    # Storage
    "SecretStore",
    "InMemorySecretStore",
    "FileSecretStore",
    "pair_key",
    # Config
    "HandshakeConfig",
    "TransferConfig",
    "ChannelConfig",
    "EnveloupConfig",
    # Handshake
    "HandshakeState",
    "KeyExchangeStatus",
    "KeyExchangeService",
    "HandshakeSession",
    "HandshakeResult",
    "KeyExchangeCoordinator",
    # Messages
    "TextMessage",
    "EncryptedMessage",
    "FileUploadInit",
    "FileChunk",
    "FileInfo",
    "FileUploadComplete",
    "FileDownloadRequest",
    "FileError",
    "parse_message",
    # Transport
    "HandlerRegistry",
    "MessageRouter",
    "DuplexChannel",
    "MemoryChannel",
    "WebSocketChannel",
    # Transfer
    "TransferStatus",
    "TransferDirection",
    "TransferJob",
    "UploadResult",
    "DownloadResult",
    "ChunkedTransferManager",
    # Client
    "MessageDirection",
    "ChatMessage",
    "Conversation",
    "ReceivedFile",
    "SecureChatClient",
]

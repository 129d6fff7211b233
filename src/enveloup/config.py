"""Configuration for handshakes, transfers and the transport channel."""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .cipher import CipherParams
from .modmath import HEX
from .types import (
    DEFAULT_ACCEPTANCE_THRESHOLD,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SEND_DELAY,
)


@dataclass
class HandshakeConfig:
    """Polling and fallback settings for key exchange."""
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    allow_insecure_fallback: bool = True
    number_base: int = HEX

    def __post_init__(self) -> None:
        if self.poll_interval < 0:
            raise ValueError("poll_interval must be non-negative")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def strict(cls) -> "HandshakeConfig":
        """Fail instead of continuing unencrypted when the exchange times out."""
        return cls(allow_insecure_fallback=False)


@dataclass
class TransferConfig:
    """Chunking and reassembly settings for file transfers."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    send_delay: float = DEFAULT_SEND_DELAY
    acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 < self.acceptance_threshold <= 1:
            raise ValueError("acceptance_threshold must be in (0, 1]")
        if self.send_delay < 0:
            raise ValueError("send_delay must be non-negative")

    @classmethod
    def lossless(cls) -> "TransferConfig":
        """Require every chunk before a transfer completes."""
        return cls(acceptance_threshold=1.0)


@dataclass
class ChannelConfig:
    """Duplex channel endpoint and bearer token."""
    url: str
    token: str

    @classmethod
    def localhost(cls, token: str) -> "ChannelConfig":
        """Creates configuration for a local development server."""
        return cls(url="ws://localhost:8888/ws", token=token)


@dataclass
class EnveloupConfig:
    """Top-level configuration bundle."""
    handshake: HandshakeConfig = field(default_factory=HandshakeConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    cipher: CipherParams = field(default_factory=CipherParams.default)
    channel: Optional[ChannelConfig] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EnveloupConfig":
        """
        Build configuration from ``ENVELOUP_*`` environment variables.

        Recognised variables: ENVELOUP_POLL_INTERVAL, ENVELOUP_MAX_ATTEMPTS,
        ENVELOUP_INSECURE_FALLBACK, ENVELOUP_CHUNK_SIZE, ENVELOUP_SEND_DELAY,
        ENVELOUP_ACCEPTANCE_THRESHOLD, ENVELOUP_ALGORITHM, ENVELOUP_MODE,
        ENVELOUP_PADDING, ENVELOUP_KEY_SIZE, ENVELOUP_URL, ENVELOUP_TOKEN.
        """
        env = os.environ if environ is None else environ

        handshake = HandshakeConfig(
            poll_interval=float(env.get("ENVELOUP_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)),
            max_attempts=int(env.get("ENVELOUP_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
            allow_insecure_fallback=env.get("ENVELOUP_INSECURE_FALLBACK", "1").lower()
            not in ("0", "false", "no"),
        )
        transfer = TransferConfig(
            chunk_size=int(env.get("ENVELOUP_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)),
            send_delay=float(env.get("ENVELOUP_SEND_DELAY", DEFAULT_SEND_DELAY)),
            acceptance_threshold=float(
                env.get("ENVELOUP_ACCEPTANCE_THRESHOLD", DEFAULT_ACCEPTANCE_THRESHOLD)
            ),
        )
        defaults = CipherParams.default()
        cipher = CipherParams(
            algorithm=env.get("ENVELOUP_ALGORITHM", defaults.algorithm).lower(),
            mode=env.get("ENVELOUP_MODE", defaults.mode).lower(),
            padding=env.get("ENVELOUP_PADDING", defaults.padding).lower(),
            key_size=int(env.get("ENVELOUP_KEY_SIZE", defaults.key_size)),
        )
        cipher.validate()

        channel = None
        if "ENVELOUP_TOKEN" in env:
            channel = ChannelConfig(
                url=env.get("ENVELOUP_URL", "ws://localhost:8888/ws"),
                token=env["ENVELOUP_TOKEN"],
            )

        return cls(handshake=handshake, transfer=transfer, cipher=cipher, channel=channel)

"""Tests for configuration."""

import pytest
from enveloup.cipher import CipherParams
from enveloup.config import ChannelConfig, EnveloupConfig, HandshakeConfig, TransferConfig
from enveloup.types import CipherEngineError


class TestDefaults:
    def test_handshake(self) -> None:
        config = HandshakeConfig()
        assert config.poll_interval == 5.0
        assert config.max_attempts == 3
        assert config.allow_insecure_fallback
        assert not HandshakeConfig.strict().allow_insecure_fallback

    def test_transfer(self) -> None:
        config = TransferConfig()
        assert config.chunk_size == 64 * 1024
        assert config.acceptance_threshold == 0.3
        assert TransferConfig.lossless().acceptance_threshold == 1.0

    def test_channel(self) -> None:
        assert ChannelConfig.localhost("tok").url == "ws://localhost:8888/ws"

    @pytest.mark.parametrize(
        "kwargs",
        [{"acceptance_threshold": 0}, {"acceptance_threshold": 1.5}, {"chunk_size": 0}, {"send_delay": -1}],
    )
    def test_invalid_transfer(self, kwargs) -> None:
        with pytest.raises(ValueError):
            TransferConfig(**kwargs)

    def test_invalid_handshake(self) -> None:
        with pytest.raises(ValueError):
            HandshakeConfig(max_attempts=0)


class TestFromEnv:
    """Test building configuration from environment variables."""

    def test_empty_environment(self) -> None:
        config = EnveloupConfig.from_env({})
        assert config.cipher == CipherParams.default()
        assert config.channel is None

    def test_overrides(self) -> None:
        config = EnveloupConfig.from_env({
            "ENVELOUP_POLL_INTERVAL": "0.5",
            "ENVELOUP_MAX_ATTEMPTS": "7",
            "ENVELOUP_INSECURE_FALLBACK": "false",
            "ENVELOUP_CHUNK_SIZE": "1024",
            "ENVELOUP_ACCEPTANCE_THRESHOLD": "1",
            "ENVELOUP_ALGORITHM": "Camellia",
            "ENVELOUP_TOKEN": "secret-token",
            "ENVELOUP_URL": "wss://chat.example.com/ws",
        })

        assert config.handshake.poll_interval == 0.5
        assert config.handshake.max_attempts == 7
        assert not config.handshake.allow_insecure_fallback
        assert config.transfer.chunk_size == 1024
        assert config.transfer.acceptance_threshold == 1.0
        assert config.cipher == CipherParams.camellia()
        assert config.channel == ChannelConfig("wss://chat.example.com/ws", "secret-token")

    def test_invalid_cipher(self) -> None:
        with pytest.raises(CipherEngineError):
            EnveloupConfig.from_env({"ENVELOUP_MODE": "xts"})

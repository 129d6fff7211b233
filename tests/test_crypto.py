"""Tests for envelopes and message/file encryption."""

import base64
import os

import pytest
from enveloup.cipher import CipherParams
from enveloup.crypto import (
    EncryptedFile,
    decrypt_file,
    decrypt_payload,
    decrypt_text,
    encrypt_file,
    encrypt_payload,
    encrypt_text,
)
from enveloup.envelope import (
    EncryptedEnvelope,
    decode_envelope,
    encode_envelope,
    is_encrypted_message,
)
from enveloup.types import (
    CipherEngineError,
    KeyUnavailableError,
    MalformedEnvelopeError,
)


@pytest.fixture
def secret() -> bytes:
    return os.urandom(256)


class TestEnvelopeFormat:
    """Test the transport form of encrypted envelopes."""

    def test_encode(self) -> None:
        envelope = EncryptedEnvelope(ciphertext=b"\x01\x02", iv=bytes(16), params=CipherParams.default())
        data = encode_envelope(envelope)

        assert data["encrypted"] is True
        assert base64.b64decode(data["content"]) == b"\x01\x02"
        assert base64.b64decode(data["iv"]) == bytes(16)
        assert data["encryptionParams"]["keySize"] == 256

    def test_decode(self) -> None:
        data = {
            "encrypted": True,
            "content": "AQI=",
            "iv": base64.b64encode(bytes(16)).decode(),
            "encryptionParams": {"algorithm": "aes", "mode": "ctr", "padding": "none", "keySize": 128},
        }
        envelope = decode_envelope(data)

        assert envelope.ciphertext == b"\x01\x02"
        assert envelope.params == CipherParams(mode="ctr", padding="none", key_size=128)

    @pytest.mark.parametrize("missing", ["content", "iv", "encryptionParams"])
    def test_missing_fields(self, missing) -> None:
        data = {
            "encrypted": True,
            "content": "AQI=",
            "iv": "AAAA",
            "encryptionParams": CipherParams.default().to_dict(),
        }
        del data[missing]
        with pytest.raises(MalformedEnvelopeError):
            decode_envelope(data)

    def test_invalid_base64(self) -> None:
        data = {
            "content": "not base64!",
            "iv": "AAAA",
            "encryptionParams": CipherParams.default().to_dict(),
        }
        with pytest.raises(MalformedEnvelopeError, match="base64"):
            decode_envelope(data)

    def test_incomplete_params(self) -> None:
        data = {"content": "AQI=", "iv": "AAAA", "encryptionParams": {"algorithm": "aes"}}
        with pytest.raises(MalformedEnvelopeError, match="parameters"):
            decode_envelope(data)

    def test_is_encrypted_message(self) -> None:
        assert is_encrypted_message({"encrypted": True})
        assert not is_encrypted_message({"encrypted": "true"})
        assert not is_encrypted_message({"type": "text"})
        assert not is_encrypted_message("encrypted")


class TestTextEncryption:
    """Test encrypting chat text under a session secret."""

    def test_round_trip(self, secret) -> None:
        envelope = encrypt_text("Hello, Bob! 👋", secret)
        assert decrypt_text(envelope, secret) == "Hello, Bob! 👋"

    def test_fresh_iv_per_message(self, secret) -> None:
        """Two encryptions of the same text never share an IV or ciphertext."""
        first = encrypt_text("same text", secret)
        second = encrypt_text("same text", secret)

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_transport_round_trip(self, secret) -> None:
        params = CipherParams(mode="gcm")
        wire = encode_envelope(encrypt_text("over the wire", secret, params))
        assert decrypt_text(decode_envelope(wire), secret) == "over the wire"

    def test_empty_text(self, secret) -> None:
        assert decrypt_text(encrypt_text("", secret), secret) == ""

    def test_missing_secret(self) -> None:
        """Encryption without a shared secret is refused, never keyed randomly."""
        with pytest.raises(KeyUnavailableError) as exc_info:
            encrypt_text("hello", None, peer="bob")
        assert exc_info.value.peer == "bob"

        with pytest.raises(KeyUnavailableError):
            encrypt_payload(b"hello", b"")

    def test_decrypt_without_secret(self, secret) -> None:
        envelope = encrypt_text("hello", secret)
        with pytest.raises(KeyUnavailableError):
            decrypt_text(envelope, None, peer="alice")

    def test_empty_ciphertext(self, secret) -> None:
        envelope = EncryptedEnvelope(ciphertext=b"", iv=bytes(16), params=CipherParams.default())
        with pytest.raises(MalformedEnvelopeError):
            decrypt_payload(envelope, secret)

    @pytest.mark.parametrize("mode", ["ecb", "cbc", "cfb", "ofb", "ctr", "gcm"])
    def test_empty_plaintext_every_mode(self, secret, mode) -> None:
        """Empty payloads survive every mode, directly and over the wire."""
        envelope = encrypt_payload(b"", secret, CipherParams(mode=mode))
        assert decrypt_payload(envelope, secret) == b""

        wire = encode_envelope(envelope)
        assert decrypt_payload(decode_envelope(wire), secret) == b""

    def test_empty_content_rejected_for_block_modes(self) -> None:
        data = {
            "encrypted": True,
            "content": "",
            "iv": base64.b64encode(bytes(16)).decode(),
            "encryptionParams": CipherParams.default().to_dict(),
        }
        with pytest.raises(MalformedEnvelopeError, match="ciphertext"):
            decode_envelope(data)

        data["encryptionParams"] = CipherParams(mode="ctr").to_dict()
        assert decode_envelope(data).ciphertext == b""

    def test_iv_length_must_match_mode(self, secret) -> None:
        envelope = encrypt_text("hello", secret)
        envelope.iv = envelope.iv[:8]
        with pytest.raises(MalformedEnvelopeError, match="IV"):
            decrypt_payload(envelope, secret)

    def test_non_utf8_plaintext(self, secret) -> None:
        envelope = encrypt_payload(b"\xff\xfe\xfd", secret)
        with pytest.raises(CipherEngineError, match="UTF-8"):
            decrypt_text(envelope, secret)


class TestFileEncryption:
    """Test encrypting file bodies with metadata."""

    def test_round_trip(self, secret) -> None:
        data = os.urandom(5000)
        encrypted = encrypt_file(data, "photo.png", "image/png", secret)

        assert encrypted.size == 5000
        assert decrypt_file(encrypted, secret) == data

    def test_transport_form(self, secret) -> None:
        encrypted = encrypt_file(b"report", "report.txt", "text/plain", secret)
        data = encrypted.to_dict()

        assert data["encrypted"] is True
        assert data["fileName"] == "report.txt"
        assert data["mimeType"] == "text/plain"
        assert data["size"] == 6

        restored = EncryptedFile.from_dict(data)
        assert restored.file_name == "report.txt"
        assert decrypt_file(restored, secret) == b"report"

    def test_missing_file_name(self, secret) -> None:
        data = encrypt_file(b"x", "x.bin", "application/octet-stream", secret).to_dict()
        del data["fileName"]
        with pytest.raises(MalformedEnvelopeError):
            EncryptedFile.from_dict(data)

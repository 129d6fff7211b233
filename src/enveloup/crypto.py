"""Encryption and decryption of messages and files with a session secret."""

import logging
from dataclasses import dataclass
from typing import Optional

from .cipher import CipherEngine, CipherParams, CryptographyCipherEngine
from .envelope import EncryptedEnvelope, decode_envelope, encode_envelope
from .types import CipherEngineError, KeyUnavailableError, MalformedEnvelopeError

logger = logging.getLogger(__name__)

_default_engine = CryptographyCipherEngine()


@dataclass
class EncryptedFile:
    """An encrypted file body with the metadata needed to restore it."""
    envelope: EncryptedEnvelope
    file_name: str
    mime_type: str
    size: int

    def to_dict(self) -> dict:
        """Transport form: the envelope fields plus file metadata."""
        data = encode_envelope(self.envelope)
        data.update({
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "size": self.size,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedFile":
        """Parse the transport form, raising MalformedEnvelopeError if incomplete."""
        envelope = decode_envelope(data)
        file_name = data.get("fileName")
        if not isinstance(file_name, str):
            raise MalformedEnvelopeError("Missing file name")
        return cls(
            envelope=envelope,
            file_name=file_name,
            mime_type=str(data.get("mimeType") or "application/octet-stream"),
            size=int(data.get("size") or 0),
        )


def encrypt_payload(
    plaintext: bytes,
    session_secret: Optional[bytes],
    params: Optional[CipherParams] = None,
    engine: Optional[CipherEngine] = None,
    peer: str = "",
) -> EncryptedEnvelope:
    """
    Encrypt bytes under a session secret with a fresh IV.

    Args:
        plaintext: Bytes to protect
        session_secret: Shared secret for the conversation (None if not established)
        params: Cipher parameters (default: CipherParams.default())
        engine: Cipher engine (default: CryptographyCipherEngine)
        peer: Peer identity, used for error reporting

    Returns:
        EncryptedEnvelope with ciphertext, IV and parameters

    Raises:
        KeyUnavailableError: If no session secret exists
        CipherEngineError: If encryption fails
    """
    if not session_secret:
        raise KeyUnavailableError(peer)

    params = params or CipherParams.default()
    engine = engine or _default_engine

    params.validate()
    iv = engine.generate_iv(params)
    ciphertext = engine.encrypt(params, session_secret, iv, plaintext)

    return EncryptedEnvelope(ciphertext=ciphertext, iv=iv, params=params)


def decrypt_payload(
    envelope: EncryptedEnvelope,
    session_secret: Optional[bytes],
    engine: Optional[CipherEngine] = None,
    peer: str = "",
) -> bytes:
    """
    Decrypt an envelope using the IV and parameters it carries.

    Args:
        envelope: The encrypted envelope
        session_secret: Shared secret for the conversation
        engine: Cipher engine (default: CryptographyCipherEngine)
        peer: Peer identity, used for error reporting

    Returns:
        The original plaintext bytes

    Raises:
        KeyUnavailableError: If no session secret exists
        MalformedEnvelopeError: If the envelope has no ciphertext
        CipherEngineError: If decryption fails
    """
    if not session_secret:
        raise KeyUnavailableError(peer)
    if not envelope.ciphertext and not envelope.params.allows_empty_ciphertext:
        raise MalformedEnvelopeError("Missing ciphertext")
    if len(envelope.iv) != envelope.params.iv_size:
        raise MalformedEnvelopeError(
            f"IV must be {envelope.params.iv_size} bytes, got {len(envelope.iv)}"
        )

    engine = engine or _default_engine
    return engine.decrypt(envelope.params, session_secret, envelope.iv, envelope.ciphertext)


def encrypt_text(
    text: str,
    session_secret: Optional[bytes],
    params: Optional[CipherParams] = None,
    engine: Optional[CipherEngine] = None,
    peer: str = "",
) -> EncryptedEnvelope:
    """Encrypt a UTF-8 string."""
    return encrypt_payload(text.encode("utf-8"), session_secret, params, engine, peer)


def decrypt_text(
    envelope: EncryptedEnvelope,
    session_secret: Optional[bytes],
    engine: Optional[CipherEngine] = None,
    peer: str = "",
) -> str:
    """Decrypt an envelope holding a UTF-8 string."""
    data = decrypt_payload(envelope, session_secret, engine, peer)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CipherEngineError("Decrypted payload is not valid UTF-8") from e


def encrypt_file(
    data: bytes,
    file_name: str,
    mime_type: str,
    session_secret: Optional[bytes],
    params: Optional[CipherParams] = None,
    engine: Optional[CipherEngine] = None,
    peer: str = "",
) -> EncryptedFile:
    """Encrypt a file body and attach its name, type and original size."""
    envelope = encrypt_payload(data, session_secret, params, engine, peer)
    logger.debug("Encrypted file %s (%d bytes) for %s", file_name, len(data), peer)
    return EncryptedFile(envelope=envelope, file_name=file_name, mime_type=mime_type, size=len(data))


def decrypt_file(
    encrypted: EncryptedFile,
    session_secret: Optional[bytes],
    engine: Optional[CipherEngine] = None,
    peer: str = "",
) -> bytes:
    """Decrypt a file body."""
    return decrypt_payload(encrypted.envelope, session_secret, engine, peer)

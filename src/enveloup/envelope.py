"""Envelope encoding and decoding for the encrypted transport form."""

import base64
import binascii
from dataclasses import dataclass

from .cipher import CipherParams
from .types import MalformedEnvelopeError


@dataclass
class EncryptedEnvelope:
    """Self-describing encrypted payload."""
    ciphertext: bytes
    iv: bytes  # empty for ECB
    params: CipherParams


def encode_envelope(envelope: EncryptedEnvelope) -> dict:
    """
    Encode an envelope to its JSON-compatible transport form.

    Format:
        {
            "encrypted": true,
            "content": <base64 ciphertext>,
            "iv": <base64 iv>,
            "encryptionParams": {"algorithm", "mode", "padding", "keySize"}
        }

    Args:
        envelope: EncryptedEnvelope to encode

    Returns:
        Dictionary ready for json.dumps
    """
    return {
        "encrypted": True,
        "content": base64.b64encode(envelope.ciphertext).decode("ascii"),
        "iv": base64.b64encode(envelope.iv).decode("ascii"),
        "encryptionParams": envelope.params.to_dict(),
    }


def decode_envelope(data: dict) -> EncryptedEnvelope:
    """
    Decode the transport form into an envelope.

    Args:
        data: Decoded JSON object

    Returns:
        EncryptedEnvelope

    Raises:
        MalformedEnvelopeError: If ciphertext, IV or parameters are missing or invalid
    """
    if not isinstance(data, dict):
        raise MalformedEnvelopeError("Envelope must be an object")

    content = data.get("content")
    iv = data.get("iv")
    params = data.get("encryptionParams")

    if not isinstance(content, str):
        raise MalformedEnvelopeError("Missing ciphertext")
    if not isinstance(iv, str):
        raise MalformedEnvelopeError("Missing IV")
    if not isinstance(params, dict):
        raise MalformedEnvelopeError("Missing encryption parameters")

    try:
        ciphertext = base64.b64decode(content, validate=True)
        iv_bytes = base64.b64decode(iv, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEnvelopeError(f"Invalid base64: {e}") from e

    try:
        cipher_params = CipherParams.from_dict(params)
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedEnvelopeError(f"Invalid encryption parameters: {e}") from e

    if not ciphertext and not cipher_params.allows_empty_ciphertext:
        raise MalformedEnvelopeError("Missing ciphertext")

    return EncryptedEnvelope(ciphertext=ciphertext, iv=iv_bytes, params=cipher_params)


def is_encrypted_message(data: object) -> bool:
    """
    Check if a decoded frame carries an encrypted envelope.

    Args:
        data: Decoded JSON value

    Returns:
        True if the frame is flagged as encrypted
    """
    return isinstance(data, dict) and data.get("encrypted") is True

"""
Symmetric cipher engine contract and its `cryptography`-backed implementation.

The engine is the opaque capability the envelope layer relies on: given
algorithm, mode, padding, key and IV, produce ciphertext/plaintext or fail
with CipherEngineError.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

try:
    from cryptography.hazmat.decrepit.ciphers.modes import CFB, OFB
except ImportError:
    from cryptography.hazmat.primitives.ciphers.modes import CFB, OFB

from .types import BLOCK_SIZE, GCM_NONCE_SIZE, CipherEngineError

ALGORITHMS = ("aes", "camellia")
MODES = ("ecb", "cbc", "cfb", "ofb", "ctr", "gcm")
PADDINGS = ("pkcs7", "ansix923", "iso10126", "zeros", "none")
KEY_SIZES = (128, 192, 256)

# Modes that operate on whole blocks and therefore need padding
BLOCK_MODES = ("ecb", "cbc")


@dataclass(frozen=True)
class CipherParams:
    """Algorithm, mode, padding and key size recorded with every envelope."""
    algorithm: str = "aes"
    mode: str = "cbc"
    padding: str = "pkcs7"
    key_size: int = 256

    @classmethod
    def default(cls) -> "CipherParams":
        """AES-256 in CBC mode with PKCS#7 padding."""
        return cls()

    @classmethod
    def camellia(cls) -> "CipherParams":
        """Camellia-256 in CBC mode with PKCS#7 padding."""
        return cls(algorithm="camellia")

    @classmethod
    def from_dict(cls, data: dict) -> "CipherParams":
        """
        Build parameters from the wire form ``{algorithm, mode, padding, keySize}``.

        Names are case-insensitive. Missing keys raise KeyError.
        """
        return cls(
            algorithm=str(data["algorithm"]).lower(),
            mode=str(data["mode"]).lower(),
            padding=str(data["padding"]).lower(),
            key_size=int(data["keySize"]),
        )

    def to_dict(self) -> dict:
        """Wire form of the parameters."""
        return {
            "algorithm": self.algorithm,
            "mode": self.mode,
            "padding": self.padding,
            "keySize": self.key_size,
        }

    def validate(self) -> None:
        """Raise CipherEngineError for unsupported combinations."""
        if self.algorithm not in ALGORITHMS:
            raise CipherEngineError(f"Unsupported algorithm: {self.algorithm}")
        if self.mode not in MODES:
            raise CipherEngineError(f"Unsupported mode: {self.mode}")
        if self.padding not in PADDINGS:
            raise CipherEngineError(f"Unsupported padding: {self.padding}")
        if self.key_size not in KEY_SIZES:
            raise CipherEngineError(f"Unsupported key size: {self.key_size}")
        if self.mode == "gcm" and self.algorithm != "aes":
            raise CipherEngineError("GCM mode is only available for AES")

    @property
    def iv_size(self) -> int:
        """IV length required by the mode, in bytes."""
        if self.mode == "ecb":
            return 0
        if self.mode == "gcm":
            return GCM_NONCE_SIZE
        return BLOCK_SIZE

    @property
    def allows_empty_ciphertext(self) -> bool:
        """Stream modes encrypt empty plaintext to empty ciphertext."""
        return self.mode not in BLOCK_MODES and self.mode != "gcm"


def adapt_key(secret: bytes, key_size: int) -> bytes:
    """
    Fit a shared secret to the cipher key length.

    Longer secrets are truncated, shorter ones are zero-extended.

    Args:
        secret: Shared secret bytes
        key_size: Key size in bits

    Returns:
        Key of exactly key_size // 8 bytes
    """
    length = key_size // 8
    if len(secret) >= length:
        return secret[:length]
    return secret + bytes(length - len(secret))


def pad(data: bytes, method: str, block_size: int = BLOCK_SIZE) -> bytes:
    """Pad data to a multiple of block_size."""
    if method == "pkcs7":
        padder = sym_padding.PKCS7(block_size * 8).padder()
        return padder.update(data) + padder.finalize()
    if method == "ansix923":
        padder = sym_padding.ANSIX923(block_size * 8).padder()
        return padder.update(data) + padder.finalize()

    pad_len = block_size - (len(data) % block_size)
    if method == "iso10126":
        return data + os.urandom(pad_len - 1) + bytes([pad_len])
    if method == "zeros":
        if pad_len == block_size:
            return data
        return data + bytes(pad_len)
    if method == "none":
        if len(data) % block_size:
            raise CipherEngineError("Data is not block aligned and padding is disabled")
        return data
    raise CipherEngineError(f"Unsupported padding: {method}")


def unpad(data: bytes, method: str, block_size: int = BLOCK_SIZE) -> bytes:
    """Remove padding applied by pad()."""
    if method == "none":
        return data
    if method == "zeros":
        return data.rstrip(b"\x00")

    if not data or len(data) % block_size:
        raise CipherEngineError("Padded data is not block aligned")

    try:
        if method == "pkcs7":
            unpadder = sym_padding.PKCS7(block_size * 8).unpadder()
            return unpadder.update(data) + unpadder.finalize()
        if method == "ansix923":
            unpadder = sym_padding.ANSIX923(block_size * 8).unpadder()
            return unpadder.update(data) + unpadder.finalize()
    except ValueError as e:
        raise CipherEngineError("Invalid padding") from e

    if method == "iso10126":
        pad_len = data[-1]
        if pad_len < 1 or pad_len > block_size:
            raise CipherEngineError("Invalid padding")
        return data[:-pad_len]
    raise CipherEngineError(f"Unsupported padding: {method}")


class CipherEngine(ABC):
    """Interface for symmetric encryption keyed by CipherParams."""

    @abstractmethod
    def encrypt(self, params: CipherParams, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        """Encrypt plaintext, raising CipherEngineError on failure."""
        ...

    @abstractmethod
    def decrypt(self, params: CipherParams, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        """Decrypt ciphertext, raising CipherEngineError on failure."""
        ...

    def generate_iv(self, params: CipherParams) -> bytes:
        """Fresh random IV of the length the mode requires."""
        return os.urandom(params.iv_size)


class CryptographyCipherEngine(CipherEngine):
    """
    CipherEngine backed by the `cryptography` package.

    Supports AES and Camellia in ECB, CBC, CFB, OFB and CTR modes, plus
    AES-GCM. The key passed in is adapted to the configured key size.
    """

    def encrypt(self, params: CipherParams, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        params.validate()
        key = adapt_key(key, params.key_size)
        self._check_iv(params, iv)

        if params.mode == "gcm":
            return AESGCM(key).encrypt(iv, plaintext, None)

        data = pad(plaintext, params.padding) if params.mode in BLOCK_MODES else plaintext
        try:
            encryptor = self._cipher(params, key, iv).encryptor()
            return encryptor.update(data) + encryptor.finalize()
        except (ValueError, UnsupportedAlgorithm) as e:
            raise CipherEngineError(f"Encryption failed: {e}") from e

    def decrypt(self, params: CipherParams, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        params.validate()
        key = adapt_key(key, params.key_size)
        self._check_iv(params, iv)

        if params.mode == "gcm":
            try:
                return AESGCM(key).decrypt(iv, ciphertext, None)
            except InvalidTag as e:
                raise CipherEngineError("Authentication tag mismatch") from e

        if params.mode in BLOCK_MODES and len(ciphertext) % BLOCK_SIZE:
            raise CipherEngineError("Ciphertext is not block aligned")

        try:
            decryptor = self._cipher(params, key, iv).decryptor()
            data = decryptor.update(ciphertext) + decryptor.finalize()
        except (ValueError, UnsupportedAlgorithm) as e:
            raise CipherEngineError(f"Decryption failed: {e}") from e

        if params.mode in BLOCK_MODES:
            return unpad(data, params.padding)
        return data

    def supports(self, params: CipherParams) -> bool:
        """Whether the installed backend can run the given parameters."""
        try:
            iv = bytes(params.iv_size)
            self.encrypt(params, bytes(params.key_size // 8), iv, bytes(BLOCK_SIZE))
        except CipherEngineError:
            return False
        return True

    def _check_iv(self, params: CipherParams, iv: bytes) -> None:
        if len(iv) != params.iv_size:
            raise CipherEngineError(f"IV must be {params.iv_size} bytes, got {len(iv)}")

    def _cipher(self, params: CipherParams, key: bytes, iv: bytes) -> Cipher:
        if params.algorithm == "aes":
            algorithm = algorithms.AES(key)
        else:
            algorithm = algorithms.Camellia(key)
        return Cipher(algorithm, self._mode(params.mode, iv))

    def _mode(self, mode: str, iv: bytes) -> modes.Mode:
        if mode == "ecb":
            return modes.ECB()
        if mode == "cbc":
            return modes.CBC(iv)
        if mode == "cfb":
            return CFB(iv)
        if mode == "ofb":
            return OFB(iv)
        return modes.CTR(iv)

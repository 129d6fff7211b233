"""
Password-protected secret store on the local filesystem.

Every value lives in its own file under `~/.enveloup/secrets/` (or a
directory given by the caller). The file name is the hex form of the store
key; the content is sealed with AES-256-GCM under a PBKDF2-HMAC-SHA256 key
derived from the password and a per-file salt.

## File Layout

    salt (32) || nonce (12) || AES-GCM(value) || tag (16)
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..types import DecryptionFailedError, PasswordRequiredError, StorageError
from .secret_store import SecretStore

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY = Path.home() / ".enveloup" / "secrets"


class FileSecretStore(SecretStore):
    """
    SecretStore that persists sealed values on disk.

    Example usage:
        ```python
        store = FileSecretStore(password="user-password")
        await store.put("dh_shared_key_alicebob", "AQID")
        secret = await store.get("dh_shared_key_alicebob")
        ```
    """

    KDF_ITERATIONS = 100_000
    SALT_LENGTH = 32
    NONCE_LENGTH = 12
    TAG_LENGTH = 16
    HEADER_LENGTH = SALT_LENGTH + NONCE_LENGTH

    FILE_SUFFIX = ".secret"

    def __init__(self, password: Optional[str] = None, directory: Optional[Path] = None) -> None:
        """
        Args:
            password: Password sealing every value; may be supplied later.
            directory: Where secret files live (default: ~/.enveloup/secrets)
        """
        self.password = password
        self.directory = Path(directory) if directory is not None else DEFAULT_DIRECTORY

    def set_password(self, password: str) -> None:
        self.password = password

    def clear_password(self) -> None:
        self.password = None

    async def put(self, key: str, value: str) -> None:
        """
        Seal and write a value, replacing the file atomically.

        Raises:
            PasswordRequiredError: If no password is set.
        """
        blob = self._seal(value.encode("utf-8"))
        self._prepare_directory()

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(blob)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path_for(key))
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Could not write secret {key!r}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        """
        Read and unseal a value, or None if it was never stored.

        Raises:
            PasswordRequiredError: If no password is set.
            DecryptionFailedError: If the password is wrong or the file was altered.
            StorageError: If the file is truncated.
        """
        path = self._path_for(key)
        if not path.is_file():
            if self.password is None:
                raise PasswordRequiredError()
            return None
        return self._unseal(path.read_bytes(), path.name).decode("utf-8")

    async def has(self, key: str) -> bool:
        return self._path_for(key).is_file()

    async def delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    async def keys(self) -> List[str]:
        if not self.directory.is_dir():
            return []

        found = []
        for path in sorted(self.directory.glob("*" + self.FILE_SUFFIX)):
            try:
                found.append(bytes.fromhex(path.stem).decode("utf-8"))
            except (ValueError, UnicodeDecodeError):
                logger.warning("Ignoring foreign file %s in secret directory", path.name)
        return found

    # MARK: - Sealing

    def _seal(self, plaintext: bytes) -> bytes:
        salt = os.urandom(self.SALT_LENGTH)
        nonce = os.urandom(self.NONCE_LENGTH)
        return salt + nonce + AESGCM(self._key(salt)).encrypt(nonce, plaintext, None)

    def _unseal(self, blob: bytes, name: str) -> bytes:
        if len(blob) < self.HEADER_LENGTH + self.TAG_LENGTH:
            raise StorageError(f"Secret file too short: {name}")

        salt, nonce = blob[: self.SALT_LENGTH], blob[self.SALT_LENGTH : self.HEADER_LENGTH]
        try:
            return AESGCM(self._key(salt)).decrypt(nonce, blob[self.HEADER_LENGTH :], None)
        except InvalidTag as e:
            raise DecryptionFailedError() from e

    def _key(self, salt: bytes) -> bytes:
        if not self.password:
            raise PasswordRequiredError()
        return PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.KDF_ITERATIONS,
        ).derive(self.password.encode("utf-8"))

    # MARK: - Files

    def _path_for(self, key: str) -> Path:
        return self.directory / (key.encode("utf-8").hex() + self.FILE_SUFFIX)

    def _prepare_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            self.directory.chmod(0o700)
        except OSError:
            logger.debug("Could not restrict permissions on %s", self.directory)

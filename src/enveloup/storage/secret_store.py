"""Secret store interface and in-memory implementation."""

from abc import ABC, abstractmethod
from typing import Optional

from ..types import PRIVATE_KEY_PREFIX, SHARED_KEY_PREFIX


def pair_key(user_a: str, user_b: str) -> str:
    """
    Key identifying a pair of users regardless of who initiated.

    The two identities are sorted lexicographically and concatenated.
    """
    first, second = sorted((user_a, user_b))
    return first + second


def shared_secret_key(local_user: str, peer: str) -> str:
    """Store key for the shared secret of a conversation pair."""
    return SHARED_KEY_PREFIX + pair_key(local_user, peer)


def private_exponent_key(local_user: str, peer: str) -> str:
    """Store key for our handshake private exponent with a peer."""
    return PRIVATE_KEY_PREFIX + pair_key(local_user, peer)


class SecretStore(ABC):
    """Interface for a persistent string key-value store."""

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Retrieve a value, or None if absent."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a value if present."""
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys."""
        ...

    async def has(self, key: str) -> bool:
        """Check if a key exists."""
        return await self.get(key) is not None


class InMemorySecretStore(SecretStore):
    """
    In-memory implementation of SecretStore (for testing).

    WARNING: Values are kept unencrypted in process memory and are lost
    when the process exits.
    """

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    async def put(self, key: str, value: str) -> None:
        self._values[key] = value

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._values.keys())

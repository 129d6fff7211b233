"""Enveloup storage module."""

from .secret_store import (
    SecretStore,
    InMemorySecretStore,
    pair_key,
    shared_secret_key,
    private_exponent_key,
)
from .file_secret_store import FileSecretStore

__all__ = [
    "SecretStore",
    "InMemorySecretStore",
    "FileSecretStore",
    "pair_key",
    "shared_secret_key",
    "private_exponent_key",
]

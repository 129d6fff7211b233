"""Diffie-Hellman key agreement over a fixed MODP group."""

import secrets
from dataclasses import dataclass
from typing import Tuple

from .modmath import IntLike, HEX, format_uint, int_to_bytes, parse_uint, pow_mod
from .types import KeyDerivationError

# RFC 3526 group 14 (2048-bit MODP)
DEFAULT_PRIME_HEX = (
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD129024E088A67CC74"
    "020BBEA63B139B22514A08798E3404DDEF9519B3CD3A431B302B0A6DF25F1437"
    "4FE1356D6D51C245E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3DC2007CB8A163BF05"
    "98DA48361C55D39A69163FA8FD24CF5F83655D23DCA3AD961C62F356208552BB"
    "9ED529077096966D670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9DE2BCBF695581718"
    "3995497CEA956AE515D2261898FA051015728E5A8AACAA68FFFFFFFFFFFFFFFF"
)
DEFAULT_PRIME = int(DEFAULT_PRIME_HEX, 16)
DEFAULT_GENERATOR = 2


@dataclass(frozen=True)
class DHParameters:
    """Domain parameters shared by both sides of an exchange."""
    prime: int
    generator: int

    def __post_init__(self) -> None:
        if self.prime < 5:
            raise ValueError(f"Prime too small: {self.prime}")
        if not 1 < self.generator < self.prime:
            raise ValueError("Generator must lie in (1, prime)")

    @classmethod
    def default(cls) -> "DHParameters":
        """The process-wide 2048-bit group with generator 2."""
        return cls(prime=DEFAULT_PRIME, generator=DEFAULT_GENERATOR)

    @classmethod
    def from_strings(cls, prime: IntLike, generator: IntLike, base: int = HEX) -> "DHParameters":
        """Parse parameters received from a remote party in an explicit base."""
        return cls(prime=parse_uint(prime, base), generator=parse_uint(generator, base))

    def to_strings(self, base: int = HEX) -> Tuple[str, str]:
        """Render (prime, generator) for the wire."""
        return format_uint(self.prime, base), format_uint(self.generator, base)


def generate_private_exponent(params: DHParameters) -> int:
    """
    Sample a private exponent uniformly from [2, prime - 2].

    Args:
        params: Domain parameters

    Returns:
        Random private exponent
    """
    return 2 + secrets.randbelow(params.prime - 3)


def compute_public_value(private_exponent: int, params: DHParameters) -> int:
    """Compute generator^private mod prime."""
    return pow_mod(params.generator, private_exponent, params.prime)


def generate_keypair(params: DHParameters) -> Tuple[int, int]:
    """
    Generate a fresh (private_exponent, public_value) pair.

    Returns:
        Tuple of (private_exponent, public_value)
    """
    private_exponent = generate_private_exponent(params)
    return private_exponent, compute_public_value(private_exponent, params)


def validate_public_value(public_value: int, params: DHParameters) -> None:
    """Reject peer values outside [2, prime - 2] (trivial subgroup confinement)."""
    if not 2 <= public_value <= params.prime - 2:
        raise KeyDerivationError("Peer public value out of range")


def derive_shared_secret(peer_public: int, private_exponent: int, params: DHParameters) -> bytes:
    """
    Derive the shared secret peer_public^private mod prime as big-endian bytes.

    Args:
        peer_public: The other party's public value
        private_exponent: Our private exponent
        params: Domain parameters

    Returns:
        Minimal big-endian encoding of the shared integer
    """
    validate_public_value(peer_public, params)
    return int_to_bytes(pow_mod(peer_public, private_exponent, params.prime))

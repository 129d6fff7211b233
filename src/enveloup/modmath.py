"""Arbitrary-precision modular arithmetic for Diffie-Hellman."""

from typing import Union

IntLike = Union[int, str]

HEX = 16
DECIMAL = 10


def parse_uint(value: IntLike, base: int = DECIMAL) -> int:
    """
    Parse an unsigned integer from an int or a string in an explicit base.

    The base is never guessed from the string content: "1234" is one
    thousand two hundred thirty-four in base 10 and 4660 in base 16.

    Args:
        value: Integer, or decimal/hexadecimal string (optional 0x prefix for hex)
        base: 10 or 16

    Returns:
        Non-negative integer

    Raises:
        ValueError: If the base is unsupported or the value is negative/invalid
    """
    if base not in (DECIMAL, HEX):
        raise ValueError(f"Unsupported base: {base}")

    if isinstance(value, bool):
        raise ValueError("Boolean is not an integer value")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if base == HEX and text[:2].lower() == "0x":
            text = text[2:]
        if not text:
            raise ValueError("Empty numeric string")
        result = int(text, base)
    else:
        raise ValueError(f"Unsupported value type: {type(value).__name__}")

    if result < 0:
        raise ValueError("Value must be non-negative")
    return result


def format_uint(value: int, base: int = DECIMAL) -> str:
    """Render a non-negative integer in base 10 or 16 (lowercase, no prefix)."""
    if value < 0:
        raise ValueError("Value must be non-negative")
    if base == DECIMAL:
        return str(value)
    if base == HEX:
        return format(value, "x")
    raise ValueError(f"Unsupported base: {base}")


def pow_mod(base: IntLike, exponent: IntLike, modulus: IntLike, radix: int = DECIMAL) -> int:
    """
    Compute base^exponent mod modulus using square-and-multiply.

    String arguments are parsed in ``radix``; integer arguments are used as-is.

    Args:
        base: The base
        exponent: The exponent
        modulus: The modulus (must be positive)
        radix: Base used to parse string arguments (10 or 16)

    Returns:
        The result in [0, modulus). Modulus 1 yields 0; exponent 0 yields 1 mod modulus.
    """
    b = parse_uint(base, radix)
    e = parse_uint(exponent, radix)
    m = parse_uint(modulus, radix)

    if m == 0:
        raise ValueError("Modulus must be positive")
    if m == 1:
        return 0

    result = 1
    b %= m
    while e > 0:
        if e & 1:
            result = (result * b) % m
        b = (b * b) % m
        e >>= 1
    return result


def int_to_bytes(value: int) -> bytes:
    """Render a non-negative integer as minimal big-endian bytes (at least one byte)."""
    if value < 0:
        raise ValueError("Value must be non-negative")
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


def bytes_to_int(data: bytes) -> int:
    """Interpret bytes as a big-endian unsigned integer."""
    return int.from_bytes(data, "big")

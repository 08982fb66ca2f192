# PATH: core/encoding.py
"""
Wire codecs for JSON-RPC values.

Quantities are minimal hex ("0x0", "0x1a"), data is even-length hex,
addresses are 20 bytes and hashes 32 bytes. Internally quantities are int,
byte fields are bytes, addresses and hashes are lowercase hex strings.
"""

from typing import Any, Optional

from eth_utils import decode_hex, encode_hex, is_hex_address, keccak


def quantity_to_hex(value: int) -> str:
    """Encode an integer as a minimal JSON-RPC quantity."""
    if value < 0:
        raise ValueError(f"Quantity cannot be negative: {value}")
    return hex(value)


def hex_to_quantity(value: Any) -> int:
    """
    Decode a JSON-RPC quantity.

    Accepts ints unchanged so callers can pass already-decoded values.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value.startswith(("0x", "0X")):
        raise ValueError(f"Invalid quantity: {value!r}")
    if value in ("0x", "0X"):
        return 0
    return int(value, 16)


def optional_quantity(value: Any) -> Optional[int]:
    """Decode a quantity that may be absent."""
    if value is None:
        return None
    return hex_to_quantity(value)


def data_to_hex(value: bytes) -> str:
    """Encode bytes as 0x-prefixed hex."""
    return encode_hex(value)


def hex_to_data(value: Any) -> bytes:
    """Decode 0x-prefixed hex data."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value is None:
        return b""
    if not isinstance(value, str):
        raise ValueError(f"Invalid data: {value!r}")
    return decode_hex(value)


def normalize_address(value: Any) -> str:
    """Lowercase 20-byte address string."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise ValueError(f"Address must be 20 bytes, got {len(value)}")
        return encode_hex(value)
    if not isinstance(value, str) or not is_hex_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def address_to_bytes(address: str) -> bytes:
    return decode_hex(normalize_address(address))


def normalize_hash(value: Any) -> str:
    """Lowercase 32-byte hash string."""
    raw = hex_to_data(value)
    if len(raw) != 32:
        raise ValueError(f"Hash must be 32 bytes, got {len(raw)}")
    return encode_hex(raw)


def int_to_bytes(value: int, length: int) -> bytes:
    """
    Fixed-width big-endian encoding.

    Raises:
        ValueError: If value does not fit in length bytes
    """
    if value < 0:
        raise ValueError(f"Cannot encode negative value: {value}")
    if value >= 1 << (8 * length):
        raise ValueError(f"Value {value} does not fit in {length} bytes")
    return value.to_bytes(length, "big")


def bytes_to_int(value: bytes) -> int:
    return int.from_bytes(value, "big")


def int_to_bytes32_hex(value: int) -> str:
    return encode_hex(int_to_bytes(value, 32))


def int_to_address(value: int) -> str:
    return encode_hex(int_to_bytes(value, 20))


def strip_leading_zeros(value: bytes) -> bytes:
    """Minimal big-endian form (RLP integer encoding)."""
    return value.lstrip(b"\x00")


def keccak_hex(value: bytes) -> str:
    return encode_hex(keccak(value))

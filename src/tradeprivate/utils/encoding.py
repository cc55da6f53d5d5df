"""Encoding and decoding utilities."""

import re
from typing import Union

from tradeprivate.constants import ADDRESS_SIZE, UINT256_MAX
from tradeprivate.exceptions import InvalidAddressError, ValidationError
from tradeprivate.utils.hash import keccak256

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def bytes_to_hex(data: bytes) -> str:
    """
    Convert bytes to hexadecimal string.

    Args:
        data: Bytes to convert

    Returns:
        str: Hexadecimal string with '0x' prefix
    """
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """
    Convert hexadecimal string to bytes.

    Args:
        hex_str: Hexadecimal string (with or without '0x' prefix)

    Returns:
        bytes: Decoded bytes

    Raises:
        ValidationError: If hex string is invalid
    """
    if not isinstance(hex_str, str):
        raise ValidationError(f"Expected hex string, got {type(hex_str).__name__}")
    if hex_str[:2] in ("0x", "0X"):
        hex_str = hex_str[2:]

    if len(hex_str) % 2 != 0:
        raise ValidationError("Hex string must have even number of characters")
    if not _HEX_RE.match(hex_str):
        raise ValidationError("Hex string contains non-hex characters")

    return bytes.fromhex(hex_str)


def ensure_bytes(data: Union[bytes, str]) -> bytes:
    """
    Ensure data is in bytes format.

    Args:
        data: Bytes or string

    Returns:
        bytes: Data as bytes
    """
    if isinstance(data, bytes):
        return data
    elif isinstance(data, str):
        return data.encode('utf-8')
    else:
        raise TypeError(f"Expected bytes or str, got {type(data)}")


def int_to_bytes32(value: int) -> bytes:
    """Encode an unsigned integer as a 32-byte big-endian word (Solidity uint256)."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"Expected int, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValidationError("Value does not fit in uint256")
    return value.to_bytes(32, "big")


def address_to_bytes(address: Union[str, bytes]) -> bytes:
    """
    Normalize an Ethereum address to its 20 raw bytes.

    Args:
        address: '0x'-prefixed hex string or raw bytes

    Returns:
        bytes: 20-byte address

    Raises:
        InvalidAddressError: If the address is not exactly 20 bytes
    """
    if isinstance(address, (bytes, bytearray)):
        raw = bytes(address)
    elif isinstance(address, str):
        try:
            raw = hex_to_bytes(address)
        except ValidationError as e:
            raise InvalidAddressError(f"Invalid address {address!r}: {e}") from e
    else:
        raise InvalidAddressError(f"Invalid address type: {type(address).__name__}")

    if len(raw) != ADDRESS_SIZE:
        raise InvalidAddressError(f"Address must be {ADDRESS_SIZE} bytes, got {len(raw)}")
    return raw


def to_checksum_address(address: Union[str, bytes]) -> str:
    """
    Return the EIP-55 mixed-case checksum form of an address.

    Args:
        address: Hex string or 20 raw bytes

    Returns:
        str: Checksummed '0x'-prefixed address
    """
    lowered = address_to_bytes(address).hex()
    digest = keccak256(lowered.encode("ascii")).hex()
    return "0x" + "".join(
        ch.upper() if int(digest[i], 16) >= 8 else ch
        for i, ch in enumerate(lowered)
    )


def is_address(value: Union[str, bytes]) -> bool:
    """Check whether value parses as a 20-byte address."""
    try:
        address_to_bytes(value)
        return True
    except InvalidAddressError:
        return False

"""Cryptographic hash utilities."""

import hashlib
import hmac
from typing import Union

from Crypto.Hash import keccak, RIPEMD160


def sha256(data: Union[bytes, str]) -> bytes:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Bytes or string to hash

    Returns:
        bytes: 32-byte SHA-256 hash
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def hash_concatenate(*data: Union[bytes, str]) -> bytes:
    """
    Hash concatenated data.

    Args:
        *data: Multiple bytes or strings to concatenate and hash

    Returns:
        bytes: SHA-256 hash of concatenated data
    """
    concatenated = b""
    for item in data:
        if isinstance(item, str):
            concatenated += item.encode('utf-8')
        else:
            concatenated += item
    return sha256(concatenated)


def double_sha256(*data: Union[bytes, str]) -> bytes:
    """SHA-256 applied twice over the concatenated inputs."""
    return sha256(hash_concatenate(*data))


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 as used by the EVM (not NIST SHA3-256).

    Args:
        data: Bytes to hash

    Returns:
        bytes: 32-byte digest
    """
    return keccak.new(digest_bits=256, data=data).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data)), used for BIP32 key fingerprints."""
    return RIPEMD160.new(sha256(data)).digest()


def hmac_sha512(key: bytes, data: bytes) -> bytes:
    """HMAC-SHA512 of data under key."""
    return hmac.new(key, data, hashlib.sha512).digest()

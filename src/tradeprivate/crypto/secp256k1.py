"""secp256k1 helpers: public keys, ECDH and Ethereum addresses."""

from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from tradeprivate.constants import SECP256K1_ORDER
from tradeprivate.crypto.field import FieldElement
from tradeprivate.exceptions import CryptoError, ValidationError
from tradeprivate.utils.encoding import hex_to_bytes, to_checksum_address
from tradeprivate.utils.hash import keccak256

CURVE = ec.SECP256K1()

PrivateKeyLike = Union[FieldElement, int, bytes]
PublicKeyLike = Union[bytes, str]


def _scalar(private_key: PrivateKeyLike) -> int:
    if isinstance(private_key, FieldElement):
        value = private_key.to_int()
    elif isinstance(private_key, (bytes, bytearray)):
        value = int.from_bytes(private_key, "big")
    elif isinstance(private_key, int) and not isinstance(private_key, bool):
        value = private_key
    else:
        raise ValidationError(f"Unsupported private key type: {type(private_key).__name__}")
    if not 0 < value < SECP256K1_ORDER:
        raise CryptoError("Private key out of range for secp256k1")
    return value


def load_private_key(private_key: PrivateKeyLike) -> ec.EllipticCurvePrivateKey:
    """Build a cryptography private key object from a scalar."""
    return ec.derive_private_key(_scalar(private_key), CURVE)


def load_public_key(public_key: PublicKeyLike) -> ec.EllipticCurvePublicKey:
    """
    Parse a SEC1 encoded public key (33-byte compressed or 65-byte uncompressed).

    Raises:
        ValidationError: If the encoding is malformed or not on the curve
    """
    data = hex_to_bytes(public_key) if isinstance(public_key, str) else bytes(public_key)
    if len(data) not in (33, 65):
        raise ValidationError(f"Public key must be 33 or 65 bytes, got {len(data)}")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, data)
    except ValueError as e:
        raise ValidationError(f"Invalid secp256k1 public key: {e}") from e


def compress(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
    )


def uncompress(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )


def public_key_from_private(private_key: PrivateKeyLike, compressed: bool = True) -> bytes:
    """SEC1 public key bytes for a private scalar."""
    public_key = load_private_key(private_key).public_key()
    return compress(public_key) if compressed else uncompress(public_key)


def address_from_public_key(public_key: PublicKeyLike) -> str:
    """Checksummed Ethereum address: last 20 bytes of keccak256(X || Y)."""
    uncompressed = uncompress(load_public_key(public_key))
    return to_checksum_address(keccak256(uncompressed[1:])[-20:])


def address_from_private_key(private_key: PrivateKeyLike) -> str:
    return address_from_public_key(public_key_from_private(private_key, compressed=False))


def ecdh(private_key: PrivateKeyLike, peer_public_key: PublicKeyLike) -> bytes:
    """
    Raw ECDH shared secret: the 32-byte x coordinate of d * Q.

    The SEC1 prefix byte is not part of the output.
    """
    private = private_key if isinstance(private_key, ec.EllipticCurvePrivateKey) else load_private_key(private_key)
    peer = peer_public_key if isinstance(peer_public_key, ec.EllipticCurvePublicKey) else load_public_key(peer_public_key)
    return private.exchange(ec.ECDH(), peer)

"""Fixed-size encryption of orders to a keeper's public key.

Wire format (exactly 512 bytes, the ledger's storage slot):

    ephemeral public key (33, compressed secp256k1)
    || nonce (24)
    || XChaCha20-Poly1305 ciphertext (439) || tag (16)

Key agreement is ECDH between a fresh ephemeral key and the keeper's static
key; the symmetric key is SHA-256 of the shared x coordinate. The plaintext
is a 2-byte length prefix, the canonical order encoding and zero padding up
to 439 bytes, so the ciphertext length never depends on the order. The
ephemeral public key is authenticated as associated data.

Example Usage:
    >>> cipher = OrderCipher()
    >>> keeper_priv, keeper_pub = generate_keeper_keypair()
    >>> blob = cipher.encrypt_for_keeper(order, keeper_pub)
    >>> len(blob)
    512
    >>> cipher.decrypt_for_keeper(blob, keeper_priv).payload == order
    True
"""

import logging
import secrets
from typing import Callable, Optional, Tuple, Union

from Crypto.Cipher import ChaCha20_Poly1305
from cryptography.hazmat.primitives.asymmetric import ec

from tradeprivate.constants import (
    CIPHER_NONCE_SIZE,
    CIPHER_TAG_SIZE,
    ENCRYPTED_ORDER_SIZE,
    EPHEMERAL_KEY_SIZE,
    LENGTH_PREFIX_SIZE,
    MAX_ORDER_PLAINTEXT,
    PADDED_PLAINTEXT_SIZE,
    SECP256K1_ORDER,
)
from tradeprivate.core.order import OrderPayload, SealedOrder
from tradeprivate.crypto.secp256k1 import (
    CURVE,
    PrivateKeyLike,
    PublicKeyLike,
    compress,
    ecdh,
    load_private_key,
    load_public_key,
)
from tradeprivate.exceptions import DecryptionError, EncryptionError, ValidationError
from tradeprivate.utils.encoding import hex_to_bytes
from tradeprivate.utils.hash import hmac_sha512, sha256

logger = logging.getLogger(__name__)


def generate_keeper_keypair() -> Tuple[int, bytes]:
    """New secp256k1 key pair: (private scalar, 33-byte compressed public key)."""
    private_key = ec.generate_private_key(CURVE)
    return private_key.private_numbers().private_value, compress(private_key.public_key())


def pad_plaintext(plaintext: bytes) -> bytes:
    """
    Length-prefix and zero-pad to the fixed plaintext size.

    Raises:
        ValidationError: If the plaintext does not fit
    """
    if len(plaintext) > MAX_ORDER_PLAINTEXT:
        raise ValidationError(
            f"Order plaintext is {len(plaintext)} bytes, maximum is {MAX_ORDER_PLAINTEXT}"
        )
    framed = len(plaintext).to_bytes(LENGTH_PREFIX_SIZE, "big") + plaintext
    return framed + b"\x00" * (PADDED_PLAINTEXT_SIZE - len(framed))


def unpad_plaintext(padded: bytes) -> bytes:
    """Inverse of ``pad_plaintext``."""
    length = int.from_bytes(padded[:LENGTH_PREFIX_SIZE], "big")
    if length > MAX_ORDER_PLAINTEXT:
        raise DecryptionError("Invalid plaintext length prefix")
    return padded[LENGTH_PREFIX_SIZE:LENGTH_PREFIX_SIZE + length]


class OrderCipher:
    """Encrypts orders for keepers and decrypts them on the keeper side."""

    def __init__(self, randbytes: Callable[[int], bytes] = secrets.token_bytes):
        self._randbytes = randbytes

    @staticmethod
    def derive_symmetric_key(shared_x: bytes) -> bytes:
        """SHA-256 of the ECDH x coordinate. The raw shared secret is never used as a key."""
        return sha256(shared_x)

    def _ephemeral_key(
        self,
        plaintext: bytes,
        sender_private_key: Optional[PrivateKeyLike],
    ) -> ec.EllipticCurvePrivateKey:
        if sender_private_key is None:
            return ec.generate_private_key(CURVE)
        # Hedged: fresh randomness mixed with the sender key and message.
        sender = load_private_key(sender_private_key).private_numbers().private_value
        while True:
            digest = hmac_sha512(
                sender.to_bytes(32, "big"),
                self._randbytes(32) + plaintext,
            )
            scalar = int.from_bytes(digest[:32], "big")
            if 0 < scalar < SECP256K1_ORDER:
                return load_private_key(scalar)

    def encrypt_for_keeper(
        self,
        order: Union[SealedOrder, OrderPayload],
        keeper_public_key: PublicKeyLike,
        sender_private_key: Optional[PrivateKeyLike] = None,
    ) -> bytes:
        """
        Encrypt an order to a keeper.

        Args:
            order: Order (a bare payload is sealed with default metadata)
            keeper_public_key: Keeper's 33- or 65-byte secp256k1 public key
            sender_private_key: Optional sender trading key that hedges the
                ephemeral key against a weak RNG

        Returns:
            bytes: Exactly 512 bytes

        Raises:
            ValidationError: If the keeper key is malformed or the order too large
            EncryptionError: If the AEAD fails
        """
        sealed = order if isinstance(order, SealedOrder) else SealedOrder(payload=order)
        padded = pad_plaintext(sealed.to_plaintext())
        keeper_key = load_public_key(keeper_public_key)

        ephemeral = self._ephemeral_key(padded, sender_private_key)
        ephemeral_public = compress(ephemeral.public_key())
        key = self.derive_symmetric_key(ecdh(ephemeral, keeper_key))
        nonce = self._randbytes(CIPHER_NONCE_SIZE)

        try:
            cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
            cipher.update(ephemeral_public)
            ciphertext, tag = cipher.encrypt_and_digest(padded)
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Order encryption failed: {e}") from e

        blob = ephemeral_public + nonce + ciphertext + tag
        if len(blob) != ENCRYPTED_ORDER_SIZE:
            raise EncryptionError(f"Encrypted order is {len(blob)} bytes, expected {ENCRYPTED_ORDER_SIZE}")
        return blob

    def decrypt_for_keeper(
        self,
        encrypted: Union[bytes, str],
        keeper_private_key: PrivateKeyLike,
    ) -> SealedOrder:
        """
        Decrypt an order with the keeper's static key.

        Raises:
            ValidationError: If the blob is not 512 bytes or carries a bad public key
            DecryptionError: If the tag does not verify (wrong key or tampering)
        """
        blob = hex_to_bytes(encrypted) if isinstance(encrypted, str) else bytes(encrypted)
        if len(blob) != ENCRYPTED_ORDER_SIZE:
            raise ValidationError(
                f"Encrypted order must be {ENCRYPTED_ORDER_SIZE} bytes, got {len(blob)}"
            )

        ephemeral_public = blob[:EPHEMERAL_KEY_SIZE]
        nonce = blob[EPHEMERAL_KEY_SIZE:EPHEMERAL_KEY_SIZE + CIPHER_NONCE_SIZE]
        body = blob[EPHEMERAL_KEY_SIZE + CIPHER_NONCE_SIZE:]
        ciphertext, tag = body[:-CIPHER_TAG_SIZE], body[-CIPHER_TAG_SIZE:]

        key = self.derive_symmetric_key(ecdh(keeper_private_key, load_public_key(ephemeral_public)))
        cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
        cipher.update(ephemeral_public)
        try:
            padded = cipher.decrypt_and_verify(ciphertext, tag)
        except ValueError as e:
            raise DecryptionError("Order authentication failed") from e

        try:
            return SealedOrder.from_plaintext(unpad_plaintext(padded))
        except ValidationError as e:
            raise DecryptionError(f"Decrypted order is malformed: {e}") from e

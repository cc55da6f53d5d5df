"""Nullifier derivation and ledger-backed usage checks.

A nullifier is a one-time tag for a logical spend. It is derived
deterministically, so a retried submission emits the same tag, and its
presence in the ledger's ``usedNullifiers`` map is the only ground truth.

Core Properties:
    - Deterministic: same (secret, commitment, nonce) -> same nullifier
    - Unlinkable: double hashing under a domain tag, so the tag reveals
      nothing about the secret or which commitment it belongs to
    - Field-sized: reduced into the BN254 field so circuits accept it
    - Authoritative state is on-chain: locally we only track an optimistic
      in-flight set for single-flight protection

Example Usage:
    >>> engine = NullifierEngine()
    >>> n = engine.order_nullifier(secret_key, order_commitment, nonce)
    >>> async with engine.in_flight(n):
    ...     if await engine.is_used(ledger, n):
    ...         raise ReplayError(n)
    ...     await ledger.submit_order_private(...)

Warning:
    Never generate a fresh nullifier to retry a failed submission. Reuse the
    original one; the ledger rejects the second spend either way.
"""

import abc
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Set, Tuple, Union

from tradeprivate.constants import NULLIFIER_SIZE
from tradeprivate.crypto.field import FieldElement, FieldLike
from tradeprivate.exceptions import (
    DuplicateNullifierError,
    InvalidFieldElementError,
    NetworkError,
    ReplayError,
    ValidationError,
)
from tradeprivate.utils.encoding import address_to_bytes, bytes_to_hex, hex_to_bytes, int_to_bytes32
from tradeprivate.utils.hash import double_sha256

logger = logging.getLogger(__name__)

NullifierLike = Union[str, bytes]

ORDER_DOMAIN = b"tradeprivate.nullifier.order.v1"
ACCOUNT_DOMAIN = b"tradeprivate.nullifier.account.v1"
BATCH_DOMAIN = b"tradeprivate.nullifier.batch.v1"


class NullifierScheme(abc.ABC):
    """Pluggable nullifier construction."""

    name: str = "abstract"

    @abc.abstractmethod
    def derive(self, domain: bytes, *parts: bytes) -> FieldElement:
        """Derive a nullifier from domain-tagged inputs."""


class HashNullifierScheme(NullifierScheme):
    """nf = SHA256(SHA256(domain || parts...)) mod p."""

    name = "double-sha256"

    def derive(self, domain: bytes, *parts: bytes) -> FieldElement:
        return FieldElement.from_bytes(double_sha256(domain, *parts))


def normalize_nullifier(nullifier: NullifierLike) -> str:
    """
    Validate a nullifier and return its canonical '0x' + 64 hex form.

    Raises:
        ValidationError: If it is not exactly 32 hex-decodable bytes
            or exceeds the field size
    """
    if isinstance(nullifier, (bytes, bytearray)):
        raw = bytes(nullifier)
    elif isinstance(nullifier, str):
        raw = hex_to_bytes(nullifier)
    else:
        raise ValidationError(f"Nullifier must be hex or bytes, got {type(nullifier).__name__}")

    if len(raw) != NULLIFIER_SIZE:
        raise ValidationError(f"Nullifier must be {NULLIFIER_SIZE} bytes, got {len(raw)}")
    try:
        FieldElement.from_canonical(raw)
    except InvalidFieldElementError as e:
        raise ValidationError("Nullifier exceeds field size") from e
    return bytes_to_hex(raw)


class NullifierEngine:
    """Derives nullifiers and checks them against the ledger."""

    def __init__(self, scheme: Optional[NullifierScheme] = None):
        self.scheme = scheme or HashNullifierScheme()
        self._in_flight: Set[str] = set()

    # Derivation

    def order_nullifier(
        self,
        secret_key: FieldLike,
        order_commitment: FieldLike,
        nonce: FieldLike,
    ) -> str:
        """
        Nullifier for one order.

        Args:
            secret_key: Trading private key
            order_commitment: Commitment of the order being spent
            nonce: Nonce used for the order commitment

        Returns:
            str: '0x'-prefixed 32-byte nullifier
        """
        return self.scheme.derive(
            ORDER_DOMAIN,
            FieldElement(secret_key).to_bytes(),
            FieldElement(order_commitment).to_bytes(),
            FieldElement(nonce).to_bytes(),
        ).to_hex()

    def account_nullifier(
        self,
        secret_key: FieldLike,
        amount: int,
        recipient: Union[str, bytes],
        nonce: FieldLike,
    ) -> str:
        """Nullifier for a withdrawal of ``amount`` to ``recipient``."""
        return self.scheme.derive(
            ACCOUNT_DOMAIN,
            FieldElement(secret_key).to_bytes(),
            int_to_bytes32(amount),
            address_to_bytes(recipient),
            FieldElement(nonce).to_bytes(),
        ).to_hex()

    def batch_nullifier(
        self,
        batch_hash: Union[str, bytes],
        keeper_address: Union[str, bytes],
        timestamp: int,
    ) -> str:
        """Nullifier for a keeper's settlement batch."""
        batch = hex_to_bytes(batch_hash) if isinstance(batch_hash, str) else bytes(batch_hash)
        return self.scheme.derive(
            BATCH_DOMAIN,
            batch,
            address_to_bytes(keeper_address),
            int_to_bytes32(timestamp),
        ).to_hex()

    # Validation

    @staticmethod
    def validate(nullifier: NullifierLike) -> str:
        """Validate one nullifier, returning its canonical hex form."""
        return normalize_nullifier(nullifier)

    @staticmethod
    def validate_batch(nullifiers: Iterable[NullifierLike]) -> List[str]:
        """
        Validate a batch and reject duplicates.

        Raises:
            ValidationError: If any entry is malformed
            DuplicateNullifierError: If the batch repeats a nullifier
        """
        normalized = [normalize_nullifier(n) for n in nullifiers]
        if len(set(normalized)) != len(normalized):
            raise DuplicateNullifierError("Batch contains duplicate nullifiers")
        return normalized

    # Ledger checks

    async def is_used(self, ledger, nullifier: NullifierLike) -> bool:
        """
        Ask the ledger whether a nullifier has been spent.

        Validation happens before any network call. Transport failures
        surface as NetworkError; nothing is cached.
        """
        canonical = normalize_nullifier(nullifier)
        try:
            return await ledger.used_nullifiers(canonical)
        except (ConnectionError, TimeoutError, OSError) as e:
            raise NetworkError(f"Nullifier lookup failed: {e}") from e

    async def are_used(self, ledger, nullifiers: Iterable[NullifierLike]) -> List[Tuple[str, bool]]:
        """Check a duplicate-free batch, returning (nullifier, is_used) pairs in input order."""
        batch = self.validate_batch(nullifiers)
        results = []
        for nullifier in batch:
            results.append((nullifier, await self.is_used(ledger, nullifier)))
        return results

    # Single-flight

    @asynccontextmanager
    async def in_flight(self, nullifier: NullifierLike) -> AsyncIterator[str]:
        """
        Claim a nullifier for the duration of a submission.

        Raises:
            ReplayError: If another submission already holds it
        """
        canonical = normalize_nullifier(nullifier)
        if canonical in self._in_flight:
            raise ReplayError(f"Nullifier {canonical[:10]}... is already being submitted")
        self._in_flight.add(canonical)
        try:
            yield canonical
        finally:
            self._in_flight.discard(canonical)

    def is_in_flight(self, nullifier: NullifierLike) -> bool:
        return normalize_nullifier(nullifier) in self._in_flight

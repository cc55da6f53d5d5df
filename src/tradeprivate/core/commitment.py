"""Account and order commitments, and the commit-reveal hash.

The commitment functions sit behind ``CommitmentScheme`` so the
arithmetization can be swapped for whatever the verifying circuit checks
(e.g. a Poseidon-based scheme) without touching the orchestrators. The
commit hash is not swappable: it must equal the ledger's

    keccak256(abi.encodePacked(bytes32 commitment, uint256 nonce, address sender))

byte for byte, or the on-chain reveal fails.
"""

import abc
from typing import Optional, Union

from tradeprivate.core.order import OrderPayload
from tradeprivate.crypto.field import FieldElement, FieldLike
from tradeprivate.exceptions import InvalidFieldElementError
from tradeprivate.utils.encoding import address_to_bytes, bytes_to_hex
from tradeprivate.utils.hash import hash_concatenate, keccak256

Address = Union[str, bytes]

ACCOUNT_DOMAIN = b"tradeprivate.account.v1"
ORDER_DOMAIN = b"tradeprivate.order.v1"


class CommitmentScheme(abc.ABC):
    """Pluggable commitment construction."""

    name: str = "abstract"

    @abc.abstractmethod
    def account_commitment(self, secret_key: FieldElement, nonce: FieldElement) -> FieldElement:
        """Commit to a trading key."""

    @abc.abstractmethod
    def order_commitment(self, encoded_order: bytes, nonce: FieldElement) -> FieldElement:
        """Commit to a canonically encoded order."""


class HashCommitmentScheme(CommitmentScheme):
    """
    Domain-separated SHA-256 commitments reduced into the field.

    C_account = H("tradeprivate.account.v1" || sk || nonce) mod p
    C_order   = H("tradeprivate.order.v1" || H(order) || nonce) mod p
    """

    name = "sha256"

    def account_commitment(self, secret_key: FieldElement, nonce: FieldElement) -> FieldElement:
        return FieldElement.from_bytes(
            hash_concatenate(ACCOUNT_DOMAIN, secret_key.to_bytes(), nonce.to_bytes())
        )

    def order_commitment(self, encoded_order: bytes, nonce: FieldElement) -> FieldElement:
        return FieldElement.from_bytes(
            hash_concatenate(ORDER_DOMAIN, hash_concatenate(encoded_order), nonce.to_bytes())
        )


def _canonical(value: FieldLike, name: str) -> FieldElement:
    try:
        return FieldElement.from_canonical(value)
    except InvalidFieldElementError as e:
        raise InvalidFieldElementError(f"{name} exceeds field size") from e


class CommitmentEngine:
    """
    Builds commitments and commit hashes.

    Inputs that reach the wire are parsed strictly: values at or above the
    field modulus raise ``InvalidFieldElementError`` instead of being reduced.
    """

    def __init__(self, scheme: Optional[CommitmentScheme] = None):
        self.scheme = scheme or HashCommitmentScheme()

    def account_commitment(self, secret_key: FieldLike, nonce: FieldLike) -> FieldElement:
        """
        Commit to a trading key.

        Args:
            secret_key: Trading private key
            nonce: Fresh random field element

        Returns:
            FieldElement: Deterministic in (secret_key, nonce)

        Raises:
            InvalidFieldElementError: If either input is not a canonical field value
        """
        return self.scheme.account_commitment(
            _canonical(secret_key, "secret key"), _canonical(nonce, "nonce")
        )

    def order_commitment(self, order: OrderPayload, nonce: FieldLike) -> FieldElement:
        """
        Commit to an order.

        Args:
            order: Order payload (encoded in canonical field order)
            nonce: Fresh random field element

        Returns:
            FieldElement: Deterministic in (order, nonce)
        """
        return self.scheme.order_commitment(order.encode(), _canonical(nonce, "nonce"))

    @staticmethod
    def encode_packed(commitment: FieldLike, nonce: FieldLike, address: Address) -> bytes:
        """
        Solidity abi.encodePacked(bytes32, uint256, address): 32 + 32 + 20 bytes.

        Raises:
            InvalidAddressError: If the address is not 20 bytes
            InvalidFieldElementError: If commitment or nonce exceed the field
        """
        address_bytes = address_to_bytes(address)
        return (
            _canonical(commitment, "commitment").to_bytes()
            + _canonical(nonce, "nonce").to_bytes()
            + address_bytes
        )

    @staticmethod
    def commit_hash(commitment: FieldLike, nonce: FieldLike, address: Address) -> bytes:
        """
        keccak256(commitment || nonce || address), matching the ledger.

        Args:
            commitment: Account commitment
            nonce: Nonce used in the commitment
            address: Committing address (20 bytes)

        Returns:
            bytes: 32-byte commit hash
        """
        return keccak256(CommitmentEngine.encode_packed(commitment, nonce, address))

    @staticmethod
    def commit_hash_hex(commitment: FieldLike, nonce: FieldLike, address: Address) -> str:
        return bytes_to_hex(CommitmentEngine.commit_hash(commitment, nonce, address))

    @staticmethod
    def verify_commit_hash(
        commit_hash: bytes,
        commitment: FieldLike,
        nonce: FieldLike,
        address: Address,
    ) -> bool:
        """Check that a commit hash opens to (commitment, nonce, address)."""
        return CommitmentEngine.commit_hash(commitment, nonce, address) == bytes(commit_hash)

"""Zero-knowledge proof boundary.

The circuits are not part of this package. Orchestrators request proofs
through ``ProofProvider`` and pass the resulting words to the ledger
unchanged; the mock returns the eight zero words the development verifier
accepts. Proof generation is synchronous and is dispatched to a worker
thread by the callers.
"""

import abc
from typing import List

from tradeprivate.crypto.field import FieldElement

Proof = List[int]

PROOF_WORDS = 8


class ProofProvider(abc.ABC):
    """Produces proofs for account reveal, order submission and withdrawal."""

    @abc.abstractmethod
    def account_proof(self, secret_key: FieldElement, nonce: FieldElement, commitment: FieldElement) -> Proof:
        """Proof that ``commitment`` opens to (secret_key, nonce)."""

    @abc.abstractmethod
    def order_proof(
        self,
        secret_key: FieldElement,
        account_commitment: FieldElement,
        order_commitment: FieldElement,
        nullifier: str,
    ) -> Proof:
        """Proof binding an order and its nullifier to an account."""

    @abc.abstractmethod
    def withdrawal_proof(self, secret_key: FieldElement, amount: int, nullifier: str) -> Proof:
        """Proof authorizing a withdrawal."""


class MockProofProvider(ProofProvider):
    """Returns all-zero proofs. Development and tests only."""

    def account_proof(self, secret_key, nonce, commitment) -> Proof:
        return [0] * PROOF_WORDS

    def order_proof(self, secret_key, account_commitment, order_commitment, nullifier) -> Proof:
        return [0] * PROOF_WORDS

    def withdrawal_proof(self, secret_key, amount, nullifier) -> Proof:
        return [0] * PROOF_WORDS

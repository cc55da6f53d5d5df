"""In-process ledger simulator.

Reproduces the public behaviour of the trading contract closely enough to
drive the orchestrators end to end in tests and demos: collateral balances,
the commit-reveal delay with committer binding, nullifier uniqueness, order
validity windows and the keeper registry. It performs no proof verification
beyond checking the proof shape.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from tradeprivate.constants import COMMIT_REVEAL_DELAY, ENCRYPTED_ORDER_SIZE, ORDER_EXPIRATION
from tradeprivate.core.commitment import CommitmentEngine
from tradeprivate.ledger.base import KeeperInfo, Ledger, LedgerRevert, TxReceipt
from tradeprivate.utils.encoding import address_to_bytes, bytes_to_hex
from tradeprivate.utils.hash import keccak256

logger = logging.getLogger(__name__)

PROOF_WORDS = 8


def _key(address: str) -> str:
    return address_to_bytes(address).hex()


@dataclass
class _Commit:
    sender: str
    block_number: int


@dataclass
class _Order:
    sender: str
    account_commitment: str
    order_commitment: str
    encrypted_order: bytes
    block_number: int
    executed: bool = False


class InMemoryLedger(Ledger):
    """Deterministic stand-in for the on-chain contract."""

    def __init__(
        self,
        commit_reveal_delay: int = COMMIT_REVEAL_DELAY,
        order_expiration: int = ORDER_EXPIRATION,
        start_block: int = 1,
    ):
        self.commit_reveal_delay = commit_reveal_delay
        self.order_expiration = order_expiration
        self.current_block = start_block
        self.balances: Dict[str, int] = defaultdict(int)
        self.commits: Dict[bytes, _Commit] = {}
        self.accounts: Dict[str, str] = {}
        self.orders: Dict[str, _Order] = {}
        self.nullifiers: set = set()
        self._keepers: Dict[str, KeeperInfo] = {}
        self._active: List[str] = []
        self._failures: Dict[str, int] = defaultdict(int)
        self._tx_counter = 0
        self.calls: Dict[str, int] = defaultdict(int)

    # Simulation controls

    def mine(self, blocks: int = 1) -> int:
        self.current_block += blocks
        return self.current_block

    def fail_next(self, method: str, times: int = 1) -> None:
        """Make the next ``times`` calls to ``method`` raise ConnectionError."""
        self._failures[method] += times

    def register_keeper(self, keeper: KeeperInfo) -> None:
        key = _key(keeper.address)
        if key not in self._keepers:
            self._active.append(key)
        self._keepers[key] = keeper

    def execute_order(self, nullifier: str) -> None:
        """Mark an order as settled by a keeper batch."""
        order = self.orders.get(nullifier)
        if order is None:
            raise LedgerRevert("OrderNotFound")
        order.executed = True
        self.nullifiers.add(nullifier)

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        if self._failures[method] > 0:
            self._failures[method] -= 1
            raise ConnectionError(f"simulated transport failure in {method}")

    def _receipt(self) -> TxReceipt:
        self._tx_counter += 1
        tx_hash = bytes_to_hex(keccak256(self._tx_counter.to_bytes(32, "big")))
        return TxReceipt(tx_hash=tx_hash, block_number=self.current_block)

    @staticmethod
    def _check_proof(proof: List[int]) -> None:
        if len(proof) != PROOF_WORDS:
            raise LedgerRevert("InvalidProof")

    # Ledger interface

    async def block_number(self) -> int:
        self._enter("block_number")
        return self.current_block

    async def balance_of(self, address: str) -> int:
        self._enter("balance_of")
        return self.balances[_key(address)]

    async def deposit(self, sender: str, amount: int) -> TxReceipt:
        self._enter("deposit")
        if amount <= 0:
            raise LedgerRevert("InvalidAmount")
        self.balances[_key(sender)] += amount
        return self._receipt()

    async def withdraw(self, sender: str, amount: int, proof: List[int]) -> TxReceipt:
        self._enter("withdraw")
        self._check_proof(proof)
        if amount <= 0:
            raise LedgerRevert("InvalidAmount")
        if self.balances[_key(sender)] < amount:
            raise LedgerRevert("InsufficientBalance")
        self.balances[_key(sender)] -= amount
        return self._receipt()

    async def commit_trading_account(self, sender: str, commit_hash: bytes) -> TxReceipt:
        self._enter("commit_trading_account")
        commit_hash = bytes(commit_hash)
        if commit_hash in self.commits:
            raise LedgerRevert("CommitmentAlreadyExists")
        self.commits[commit_hash] = _Commit(sender=_key(sender), block_number=self.current_block)
        return self._receipt()

    async def reveal_trading_account(
        self, sender: str, commitment: str, nonce: int, proof: List[int]
    ) -> TxReceipt:
        self._enter("reveal_trading_account")
        self._check_proof(proof)
        commit_hash = CommitmentEngine.commit_hash(commitment, nonce, sender)
        commit = self.commits.get(commit_hash)
        if commit is None:
            raise LedgerRevert("InvalidCommitment")
        if self.current_block - commit.block_number < self.commit_reveal_delay:
            raise LedgerRevert("CommitRevealTooEarly")
        if commitment in self.accounts:
            raise LedgerRevert("AccountAlreadyExists")
        self.accounts[commitment] = commit.sender
        del self.commits[commit_hash]
        return self._receipt()

    async def submit_order_private(
        self,
        sender: str,
        proof: List[int],
        nullifier: str,
        account_commitment: str,
        order_commitment: str,
        encrypted_order: bytes,
    ) -> TxReceipt:
        self._enter("submit_order_private")
        self._check_proof(proof)
        if len(encrypted_order) != ENCRYPTED_ORDER_SIZE:
            raise LedgerRevert("InvalidEncryptedOrder")
        if nullifier in self.nullifiers or nullifier in self.orders:
            raise LedgerRevert("NullifierAlreadyUsed")
        if account_commitment not in self.accounts:
            raise LedgerRevert("AccountDoesNotExist")
        self.orders[nullifier] = _Order(
            sender=_key(sender),
            account_commitment=account_commitment,
            order_commitment=order_commitment,
            encrypted_order=bytes(encrypted_order),
            block_number=self.current_block,
        )
        return self._receipt()

    async def commit_block_number(self, commit_hash: bytes) -> int:
        self._enter("commit_block_number")
        commit = self.commits.get(bytes(commit_hash))
        return commit.block_number if commit else 0

    async def account_exists(self, commitment: str) -> bool:
        self._enter("account_exists")
        return commitment in self.accounts

    async def used_nullifiers(self, nullifier: str) -> bool:
        self._enter("used_nullifiers")
        return nullifier in self.nullifiers

    async def is_order_valid(self, nullifier: str) -> bool:
        self._enter("is_order_valid")
        order = self.orders.get(nullifier)
        if order is None or order.executed:
            return False
        return self.current_block - order.block_number <= self.order_expiration

    async def keepers(self, address: str) -> KeeperInfo:
        self._enter("keepers")
        keeper = self._keepers.get(_key(address))
        if keeper is None:
            raise LedgerRevert("KeeperNotFound")
        return keeper

    async def active_keeper_list(self, index: int) -> str:
        self._enter("active_keeper_list")
        if not 0 <= index < len(self._active):
            raise LedgerRevert("IndexOutOfBounds")
        return self._keepers[self._active[index]].address

    async def active_keeper_count(self) -> int:
        self._enter("active_keeper_count")
        return len(self._active)

    def account_owner(self, commitment: str) -> Optional[str]:
        return self.accounts.get(commitment)

"""Trading account creation via commit-reveal.

States:
    NO_ACCOUNT -> create_account() -> COMMIT_PENDING
    COMMIT_PENDING -> (COMMIT_REVEAL_DELAY blocks) -> REVEAL_READY
    REVEAL_READY -> reveal_account() -> ACCOUNT_ACTIVE
    COMMIT_PENDING | REVEAL_READY -> cancel_pending() -> NO_ACCOUNT

The commitment and nonce are fixed and persisted (sealed under the
wallet's storage key) before the commit is sent. Every commit and reveal
attempt, including retries after a failure or a restart, reuses them. A
retry that finds its earlier attempt already applied on the ledger is
treated as landed. Only the committing address may reveal, and never
before the delay has elapsed.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Optional

from tradeprivate.context import WalletContext
from tradeprivate.core.proofs import MockProofProvider, ProofProvider
from tradeprivate.crypto.field import FieldElement
from tradeprivate.exceptions import (
    CommitterMismatchError,
    ContractError,
    InvalidStateError,
    TimingError,
    ValidationError,
)
from tradeprivate.ledger.base import Ledger, TxReceipt
from tradeprivate.models.schemas import AccountInfo, CommitResult, RevealResult
from tradeprivate.utils.encoding import bytes_to_hex, hex_to_bytes, to_checksum_address

logger = logging.getLogger(__name__)

PENDING_CONTEXT = "pending_commit"
ACCOUNT_CONTEXT = "trading_account"


class AccountState(str, enum.Enum):
    """Account lifecycle."""
    NO_ACCOUNT = "no_account"
    COMMIT_PENDING = "commit_pending"
    REVEAL_READY = "reveal_ready"
    ACCOUNT_ACTIVE = "account_active"


@dataclass
class PendingCommitState:
    """A commit awaiting its reveal. ``block_number`` is None until the ledger confirms it."""

    commitment: FieldElement
    nonce: FieldElement
    commit_hash: str
    block_number: Optional[int]
    created_at: float
    committer: str
    account_index: int

    def to_dict(self) -> dict:
        return {
            "commitment": self.commitment.to_hex(),
            "nonce": self.nonce.to_hex(),
            "commit_hash": self.commit_hash,
            "block_number": self.block_number,
            "created_at": self.created_at,
            "committer": self.committer,
            "account_index": self.account_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingCommitState":
        return cls(
            commitment=FieldElement.from_canonical(data["commitment"]),
            nonce=FieldElement.from_canonical(data["nonce"]),
            commit_hash=data["commit_hash"],
            block_number=None if data["block_number"] is None else int(data["block_number"]),
            created_at=float(data["created_at"]),
            committer=data["committer"],
            account_index=int(data["account_index"]),
        )


class AccountOrchestrator:
    """Drives the commit-reveal account flow against the ledger."""

    def __init__(
        self,
        context: WalletContext,
        ledger: Ledger,
        proofs: Optional[ProofProvider] = None,
    ):
        self.context = context
        self.ledger = context.ledger_client(ledger)
        self.proofs = proofs or MockProofProvider()
        self.state = AccountState.NO_ACCOUNT
        self.pending: Optional[PendingCommitState] = None
        self.account_commitment: Optional[FieldElement] = None
        self._lock = asyncio.Lock()

    @property
    def reveal_delay(self) -> int:
        return self.context.settings.commit_reveal_delay

    # Persistence

    async def load(self) -> AccountState:
        """Restore account or pending-commit state for the selected address."""
        owner = self.context.address
        cipher = self.context.record_cipher
        storage = self.context.storage

        account = await asyncio.to_thread(storage.get_account, owner)
        if account is not None:
            data = cipher.open(account.sealed, ACCOUNT_CONTEXT)
            self.account_commitment = FieldElement.from_canonical(data["commitment"])
            self.pending = None
            self.state = AccountState.ACCOUNT_ACTIVE
            return self.state

        row = await asyncio.to_thread(storage.get_pending_commit, owner)
        if row is None:
            self.pending = None
            self.state = AccountState.NO_ACCOUNT
            return self.state

        self.pending = PendingCommitState.from_dict(cipher.open(row.sealed, PENDING_CONTEXT))
        self.state = AccountState.COMMIT_PENDING
        logger.info("Loaded pending commit for %s (block %s)", owner, self.pending.block_number)
        return await self.refresh()

    async def _save_pending(self, pending: PendingCommitState) -> None:
        sealed = self.context.record_cipher.seal(pending.to_dict(), PENDING_CONTEXT)
        await asyncio.to_thread(
            self.context.storage.save_pending_commit,
            pending.committer,
            pending.commit_hash,
            pending.block_number,
            sealed,
        )

    # Collateral

    async def deposit(self, amount: int) -> TxReceipt:
        """Deposit collateral (USDC base units). Not retried: deposits are not idempotent."""
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("Deposit amount must be a positive integer")
        receipt = await self.ledger.call("deposit", self.context.address, amount, retry=False)
        logger.info("Deposited %d to %s (tx %s)", amount, self.context.address, receipt.tx_hash)
        return receipt

    async def balance(self) -> int:
        return await self.ledger.call("balance_of", self.context.address)

    # Commit-reveal

    async def create_account(self) -> CommitResult:
        """
        Commit to a new trading account.

        The commitment and nonce are saved before the commit is sent, so a
        crash or a lost response never orphans a commit on the ledger. Calling
        again while that commit is unconfirmed resends the same hash.

        Returns:
            CommitResult: commit hash, tx hash and the first block a reveal is accepted

        Raises:
            InvalidStateError: If an account or a confirmed commit already exists
            ValidationError: If the address has no deposited collateral
        """
        async with self._lock:
            if self.state is AccountState.ACCOUNT_ACTIVE:
                raise InvalidStateError("Trading account already exists")
            pending = self.pending
            if pending is not None and pending.block_number is not None:
                raise InvalidStateError("A commit is already pending; reveal or cancel it")

            if pending is None:
                keys = self.context.trading_keys
                if await self.ledger.call("balance_of", keys.address) <= 0:
                    raise ValidationError("Deposit collateral before creating a trading account")

                nonce = FieldElement.random()
                commitments = self.context.commitments
                commitment = commitments.account_commitment(keys.private_key, nonce)
                pending = PendingCommitState(
                    commitment=commitment,
                    nonce=nonce,
                    commit_hash=bytes_to_hex(commitments.commit_hash(commitment, nonce, keys.address)),
                    block_number=None,
                    created_at=time.time(),
                    committer=keys.address,
                    account_index=self.context.account_index,
                )
                await self._save_pending(pending)
                self.pending = pending
                self.state = AccountState.COMMIT_PENDING
            else:
                logger.info("Resending unconfirmed commit for %s", pending.committer)

            tx_hash = await self._send_commit(pending)
            logger.info(
                "Committed trading account for %s at block %d (tx %s)",
                pending.committer, pending.block_number, tx_hash,
            )
            return CommitResult(
                commit_hash=pending.commit_hash,
                tx_hash=tx_hash,
                block_number=pending.block_number,
                reveal_after_block=pending.block_number + self.reveal_delay,
            )

    async def _send_commit(self, pending: PendingCommitState) -> Optional[str]:
        commit_hash = hex_to_bytes(pending.commit_hash)
        try:
            receipt = await self.ledger.call("commit_trading_account", pending.committer, commit_hash)
            block_number, tx_hash = receipt.block_number, receipt.tx_hash
        except ContractError as e:
            # An earlier attempt may have landed with its response lost.
            if e.reason != "CommitmentAlreadyExists":
                raise
            block_number = await self.ledger.call("commit_block_number", commit_hash)
            if block_number == 0:
                raise
            logger.warning("Commit for %s was already on the ledger", pending.committer)
            tx_hash = None

        pending.block_number = block_number
        await self._save_pending(pending)
        return tx_hash

    async def _confirm_commit(self, pending: PendingCommitState) -> bool:
        """Fill in the block of a commit whose confirmation was never recorded."""
        if pending.block_number is not None:
            return True
        block_number = await self.ledger.call("commit_block_number", hex_to_bytes(pending.commit_hash))
        if block_number == 0:
            return False
        pending.block_number = block_number
        await self._save_pending(pending)
        logger.info("Confirmed commit for %s at block %d", pending.committer, block_number)
        return True

    async def blocks_until_reveal(self) -> int:
        """Blocks left before a reveal is accepted (0 once ready)."""
        if self.pending is None:
            raise InvalidStateError("No pending commit")
        if not await self._confirm_commit(self.pending):
            raise InvalidStateError("Commit is not on the ledger yet; call create_account to resend it")
        current = await self.ledger.call("block_number")
        return max(0, self.pending.block_number + self.reveal_delay - current)

    async def refresh(self) -> AccountState:
        """Advance COMMIT_PENDING to REVEAL_READY once the delay has passed."""
        if self.state is not AccountState.COMMIT_PENDING:
            return self.state
        if not await self._confirm_commit(self.pending):
            return self.state
        if await self.blocks_until_reveal() == 0:
            self.state = AccountState.REVEAL_READY
            logger.info("Commit for %s is ready to reveal", self.pending.committer)
        return self.state

    async def reveal_account(self, sender: Optional[str] = None) -> RevealResult:
        """
        Reveal the pending commit and activate the account.

        Args:
            sender: Revealing address (defaults to the context's address)

        Raises:
            InvalidStateError: If there is no pending commit
            CommitterMismatchError: If ``sender`` is not the committing address
            TimingError: If fewer than COMMIT_REVEAL_DELAY blocks have passed
        """
        async with self._lock:
            if self.state is AccountState.ACCOUNT_ACTIVE:
                raise InvalidStateError("Trading account already active")
            pending = self.pending
            if pending is None:
                raise InvalidStateError("No pending commit to reveal")

            sender = to_checksum_address(sender or self.context.address)
            if sender != pending.committer:
                raise CommitterMismatchError(
                    f"Only {pending.committer} can reveal this commit, not {sender}"
                )

            remaining = await self.blocks_until_reveal()
            if remaining > 0:
                raise TimingError(
                    f"Reveal allowed in {remaining} more block(s)", blocks_remaining=remaining
                )
            self.state = AccountState.REVEAL_READY

            secret_key = self.context.wallet.get_trading_keys(pending.account_index).private_key
            proof = await asyncio.to_thread(
                self.proofs.account_proof, secret_key, pending.nonce, pending.commitment
            )
            try:
                receipt = await self.ledger.call(
                    "reveal_trading_account",
                    sender,
                    pending.commitment.to_hex(),
                    pending.nonce.to_int(),
                    proof,
                )
            except ContractError as e:
                # An earlier attempt may have landed with its response lost.
                if e.reason not in ("InvalidCommitment", "AccountAlreadyExists"):
                    raise
                if not await self.ledger.call("account_exists", pending.commitment.to_hex()):
                    raise
                logger.warning("Reveal for %s was already on the ledger", sender)
                receipt = None
            tx_hash = receipt.tx_hash if receipt else None
            block_number = receipt.block_number if receipt else None

            sealed = self.context.record_cipher.seal(
                {
                    "commitment": pending.commitment.to_hex(),
                    "nonce": pending.nonce.to_hex(),
                    "account_index": pending.account_index,
                },
                ACCOUNT_CONTEXT,
            )
            await asyncio.to_thread(
                self.context.storage.activate_account,
                pending.committer,
                pending.account_index,
                sealed,
                tx_hash,
                block_number,
            )
            self.account_commitment = pending.commitment
            self.pending = None
            self.state = AccountState.ACCOUNT_ACTIVE
            logger.info("Trading account active for %s (tx %s)", sender, tx_hash)
            return RevealResult(
                account_commitment=pending.commitment.to_hex(),
                tx_hash=tx_hash,
                block_number=block_number,
            )

    async def cancel_pending(self) -> None:
        """Abandon an unrevealed commit locally. Nothing is sent to the ledger."""
        async with self._lock:
            if self.pending is None:
                raise InvalidStateError("No pending commit to cancel")
            await asyncio.to_thread(self.context.storage.clear_pending_commit, self.pending.committer)
            logger.info("Cancelled pending commit for %s", self.pending.committer)
            self.pending = None
            self.state = AccountState.NO_ACCOUNT

    # Active account

    async def withdraw(self, amount: int, recipient: Optional[str] = None) -> TxReceipt:
        """
        Withdraw collateral from the active account.

        Raises:
            InvalidStateError: If no account is active
            ValidationError: If the amount is not positive
        """
        if self.state is not AccountState.ACCOUNT_ACTIVE:
            raise InvalidStateError("No active trading account")
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("Withdrawal amount must be a positive integer")

        keys = self.context.trading_keys
        recipient = to_checksum_address(recipient or keys.address)
        nullifier = self.context.nullifiers.account_nullifier(
            keys.private_key, amount, recipient, FieldElement.random()
        )
        proof = await asyncio.to_thread(
            self.proofs.withdrawal_proof, keys.private_key, amount, nullifier
        )
        receipt = await self.ledger.call("withdraw", keys.address, amount, proof, retry=False)
        logger.info("Withdrew %d for %s (tx %s)", amount, keys.address, receipt.tx_hash)
        return receipt

    async def account_info(self) -> AccountInfo:
        keys = self.context.trading_keys
        remaining = None
        if self.pending is not None and await self._confirm_commit(self.pending):
            remaining = await self.blocks_until_reveal()
        return AccountInfo(
            address=keys.address,
            account_index=self.context.account_index,
            derivation_path=keys.derivation_path,
            state=self.state.value,
            balance=await self.balance(),
            account_commitment=self.account_commitment.to_hex() if self.account_commitment else None,
            blocks_until_reveal=remaining,
        )

"""Ledger contract interface consumed by the engine.

``Ledger`` mirrors the public surface of the on-chain contract. Concrete
implementations raise ``LedgerRevert`` for contract reverts and
``ConnectionError``/``TimeoutError`` for transport failures; ``LedgerClient``
maps both onto the engine's error taxonomy and applies retry and circuit
breaking.
"""

import abc
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from tradeprivate.constants import DEFAULT_SUCCESS_RATE
from tradeprivate.exceptions import (
    ContractError,
    CounterpartyError,
    NetworkError,
    ReplayError,
    TimingError,
    TradePrivateError,
    ValidationError,
)
from tradeprivate.utils.retry import CircuitBreaker, RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class LedgerRevert(Exception):
    """A contract revert as reported by a ledger implementation."""

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason)
        self.reason = reason


@dataclass(frozen=True)
class TxReceipt:
    """Result of a state-changing ledger call."""

    tx_hash: str
    block_number: int
    status: bool = True


@dataclass(frozen=True)
class KeeperInfo:
    """On-chain keeper record."""

    address: str
    public_key: bytes
    reputation_score: int
    successful_batches: int = 0
    failed_batches: int = 0
    is_active: bool = True
    is_slashed: bool = False

    @property
    def success_rate(self) -> float:
        total = self.successful_batches + self.failed_batches
        if total == 0:
            return DEFAULT_SUCCESS_RATE
        return self.successful_batches / total


class Ledger(abc.ABC):
    """Abstract ledger contract surface."""

    @abc.abstractmethod
    async def block_number(self) -> int:
        """Current block height."""

    @abc.abstractmethod
    async def balance_of(self, address: str) -> int:
        """Deposited collateral of an address, in base units."""

    @abc.abstractmethod
    async def deposit(self, sender: str, amount: int) -> TxReceipt:
        """deposit(amount)"""

    @abc.abstractmethod
    async def withdraw(self, sender: str, amount: int, proof: List[int]) -> TxReceipt:
        """withdraw(amount, proof)"""

    @abc.abstractmethod
    async def commit_trading_account(self, sender: str, commit_hash: bytes) -> TxReceipt:
        """commitTradingAccount(commitHash)"""

    @abc.abstractmethod
    async def reveal_trading_account(
        self, sender: str, commitment: str, nonce: int, proof: List[int]
    ) -> TxReceipt:
        """revealTradingAccount(commitment, nonce, proof)"""

    @abc.abstractmethod
    async def submit_order_private(
        self,
        sender: str,
        proof: List[int],
        nullifier: str,
        account_commitment: str,
        order_commitment: str,
        encrypted_order: bytes,
    ) -> TxReceipt:
        """submitOrderPrivate(proof, nullifier, accountCommitment, orderCommitment, encryptedOrder)"""

    @abc.abstractmethod
    async def commit_block_number(self, commit_hash: bytes) -> int:
        """Block a commit landed in, or 0 if it is unknown or already revealed."""

    @abc.abstractmethod
    async def account_exists(self, commitment: str) -> bool:
        """Whether a revealed trading account carries this commitment."""

    @abc.abstractmethod
    async def used_nullifiers(self, nullifier: str) -> bool:
        """usedNullifiers(nullifier)"""

    @abc.abstractmethod
    async def is_order_valid(self, nullifier: str) -> bool:
        """isOrderValid(nullifier)"""

    @abc.abstractmethod
    async def keepers(self, address: str) -> KeeperInfo:
        """keepers(address)"""

    @abc.abstractmethod
    async def active_keeper_list(self, index: int) -> str:
        """activeKeeperList(index). Raises LedgerRevert past the end."""

    @abc.abstractmethod
    async def active_keeper_count(self) -> int:
        """Length of activeKeeperList."""


_REVERT_MAP = {
    "NullifierAlreadyUsed": ReplayError,
    "CommitRevealTooEarly": TimingError,
    "InsufficientBalance": ValidationError,
    "InvalidAmount": ValidationError,
    "InvalidLeverage": ValidationError,
    "InvalidOrderParameters": ValidationError,
    "InvalidEncryptedOrder": ValidationError,
    "UnauthorizedKeeper": CounterpartyError,
    "KeeperNotActive": CounterpartyError,
}


def parse_contract_error(error: BaseException) -> TradePrivateError:
    """
    Translate a ledger failure into the engine's error taxonomy.

    Args:
        error: Exception raised by a Ledger implementation

    Returns:
        TradePrivateError: The mapped error (not raised)
    """
    if isinstance(error, TradePrivateError):
        return error
    if isinstance(error, LedgerRevert):
        error_cls = _REVERT_MAP.get(error.reason)
        message = f"Ledger reverted: {error.reason}"
        if error_cls is None:
            return ContractError(message, reason=error.reason)
        return error_cls(message)
    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return NetworkError(f"Ledger transport failure: {error}")
    return ContractError(f"Unexpected ledger failure: {error}")


class LedgerClient:
    """
    Wraps a Ledger with error mapping, retry and a circuit breaker.

    Only NetworkError is retried, so a resubmission here always carries the
    arguments of the original call.
    """

    def __init__(
        self,
        ledger: Ledger,
        retry_policy: Optional[RetryPolicy] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.ledger = ledger
        self.retry_policy = retry_policy or RetryPolicy()
        self.breaker = breaker or CircuitBreaker()

    async def _once(self, method: str, *args: Any) -> Any:
        try:
            return await getattr(self.ledger, method)(*args)
        except (LedgerRevert, ConnectionError, TimeoutError, OSError) as e:
            raise parse_contract_error(e) from e

    async def call(self, method: str, *args: Any, retry: bool = True) -> Any:
        """
        Invoke ``ledger.<method>(*args)``.

        Args:
            method: Ledger method name
            *args: Positional arguments, reused verbatim on every attempt
            retry: Retry NetworkError with backoff

        Raises:
            TradePrivateError: The mapped ledger failure
        """
        async def attempt():
            return await self.breaker.call(lambda: self._once(method, *args))

        if not retry:
            return await attempt()
        return await with_retry(attempt, self.retry_policy, description=f"ledger.{method}")

    # Convenience pass-throughs used by collaborators that only read

    async def used_nullifiers(self, nullifier: str) -> bool:
        return await self.call("used_nullifiers", nullifier)

    async def is_order_valid(self, nullifier: str) -> bool:
        return await self.call("is_order_valid", nullifier)

    async def block_number(self) -> int:
        return await self.call("block_number")

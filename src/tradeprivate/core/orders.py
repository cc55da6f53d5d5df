"""Private order pipeline.

States:
    BUILT -> COMMITTED -> KEEPER_SELECTED -> ENCRYPTED -> SUBMITTED
    SUBMITTED -> EXECUTED | EXPIRED

Each order is keyed by its identity: a client order id, or the hash of its
canonical encoding. A content key is reused only while its order is live;
once that order is executed or expired the same contents get a new key and
are placed again. Work on one key runs under a per-key lock, and the
nonce, commitment and nullifier are minted exactly once per key: a retry,
concurrent duplicate or restart resumes the stored pipeline and resubmits
the same nullifier and ciphertext. Orders for different keys never wait on
each other.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Dict, List, Optional, Union

from tradeprivate.constants import MAX_ORDER_PLAINTEXT
from tradeprivate.context import WalletContext
from tradeprivate.core.keepers import KeeperSelector, LedgerKeeperDirectory
from tradeprivate.core.order import OrderPayload, SealedOrder
from tradeprivate.core.proofs import MockProofProvider, ProofProvider
from tradeprivate.crypto.field import FieldElement
from tradeprivate.crypto.nullifier import NullifierEngine
from tradeprivate.crypto.order_cipher import OrderCipher
from tradeprivate.exceptions import InvalidOrderError, InvalidStateError, ReplayError, ValidationError
from tradeprivate.ledger.base import Ledger
from tradeprivate.models.schemas import (
    OrderParams,
    OrderStatusName,
    OrderStatusResponse,
    OrderSubmission,
    ProtocolStats,
)
from tradeprivate.storage.database import OrderState
from tradeprivate.utils.encoding import bytes_to_hex, hex_to_bytes
from tradeprivate.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

ORDER_CONTEXT = "order"
ACCOUNT_CONTEXT = "trading_account"


@dataclass
class TrackedOrder:
    """Client-side state of one order."""

    order_key: str
    owner: str
    payload: OrderPayload
    nonce: FieldElement
    order_commitment: FieldElement
    nullifier: str
    state: OrderState = OrderState.BUILT
    keeper_address: Optional[str] = None
    keeper_public_key: Optional[bytes] = None
    encrypted: Optional[bytes] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "payload": self.payload.to_dict(),
            "nonce": self.nonce.to_hex(),
            "order_commitment": self.order_commitment.to_hex(),
            "nullifier": self.nullifier,
            "keeper_public_key": bytes_to_hex(self.keeper_public_key) if self.keeper_public_key else None,
            "encrypted": bytes_to_hex(self.encrypted) if self.encrypted else None,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, row, data: dict) -> "TrackedOrder":
        return cls(
            order_key=row.order_key,
            owner=row.owner,
            payload=OrderPayload.from_dict(data["payload"]),
            nonce=FieldElement.from_canonical(data["nonce"]),
            order_commitment=FieldElement.from_canonical(data["order_commitment"]),
            nullifier=data["nullifier"],
            state=row.state,
            keeper_address=row.keeper_address,
            keeper_public_key=hex_to_bytes(data["keeper_public_key"]) if data["keeper_public_key"] else None,
            encrypted=hex_to_bytes(data["encrypted"]) if data["encrypted"] else None,
            tx_hash=row.tx_hash,
            block_number=row.submitted_block,
            created_at=float(data["created_at"]),
        )

    def submission(self) -> OrderSubmission:
        return OrderSubmission(
            order_key=self.order_key,
            nullifier=self.nullifier,
            order_commitment=self.order_commitment.to_hex(),
            keeper=self.keeper_address or "",
            state=self.state.value,
            tx_hash=self.tx_hash,
            block_number=self.block_number,
            submitted_at=datetime.fromtimestamp(self.created_at, UTC),
        )


def classify_status(is_used: bool, is_valid: bool) -> OrderStatusName:
    """executed: used and no longer valid; pending: unused and valid; otherwise expired."""
    if is_used and not is_valid:
        return OrderStatusName.EXECUTED
    if not is_used and is_valid:
        return OrderStatusName.PENDING
    return OrderStatusName.EXPIRED


class OrderOrchestrator:
    """Builds, encrypts and submits private orders."""

    def __init__(
        self,
        context: WalletContext,
        ledger: Ledger,
        keeper_selector: Optional[KeeperSelector] = None,
        cipher: Optional[OrderCipher] = None,
        proofs: Optional[ProofProvider] = None,
    ):
        self.context = context
        self.ledger = context.ledger_client(ledger)
        settings = context.settings
        self.keepers = keeper_selector or KeeperSelector(
            LedgerKeeperDirectory(self.ledger),
            sample_size=settings.keeper_sample_size,
            page_size=settings.keeper_page_size,
        )
        self.cipher = cipher or OrderCipher()
        self.proofs = proofs or MockProofProvider()
        self.account_commitment: Optional[FieldElement] = None
        self._orders: Dict[str, TrackedOrder] = {}
        self._locks = KeyedLock()

    # Persistence

    async def load(self) -> None:
        """Load the active account commitment and order history for the selected address."""
        owner = self.context.address
        cipher = self.context.record_cipher
        storage = self.context.storage

        account = await asyncio.to_thread(storage.get_account, owner)
        if account is not None:
            data = cipher.open(account.sealed, ACCOUNT_CONTEXT)
            self.account_commitment = FieldElement.from_canonical(data["commitment"])

        rows = await asyncio.to_thread(storage.get_orders, owner)
        for row in rows:
            tracked = TrackedOrder.from_record(row, cipher.open(row.sealed, ORDER_CONTEXT))
            self._orders[tracked.order_key] = tracked
        logger.info("Loaded %d order(s) for %s", len(rows), owner)

    async def _persist(self, tracked: TrackedOrder) -> None:
        sealed = self.context.record_cipher.seal(tracked.to_dict(), ORDER_CONTEXT)
        await asyncio.to_thread(
            self.context.storage.upsert_order,
            tracked.order_key,
            tracked.owner,
            tracked.state,
            sealed,
            tracked.nullifier,
            tracked.keeper_address,
            tracked.tx_hash,
            tracked.block_number,
        )

    def _advance(self, tracked: TrackedOrder, state: OrderState) -> None:
        logger.debug("Order %s: %s -> %s", tracked.order_key[:8], tracked.state.value, state.value)
        tracked.state = state

    def _require_account(self) -> FieldElement:
        if self.account_commitment is None:
            raise InvalidStateError("No active trading account; create and reveal one first")
        return self.account_commitment

    # Pipeline

    def _build(self, order_key: str, payload: OrderPayload) -> TrackedOrder:
        keys = self.context.trading_keys
        nonce = FieldElement.random()
        commitment = self.context.commitments.order_commitment(payload, nonce)
        nullifier = self.context.nullifiers.order_nullifier(keys.private_key, commitment, nonce)
        tracked = TrackedOrder(
            order_key=order_key,
            owner=keys.address,
            payload=payload,
            nonce=nonce,
            order_commitment=commitment,
            nullifier=nullifier,
        )
        self._advance(tracked, OrderState.COMMITTED)
        return tracked

    async def submit_order(
        self,
        params: Union[OrderParams, dict],
        client_order_id: Optional[str] = None,
    ) -> OrderSubmission:
        """
        Run an order through the pipeline.

        Args:
            params: Order parameters (validated before any crypto or network work)
            client_order_id: Optional identity, answered from local state on every
                repeat; defaults to the content hash of the live order

        Returns:
            OrderSubmission: nullifier, commitment, keeper and tx details

        Raises:
            InvalidOrderError: On invalid parameters
            InvalidStateError: If no trading account is active
            ReplayError: If the nullifier is already spent or in flight
            CounterpartyError: If no eligible keeper exists
        """
        settings = self.context.settings
        params = OrderParams.parse(params)
        params.check_limits(settings.max_leverage, settings.min_order_size, settings.max_order_size)
        payload = params.to_payload()
        account_commitment = self._require_account()
        self._check_plaintext_size(payload, account_commitment)

        while True:
            order_key = client_order_id or self._default_key(payload)
            async with self._locks.hold(order_key):
                tracked = self._orders.get(order_key)
                if client_order_id is None and tracked is not None and tracked.state.is_terminal:
                    # Settled while we waited for the lock; this call is a new order.
                    continue
                return await self._run(order_key, tracked, payload, account_commitment)

    def _default_key(self, payload: OrderPayload) -> str:
        """Content key of the live order with this payload, or a fresh one once it has settled."""
        identity = payload.identity()
        order_key, generation = identity, 0
        while order_key in self._orders and self._orders[order_key].state.is_terminal:
            generation += 1
            order_key = f"{identity}-{generation}"
        return order_key

    @staticmethod
    def _check_plaintext_size(payload: OrderPayload, account_commitment: FieldElement) -> None:
        # nonce and commitment hex are fixed width, so a zero nonce gives the real length
        size = len(SealedOrder(payload=payload, account_commitment=account_commitment).to_plaintext())
        if size > MAX_ORDER_PLAINTEXT:
            raise InvalidOrderError(
                f"Order plaintext is {size} bytes, maximum is {MAX_ORDER_PLAINTEXT}"
            )

    async def _run(
        self,
        order_key: str,
        tracked: Optional[TrackedOrder],
        payload: OrderPayload,
        account_commitment: FieldElement,
    ) -> OrderSubmission:
        resumed = tracked is not None
        if tracked is None:
            tracked = self._build(order_key, payload)
            self._orders[order_key] = tracked
            await self._persist(tracked)
        elif tracked.payload != payload:
            raise ValidationError(f"Order id {order_key} was already used for a different order")
        elif tracked.state in (OrderState.SUBMITTED, OrderState.EXECUTED, OrderState.EXPIRED):
            return tracked.submission()
        else:
            logger.info("Resuming order %s from %s", order_key[:8], tracked.state.value)

        async with self.context.nullifiers.in_flight(tracked.nullifier):
            if await self.context.nullifiers.is_used(self.ledger, tracked.nullifier):
                if resumed:
                    self._advance(tracked, OrderState.EXECUTED)
                    await self._persist(tracked)
                    return tracked.submission()
                raise ReplayError(f"Nullifier {tracked.nullifier[:10]}... already used")

            if tracked.keeper_public_key is None:
                keeper = await self.keepers.select_keeper()
                tracked.keeper_address = keeper.address
                tracked.keeper_public_key = keeper.public_key
                self._advance(tracked, OrderState.KEEPER_SELECTED)

            if tracked.encrypted is None:
                sealed = SealedOrder(
                    payload=tracked.payload,
                    nonce=tracked.nonce,
                    account_commitment=account_commitment,
                    timestamp=int(tracked.created_at),
                )
                tracked.encrypted = await asyncio.to_thread(
                    self.cipher.encrypt_for_keeper,
                    sealed,
                    tracked.keeper_public_key,
                    self.context.trading_key,
                )
                self._advance(tracked, OrderState.ENCRYPTED)
                await self._persist(tracked)

            await self._submit(tracked, account_commitment)
        return tracked.submission()

    async def _submit(self, tracked: TrackedOrder, account_commitment: FieldElement) -> None:
        proof = await asyncio.to_thread(
            self.proofs.order_proof,
            self.context.trading_key,
            account_commitment,
            tracked.order_commitment,
            tracked.nullifier,
        )
        try:
            receipt = await self.ledger.call(
                "submit_order_private",
                tracked.owner,
                proof,
                tracked.nullifier,
                account_commitment.to_hex(),
                tracked.order_commitment.to_hex(),
                tracked.encrypted,
            )
        except ReplayError:
            # An earlier attempt may have landed with its response lost.
            if not await self.ledger.call("is_order_valid", tracked.nullifier):
                raise
            logger.warning("Order %s was already on the ledger", tracked.order_key[:8])
            self._advance(tracked, OrderState.SUBMITTED)
            await self._persist(tracked)
            return

        tracked.tx_hash = receipt.tx_hash
        tracked.block_number = receipt.block_number
        self._advance(tracked, OrderState.SUBMITTED)
        await self._persist(tracked)
        logger.info(
            "Submitted order %s to keeper %s (tx %s)",
            tracked.order_key[:8], tracked.keeper_address, receipt.tx_hash,
        )

    # Status

    async def order_status(self, nullifier: str) -> OrderStatusResponse:
        """
        Look up an order on the ledger.

        Raises:
            ValidationError: If the nullifier is malformed (before any network call)
        """
        nullifier = NullifierEngine.validate(nullifier)
        is_used = await self.ledger.call("used_nullifiers", nullifier)
        is_valid = await self.ledger.call("is_order_valid", nullifier)
        status = classify_status(is_used, is_valid)

        tracked = next((o for o in self._orders.values() if o.nullifier == nullifier), None)
        if tracked is not None and tracked.state is OrderState.SUBMITTED:
            if status is OrderStatusName.EXECUTED:
                self._advance(tracked, OrderState.EXECUTED)
            elif status is OrderStatusName.EXPIRED:
                self._advance(tracked, OrderState.EXPIRED)
            if tracked.state.is_terminal:
                await asyncio.to_thread(self.context.storage.update_order_state, nullifier, tracked.state)

        return OrderStatusResponse(nullifier=nullifier, status=status, is_used=is_used, is_valid=is_valid)

    async def refresh_orders(self) -> List[OrderStatusResponse]:
        """Re-check every submitted order."""
        return [await self.order_status(o.nullifier) for o in self.pending_orders()]

    def pending_orders(self) -> List[TrackedOrder]:
        """Submitted orders not yet executed or expired, newest first."""
        pending = [o for o in self._orders.values() if o.state is OrderState.SUBMITTED]
        return sorted(pending, key=lambda o: o.created_at, reverse=True)

    def order_history(self, limit: int = 100) -> List[OrderSubmission]:
        orders = sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)
        return [o.submission() for o in orders[:limit]]

    def get_order(self, order_key: str) -> Optional[TrackedOrder]:
        return self._orders.get(order_key)

    async def protocol_stats(self) -> ProtocolStats:
        states = [o.state for o in self._orders.values()]
        recent = sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)[:5]
        return ProtocolStats(
            active_keepers=await self.keepers.directory.count(),
            current_block=await self.ledger.call("block_number"),
            orders_total=len(states),
            orders_pending=states.count(OrderState.SUBMITTED),
            orders_executed=states.count(OrderState.EXECUTED),
            orders_expired=states.count(OrderState.EXPIRED),
            recent_nullifiers=[o.nullifier for o in recent],
        )

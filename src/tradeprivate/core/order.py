"""Order payloads and their canonical encodings.

Two encodings exist:

* ``OrderPayload.encode()``: fixed 151-byte binary layout fed to the order
  commitment, in the field order market, size, price, flags, leverage,
  take-profit, stop-loss.
* ``SealedOrder.to_plaintext()``: compact JSON array (same field order, plus
  nonce, account commitment and timestamp) that keepers decrypt.
"""

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Optional

from tradeprivate.constants import UINT256_MAX
from tradeprivate.crypto.field import FieldElement
from tradeprivate.exceptions import InvalidOrderError, ValidationError
from tradeprivate.utils.encoding import address_to_bytes, int_to_bytes32, to_checksum_address
from tradeprivate.utils.hash import sha256

ENCODED_ORDER_SIZE = 20 + 32 + 32 + 1 + 2 + 32 + 32


class OrderType(int, enum.Enum):
    """Order type codes understood by the ledger."""
    MARKET = 0
    LIMIT = 1
    STOP = 2


@dataclass(frozen=True)
class OrderPayload:
    """
    A trade in ledger units.

    ``size`` is in collateral base units (USDC, 6 decimals); prices are
    18-decimal fixed point. A zero take-profit or stop-loss means unset.
    """

    market: str
    size: int
    price: int
    is_long: bool
    leverage: int
    order_type: OrderType = OrderType.MARKET
    is_reduce_only: bool = False
    take_profit: int = 0
    stop_loss: int = 0

    def __post_init__(self):
        object.__setattr__(self, "market", to_checksum_address(self.market))
        try:
            object.__setattr__(self, "order_type", OrderType(self.order_type))
        except ValueError as e:
            raise InvalidOrderError(f"Unknown order type: {self.order_type}") from e

        for name in ("size", "price", "take_profit", "stop_loss"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise InvalidOrderError(f"{name} must be an integer")
            if not 0 <= value <= UINT256_MAX:
                raise InvalidOrderError(f"{name} out of uint256 range")
        if self.size == 0:
            raise InvalidOrderError("size must be positive")
        if not isinstance(self.leverage, int) or not 1 <= self.leverage <= 0xFFFF:
            raise InvalidOrderError("leverage must be between 1 and 65535")

    @property
    def flags(self) -> int:
        """order type in bits 0-1, direction in bit 2, reduce-only in bit 3."""
        return int(self.order_type) | (int(self.is_long) << 2) | (int(self.is_reduce_only) << 3)

    def encode(self) -> bytes:
        """Canonical 151-byte binary encoding."""
        return b"".join([
            address_to_bytes(self.market),
            int_to_bytes32(self.size),
            int_to_bytes32(self.price),
            self.flags.to_bytes(1, "big"),
            self.leverage.to_bytes(2, "big"),
            int_to_bytes32(self.take_profit),
            int_to_bytes32(self.stop_loss),
        ])

    def identity(self) -> str:
        """Stable identifier for the order contents."""
        return sha256(self.encode()).hex()

    def to_dict(self) -> dict:
        return {
            "market": self.market,
            "size": str(self.size),
            "price": str(self.price),
            "is_long": self.is_long,
            "leverage": self.leverage,
            "order_type": self.order_type.name.lower(),
            "is_reduce_only": self.is_reduce_only,
            "take_profit": str(self.take_profit),
            "stop_loss": str(self.stop_loss),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderPayload":
        return cls(
            market=data["market"],
            size=int(data["size"]),
            price=int(data["price"]),
            is_long=bool(data["is_long"]),
            leverage=int(data["leverage"]),
            order_type=OrderType[data["order_type"].upper()],
            is_reduce_only=bool(data["is_reduce_only"]),
            take_profit=int(data["take_profit"]),
            stop_loss=int(data["stop_loss"]),
        )


@dataclass(frozen=True)
class SealedOrder:
    """An order together with the context a keeper needs to match it to on-chain state."""

    payload: OrderPayload
    nonce: FieldElement = field(default_factory=FieldElement.zero)
    account_commitment: Optional[FieldElement] = None
    timestamp: int = field(default_factory=lambda: int(time.time()))

    def to_plaintext(self) -> bytes:
        """Compact JSON array in canonical field order."""
        p = self.payload
        wire = [
            p.market,
            str(p.size),
            str(p.price),
            p.flags,
            p.leverage,
            str(p.take_profit),
            str(p.stop_loss),
            self.nonce.to_hex(),
            self.account_commitment.to_hex() if self.account_commitment is not None else None,
            self.timestamp,
        ]
        return json.dumps(wire, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_plaintext(cls, data: bytes) -> "SealedOrder":
        """
        Parse ``to_plaintext`` output.

        Raises:
            ValidationError: If the plaintext is not a well-formed order
        """
        try:
            wire = json.loads(data.decode("utf-8"))
            market, size, price, flags, leverage, tp, sl, nonce, commitment, timestamp = wire
            payload = OrderPayload(
                market=market,
                size=int(size),
                price=int(price),
                is_long=bool(flags & 0b100),
                leverage=int(leverage),
                order_type=OrderType(flags & 0b11),
                is_reduce_only=bool(flags & 0b1000),
                take_profit=int(tp),
                stop_loss=int(sl),
            )
            return cls(
                payload=payload,
                nonce=FieldElement.from_canonical(nonce),
                account_commitment=FieldElement.from_canonical(commitment) if commitment is not None else None,
                timestamp=int(timestamp),
            )
        except ValidationError:
            raise
        except (ValueError, TypeError, KeyError) as e:
            raise ValidationError(f"Malformed order plaintext: {e}") from e

"""Pydantic data models for the TradePrivate engine."""

from datetime import datetime, UTC
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from tradeprivate.constants import (
    MAX_LEVERAGE,
    MAX_ORDER_SIZE,
    MIN_ORDER_SIZE,
    PRICE_DECIMALS,
    USDC_DECIMALS,
)
from tradeprivate.core.order import OrderPayload, OrderType
from tradeprivate.exceptions import InvalidOrderError
from tradeprivate.utils.encoding import is_address, to_checksum_address


def parse_units(value: Union[str, int, Decimal], decimals: int) -> int:
    """
    Convert a human decimal amount into integer base units.

    Raises:
        InvalidOrderError: If the amount is not a finite number or has too many decimals
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise InvalidOrderError(f"Not a number: {value!r}") from e
    if not amount.is_finite():
        raise InvalidOrderError(f"Not a finite number: {value!r}")
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidOrderError(f"{value} has more than {decimals} decimals")
    return int(scaled)


def format_units(value: int, decimals: int) -> str:
    """Inverse of ``parse_units``."""
    return format(Decimal(value).scaleb(-decimals).normalize(), "f")


class OrderTypeName(str, Enum):
    """Order type names accepted in requests."""
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"


class OrderStatusName(str, Enum):
    """Order status as seen on the ledger."""
    PENDING = "pending"
    EXECUTED = "executed"
    EXPIRED = "expired"


class OrderParams(BaseModel):
    """Request model for a private order."""
    market: str = Field(..., description="Market contract address")
    size: Decimal = Field(..., gt=0, description="Position size in USDC")
    price: Decimal = Field(Decimal(0), ge=0, description="Limit/stop price (0 for market)")
    is_long: bool = Field(..., description="Long (True) or short (False)")
    leverage: int = Field(..., ge=1, le=MAX_LEVERAGE, description="Leverage multiplier")
    order_type: OrderTypeName = Field(OrderTypeName.MARKET, description="market, limit or stop")
    take_profit: Optional[Decimal] = Field(None, gt=0, description="Take-profit price")
    stop_loss: Optional[Decimal] = Field(None, gt=0, description="Stop-loss price")
    is_reduce_only: bool = Field(False, description="Only reduce an existing position")

    @field_validator("market")
    @classmethod
    def _valid_market(cls, value: str) -> str:
        if not is_address(value):
            raise ValueError("market must be a 20-byte address")
        return to_checksum_address(value)

    @field_validator("size")
    @classmethod
    def _size_in_range(cls, value: Decimal) -> Decimal:
        if value < Decimal(MIN_ORDER_SIZE):
            raise ValueError(f"size must be at least {MIN_ORDER_SIZE}")
        if value > Decimal(MAX_ORDER_SIZE):
            raise ValueError(f"size must be at most {MAX_ORDER_SIZE}")
        return value

    @model_validator(mode="after")
    def _check_prices(self) -> "OrderParams":
        if self.order_type != OrderTypeName.MARKET and self.price <= 0:
            raise ValueError(f"{self.order_type.value} orders need a positive price")
        if self.take_profit is not None and self.stop_loss is not None:
            if self.is_long and self.take_profit <= self.stop_loss:
                raise ValueError("long orders need take_profit above stop_loss")
            if not self.is_long and self.take_profit >= self.stop_loss:
                raise ValueError("short orders need take_profit below stop_loss")
        return self

    @classmethod
    def parse(cls, data: Union["OrderParams", dict]) -> "OrderParams":
        """Build from a dict, mapping pydantic errors to InvalidOrderError."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise InvalidOrderError(f"Invalid order parameters: {e.errors()[0]['msg']}") from e

    def check_limits(self, max_leverage: int, min_size: Decimal, max_size: Decimal) -> None:
        """Apply deployment limits that are stricter than the protocol's."""
        if self.leverage > max_leverage:
            raise InvalidOrderError(f"leverage {self.leverage} exceeds {max_leverage}")
        if not min_size <= self.size <= max_size:
            raise InvalidOrderError(f"size must be between {min_size} and {max_size}")

    def to_payload(self) -> OrderPayload:
        """Integer ledger units: USDC base units for size, 18 decimals for prices."""
        return OrderPayload(
            market=self.market,
            size=parse_units(self.size, USDC_DECIMALS),
            price=parse_units(self.price, PRICE_DECIMALS),
            is_long=self.is_long,
            leverage=self.leverage,
            order_type=OrderType[self.order_type.name],
            is_reduce_only=self.is_reduce_only,
            take_profit=parse_units(self.take_profit, PRICE_DECIMALS) if self.take_profit else 0,
            stop_loss=parse_units(self.stop_loss, PRICE_DECIMALS) if self.stop_loss else 0,
        )


class CommitResult(BaseModel):
    """Response model for an account commit."""
    commit_hash: str = Field(..., description="keccak256 commit hash (hex)")
    tx_hash: Optional[str] = Field(None, description="Commit transaction hash; unknown if a lost response was recovered")
    block_number: int = Field(..., description="Block the commit landed in")
    reveal_after_block: int = Field(..., description="First block a reveal is accepted")


class RevealResult(BaseModel):
    """Response model for an account reveal."""
    account_commitment: str = Field(..., description="Account commitment (hex)")
    tx_hash: Optional[str] = Field(None, description="Reveal transaction hash; unknown if a lost response was recovered")
    block_number: Optional[int] = None


class OrderSubmission(BaseModel):
    """Response model for a submitted order."""
    order_key: str = Field(..., description="Client-side order identity")
    nullifier: str = Field(..., description="Order nullifier (hex)")
    order_commitment: str = Field(..., description="Order commitment (hex)")
    keeper: str = Field(..., description="Keeper the order is encrypted to")
    state: str = Field(..., description="Lifecycle state")
    tx_hash: Optional[str] = Field(None, description="Unknown if a lost response was recovered")
    block_number: Optional[int] = None
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class OrderStatusResponse(BaseModel):
    """Response model for an order status lookup."""
    nullifier: str
    status: OrderStatusName
    is_used: bool
    is_valid: bool


class AccountInfo(BaseModel):
    """Summary of the selected trading account."""
    address: str
    account_index: int
    derivation_path: str
    state: str
    balance: int = Field(..., description="Deposited collateral in USDC base units")
    account_commitment: Optional[str] = None
    blocks_until_reveal: Optional[int] = None


class ProtocolStats(BaseModel):
    """Client-side view of protocol activity."""
    active_keepers: int
    current_block: int
    orders_total: int
    orders_pending: int
    orders_executed: int
    orders_expired: int
    recent_nullifiers: List[str] = Field(default_factory=list)


__all__ = [
    "parse_units",
    "format_units",
    "OrderParams",
    "OrderTypeName",
    "OrderStatusName",
    "CommitResult",
    "RevealResult",
    "OrderSubmission",
    "OrderStatusResponse",
    "AccountInfo",
    "ProtocolStats",
]

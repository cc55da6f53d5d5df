"""Main package initialization."""

__version__ = "0.1.0"
__author__ = "TradePrivate Team"
__description__ = "TradePrivate: client engine for private perpetual-futures orders"

from .context import WalletContext
from .core.account import AccountOrchestrator, AccountState
from .core.orders import OrderOrchestrator
from .crypto.field import FieldElement
from .crypto.hd_wallet import HDWallet
from .crypto.order_cipher import OrderCipher
from .ledger.memory import InMemoryLedger
from .models.schemas import OrderParams

__all__ = [
    "WalletContext",
    "AccountOrchestrator",
    "AccountState",
    "OrderOrchestrator",
    "FieldElement",
    "HDWallet",
    "OrderCipher",
    "InMemoryLedger",
    "OrderParams",
]

"""Storage layer for persistent data."""

from tradeprivate.storage.database import (
    DatabaseManager,
    EncryptedSecret,
    LegacyKey,
    PendingCommit,
    TradingAccount,
    OrderRecord,
    OrderState,
    Base,
)

__all__ = [
    "DatabaseManager",
    "EncryptedSecret",
    "LegacyKey",
    "PendingCommit",
    "TradingAccount",
    "OrderRecord",
    "OrderState",
    "Base",
]

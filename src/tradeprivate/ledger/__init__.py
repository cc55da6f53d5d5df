"""Ledger interface and the in-memory ledger used for development and tests."""

from tradeprivate.ledger.base import (
    KeeperInfo,
    Ledger,
    LedgerClient,
    LedgerRevert,
    TxReceipt,
    parse_contract_error,
)
from tradeprivate.ledger.memory import InMemoryLedger

__all__ = [
    "KeeperInfo",
    "Ledger",
    "LedgerClient",
    "LedgerRevert",
    "TxReceipt",
    "parse_contract_error",
    "InMemoryLedger",
]

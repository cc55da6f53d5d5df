"""Cryptographic primitives module"""

from tradeprivate.crypto.field import FieldElement
from tradeprivate.crypto.hd_wallet import Account, HDNode, HDWallet, TradingKeys, WalletState
from tradeprivate.crypto.nullifier import (
    HashNullifierScheme,
    NullifierEngine,
    NullifierScheme,
)

__all__ = [
    'FieldElement',
    'Account',
    'HDNode',
    'HDWallet',
    'TradingKeys',
    'WalletState',
    'HashNullifierScheme',
    'NullifierEngine',
    'NullifierScheme',
]

"""Encryption of wallet secrets and trading state at rest."""

from tradeprivate.security.keystore import (
    LEGACY_KEY_RECORD_TYPE,
    EncryptedSeedRecord,
    RecordCipher,
    SeedVault,
)

__all__ = [
    "LEGACY_KEY_RECORD_TYPE",
    "EncryptedSeedRecord",
    "RecordCipher",
    "SeedVault",
]

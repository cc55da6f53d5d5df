"""Wallet context injected into the orchestrators.

A ``WalletContext`` owns everything that used to be process-global: the
settings, the storage handle, the unlocked HD wallet, the selected account
and the commitment and nullifier engines. Several contexts can live in one
process (one per wallet), and tests build a fresh one per case.

Example Usage:
    >>> ctx = WalletContext(settings, storage=DatabaseManager("sqlite:///wallet.db"))
    >>> mnemonic = await ctx.create_wallet("correct horse battery staple")
    >>> ctx.address
    '0x...'
"""

import asyncio
import logging
from typing import Optional

from tradeprivate.config import Settings, get_settings
from tradeprivate.constants import SEED_RECORD_TYPE
from tradeprivate.core.commitment import CommitmentEngine, CommitmentScheme
from tradeprivate.crypto.field import FieldElement
from tradeprivate.crypto.hd_wallet import HDWallet, TradingKeys
from tradeprivate.crypto.nullifier import NullifierEngine, NullifierScheme
from tradeprivate.exceptions import InvalidStateError, StorageError
from tradeprivate.ledger.base import Ledger, LedgerClient
from tradeprivate.security.keystore import LEGACY_KEY_RECORD_TYPE, RecordCipher, SeedVault
from tradeprivate.storage.database import DatabaseManager
from tradeprivate.utils.retry import CircuitBreaker

logger = logging.getLogger(__name__)


class WalletContext:
    """Per-wallet state and collaborators."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[DatabaseManager] = None,
        wallet_id: str = "default",
        account_index: int = 0,
        commitment_scheme: Optional[CommitmentScheme] = None,
        nullifier_scheme: Optional[NullifierScheme] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or DatabaseManager(self.settings.database_url)
        self.storage.create_tables()
        self.wallet_id = wallet_id
        self.account_index = account_index
        self.vault = SeedVault(iterations=self.settings.kdf_iterations)
        self.commitments = CommitmentEngine(commitment_scheme)
        self.nullifiers = NullifierEngine(nullifier_scheme)
        self._wallet: Optional[HDWallet] = None
        self._record_cipher: Optional[RecordCipher] = None
        self.legacy_key: Optional[FieldElement] = None

    # Wallet lifecycle

    @property
    def wallet(self) -> HDWallet:
        if self._wallet is None or not self._wallet.is_initialized:
            raise InvalidStateError("Wallet is locked or not created")
        return self._wallet

    @property
    def is_unlocked(self) -> bool:
        return self._wallet is not None and self._wallet.is_initialized

    def _install(self, wallet: Optional[HDWallet]) -> None:
        self._wallet = wallet
        self._record_cipher = RecordCipher.from_seed(wallet.seed) if wallet else None

    def _persist_seed(self, wallet: HDWallet, password: str) -> None:
        record = self.vault.encrypt_seed(wallet.seed, password)
        self.storage.store_secrets(self.wallet_id, [record])

    async def create_wallet(self, password: str, entropy_bits: int = 256, passphrase: str = "") -> str:
        """
        Generate, persist and unlock a new HD wallet.

        Returns:
            str: The mnemonic, to be backed up by the user
        """
        wallet = HDWallet()
        mnemonic = await asyncio.to_thread(wallet.generate, entropy_bits, passphrase)
        await asyncio.to_thread(self._persist_seed, wallet, password)
        self._install(wallet)
        logger.info("Created wallet %s", self.wallet_id)
        return mnemonic

    async def restore_wallet(self, mnemonic: str, password: str, passphrase: str = "") -> None:
        """Restore from a mnemonic, re-encrypt under ``password`` and unlock."""
        wallet = HDWallet()
        await asyncio.to_thread(wallet.restore, mnemonic, passphrase)
        await asyncio.to_thread(self._persist_seed, wallet, password)
        self._install(wallet)
        logger.info("Restored wallet %s", self.wallet_id)

    async def unlock(self, password: str) -> HDWallet:
        """
        Decrypt the stored seed.

        Raises:
            StorageError: If no wallet is stored
            AuthenticationError: If the password is wrong
        """
        record = await asyncio.to_thread(self.storage.get_active_secret, self.wallet_id, SEED_RECORD_TYPE)
        if record is None:
            raise StorageError(f"No HD wallet stored for {self.wallet_id}")
        seed = await asyncio.to_thread(self.vault.decrypt_seed, record, password)
        wallet = HDWallet.from_seed(seed)
        self._install(wallet)
        logger.info("Unlocked wallet %s", self.wallet_id)
        return wallet

    def lock(self) -> None:
        if self._wallet is not None:
            self._wallet.clear()
        self._install(None)

    async def has_wallet(self) -> bool:
        record = await asyncio.to_thread(self.storage.get_active_secret, self.wallet_id, SEED_RECORD_TYPE)
        return record is not None

    # Legacy migration

    async def migrate_to_hd(self, password: str) -> str:
        """
        Move a legacy single-key wallet onto a fresh HD wallet.

        The legacy key is wrapped under ``password`` and stored next to the
        new encrypted seed; the plaintext legacy row is deleted in the same
        transaction. On any failure the transaction is rolled back and the
        in-memory legacy state is put back, so the legacy key is never lost.

        Returns:
            str: Mnemonic of the new wallet

        Raises:
            InvalidStateError: If there is no legacy key to migrate
        """
        legacy_hex = await asyncio.to_thread(self.storage.get_legacy_key, self.wallet_id)
        if legacy_hex is None:
            raise InvalidStateError(f"No legacy key stored for {self.wallet_id}")

        previous_wallet, previous_cipher = self._wallet, self._record_cipher
        # Legacy key stays loaded until the new wallet is committed.
        legacy_key = FieldElement.from_hex(legacy_hex)
        self.legacy_key = legacy_key
        try:
            wallet = HDWallet()
            mnemonic = await asyncio.to_thread(wallet.generate)
            seed_record = await asyncio.to_thread(self.vault.encrypt_seed, wallet.seed, password)
            legacy_record = await asyncio.to_thread(
                self.vault.encrypt, legacy_key.to_bytes(), password, LEGACY_KEY_RECORD_TYPE
            )
            if await asyncio.to_thread(self.vault.decrypt_seed, seed_record, password) != wallet.seed:
                raise StorageError("Encrypted seed failed read-back verification")
            await asyncio.to_thread(
                self.storage.store_secrets,
                self.wallet_id,
                [seed_record, legacy_record],
                True,
            )
        except Exception:
            self._wallet, self._record_cipher = previous_wallet, previous_cipher
            logger.error("Migration of wallet %s failed, legacy key kept", self.wallet_id)
            raise

        self._install(wallet)
        self.legacy_key = None
        logger.info("Migrated wallet %s to HD", self.wallet_id)
        return mnemonic

    async def recover_legacy_key(self, password: str) -> FieldElement:
        """Decrypt the legacy key wrapped during migration."""
        record = await asyncio.to_thread(
            self.storage.get_active_secret, self.wallet_id, LEGACY_KEY_RECORD_TYPE
        )
        if record is None:
            raise StorageError(f"No wrapped legacy key for {self.wallet_id}")
        raw = await asyncio.to_thread(self.vault.decrypt, record, password)
        return FieldElement.from_bytes(raw)

    # Account access

    def select_account(self, index: int) -> None:
        self.wallet.derive_account(index)
        self.account_index = index

    @property
    def trading_keys(self) -> TradingKeys:
        return self.wallet.get_trading_keys(self.account_index)

    @property
    def trading_key(self) -> FieldElement:
        return self.trading_keys.private_key

    @property
    def address(self) -> str:
        return self.trading_keys.address

    @property
    def record_cipher(self) -> RecordCipher:
        if self._record_cipher is None:
            raise InvalidStateError("Wallet is locked")
        return self._record_cipher

    def ledger_client(self, ledger: Ledger) -> LedgerClient:
        """Wrap a ledger with this context's retry and breaker settings."""
        if isinstance(ledger, LedgerClient):
            return ledger
        return LedgerClient(
            ledger,
            retry_policy=self.settings.retry_policy,
            breaker=CircuitBreaker(
                failure_threshold=self.settings.breaker_failure_threshold,
                reset_timeout=self.settings.breaker_reset_timeout,
            ),
        )

"""Tests for hierarchical deterministic key derivation."""

import pytest

from tradeprivate.constants import FIELD_MODULUS, HARDENED_OFFSET
from tradeprivate.crypto.hd_wallet import HDWallet, WalletState, parse_path
from tradeprivate.crypto.secp256k1 import address_from_private_key, public_key_from_private
from tradeprivate.exceptions import InvalidMnemonicError, InvalidStateError, ValidationError

MNEMONIC = " ".join(["abandon"] * 11 + ["about"])
ACCOUNT_0_KEY = "0x2b59ecdfb9d60a0adea6c558bff73f98c183df7d2152aaf27a75dca98a19ec5e"
ACCOUNT_0_ADDRESS = "0xE8FA4bABe12879C5E2D1F9b0FcF6b2352a41d525"


@pytest.fixture
def wallet():
    """Wallet restored from the reference mnemonic."""
    w = HDWallet()
    w.restore(MNEMONIC)
    return w


class TestLifecycle:
    """Tests for wallet states."""

    def test_new_wallet_uninitialized(self):
        """Test the initial state."""
        w = HDWallet()
        assert w.state is WalletState.UNINITIALIZED
        assert not w.is_initialized
        with pytest.raises(InvalidStateError):
            w.derive_account(0)
        with pytest.raises(InvalidStateError):
            _ = w.seed

    def test_generate(self):
        """Test that generate returns a restorable mnemonic."""
        w = HDWallet()
        mnemonic = w.generate(128)
        assert len(mnemonic.split()) == 12
        assert w.state is WalletState.INITIALIZED

        restored = HDWallet()
        restored.restore(mnemonic)
        assert restored.seed == w.seed

    def test_restore_invalid(self):
        """Test that an invalid mnemonic leaves the wallet uninitialized."""
        w = HDWallet()
        with pytest.raises(InvalidMnemonicError):
            w.restore(" ".join(["abandon"] * 12))
        assert w.state is WalletState.UNINITIALIZED

    def test_account_ready(self, wallet):
        """Test the ACCOUNT_READY transition."""
        assert wallet.state is WalletState.INITIALIZED
        wallet.derive_account(0)
        assert wallet.state is WalletState.ACCOUNT_READY

    def test_clear(self, wallet):
        """Test that clear drops all key material."""
        wallet.derive_account(0)
        wallet.clear()
        assert wallet.state is WalletState.UNINITIALIZED
        assert wallet.accounts == []
        with pytest.raises(InvalidStateError):
            wallet.get_trading_keys(0)

    def test_from_seed_matches_restore(self, wallet):
        """Test that a wallet rebuilt from its seed derives the same keys."""
        rebuilt = HDWallet.from_seed(wallet.seed)
        assert rebuilt.derive_account(3).address == wallet.derive_account(3).address

    def test_short_seed_rejected(self):
        """Test seed length validation."""
        with pytest.raises(ValidationError):
            HDWallet.from_seed(b"\x00" * 8)

    def test_seed_hash(self, wallet):
        """Test the seed fingerprint is stable and not the seed itself."""
        assert wallet.seed_hash == HDWallet.from_seed(wallet.seed).seed_hash
        assert len(wallet.seed_hash) == 64
        assert wallet.seed.hex() != wallet.seed_hash


class TestDerivation:
    """Tests for key derivation."""

    def test_deterministic(self, wallet):
        """Test that the same mnemonic yields the same accounts."""
        other = HDWallet()
        other.restore(MNEMONIC)
        for i in range(3):
            assert other.derive_account(i).private_key == wallet.derive_account(i).private_key

    def test_reference_account(self, wallet):
        """Test account 0 of the reference mnemonic against fixed values."""
        assert wallet.seed.hex().startswith("5eb00bbddcf069084889a8ab9155568165f5c453")
        account = wallet.derive_account(0)
        assert account.private_key.to_hex() == ACCOUNT_0_KEY
        assert account.address == ACCOUNT_0_ADDRESS
        assert address_from_private_key(account.private_key) == ACCOUNT_0_ADDRESS

    def test_passphrase_changes_keys(self, wallet):
        """Test that a passphrase yields a different wallet."""
        other = HDWallet()
        other.restore(MNEMONIC, passphrase="TREZOR")
        assert other.derive_account(0).address != wallet.derive_account(0).address

    def test_account_path(self, wallet):
        """Test the BIP-44 path of an account key."""
        account = wallet.derive_account(2)
        assert account.derivation_path == "m/44'/60'/2'/0/0"
        assert wallet.derive_path("m/44'/60'/2'/0/0").private_key == account.private_key

    def test_accounts_distinct(self, wallet):
        """Test that account indices give distinct keys."""
        keys = {wallet.derive_account(i).private_key for i in range(10)}
        assert len(keys) == 10

    def test_keys_in_field(self, wallet):
        """Test that derived keys lie in the BN254 field and are nonzero."""
        for i in range(10):
            key = wallet.derive_account(i).private_key.to_int()
            assert 0 < key < FIELD_MODULUS

    def test_account_cached(self, wallet):
        """Test that derive_account returns the cached object."""
        assert wallet.derive_account(1) is wallet.derive_account(1)
        assert [a.index for a in wallet.accounts] == [1]

    def test_public_key_and_address(self, wallet):
        """Test that public key and address follow from the private key."""
        account = wallet.derive_account(0)
        assert account.public_key == public_key_from_private(account.private_key)
        assert len(account.public_key) == 33
        assert account.address == address_from_private_key(account.private_key)

    def test_derive_addresses(self, wallet):
        """Test address enumeration along the external chain."""
        addresses = wallet.derive_addresses(0, 3)
        assert len(set(addresses)) == 3
        assert addresses[0] == wallet.derive_account(0).address
        assert wallet.derive_addresses(0, 2, start=1) == addresses[1:]

    def test_trading_keys(self, wallet):
        """Test the trading key bundle."""
        keys = wallet.get_trading_keys(0)
        account = wallet.derive_account(0)
        assert keys.private_key == account.private_key
        assert keys.address == account.address
        assert keys.derivation_path == account.derivation_path

    def test_child_index_range(self, wallet):
        """Test that indices >= 2^31 are rejected."""
        master = wallet.derive_path("m")
        with pytest.raises(ValidationError):
            HDWallet.derive_child(master, HARDENED_OFFSET)
        with pytest.raises(ValidationError):
            HDWallet.derive_child(master, -1)

    def test_hardened_differs(self, wallet):
        """Test that hardened and normal children differ."""
        master = wallet.derive_path("m")
        normal = HDWallet.derive_child(master, 0)
        hardened = HDWallet.derive_child(master, 0, hardened=True)
        assert normal.private_key != hardened.private_key
        assert hardened.is_hardened and not normal.is_hardened
        assert hardened.path == "m/0'"
        assert normal.parent_fingerprint == master.fingerprint


class TestParsePath:
    """Tests for derivation path parsing."""

    def test_parse(self):
        """Test a standard path."""
        assert parse_path("m/44'/60'/0'/0/1") == [
            (44, True), (60, True), (0, True), (0, False), (1, False),
        ]

    def test_h_suffix(self):
        """Test the alternative hardened marker."""
        assert parse_path("m/44h") == [(44, True)]

    @pytest.mark.parametrize("path", ["44'/60'", "m/abc", "m/44''", f"m/{HARDENED_OFFSET}"])
    def test_invalid(self, path):
        """Test malformed paths."""
        with pytest.raises(ValidationError):
            parse_path(path)

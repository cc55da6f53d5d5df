"""Tests for database storage layer."""

import pytest

from tradeprivate.constants import SEED_RECORD_TYPE
from tradeprivate.exceptions import StorageError
from tradeprivate.security.keystore import LEGACY_KEY_RECORD_TYPE, SeedVault
from tradeprivate.storage.database import (
    DatabaseManager,
    EncryptedSecret,
    OrderRecord,
    OrderState,
)

OWNER = "0x" + "AA" * 20


@pytest.fixture
def vault():
    return SeedVault(iterations=1000)


class TestDatabaseManager:
    """Test database manager initialization."""

    def test_database_creation(self, temp_db):
        """Test database creation."""
        assert temp_db.engine is not None
        assert temp_db.SessionLocal is not None

    def test_session_rolls_back(self, temp_db, vault):
        """Test that an exception inside a session discards its writes."""
        record = vault.encrypt_seed(b"\x01" * 64, "pw")
        with pytest.raises(RuntimeError):
            with temp_db.session_scope() as session:
                session.add(EncryptedSecret(
                    wallet_id="w", record_type=record.record_type, version=1,
                    encrypted_seed=record.encrypted_seed, iv=record.iv, salt=record.salt,
                    iterations=record.iterations,
                ))
                session.flush()
                raise RuntimeError("abort")
        assert temp_db.count_secrets("w") == 0

    def test_integrity_error_is_storage_error(self, temp_db):
        """Test that database errors are mapped to StorageError."""
        temp_db.put_legacy_key("w", "0x01")
        with pytest.raises(StorageError):
            temp_db.put_legacy_key("w", "0x02")

    def test_bad_url(self):
        """Test that an unusable URL raises StorageError."""
        with pytest.raises(StorageError):
            DatabaseManager("notadialect://nowhere")

    def test_drop_tables(self, temp_db):
        """Test that dropping and recreating tables clears stored rows."""
        temp_db.put_legacy_key("w", "0x01")
        temp_db.drop_tables()
        temp_db.create_tables()
        assert temp_db.get_legacy_key("w") is None


class TestSecrets:
    """Test encrypted secret storage."""

    def test_store_and_get(self, temp_db, vault):
        """Test storing and reading back a seed record."""
        record = vault.encrypt_seed(b"\x01" * 64, "pw")
        temp_db.store_secrets("w", [record])
        assert temp_db.get_active_secret("w", SEED_RECORD_TYPE) == record

    def test_missing(self, temp_db):
        """Test reading a wallet that does not exist."""
        assert temp_db.get_active_secret("nobody", SEED_RECORD_TYPE) is None

    def test_replace_keeps_one_active(self, temp_db, vault):
        """Test write-new-then-swap replacement."""
        first = vault.encrypt_seed(b"\x01" * 64, "pw")
        second = vault.encrypt_seed(b"\x02" * 64, "pw")
        temp_db.store_secrets("w", [first])
        temp_db.store_secrets("w", [second])

        assert temp_db.count_secrets("w") == 2
        assert temp_db.get_active_secret("w", SEED_RECORD_TYPE) == second
        with temp_db.session_scope() as session:
            active = session.query(EncryptedSecret).filter_by(wallet_id="w", is_active=True).count()
        assert active == 1

    def test_types_independent(self, temp_db, vault):
        """Test that storing a legacy-key record leaves the seed active."""
        seed = vault.encrypt_seed(b"\x01" * 64, "pw")
        legacy = vault.encrypt(b"\x03" * 32, "pw", LEGACY_KEY_RECORD_TYPE)
        temp_db.store_secrets("w", [seed])
        temp_db.store_secrets("w", [legacy])
        assert temp_db.get_active_secret("w", SEED_RECORD_TYPE) == seed
        assert temp_db.get_active_secret("w", LEGACY_KEY_RECORD_TYPE) == legacy

    def test_wallets_isolated(self, temp_db, vault):
        """Test that wallets do not see each other's records."""
        temp_db.store_secrets("a", [vault.encrypt_seed(b"\x01" * 64, "pw")])
        assert temp_db.get_active_secret("b", SEED_RECORD_TYPE) is None

    def test_delete_legacy_key(self, temp_db, vault):
        """Test that migration removes the plaintext legacy key in the same write."""
        temp_db.put_legacy_key("w", "0x" + "05" * 32)
        temp_db.store_secrets("w", [vault.encrypt_seed(b"\x01" * 64, "pw")], delete_legacy_key=True)
        assert temp_db.get_legacy_key("w") is None


class TestPendingCommits:
    """Test pending commit persistence."""

    def test_save_get_clear(self, temp_db):
        """Test the pending commit lifecycle."""
        temp_db.save_pending_commit(OWNER, "0x" + "01" * 32, 10, b"sealed")
        row = temp_db.get_pending_commit(OWNER)
        assert row.block_number == 10
        assert row.sealed == b"sealed"

        temp_db.save_pending_commit(OWNER, "0x" + "02" * 32, 11, b"sealed2")
        assert temp_db.get_pending_commit(OWNER).block_number == 11

        assert temp_db.clear_pending_commit(OWNER)
        assert temp_db.get_pending_commit(OWNER) is None
        assert not temp_db.clear_pending_commit(OWNER)

    def test_unconfirmed_commit(self, temp_db):
        """Test that a commit can be saved before its block is known."""
        temp_db.save_pending_commit(OWNER, "0x" + "01" * 32, None, b"sealed")
        assert temp_db.get_pending_commit(OWNER).block_number is None

        temp_db.save_pending_commit(OWNER, "0x" + "01" * 32, 42, b"sealed")
        assert temp_db.get_pending_commit(OWNER).block_number == 42

    def test_activate_drops_pending(self, temp_db):
        """Test that activating an account removes its pending commit."""
        temp_db.save_pending_commit(OWNER, "0x" + "01" * 32, 10, b"sealed")
        temp_db.activate_account(OWNER, 0, b"account", "0x" + "ab" * 32, 250)
        assert temp_db.get_pending_commit(OWNER) is None
        account = temp_db.get_account(OWNER)
        assert account.revealed_block == 250
        assert account.sealed == b"account"


class TestOrders:
    """Test order history persistence."""

    def test_upsert(self, temp_db):
        """Test inserting and advancing an order."""
        temp_db.upsert_order("k1", OWNER, OrderState.COMMITTED, b"s1", nullifier="0x" + "01" * 32)
        temp_db.upsert_order("k1", OWNER, OrderState.SUBMITTED, b"s2", tx_hash="0xabc", submitted_block=5)

        row = temp_db.get_order("k1")
        assert row.state is OrderState.SUBMITTED
        assert row.sealed == b"s2"
        assert row.nullifier == "0x" + "01" * 32
        assert row.tx_hash == "0xabc"
        assert row.submitted_block == 5

    def test_update_state_by_nullifier(self, temp_db):
        """Test status updates keyed by nullifier."""
        n = "0x" + "01" * 32
        temp_db.upsert_order("k1", OWNER, OrderState.SUBMITTED, b"s", nullifier=n)
        assert temp_db.update_order_state(n, OrderState.EXECUTED)
        assert temp_db.get_order("k1").state is OrderState.EXECUTED
        assert not temp_db.update_order_state("0x" + "02" * 32, OrderState.EXPIRED)

    def test_nullifier_unique(self, temp_db):
        """Test that two orders cannot share a nullifier."""
        n = "0x" + "01" * 32
        temp_db.upsert_order("k1", OWNER, OrderState.COMMITTED, b"s", nullifier=n)
        with pytest.raises(StorageError):
            temp_db.upsert_order("k2", OWNER, OrderState.COMMITTED, b"s", nullifier=n)

    def test_get_orders_newest_first(self, temp_db):
        """Test history ordering and limit."""
        for i in range(5):
            temp_db.upsert_order(f"k{i}", OWNER, OrderState.SUBMITTED, b"s", nullifier="0x" + f"{i:02x}" * 32)
        temp_db.upsert_order("other", "0x" + "BB" * 20, OrderState.SUBMITTED, b"s")

        rows = temp_db.get_orders(OWNER, limit=3)
        assert [r.order_key for r in rows] == ["k4", "k3", "k2"]
        assert all(isinstance(r, OrderRecord) for r in rows)

    def test_terminal_states(self):
        """Test the terminal state helper."""
        assert OrderState.EXECUTED.is_terminal
        assert OrderState.EXPIRED.is_terminal
        assert not OrderState.SUBMITTED.is_terminal

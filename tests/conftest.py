"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from tradeprivate.config import Settings
from tradeprivate.context import WalletContext
from tradeprivate.core.account import AccountOrchestrator
from tradeprivate.core.orders import OrderOrchestrator
from tradeprivate.crypto.order_cipher import generate_keeper_keypair
from tradeprivate.ledger.base import KeeperInfo
from tradeprivate.ledger.memory import InMemoryLedger
from tradeprivate.storage.database import DatabaseManager

TEST_PASSWORD = "correct horse battery staple"
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
MARKET = "0x" + "11" * 20


def pytest_configure(config):
    config.addinivalue_line("markers", "benchmark: performance benchmarks")


@pytest.fixture
def settings():
    """Settings with fast KDF and no retry delays."""
    return Settings(
        environment="test",
        database_url="sqlite://",
        commit_reveal_delay=240,
        kdf_iterations=1000,
        retry_max_attempts=3,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
        breaker_failure_threshold=50,
    )


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'test.db'}")
    manager.create_tables()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def context(settings, temp_db):
    """Fresh, locked wallet context."""
    return WalletContext(settings, storage=temp_db)


@pytest.fixture
def ledger(settings):
    """In-memory ledger using the test reveal delay."""
    return InMemoryLedger(commit_reveal_delay=settings.commit_reveal_delay)


@pytest.fixture
def keepers(ledger):
    """Register two keepers; returns {address: private_key}."""
    private_keys = {}
    for i, reputation in enumerate((80, 95)):
        private_key, public_key = generate_keeper_keypair()
        address = "0x" + f"{i + 1:02x}" * 20
        ledger.register_keeper(KeeperInfo(
            address=address,
            public_key=public_key,
            reputation_score=reputation,
            successful_batches=9,
            failed_batches=1,
        ))
        private_keys[address] = private_key
    return private_keys


@pytest_asyncio.fixture
async def unlocked_context(context):
    """Context with a wallet restored from the test mnemonic."""
    await context.restore_wallet(TEST_MNEMONIC, TEST_PASSWORD)
    return context


@pytest_asyncio.fixture
async def active_account(unlocked_context, ledger):
    """Account orchestrator with a funded, revealed trading account."""
    accounts = AccountOrchestrator(unlocked_context, ledger)
    await accounts.load()
    await accounts.deposit(10_000_000_000)
    await accounts.create_account()
    ledger.mine(unlocked_context.settings.commit_reveal_delay)
    await accounts.reveal_account()
    return accounts


@pytest_asyncio.fixture
async def orders(active_account, ledger, keepers):
    """Order orchestrator for the active account."""
    orchestrator = OrderOrchestrator(active_account.context, ledger)
    await orchestrator.load()
    return orchestrator


@pytest.fixture
def order_params():
    """A valid limit order."""
    return {
        "market": MARKET,
        "size": "1000",
        "price": "2500.5",
        "is_long": True,
        "leverage": 10,
        "order_type": "limit",
        "take_profit": "2800",
        "stop_loss": "2300",
    }

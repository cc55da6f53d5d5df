#!/usr/bin/env python3
"""
Quick start guide for the TradePrivate client.

Creates a wallet, opens a trading account through commit-reveal and
submits one private order, all against the in-memory ledger.
"""

import asyncio
import sys
import tempfile
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tradeprivate import AccountOrchestrator, InMemoryLedger, OrderCipher, OrderOrchestrator, WalletContext
from tradeprivate.config import Settings, configure_logging
from tradeprivate.crypto.order_cipher import generate_keeper_keypair
from tradeprivate.ledger.base import KeeperInfo

PASSWORD = "quick start password"


async def main():
    """Run a simple example of the TradePrivate flow."""
    configure_logging("WARNING")

    print("=" * 70)
    print("TRADEPRIVATE QUICK START EXAMPLE")
    print("=" * 70)
    print()

    workdir = tempfile.mkdtemp()
    settings = Settings(database_url=f"sqlite:///{workdir}/quick_start.db", kdf_iterations=10_000)
    ledger = InMemoryLedger(commit_reveal_delay=settings.commit_reveal_delay)

    keeper_key, keeper_public = generate_keeper_keypair()
    ledger.register_keeper(KeeperInfo(
        address="0x" + "ab" * 20,
        public_key=keeper_public,
        reputation_score=90,
        successful_batches=10,
    ))

    # Step 1: Wallet
    print("Step 1: Create an HD wallet")
    print("-" * 70)
    context = WalletContext(settings)
    mnemonic = await context.create_wallet(PASSWORD)
    print(f"✓ Mnemonic: {' '.join(mnemonic.split()[:3])} ... ({len(mnemonic.split())} words)")
    print(f"  Address:  {context.address}")
    print(f"  Path:     {context.trading_keys.derivation_path}")
    print()

    # Step 2: Commit
    print("Step 2: Deposit collateral and commit to a trading account")
    print("-" * 70)
    accounts = AccountOrchestrator(context, ledger)
    await accounts.load()
    await accounts.deposit(5_000 * 10 ** 6)
    commit = await accounts.create_account()
    print(f"✓ Commit hash: {commit.commit_hash[:18]}...")
    print(f"  Reveal allowed from block {commit.reveal_after_block}")
    print()

    # Step 3: Reveal
    print("Step 3: Wait out the delay and reveal")
    print("-" * 70)
    ledger.mine(settings.commit_reveal_delay)
    reveal = await accounts.reveal_account()
    print(f"✓ Account commitment: {reveal.account_commitment[:18]}...")
    print()

    # Step 4: Order
    print("Step 4: Submit a private limit order")
    print("-" * 70)
    orders = OrderOrchestrator(context, ledger)
    await orders.load()
    submission = await orders.submit_order({
        "market": "0x" + "11" * 20,
        "size": "1000",
        "price": "2500",
        "is_long": True,
        "leverage": 5,
        "order_type": "limit",
    })
    print(f"✓ Nullifier: {submission.nullifier[:18]}...")
    print(f"  Keeper:    {submission.keeper}")
    status = await orders.order_status(submission.nullifier)
    print(f"  Status:    {status.status.value}")
    print()

    # Step 5: Keeper side
    print("Step 5: Keeper decrypts the order")
    print("-" * 70)
    blob = ledger.orders[submission.nullifier].encrypted_order
    sealed = OrderCipher().decrypt_for_keeper(blob, keeper_key)
    print(f"✓ {len(blob)}-byte ciphertext opened: size={sealed.payload.size} leverage={sealed.payload.leverage}x")
    print()

    context.storage.engine.dispose()
    print("=" * 70)
    print("Done")
    print("=" * 70)


if __name__ == "__main__":
    asyncio.run(main())

"""Integration tests for the commit-reveal account flow."""

import pytest

from tradeprivate.core.account import AccountOrchestrator, AccountState
from tradeprivate.core.commitment import CommitmentEngine
from tradeprivate.exceptions import (
    CommitterMismatchError,
    InvalidStateError,
    NetworkError,
    StorageError,
    TimingError,
    ValidationError,
)

DEPOSIT = 5_000_000_000


@pytest.fixture
def accounts(unlocked_context, ledger):
    return AccountOrchestrator(unlocked_context, ledger)


class TestCommitReveal:
    """Tests for creating and revealing a trading account."""

    @pytest.mark.asyncio
    async def test_full_flow(self, accounts, ledger):
        """Test deposit, commit, wait and reveal."""
        assert await accounts.load() is AccountState.NO_ACCOUNT
        await accounts.deposit(DEPOSIT)
        assert await accounts.balance() == DEPOSIT

        commit = await accounts.create_account()
        assert accounts.state is AccountState.COMMIT_PENDING
        assert commit.reveal_after_block == commit.block_number + 240

        ledger.mine(240)
        assert await accounts.refresh() is AccountState.REVEAL_READY

        reveal = await accounts.reveal_account()
        assert accounts.state is AccountState.ACCOUNT_ACTIVE
        assert reveal.account_commitment == accounts.account_commitment.to_hex()
        assert ledger.account_owner(reveal.account_commitment) == accounts.context.address.lower()[2:]

    @pytest.mark.asyncio
    async def test_commit_hash_matches_ledger(self, accounts, ledger):
        """Test that the locally computed commit hash is what the ledger stored."""
        await accounts.deposit(DEPOSIT)
        commit = await accounts.create_account()
        pending = accounts.pending
        expected = CommitmentEngine.commit_hash_hex(pending.commitment, pending.nonce, pending.committer)
        assert commit.commit_hash == expected
        assert bytes.fromhex(expected[2:]) in ledger.commits

    @pytest.mark.asyncio
    async def test_requires_collateral(self, accounts):
        """Test that an account cannot be created without a deposit."""
        with pytest.raises(ValidationError):
            await accounts.create_account()
        assert accounts.state is AccountState.NO_ACCOUNT

    @pytest.mark.asyncio
    async def test_reveal_too_early(self, accounts, ledger):
        """Test that reveal is refused before the delay, with the blocks remaining."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()

        with pytest.raises(TimingError) as exc:
            await accounts.reveal_account()
        assert exc.value.blocks_remaining == 240

        ledger.mine(239)
        with pytest.raises(TimingError) as exc:
            await accounts.reveal_account()
        assert exc.value.blocks_remaining == 1
        assert ledger.calls["reveal_trading_account"] == 0

        ledger.mine(1)
        await accounts.reveal_account()
        assert accounts.state is AccountState.ACCOUNT_ACTIVE

    @pytest.mark.asyncio
    async def test_committer_binding(self, accounts, ledger):
        """Test that only the committing address may reveal."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        ledger.mine(240)
        with pytest.raises(CommitterMismatchError):
            await accounts.reveal_account(sender="0x" + "99" * 20)
        assert ledger.calls["reveal_trading_account"] == 0

    @pytest.mark.asyncio
    async def test_double_create(self, accounts):
        """Test that a second commit is refused while one is pending."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        with pytest.raises(InvalidStateError):
            await accounts.create_account()

    @pytest.mark.asyncio
    async def test_cancel_pending(self, accounts):
        """Test abandoning a pending commit."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        await accounts.cancel_pending()
        assert accounts.state is AccountState.NO_ACCOUNT
        assert accounts.context.storage.get_pending_commit(accounts.context.address) is None
        with pytest.raises(InvalidStateError):
            await accounts.cancel_pending()

    @pytest.mark.asyncio
    async def test_reveal_without_commit(self, accounts):
        """Test revealing with nothing pending."""
        with pytest.raises(InvalidStateError):
            await accounts.reveal_account()


class TestRetryAndRestart:
    """Tests for retries and resuming after a restart."""

    @pytest.mark.asyncio
    async def test_commit_retried(self, accounts, ledger):
        """Test that a transient commit failure is retried once more with the same hash."""
        await accounts.deposit(DEPOSIT)
        ledger.fail_next("commit_trading_account", 2)
        await accounts.create_account()
        assert ledger.calls["commit_trading_account"] == 3
        assert len(ledger.commits) == 1

    @pytest.mark.asyncio
    async def test_reveal_retried(self, accounts, ledger):
        """Test that a transient reveal failure is retried with the same commitment."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        commitment = accounts.pending.commitment
        ledger.mine(240)
        ledger.fail_next("reveal_trading_account", 2)

        reveal = await accounts.reveal_account()
        assert reveal.account_commitment == commitment.to_hex()
        assert ledger.calls["reveal_trading_account"] == 3

    @pytest.mark.asyncio
    async def test_reveal_failure_keeps_pending(self, unlocked_context, accounts, ledger):
        """Test that an exhausted reveal leaves the commit for a later attempt."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        pending = accounts.pending
        ledger.mine(240)
        ledger.fail_next("reveal_trading_account", 4)

        with pytest.raises(NetworkError):
            await accounts.reveal_account()
        assert accounts.pending == pending
        assert accounts.state is not AccountState.ACCOUNT_ACTIVE

        restarted = AccountOrchestrator(unlocked_context, ledger)
        assert await restarted.load() is AccountState.REVEAL_READY
        assert restarted.pending.commitment == pending.commitment
        assert restarted.pending.nonce == pending.nonce

        reveal = await restarted.reveal_account()
        assert reveal.account_commitment == pending.commitment.to_hex()

    @pytest.mark.asyncio
    async def test_restart_while_waiting(self, unlocked_context, accounts, ledger):
        """Test that a restart during the delay resumes the pending commit."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()

        restarted = AccountOrchestrator(unlocked_context, ledger)
        assert await restarted.load() is AccountState.COMMIT_PENDING
        assert await restarted.blocks_until_reveal() == 240

    @pytest.mark.asyncio
    async def test_restart_after_activation(self, unlocked_context, accounts, ledger):
        """Test that an active account is restored on load."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        ledger.mine(240)
        await accounts.reveal_account()

        restarted = AccountOrchestrator(unlocked_context, ledger)
        assert await restarted.load() is AccountState.ACCOUNT_ACTIVE
        assert restarted.account_commitment == accounts.account_commitment

    @pytest.mark.asyncio
    async def test_lost_reveal_response(self, accounts, ledger, monkeypatch):
        """Test that a reveal applied on the ledger with its response lost still activates."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        commitment = accounts.pending.commitment
        ledger.mine(240)
        original = ledger.reveal_trading_account

        async def lands_then_drops(*args):
            await original(*args)
            monkeypatch.setattr(ledger, "reveal_trading_account", original)
            raise ConnectionError("response lost")

        monkeypatch.setattr(ledger, "reveal_trading_account", lands_then_drops)
        reveal = await accounts.reveal_account()
        assert accounts.state is AccountState.ACCOUNT_ACTIVE
        assert reveal.account_commitment == commitment.to_hex()
        assert reveal.tx_hash is None
        assert len(ledger.accounts) == 1
        assert accounts.context.storage.get_account(accounts.context.address) is not None

    @pytest.mark.asyncio
    async def test_lost_reveal_recovered_after_restart(self, unlocked_context, accounts, ledger, monkeypatch):
        """Test that a restart after a landed but unacknowledged reveal activates the account."""
        await accounts.deposit(DEPOSIT)
        await accounts.create_account()
        ledger.mine(240)
        original = ledger.reveal_trading_account

        async def lands_then_drops(*args):
            await original(*args)
            monkeypatch.setattr(ledger, "reveal_trading_account", original)
            ledger.fail_next("reveal_trading_account", 3)
            raise ConnectionError("response lost")

        monkeypatch.setattr(ledger, "reveal_trading_account", lands_then_drops)
        with pytest.raises(NetworkError):
            await accounts.reveal_account()
        assert accounts.state is not AccountState.ACCOUNT_ACTIVE

        restarted = AccountOrchestrator(unlocked_context, ledger)
        assert await restarted.load() is AccountState.REVEAL_READY
        await restarted.reveal_account()
        assert restarted.state is AccountState.ACCOUNT_ACTIVE
        assert len(ledger.accounts) == 1

    @pytest.mark.asyncio
    async def test_pending_saved_before_commit(self, accounts, ledger, monkeypatch):
        """Test that nothing is committed on the ledger when the pending commit cannot be saved."""
        await accounts.deposit(DEPOSIT)

        def broken_save(*args):
            raise StorageError("disk full")

        monkeypatch.setattr(accounts.context.storage, "save_pending_commit", broken_save)
        with pytest.raises(StorageError):
            await accounts.create_account()
        assert ledger.calls["commit_trading_account"] == 0
        assert accounts.pending is None
        assert accounts.state is AccountState.NO_ACCOUNT

    @pytest.mark.asyncio
    async def test_commit_exhausted_then_resent(self, accounts, ledger):
        """Test that a failed commit is resent with the stored hash."""
        await accounts.deposit(DEPOSIT)
        ledger.fail_next("commit_trading_account", 4)
        with pytest.raises(NetworkError):
            await accounts.create_account()

        row = accounts.context.storage.get_pending_commit(accounts.context.address)
        assert row is not None and row.block_number is None
        commit_hash = accounts.pending.commit_hash
        assert ledger.commits == {}

        commit = await accounts.create_account()
        assert commit.commit_hash == commit_hash
        assert len(ledger.commits) == 1
        assert accounts.context.storage.get_pending_commit(accounts.context.address).block_number == commit.block_number

    @pytest.mark.asyncio
    async def test_lost_commit_confirmed_on_restart(self, unlocked_context, accounts, ledger, monkeypatch):
        """Test that a restart confirms a commit that landed without a recorded receipt."""
        await accounts.deposit(DEPOSIT)
        original = ledger.commit_trading_account

        async def lands_then_drops(*args):
            await original(*args)
            monkeypatch.setattr(ledger, "commit_trading_account", original)
            ledger.fail_next("commit_trading_account", 3)
            raise ConnectionError("response lost")

        monkeypatch.setattr(ledger, "commit_trading_account", lands_then_drops)
        with pytest.raises(NetworkError):
            await accounts.create_account()
        pending = accounts.pending
        assert pending.block_number is None

        restarted = AccountOrchestrator(unlocked_context, ledger)
        assert await restarted.load() is AccountState.COMMIT_PENDING
        assert restarted.pending.nonce == pending.nonce
        assert await restarted.blocks_until_reveal() == 240

        ledger.mine(240)
        reveal = await restarted.reveal_account()
        assert reveal.account_commitment == pending.commitment.to_hex()

    @pytest.mark.asyncio
    async def test_resent_commit_already_landed(self, accounts, ledger, monkeypatch):
        """Test that resending a commit the ledger already holds picks up its block."""
        await accounts.deposit(DEPOSIT)
        original = ledger.commit_trading_account

        async def lands_then_drops(*args):
            await original(*args)
            monkeypatch.setattr(ledger, "commit_trading_account", original)
            ledger.fail_next("commit_trading_account", 3)
            raise ConnectionError("response lost")

        monkeypatch.setattr(ledger, "commit_trading_account", lands_then_drops)
        with pytest.raises(NetworkError):
            await accounts.create_account()
        landed_at = ledger.current_block

        ledger.mine(5)
        commit = await accounts.create_account()
        assert commit.tx_hash is None
        assert commit.block_number == landed_at
        assert len(ledger.commits) == 1

    @pytest.mark.asyncio
    async def test_deposit_not_retried(self, accounts, ledger):
        """Test that deposits are attempted exactly once."""
        ledger.fail_next("deposit", 1)
        with pytest.raises(NetworkError):
            await accounts.deposit(DEPOSIT)
        assert ledger.calls["deposit"] == 1
        assert await accounts.balance() == 0


class TestCollateral:
    """Tests for deposits and withdrawals."""

    @pytest.mark.asyncio
    async def test_invalid_deposit(self, accounts):
        """Test non-positive deposits."""
        for amount in (0, -5, True):
            with pytest.raises(ValidationError):
                await accounts.deposit(amount)

    @pytest.mark.asyncio
    async def test_withdraw_requires_account(self, accounts):
        """Test that withdrawal needs an active account."""
        with pytest.raises(InvalidStateError):
            await accounts.withdraw(100)

    @pytest.mark.asyncio
    async def test_withdraw(self, active_account):
        """Test withdrawing part of the collateral."""
        before = await active_account.balance()
        await active_account.withdraw(1_000_000)
        assert await active_account.balance() == before - 1_000_000

    @pytest.mark.asyncio
    async def test_withdraw_too_much(self, active_account):
        """Test that over-withdrawal is rejected by the ledger."""
        with pytest.raises(ValidationError):
            await active_account.withdraw(10 ** 18)

    @pytest.mark.asyncio
    async def test_account_info(self, active_account):
        """Test the account summary."""
        info = await active_account.account_info()
        assert info.state == AccountState.ACCOUNT_ACTIVE.value
        assert info.derivation_path == "m/44'/60'/0'/0/0"
        assert info.account_commitment == active_account.account_commitment.to_hex()
        assert info.blocks_until_reveal is None

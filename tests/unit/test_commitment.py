"""Tests for account/order commitments and the commit-reveal hash."""

import pytest

from tradeprivate.constants import FIELD_MODULUS
from tradeprivate.core.commitment import CommitmentEngine, CommitmentScheme, HashCommitmentScheme
from tradeprivate.core.order import OrderPayload, OrderType
from tradeprivate.crypto.field import FieldElement
from tradeprivate.exceptions import InvalidAddressError, InvalidFieldElementError
from tradeprivate.utils.hash import keccak256

ADDRESS = "0x" + "11" * 20
MARKET = "0x" + "22" * 20
REFERENCE_COMMIT_HASH = "0x1aa01474cb17719c8e8dd853c08a191121c258f7e2f10f2f0ac86dc591e65d29"


@pytest.fixture
def engine():
    return CommitmentEngine()


@pytest.fixture
def order():
    return OrderPayload(
        market=MARKET,
        size=1_000_000_000,
        price=2500 * 10 ** 18,
        is_long=True,
        leverage=10,
        order_type=OrderType.LIMIT,
    )


class TestEncodePacked:
    """Tests for the abi.encodePacked layout."""

    def test_layout(self):
        """Test bytes32 || uint256 || address, 84 bytes."""
        packed = CommitmentEngine.encode_packed(1, 2, ADDRESS)
        assert len(packed) == 84
        assert packed == (
            b"\x00" * 31 + b"\x01"
            + b"\x00" * 31 + b"\x02"
            + bytes.fromhex("11" * 20)
        )

    def test_commit_hash_is_keccak(self):
        """Test that the commit hash is keccak256 of the packed bytes."""
        packed = CommitmentEngine.encode_packed(1, 2, ADDRESS)
        assert CommitmentEngine.commit_hash(1, 2, ADDRESS) == keccak256(packed)
        assert CommitmentEngine.commit_hash_hex(1, 2, ADDRESS) == "0x" + keccak256(packed).hex()

    def test_reference_commit_hash(self):
        """Test commitHash(1, 2, 0x11..11) against a fixed value."""
        assert CommitmentEngine.commit_hash_hex(1, 2, ADDRESS) == REFERENCE_COMMIT_HASH

    def test_keccak_reference(self):
        """Test keccak256 (not SHA3-256) on the empty input."""
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    def test_address_binding(self):
        """Test that the hash binds the committing address."""
        other = "0x" + "12" * 20
        assert CommitmentEngine.commit_hash(1, 2, ADDRESS) != CommitmentEngine.commit_hash(1, 2, other)

    def test_checksummed_and_lowercase_address_agree(self):
        """Test that address case does not matter."""
        upper = "0x" + "AB" * 20
        assert CommitmentEngine.commit_hash(1, 2, upper) == CommitmentEngine.commit_hash(1, 2, upper.lower())

    def test_verify(self):
        """Test commit hash verification."""
        h = CommitmentEngine.commit_hash(5, 6, ADDRESS)
        assert CommitmentEngine.verify_commit_hash(h, 5, 6, ADDRESS)
        assert not CommitmentEngine.verify_commit_hash(h, 5, 7, ADDRESS)

    def test_bad_address(self):
        """Test that 19-byte addresses are rejected."""
        with pytest.raises(InvalidAddressError):
            CommitmentEngine.encode_packed(1, 2, "0x" + "11" * 19)

    def test_out_of_field(self):
        """Test that values >= p are rejected, not reduced."""
        with pytest.raises(InvalidFieldElementError):
            CommitmentEngine.encode_packed(FIELD_MODULUS, 1, ADDRESS)
        with pytest.raises(InvalidFieldElementError):
            CommitmentEngine.encode_packed(1, FIELD_MODULUS + 1, ADDRESS)


class TestAccountCommitment:
    """Tests for account commitments."""

    def test_deterministic(self, engine):
        """Test that the same inputs give the same commitment."""
        assert engine.account_commitment(7, 9) == engine.account_commitment(7, 9)

    def test_nonce_hides(self, engine):
        """Test that a different nonce gives a different commitment."""
        assert engine.account_commitment(7, 9) != engine.account_commitment(7, 10)

    def test_key_binds(self, engine):
        """Test that a different key gives a different commitment."""
        assert engine.account_commitment(7, 9) != engine.account_commitment(8, 9)

    def test_in_field(self, engine):
        """Test that commitments are field elements."""
        c = engine.account_commitment(FieldElement.random(), FieldElement.random())
        assert isinstance(c, FieldElement)
        assert 0 <= c.to_int() < FIELD_MODULUS

    def test_rejects_non_canonical(self, engine):
        """Test that an out-of-field key is rejected."""
        with pytest.raises(InvalidFieldElementError):
            engine.account_commitment(FIELD_MODULUS, 1)


class TestOrderCommitment:
    """Tests for order commitments."""

    def test_deterministic(self, engine, order):
        """Test determinism in (order, nonce)."""
        assert engine.order_commitment(order, 3) == engine.order_commitment(order, 3)

    def test_every_field_binds(self, engine, order):
        """Test that changing any order field changes the commitment."""
        base = engine.order_commitment(order, 3)
        variants = [
            dict(market="0x" + "33" * 20),
            dict(size=order.size + 1),
            dict(price=order.price + 1),
            dict(is_long=False),
            dict(leverage=11),
            dict(order_type=OrderType.STOP),
            dict(is_reduce_only=True),
            dict(take_profit=1),
            dict(stop_loss=1),
        ]
        for changes in variants:
            fields = {**order.__dict__, **changes}
            assert engine.order_commitment(OrderPayload(**fields), 3) != base, changes

    def test_account_and_order_domains_separate(self, engine):
        """Test that the two commitment kinds never share a preimage encoding."""
        scheme = HashCommitmentScheme()
        key = FieldElement(1)
        nonce = FieldElement(2)
        assert scheme.account_commitment(key, nonce) != scheme.order_commitment(key.to_bytes(), nonce)


class TestPluggableScheme:
    """Tests for scheme injection."""

    def test_custom_scheme(self, order):
        """Test that the engine delegates to an injected scheme."""

        class ConstantScheme(CommitmentScheme):
            name = "constant"

            def account_commitment(self, secret_key, nonce):
                return FieldElement(42)

            def order_commitment(self, encoded_order, nonce):
                return FieldElement(len(encoded_order))

        engine = CommitmentEngine(ConstantScheme())
        assert engine.account_commitment(1, 2) == 42
        assert engine.order_commitment(order, 1) == 151

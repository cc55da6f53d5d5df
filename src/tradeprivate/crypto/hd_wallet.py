"""Hierarchical deterministic trading keys (BIP-32/39/44 style).

Derivation:
    seed        = PBKDF2-HMAC-SHA512(mnemonic, "mnemonic" + passphrase, 2048)
    I           = HMAC-SHA512(key="ed25519 seed", data=seed)
    master      = (IL mod p, chain code IR)
    child (h)   = HMAC-SHA512(chain, 0x00 || k_par || ser32(i + 2^31))
    child (n)   = HMAC-SHA512(chain, serP(K_par) || ser32(i))
    k_child     = (k_par + IL) mod p

Keys live in the BN254 scalar field so they can feed commitments and
nullifiers directly; public keys and addresses are secp256k1/Ethereum.
Accounts follow m/44'/60'/account'/0/0 and are cached per index.

Example Usage:
    >>> wallet = HDWallet()
    >>> phrase = wallet.generate()
    >>> account = wallet.derive_account(0)
    >>> restored = HDWallet()
    >>> restored.restore(phrase)
    >>> restored.derive_account(0).address == account.address
    True
"""

import enum
import logging
import threading
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, List, Optional, Tuple

from tradeprivate.constants import (
    BIP44_PURPOSE,
    ETHEREUM_COIN_TYPE,
    HARDENED_OFFSET,
    HD_MASTER_KEY_SALT,
)
from tradeprivate.crypto import bip39
from tradeprivate.crypto.field import FieldElement
from tradeprivate.crypto.secp256k1 import address_from_public_key, public_key_from_private
from tradeprivate.exceptions import (
    InvalidStateError,
    KeyDerivationError,
    ValidationError,
)
from tradeprivate.utils.hash import hash160, hmac_sha512, sha256

logger = logging.getLogger(__name__)


class WalletState(str, enum.Enum):
    """Lifecycle of an HD wallet."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    ACCOUNT_READY = "account_ready"


@dataclass(frozen=True)
class HDNode:
    """A node in the key tree."""

    private_key: FieldElement
    chain_code: bytes
    depth: int = 0
    parent_fingerprint: bytes = b"\x00\x00\x00\x00"
    child_number: int = 0
    path: str = "m"

    @cached_property
    def public_key(self) -> bytes:
        """33-byte compressed secp256k1 public key."""
        return public_key_from_private(self.private_key)

    @cached_property
    def fingerprint(self) -> bytes:
        return hash160(self.public_key)[:4]

    @property
    def is_hardened(self) -> bool:
        return self.child_number >= HARDENED_OFFSET

    def __repr__(self) -> str:
        return f"HDNode(path={self.path!r}, depth={self.depth})"


@dataclass
class Account:
    """A BIP-44 account: key at m/44'/60'/index'/0/0 plus its addresses."""

    index: int
    private_key: FieldElement
    public_key: bytes
    derivation_path: str
    addresses: List[str] = field(default_factory=list)

    @property
    def address(self) -> str:
        return self.addresses[0]

    def __repr__(self) -> str:
        return f"Account(index={self.index}, address={self.address})"


@dataclass(frozen=True)
class TradingKeys:
    """Key material handed to the commitment and nullifier engines."""

    private_key: FieldElement
    public_key: bytes
    address: str
    derivation_path: str


def parse_path(path: str) -> List[Tuple[int, bool]]:
    """
    Parse a derivation path like "m/44'/60'/0'/0/0".

    Returns:
        List of (index, hardened) pairs

    Raises:
        ValidationError: If the path is malformed
    """
    parts = path.strip().split("/")
    if not parts or parts[0] != "m":
        raise ValidationError(f"Derivation path must start with 'm': {path!r}")

    segments = []
    for part in parts[1:]:
        hardened = part.endswith("'") or part.endswith("h")
        digits = part[:-1] if hardened else part
        if not digits.isdigit():
            raise ValidationError(f"Invalid path segment {part!r} in {path!r}")
        index = int(digits)
        if index >= HARDENED_OFFSET:
            raise ValidationError(f"Path index out of range: {index}")
        segments.append((index, hardened))
    return segments


class HDWallet:
    """
    Deterministic key hierarchy for one seed.

    State machine: UNINITIALIZED -> (generate | restore | from_seed) ->
    INITIALIZED -> derive_account(i) -> ACCOUNT_READY.
    """

    def __init__(self):
        self.state = WalletState.UNINITIALIZED
        self._seed: Optional[bytes] = None
        self._master: Optional[HDNode] = None
        self._coin_node: Optional[HDNode] = None
        self._accounts: Dict[int, Account] = {}
        self._lock = threading.Lock()

    # Initialization

    def generate(self, entropy_bits: int = 256, passphrase: str = "") -> str:
        """
        Create a new wallet from fresh entropy.

        Args:
            entropy_bits: 128, 160, 192, 224 or 256
            passphrase: Optional BIP-39 passphrase

        Returns:
            str: The mnemonic. It is not kept by the wallet; the caller must back it up.
        """
        mnemonic = bip39.entropy_to_mnemonic(bip39.generate_entropy(entropy_bits))
        self._initialize(bip39.mnemonic_to_seed(mnemonic, passphrase))
        logger.info("Generated new HD wallet (%d-bit entropy)", entropy_bits)
        return mnemonic

    def restore(self, mnemonic: str, passphrase: str = "") -> None:
        """
        Restore from an existing mnemonic.

        Raises:
            InvalidMnemonicError: If the phrase fails validation
        """
        self._initialize(bip39.mnemonic_to_seed(mnemonic, passphrase))
        logger.info("Restored HD wallet from mnemonic")

    @classmethod
    def from_seed(cls, seed: bytes) -> "HDWallet":
        """Build a wallet directly from a 64-byte seed (e.g. after decrypting storage)."""
        wallet = cls()
        wallet._initialize(seed)
        return wallet

    def _initialize(self, seed: bytes) -> None:
        if not isinstance(seed, (bytes, bytearray)) or len(seed) < 16:
            raise ValidationError("Seed must be at least 16 bytes")
        master = self.derive_master_key(bytes(seed))
        with self._lock:
            self._seed = bytes(seed)
            self._master = master
            self._coin_node = None
            self._accounts = {}
            self.state = WalletState.INITIALIZED

    def clear(self) -> None:
        """Drop all key material and return to UNINITIALIZED."""
        with self._lock:
            self._seed = None
            self._master = None
            self._coin_node = None
            self._accounts = {}
            self.state = WalletState.UNINITIALIZED

    # Derivation primitives

    @staticmethod
    def derive_master_key(seed: bytes) -> HDNode:
        """Master node from HMAC-SHA512(key="ed25519 seed", seed)."""
        digest = hmac_sha512(HD_MASTER_KEY_SALT, seed)
        private_key = FieldElement.from_bytes(digest[:32])
        if private_key.is_zero():
            raise KeyDerivationError("Master key is zero")
        return HDNode(private_key=private_key, chain_code=digest[32:])

    @staticmethod
    def derive_child(parent: HDNode, index: int, hardened: bool = False) -> HDNode:
        """
        Derive the child at ``index`` below ``parent``.

        Args:
            parent: Parent node
            index: Child index, 0 <= index < 2^31
            hardened: Use hardened derivation (index + 2^31)

        Raises:
            ValidationError: If the index is out of range
            KeyDerivationError: If the child key is zero
        """
        if not isinstance(index, int) or not 0 <= index < HARDENED_OFFSET:
            raise ValidationError(f"Child index out of range: {index}")

        child_number = index + HARDENED_OFFSET if hardened else index
        suffix = "'" if hardened else ""
        if hardened:
            data = b"\x00" + parent.private_key.to_bytes() + child_number.to_bytes(4, "big")
        else:
            data = parent.public_key + child_number.to_bytes(4, "big")

        digest = hmac_sha512(parent.chain_code, data)
        child_key = parent.private_key + FieldElement.from_bytes(digest[:32])
        if child_key.is_zero():
            raise KeyDerivationError(f"Derived zero key at index {index}")

        return HDNode(
            private_key=child_key,
            chain_code=digest[32:],
            depth=parent.depth + 1,
            parent_fingerprint=parent.fingerprint,
            child_number=child_number,
            path=f"{parent.path}/{index}{suffix}",
        )

    def derive_path(self, path: str) -> HDNode:
        """Derive the node at an absolute path from the master key."""
        node = self._require_master()
        for index, hardened in parse_path(path):
            node = self.derive_child(node, index, hardened)
        return node

    # Accounts

    def _require_master(self) -> HDNode:
        if self._master is None:
            raise InvalidStateError("Wallet is not initialized")
        return self._master

    def _coin(self) -> HDNode:
        master = self._require_master()
        with self._lock:
            if self._coin_node is None:
                purpose = self.derive_child(master, BIP44_PURPOSE, hardened=True)
                self._coin_node = self.derive_child(purpose, ETHEREUM_COIN_TYPE, hardened=True)
            return self._coin_node

    def _external_chain(self, account_index: int) -> HDNode:
        account_node = self.derive_child(self._coin(), account_index, hardened=True)
        return self.derive_child(account_node, 0)

    def derive_account(self, index: int) -> Account:
        """
        Derive (or return the cached) account at m/44'/60'/index'/0/0.

        Args:
            index: Account index, 0 <= index < 2^31
        """
        with self._lock:
            cached = self._accounts.get(index)
        if cached is not None:
            return cached

        node = self.derive_child(self._external_chain(index), 0)
        account = Account(
            index=index,
            private_key=node.private_key,
            public_key=node.public_key,
            derivation_path=node.path,
            addresses=[address_from_public_key(node.public_key)],
        )
        with self._lock:
            account = self._accounts.setdefault(index, account)
            self.state = WalletState.ACCOUNT_READY
        return account

    def derive_addresses(self, account_index: int, count: int, start: int = 0) -> List[str]:
        """Addresses m/44'/60'/account'/0/i for i in [start, start + count)."""
        if count < 0 or start < 0:
            raise ValidationError("count and start must be non-negative")
        chain = self._external_chain(account_index)
        return [
            address_from_public_key(self.derive_child(chain, i).public_key)
            for i in range(start, start + count)
        ]

    def get_trading_keys(self, account_index: int = 0) -> TradingKeys:
        account = self.derive_account(account_index)
        return TradingKeys(
            private_key=account.private_key,
            public_key=account.public_key,
            address=account.address,
            derivation_path=account.derivation_path,
        )

    @property
    def accounts(self) -> List[Account]:
        with self._lock:
            return [self._accounts[i] for i in sorted(self._accounts)]

    # Seed access

    @property
    def is_initialized(self) -> bool:
        return self._seed is not None

    @property
    def seed(self) -> bytes:
        if self._seed is None:
            raise InvalidStateError("Wallet is not initialized")
        return self._seed

    @property
    def seed_hash(self) -> str:
        """SHA-256 of the seed, safe to compare or log."""
        return sha256(self.seed).hex()

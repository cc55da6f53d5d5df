"""Password-based encryption of wallet secrets at rest.

PBKDF2-HMAC-SHA256 (100,000 iterations, 16-byte random salt) stretches the
password into an AES-256-GCM key; each record gets a fresh 12-byte IV. The
record type and version are bound as associated data, so a record cannot be
replayed as a different type. A wrong password fails tag verification and
raises AuthenticationError; it never yields a different-looking key.
"""

import json
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from tradeprivate.constants import (
    AES_GCM_IV_SIZE,
    KDF_ITERATIONS,
    KDF_SALT_SIZE,
    SEED_RECORD_TYPE,
    SEED_RECORD_VERSION,
)
from tradeprivate.exceptions import AuthenticationError, EncryptionError, ValidationError
from tradeprivate.utils.encoding import hex_to_bytes

LEGACY_KEY_RECORD_TYPE = "legacy_key"


@dataclass(frozen=True)
class EncryptedSeedRecord:
    """Persisted form of an encrypted secret."""

    encrypted_seed: bytes
    iv: bytes
    salt: bytes
    version: int = SEED_RECORD_VERSION
    record_type: str = SEED_RECORD_TYPE
    iterations: int = KDF_ITERATIONS

    def to_dict(self) -> dict:
        return {
            "encryptedSeed": self.encrypted_seed.hex(),
            "iv": self.iv.hex(),
            "salt": self.salt.hex(),
            "version": self.version,
            "type": self.record_type,
            "iterations": self.iterations,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedSeedRecord":
        try:
            record = cls(
                encrypted_seed=hex_to_bytes(data["encryptedSeed"]),
                iv=hex_to_bytes(data["iv"]),
                salt=hex_to_bytes(data["salt"]),
                version=int(data["version"]),
                record_type=data["type"],
                iterations=int(data.get("iterations", KDF_ITERATIONS)),
            )
        except KeyError as e:
            raise ValidationError(f"Encrypted record missing field {e}") from e
        if len(record.iv) != AES_GCM_IV_SIZE or len(record.salt) != KDF_SALT_SIZE:
            raise ValidationError("Encrypted record has malformed iv or salt")
        return record


class SeedVault:
    """Encrypts and decrypts secrets under a user password."""

    def __init__(self, iterations: int = KDF_ITERATIONS):
        self.iterations = iterations

    @staticmethod
    def _aad(record_type: str, version: int) -> bytes:
        return f"{record_type}:v{version}".encode("ascii")

    @staticmethod
    def derive_key(password: str, salt: bytes, iterations: int) -> bytes:
        """PBKDF2-HMAC-SHA256 -> 32-byte AES key."""
        if not password:
            raise ValidationError("Password must not be empty")
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
        return kdf.derive(password.encode("utf-8"))

    def encrypt(
        self,
        secret: bytes,
        password: str,
        record_type: str = SEED_RECORD_TYPE,
        salt: Optional[bytes] = None,
    ) -> EncryptedSeedRecord:
        """
        Encrypt a secret.

        Args:
            secret: Seed or key bytes
            password: User password
            record_type: Record type bound into the AAD
            salt: Optional salt (random by default)

        Returns:
            EncryptedSeedRecord: ciphertext + tag, IV, salt, version, type
        """
        salt = salt or os.urandom(KDF_SALT_SIZE)
        iv = os.urandom(AES_GCM_IV_SIZE)
        key = self.derive_key(password, salt, self.iterations)
        try:
            ciphertext = AESGCM(key).encrypt(iv, bytes(secret), self._aad(record_type, SEED_RECORD_VERSION))
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Seed encryption failed: {e}") from e
        return EncryptedSeedRecord(
            encrypted_seed=ciphertext,
            iv=iv,
            salt=salt,
            version=SEED_RECORD_VERSION,
            record_type=record_type,
            iterations=self.iterations,
        )

    def decrypt(self, record: EncryptedSeedRecord, password: str) -> bytes:
        """
        Decrypt a record.

        Raises:
            AuthenticationError: If the password is wrong or the record was tampered with
        """
        key = self.derive_key(password, record.salt, record.iterations)
        try:
            return AESGCM(key).decrypt(
                record.iv, record.encrypted_seed, self._aad(record.record_type, record.version)
            )
        except InvalidTag as e:
            raise AuthenticationError("Invalid password or corrupted wallet record") from e

    def encrypt_seed(self, seed: bytes, password: str) -> EncryptedSeedRecord:
        return self.encrypt(seed, password, SEED_RECORD_TYPE)

    def decrypt_seed(self, record: EncryptedSeedRecord, password: str) -> bytes:
        if record.record_type != SEED_RECORD_TYPE:
            raise ValidationError(f"Expected {SEED_RECORD_TYPE} record, got {record.record_type}")
        return self.decrypt(record, password)


class RecordCipher:
    """
    Seals trading-state rows (pending commits, accounts, orders) at rest.

    The key is derived from the wallet seed with HKDF-SHA256, so the rows are
    readable only while the wallet is unlocked. Blobs are 12-byte IV followed
    by AES-GCM ciphertext; the table name is bound as associated data.
    """

    INFO = b"tradeprivate.storage.v1"

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValidationError("Storage key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_seed(cls, seed: bytes) -> "RecordCipher":
        hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=cls.INFO)
        return cls(hkdf.derive(seed))

    def seal(self, data: dict, context: str) -> bytes:
        iv = os.urandom(AES_GCM_IV_SIZE)
        plaintext = json.dumps(data, sort_keys=True).encode("utf-8")
        return iv + self._aead.encrypt(iv, plaintext, context.encode("utf-8"))

    def open(self, blob: bytes, context: str) -> dict:
        """
        Raises:
            AuthenticationError: If the blob was sealed under another key or context
        """
        iv, ciphertext = blob[:AES_GCM_IV_SIZE], blob[AES_GCM_IV_SIZE:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext, context.encode("utf-8"))
        except InvalidTag as e:
            raise AuthenticationError(f"Cannot open sealed {context} record") from e
        return json.loads(plaintext.decode("utf-8"))

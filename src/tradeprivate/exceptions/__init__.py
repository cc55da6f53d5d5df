"""Custom exceptions for the TradePrivate client engine."""

from typing import Optional


class TradePrivateError(Exception):
    """Base exception for all TradePrivate errors."""
    pass


# Validation Errors
class ValidationError(TradePrivateError):
    """Raised when input is malformed. Always raised before crypto or network work."""
    pass


class InvalidAddressError(ValidationError):
    """Raised when an address is not exactly 20 bytes."""
    pass


class InvalidMnemonicError(ValidationError):
    """Raised when a mnemonic fails word count, wordlist or checksum validation."""
    pass


class InvalidOrderError(ValidationError):
    """Raised when order parameters are out of range."""
    pass


class DuplicateNullifierError(ValidationError):
    """Raised when a batch contains the same nullifier twice."""
    pass


class CommitterMismatchError(ValidationError):
    """Raised when a reveal is attempted from an address other than the committer."""
    pass


class InvalidStateError(ValidationError):
    """Raised when an operation is not allowed in the current state."""
    pass


# Cryptography Errors
class CryptoError(TradePrivateError):
    """Base exception for cryptographic errors."""
    pass


class InvalidFieldElementError(CryptoError):
    """Raised when a serialized value exceeds the field size."""
    pass


class DivisionByZeroError(CryptoError):
    """Raised when inverting the zero element."""
    pass


class KeyDerivationError(CryptoError):
    """Raised when HD key derivation fails."""
    pass


class EncryptionError(CryptoError):
    """Raised when encryption fails."""
    pass


class DecryptionError(CryptoError):
    """Raised when decryption or tag verification fails."""
    pass


class AuthenticationError(CryptoError):
    """Raised when a password does not unlock encrypted key material."""
    pass


# Protocol Errors
class ReplayError(TradePrivateError):
    """Raised when a nullifier is already used or already in flight."""
    pass


class TimingError(TradePrivateError):
    """Raised when a reveal is attempted before the commit delay has elapsed."""

    def __init__(self, message: str, blocks_remaining: int = 0):
        super().__init__(message)
        self.blocks_remaining = blocks_remaining


class CounterpartyError(TradePrivateError):
    """Raised when no eligible keeper can be found."""
    pass


class ContractError(TradePrivateError):
    """Raised when the ledger reverts with a reason not mapped elsewhere."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


# Infrastructure Errors
class StorageError(TradePrivateError):
    """Raised when encrypted storage fails."""
    pass


class NetworkError(TradePrivateError):
    """Raised on transport failures. Retryable."""
    pass


__all__ = [
    "TradePrivateError",
    "ValidationError",
    "InvalidAddressError",
    "InvalidMnemonicError",
    "InvalidOrderError",
    "DuplicateNullifierError",
    "CommitterMismatchError",
    "InvalidStateError",
    "CryptoError",
    "InvalidFieldElementError",
    "DivisionByZeroError",
    "KeyDerivationError",
    "EncryptionError",
    "DecryptionError",
    "AuthenticationError",
    "ReplayError",
    "TimingError",
    "CounterpartyError",
    "ContractError",
    "StorageError",
    "NetworkError",
]

"""BIP-39 mnemonic encoding over the canonical 2048-word English list.

Entropy of ENT bits (128..256, multiple of 32) gets a checksum of ENT/32
bits taken from the front of SHA-256(entropy); the concatenation is split
into 11-bit word indices. Restoring checks word count, list membership and
the checksum, in that order, and never falls back to a best-effort seed.
"""

import secrets
import unicodedata
from typing import List

from mnemonic import Mnemonic

from tradeprivate.constants import VALID_ENTROPY_BITS, VALID_MNEMONIC_LENGTHS
from tradeprivate.exceptions import InvalidMnemonicError, ValidationError

_MNEMO = Mnemonic("english")
WORDLIST: List[str] = list(_MNEMO.wordlist)
_WORDS = frozenset(WORDLIST)


def generate_entropy(bits: int = 256) -> bytes:
    """Draw CSPRNG entropy of an allowed BIP-39 size."""
    if bits not in VALID_ENTROPY_BITS:
        raise ValidationError(f"Entropy must be one of {VALID_ENTROPY_BITS} bits, got {bits}")
    return secrets.token_bytes(bits // 8)


def normalize_mnemonic(mnemonic: str) -> List[str]:
    """NFKD-normalize, lowercase and split a phrase into words."""
    if not isinstance(mnemonic, str):
        raise InvalidMnemonicError("Mnemonic must be a string")
    return unicodedata.normalize("NFKD", mnemonic).lower().split()


def entropy_to_mnemonic(entropy: bytes) -> str:
    """
    Encode entropy as a checksummed mnemonic.

    Args:
        entropy: 16, 20, 24, 28 or 32 bytes

    Returns:
        str: Space-separated mnemonic (12..24 words)
    """
    if len(entropy) * 8 not in VALID_ENTROPY_BITS:
        raise ValidationError(f"Invalid entropy length: {len(entropy)} bytes")
    return _MNEMO.to_mnemonic(entropy)


def mnemonic_to_entropy(mnemonic: str) -> bytes:
    """
    Decode and validate a mnemonic.

    Raises:
        InvalidMnemonicError: On a bad word count, unknown word or checksum mismatch
    """
    words = normalize_mnemonic(mnemonic)
    if len(words) not in VALID_MNEMONIC_LENGTHS:
        raise InvalidMnemonicError(
            f"Mnemonic must have {', '.join(map(str, VALID_MNEMONIC_LENGTHS))} words, got {len(words)}"
        )

    unknown = [w for w in words if w not in _WORDS]
    if unknown:
        raise InvalidMnemonicError(f"{len(unknown)} word(s) not in the BIP-39 wordlist")

    try:
        return bytes(_MNEMO.to_entropy(words))
    except (ValueError, LookupError) as e:
        raise InvalidMnemonicError(f"Mnemonic checksum mismatch: {e}") from e


def validate_mnemonic(mnemonic: str) -> bool:
    """Return True if the mnemonic decodes with a valid checksum."""
    try:
        mnemonic_to_entropy(mnemonic)
        return True
    except InvalidMnemonicError:
        return False


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    PBKDF2-HMAC-SHA512(mnemonic, "mnemonic" + passphrase, 2048) -> 64-byte seed.

    The mnemonic is validated first.
    """
    mnemonic_to_entropy(mnemonic)
    return Mnemonic.to_seed(" ".join(normalize_mnemonic(mnemonic)), passphrase)

"""Arithmetic over the BN254 scalar field.

Every commitment, nullifier and trading key is an element of

    p = 21888242871839275222246405745257275088548364400416034343698204186575808495617

so values stay directly usable as circuit inputs once real proofs replace
the mock prover. ``FieldElement`` is immutable and every operation returns a
new, reduced instance.

Example Usage:
    >>> a = FieldElement(5)
    >>> b = FieldElement.from_hex("0x" + "00" * 31 + "03")
    >>> (a * b.inv() * b) == a
    True
"""

import secrets
from typing import Union

from tradeprivate.constants import FIELD_MODULUS, FIELD_BITS, FIELD_BYTES
from tradeprivate.exceptions import (
    DivisionByZeroError,
    InvalidFieldElementError,
    ValidationError,
)

FieldLike = Union["FieldElement", int, bytes, str]


class FieldElement:
    """Element of the BN254 scalar field, 0 <= value < p."""

    __slots__ = ("_value",)

    MODULUS = FIELD_MODULUS

    def __init__(self, value: FieldLike = 0):
        """
        Construct and reduce a field element.

        Args:
            value: int, big-endian bytes, hex string ('0x...') or decimal string,
                or another FieldElement

        Raises:
            ValidationError: If the value cannot be parsed
        """
        object.__setattr__(self, "_value", self._parse(value) % FIELD_MODULUS)

    @staticmethod
    def _parse(value: FieldLike) -> int:
        if isinstance(value, FieldElement):
            return value._value
        if isinstance(value, bool):
            raise ValidationError("Boolean is not a field element")
        if isinstance(value, int):
            return value
        if isinstance(value, (bytes, bytearray)):
            return int.from_bytes(value, "big")
        if isinstance(value, str):
            text = value.strip()
            try:
                if text[:2] in ("0x", "0X"):
                    return int(text[2:], 16) if len(text) > 2 else 0
                return int(text, 10)
            except ValueError as e:
                raise ValidationError(f"Cannot parse field element from {value!r}") from e
        raise ValidationError(f"Unsupported field element type: {type(value).__name__}")

    def __setattr__(self, name, value):
        raise AttributeError("FieldElement is immutable")

    # Constructors

    @classmethod
    def from_hex(cls, hex_str: str) -> "FieldElement":
        """Parse a big-endian hex string (with or without '0x')."""
        if not isinstance(hex_str, str):
            raise ValidationError("Hex value must be a string")
        if hex_str[:2] not in ("0x", "0X"):
            hex_str = "0x" + hex_str
        return cls(hex_str)

    @classmethod
    def from_bytes(cls, data: bytes) -> "FieldElement":
        """Parse big-endian bytes, reducing into the field."""
        return cls(bytes(data))

    @classmethod
    def from_canonical(cls, value: FieldLike) -> "FieldElement":
        """
        Strict parser for wire values.

        Unlike the constructor, out-of-range inputs are rejected rather than
        reduced, since a silently reduced value would no longer match what
        the ledger stored.

        Raises:
            InvalidFieldElementError: If the value is negative or >= p
        """
        raw = cls._parse(value)
        if raw < 0 or raw >= FIELD_MODULUS:
            raise InvalidFieldElementError("Value exceeds field size")
        return cls(raw)

    @classmethod
    def zero(cls) -> "FieldElement":
        return cls(0)

    @classmethod
    def one(cls) -> "FieldElement":
        return cls(1)

    @classmethod
    def random(cls) -> "FieldElement":
        """
        Uniformly random element via rejection sampling.

        Candidates are 254-bit integers from the OS CSPRNG; since
        2^253 < p < 2^254, fewer than half of the candidates are rejected.
        """
        while True:
            candidate = secrets.randbits(FIELD_BITS)
            if candidate < FIELD_MODULUS:
                return cls(candidate)

    # Arithmetic

    @property
    def value(self) -> int:
        return self._value

    def add(self, other: FieldLike) -> "FieldElement":
        return FieldElement(self._value + FieldElement(other)._value)

    def sub(self, other: FieldLike) -> "FieldElement":
        return FieldElement(self._value - FieldElement(other)._value)

    def mul(self, other: FieldLike) -> "FieldElement":
        return FieldElement(self._value * FieldElement(other)._value)

    def neg(self) -> "FieldElement":
        return FieldElement(-self._value)

    def pow(self, exponent: int) -> "FieldElement":
        """
        Raise to an integer power by square-and-multiply.

        Negative exponents invert first.
        """
        if not isinstance(exponent, int):
            raise ValidationError("Exponent must be an int")
        base = self
        if exponent < 0:
            base = self.inv()
            exponent = -exponent

        result = 1
        acc = base._value
        while exponent:
            if exponent & 1:
                result = (result * acc) % FIELD_MODULUS
            acc = (acc * acc) % FIELD_MODULUS
            exponent >>= 1
        return FieldElement(result)

    def inv(self) -> "FieldElement":
        """
        Multiplicative inverse via Fermat's little theorem, x^(p-2).

        Raises:
            DivisionByZeroError: If called on zero
        """
        if self._value == 0:
            raise DivisionByZeroError("Cannot invert zero")
        return self.pow(FIELD_MODULUS - 2)

    def div(self, other: FieldLike) -> "FieldElement":
        return self.mul(FieldElement(other).inv())

    def is_zero(self) -> bool:
        return self._value == 0

    # Serialization

    def to_int(self) -> int:
        return self._value

    def to_bytes(self) -> bytes:
        """32-byte big-endian encoding."""
        return self._value.to_bytes(FIELD_BYTES, "big")

    def to_hex(self) -> str:
        """'0x' followed by 64 lowercase hex characters."""
        return "0x" + self.to_bytes().hex()

    # Python protocol

    def __add__(self, other):
        return self.add(other)

    __radd__ = __add__

    def __sub__(self, other):
        return self.sub(other)

    def __rsub__(self, other):
        return FieldElement(other).sub(self)

    def __mul__(self, other):
        return self.mul(other)

    __rmul__ = __mul__

    def __truediv__(self, other):
        return self.div(other)

    def __neg__(self):
        return self.neg()

    def __pow__(self, exponent):
        return self.pow(exponent)

    def __eq__(self, other) -> bool:
        if isinstance(other, FieldElement):
            return self._value == other._value
        if isinstance(other, int) and not isinstance(other, bool):
            return self._value == other % FIELD_MODULUS
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("FieldElement", self._value))

    def __int__(self) -> int:
        return self._value

    def __bool__(self) -> bool:
        return self._value != 0

    def __repr__(self) -> str:
        return f"FieldElement({self.to_hex()})"

    def __reduce__(self):
        return (FieldElement, (self._value,))

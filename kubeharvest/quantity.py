"""Resource quantities in the Kubernetes notation, and attribute name camel-casing."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from fractions import Fraction

_BINARY_SUFFIXES = {
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}

_DECIMAL_SUFFIXES = {
    "n": Fraction(1, 10**9),
    "u": Fraction(1, 10**6),
    "m": Fraction(1, 10**3),
    "": Fraction(1),
    "k": Fraction(10**3),
    "M": Fraction(10**6),
    "G": Fraction(10**9),
    "T": Fraction(10**12),
    "P": Fraction(10**15),
    "E": Fraction(10**18),
}

_QUANTITY_PATTERN = re.compile(
    r"(?P<number>[+-]?(?:\d+(?:\.\d*)?|\.\d+))"
    r"(?P<suffix>[eE][+-]?\d+|[KMGTPE]i|[numkMGTPE])?"
)

_WORD_PATTERN = re.compile(r"[0-9]+|[A-Z]+[a-z]*|[a-z]+")


def _round_away_from_zero(amount: Fraction) -> int:
    rounded = math.ceil(abs(amount))
    return rounded if amount >= 0 else -rounded


@dataclass(frozen=True)
class Quantity:
    """An exact resource amount such as ``1985m`` CPU or ``2Gi`` of memory."""

    amount: Fraction

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", Fraction(self.amount))

    @classmethod
    def parse(cls, text: str) -> Quantity:
        """Parse a quantity string such as ``100m``, ``1.5Gi`` or ``1e3``."""
        match = _QUANTITY_PATTERN.fullmatch(text)
        if match is None:
            raise ValueError(
                f"quantities must match the regular expression "
                f"'{_QUANTITY_PATTERN.pattern}': {text!r}"
            )
        number = Fraction(match["number"])
        suffix = match["suffix"] or ""
        if suffix in _BINARY_SUFFIXES:
            factor = Fraction(_BINARY_SUFFIXES[suffix])
        elif suffix in _DECIMAL_SUFFIXES:
            factor = _DECIMAL_SUFFIXES[suffix]
        else:
            factor = Fraction(10) ** int(suffix[1:])
        return cls(number * factor)

    def value(self) -> int:
        """The amount as an integer, rounded away from zero."""
        return _round_away_from_zero(self.amount)

    def milli_value(self) -> int:
        """The amount in thousandths, rounded away from zero."""
        return _round_away_from_zero(self.amount * 1000)

    def as_approximate_float(self) -> float:
        """The amount as the nearest float."""
        return float(self.amount)


def camelcase(text: str) -> str:
    """Join the ASCII words of ``text`` into a lower camel-case identifier."""
    words = []
    for word in _WORD_PATTERN.findall(text):
        if word.isdigit():
            words.append(word)
        else:
            words.append(word[0].upper() + word[1:].lower())
    joined = "".join(words)
    return joined[:1].lower() + joined[1:]
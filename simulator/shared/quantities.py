"""
simulator/shared/quantities.py
──────────────────────────────
Kubernetes resource quantity parsing.

Cluster records arrive either with plain numbers (already normalised) or with
the string quantities the Kubernetes API uses:

    CPU     "2", "0.5", "500m"          → cores (float)
    Memory  "1Gi", "512Mi", "1G", "100" → bytes (float)

Every model field that holds a quantity runs its input through one of the
two parsers below, so the rest of the system only ever compares floats.
That is also what makes "1000m" and "1" semantically equal when two pod specs
are compared by the equivalence cache.
"""

from __future__ import annotations

import math
from typing import Dict, Union

Quantity = Union[int, float, str]

# Binary (power-of-two) and decimal (power-of-ten) suffixes, longest first so
# "Ki" is tried before "k" would ever be considered.
_BINARY_SUFFIXES: Dict[str, float] = {
    "Ki": 1024.0,
    "Mi": 1024.0 ** 2,
    "Gi": 1024.0 ** 3,
    "Ti": 1024.0 ** 4,
    "Pi": 1024.0 ** 5,
    "Ei": 1024.0 ** 6,
}

_DECIMAL_SUFFIXES: Dict[str, float] = {
    "n": 1e-9,
    "u": 1e-6,
    "m": 1e-3,
    "k": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
}


class QuantityParseError(ValueError):
    """
    Raised when a string cannot be interpreted as a Kubernetes quantity.

    Attributes:
        raw: The offending input, kept verbatim for the error message.
    """

    def __init__(self, raw: str) -> None:
        self.raw = raw
        super().__init__(f"Invalid resource quantity: {raw!r}")


def parse_quantity(value: Quantity) -> float:
    """
    Convert a Kubernetes quantity into a plain float in base units.

    Args:
        value: int, float, or quantity string ("250m", "4Gi", "1e3").

    Returns:
        The value in base units (cores for CPU, bytes for memory).

    Raises:
        QuantityParseError: for empty strings, unknown suffixes, or
                            negative values.
    """
    if isinstance(value, bool):
        raise QuantityParseError(str(value))
    if isinstance(value, (int, float)):
        if value < 0:
            raise QuantityParseError(str(value))
        return float(value)

    raw = value.strip()
    if not raw:
        raise QuantityParseError(value)

    number, multiplier = raw, 1.0
    for suffix, factor in _BINARY_SUFFIXES.items():
        if raw.endswith(suffix):
            number, multiplier = raw[: -len(suffix)], factor
            break
    else:
        suffix = raw[-1]
        # "1e3" is a valid exponent form, never an "E" (exa) suffix on "1e".
        if suffix in _DECIMAL_SUFFIXES and not raw[:-1].lower().endswith("e"):
            number, multiplier = raw[:-1], _DECIMAL_SUFFIXES[suffix]

    try:
        parsed = float(number) * multiplier
    except ValueError:
        raise QuantityParseError(value) from None

    if parsed < 0 or not math.isfinite(parsed):
        raise QuantityParseError(value)
    return parsed


def parse_cpu(value: Quantity) -> float:
    """CPU quantity → cores. "500m" → 0.5, "2" → 2.0."""
    return parse_quantity(value)


def parse_memory(value: Quantity) -> float:
    """Memory quantity → bytes. "1Gi" → 1073741824.0, "1G" → 1e9."""
    return parse_quantity(value)

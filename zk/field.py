"""
BN254 scalar field (Fr) helpers.

The ledger encodes every account attribute, tree node and signature component
as an element of the BN254 scalar field (the alt_bn128 curve order), the field
the circuits are written over.

- `Fr` is a py_ecc field element class with the curve order as modulus; it is
  used for curve arithmetic (Baby Jubjub) where inversions are needed.
- Plain-int helpers (`ensure_field`, `to_decimal`, `from_decimal`) are used at
  the encoding boundary, where values must be *rejected* rather than reduced.

Values are never reduced silently at the boundary: callers validate with
`ensure_field` (raising `FieldOverflow`) before hashing or encoding.
"""

from __future__ import annotations

from typing import Union

from py_ecc import bn128
from py_ecc.fields import bn128_FQ as FQ

from core.errors import FieldOverflow

FIELD_MODULUS: int = bn128.curve_order


class Fr(FQ):
    field_modulus = bn128.curve_order


def in_field(x: int) -> bool:
    return 0 <= int(x) < FIELD_MODULUS


def ensure_field(name: str, x: int) -> int:
    """Return `x` unchanged if it is a canonical field element, else raise FieldOverflow."""
    if isinstance(x, bool) or not isinstance(x, int):
        raise TypeError(f"{name} must be int (got {type(x).__name__})")
    if not in_field(x):
        raise FieldOverflow(name, x)
    return x


def to_decimal(x: Union[int, FQ]) -> str:
    """Base-10 string of a field element (the witness JSON number format)."""
    return str(int(x))


def from_decimal(s: Union[str, int]) -> int:
    """Parse a decimal (or 0x-hex) string into a canonical field element."""
    if isinstance(s, int):
        v = s
    else:
        t = s.strip().lower()
        v = int(t, 16) if t.startswith("0x") else int(t, 10)
    return ensure_field("value", v)


__all__ = [
    "FIELD_MODULUS",
    "Fr",
    "in_field",
    "ensure_field",
    "to_decimal",
    "from_decimal",
]

from __future__ import annotations

"""
Canonical CBOR codec (deterministic)
------------------------------------

Thin wrapper over cbor2 in canonical mode (RFC 8949 §4.2 "Deterministic
Encoding"): map keys sorted by their encoded bytes, shortest integer forms,
definite lengths. Big integers (field elements) are encoded as bignum tags
2/3 by cbor2.

Record maps are keyed by text field names so that stored blobs stay
self-describing; unknown keys are ignored by readers.

Not supported (by design for ledger records):
- float/Decimal
- non-text map keys

Public API:
- dumps(obj) -> bytes
- loads(b: bytes) -> object
"""

from dataclasses import asdict, is_dataclass
from typing import Any

import cbor2

from ..errors import DeserializationError, SerializationError


def _normalize(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise SerializationError("map keys must be str", key_type=type(k).__name__)
            out[k] = _normalize(v)
        return out
    if isinstance(obj, (list, tuple)):
        return [_normalize(x) for x in obj]
    if isinstance(obj, float):
        raise SerializationError("floats are not allowed in canonical records")
    if isinstance(obj, bytearray):
        return bytes(obj)
    return obj


def dumps(obj: Any) -> bytes:
    """Encode `obj` to canonical CBOR bytes with deterministic map ordering."""
    try:
        return cbor2.dumps(_normalize(obj), canonical=True)
    except cbor2.CBOREncodeError as e:
        raise SerializationError("cbor encode failed", error=str(e)) from e


def loads(b: bytes) -> Any:
    """Decode CBOR bytes; malformed input raises DeserializationError."""
    try:
        return cbor2.loads(b)
    except cbor2.CBORDecodeError as e:
        raise DeserializationError("cbor decode failed", error=str(e)) from e


__all__ = ["dumps", "loads"]

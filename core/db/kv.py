from __future__ import annotations

"""
KV interface & key layout
=========================

This module defines a backend-agnostic Key–Value interface used by the
ledger, plus the canonical key layout for its logical buckets:

- LAST_INDEX (b"l")                    : last assigned account index
- ACCOUNTS   (b"a" + uvarint, 9 bytes) : account records by index
- TREE       (b"t:")                   : sparse Merkle tree nodes and root pointer

The account keys keep the historical fixed-width layout (one tag byte plus a
zero-padded unsigned varint) so existing databases stay readable. Tree keys use
the length-prefixed `Prefix` DSL.

Backends (sqlite) implement this interface and the batch semantics.
This file is *pure interface + helpers* and contains no I/O.

Example
-------
>>> from core.db.kv import TREE, account_key
>>> account_key(1)
b'a\\x01\\x00\\x00\\x00\\x00\\x00\\x00\\x00'
>>> TREE.key(b"n", b"\\x01").startswith(TREE.raw)
True

Batching
--------
`KV.batch()` returns a context manager. Use it to atomically put/delete:

>>> with kv.batch() as b:
...     b.put(LAST_INDEX_KEY, b"...")
...     b.put(account_key(1), b"...")

Reads issued on the same KV while a batch is open observe the batch's own
writes; components that accept `batch=` rely on this to join one transaction.

Typing
------
We expose Protocols (PEP 544) so backends can be duck-typed.
"""

from typing import (Iterator, Optional, Protocol, Tuple, Union,
                    runtime_checkable)

from core.utils.bytes import padded_uvarint, put_uvarint, read_uvarint

# ---------------------------------------------------------------------------
# Prefix helpers
# ---------------------------------------------------------------------------

NS_SEP = b":"  # namespace separator used only once after the leading ns byte


class Prefix:
    """
    Represents a logical namespace prefix (e.g., b"t:" for TREE).

    .raw gives the raw bytes prefix.
    .key(*parts) builds a composite key: prefix + ∑ (uvarlen | part_bytes).
    """

    __slots__ = ("_raw",)

    def __init__(self, ns: Union[bytes, bytearray, memoryview, str]) -> None:
        ns_b = ns.encode("ascii") if isinstance(ns, str) else bytes(ns)
        if len(ns_b) == 0:
            raise ValueError("namespace must be non-empty")
        self._raw = ns_b.rstrip(NS_SEP) + NS_SEP

    @property
    def raw(self) -> bytes:
        return self._raw

    def key(self, *parts: Union[bytes, bytearray, memoryview, str, int]) -> bytes:
        """Build a composite key under this prefix."""
        out = bytearray(self._raw)
        for p in parts:
            pb = _part_to_bytes(p)
            out.extend(put_uvarint(len(pb)))
            out.extend(pb)
        return bytes(out)


def _part_to_bytes(p: Union[bytes, bytearray, memoryview, str, int]) -> bytes:
    if isinstance(p, (bytes, bytearray, memoryview)):
        return bytes(p)
    if isinstance(p, str):
        return p.encode("utf-8")
    if isinstance(p, int):
        if p < 0:
            raise ValueError("negative ints not supported in key parts")
        # Field elements: fixed 32-byte big-endian so node keys are uniform.
        return p.to_bytes(32, "big")
    raise TypeError(f"unsupported key part type: {type(p)!r}")


# ---------------------------------------------------------------------------
# Ledger key layout
# ---------------------------------------------------------------------------

LAST_INDEX_KEY = b"l"
LAST_INDEX_WIDTH = 8

ACCOUNT_TAG = b"a"
ACCOUNT_KEY_WIDTH = 9

TREE = Prefix(b"t")  # smt nodes (by hash) and root pointer
TREE_ROOT_KEY = TREE.key(b"root")
TREE_DEPTH_KEY = TREE.key(b"depth")


def account_key(index: int) -> bytes:
    """b"a" + uvarint(index), zero-padded to 9 bytes."""
    if index < 0:
        raise ValueError("account index must be non-negative")
    return padded_uvarint_key(ACCOUNT_TAG, index, ACCOUNT_KEY_WIDTH)


def padded_uvarint_key(tag: bytes, n: int, width: int) -> bytes:
    return tag + padded_uvarint(n, width - len(tag))


def encode_counter(n: int) -> bytes:
    """Counter value: uvarint zero-padded to 8 bytes."""
    return padded_uvarint(n, LAST_INDEX_WIDTH)


def decode_counter(raw: bytes) -> int:
    value, _ = read_uvarint(raw)
    return value


def tree_node_key(node_hash: int) -> bytes:
    return TREE.key(b"n", node_hash)


# ---------------------------------------------------------------------------
# KV protocols & Batch
# ---------------------------------------------------------------------------


@runtime_checkable
class ReadOnlyKV(Protocol):
    """Minimal read-only KV surface."""

    def get(self, key: bytes) -> Optional[bytes]:
        """Fetch value or None if missing."""
        ...

    def has(self, key: bytes) -> bool:
        """Return True if key exists."""
        ...

    def iter_prefix(self, prefix: bytes) -> Iterator[Tuple[bytes, bytes]]:
        """
        Iterate over (key, value) pairs whose key begins with `prefix`,
        in lexicographic byte-order of keys.
        """
        ...

    def close(self) -> None:
        """Close resources."""
        ...


@runtime_checkable
class Batch(Protocol):
    """
    A write-batch context manager. Backend guarantees atomicity when exiting
    the context without exception. If an exception escapes, the batch is rolled back.
    """

    def put(self, key: bytes, value: bytes) -> None: ...
    def delete(self, key: bytes) -> None: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "Batch": ...
    def __exit__(self, exc_type, exc, tb) -> Optional[bool]: ...


@runtime_checkable
class KV(ReadOnlyKV, Protocol):
    """Full RW KV surface."""

    def put(self, key: bytes, value: bytes) -> None:
        """Persist (key,value). Overwrites if exists."""
        ...

    def delete(self, key: bytes) -> None:
        """Remove key if present (idempotent)."""
        ...

    def batch(self) -> Batch:
        """Return a new write batch."""
        ...


# ---------------------------------------------------------------------------
# Portable helpers built atop the interface
# ---------------------------------------------------------------------------


def get_or_raise(kv: ReadOnlyKV, key: bytes, err: Exception) -> bytes:
    v = kv.get(key)
    if v is None:
        raise err
    return v


__all__ = [
    # Protocols
    "ReadOnlyKV",
    "KV",
    "Batch",
    # Key layout
    "Prefix",
    "TREE",
    "TREE_ROOT_KEY",
    "TREE_DEPTH_KEY",
    "LAST_INDEX_KEY",
    "account_key",
    "encode_counter",
    "decode_counter",
    "tree_node_key",
    # Helpers
    "get_or_raise",
]

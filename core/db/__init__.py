from __future__ import annotations

"""
core.db
=======

Thin facade for the key–value backend used by the ledger.

URIs
----
- "sqlite:///path/to/state.db"   → SQLite file
- "sqlite:///:memory:"           → in-memory SQLite (tests)
- "memory://"                    → alias of "sqlite:///:memory:"
- bare path                      → treated as sqlite file path

API
---
- open_kv(uri: str, create: bool = True) -> KV

The typed KV interface and key layout are defined in core.db.kv.

Example
-------
>>> from core.db import open_kv
>>> kv = open_kv("memory://")
>>> with kv.batch() as b:
...     b.put(b"l", b"\\x01")
>>> kv.get(b"l")
b'\\x01'
"""

from typing import Tuple

from .kv import KV, Batch, Prefix, ReadOnlyKV
from . import sqlite as _sqlite_backend


def _parse_uri(uri: str) -> Tuple[str, str]:
    """Parse a DB URI into ("sqlite", path) or ("memory", "")."""
    u = uri.strip()
    if u.startswith("memory://") or u == "sqlite:///:memory:":
        return ("memory", "")
    if u.startswith("sqlite:///"):
        return ("sqlite", u[len("sqlite:///") :])
    if "://" in u:
        scheme = u.split("://", 1)[0]
        raise ValueError(f"Unsupported DB backend in URI: {scheme!r}")
    return ("sqlite", u)


def open_kv(uri: str, create: bool = True) -> KV:
    """
    Open a KV database by URI. See module docstring for supported forms.

    Raises:
        ValueError for unsupported schemes or an empty path.
    """
    backend, path = _parse_uri(uri)
    if backend == "memory":
        return _sqlite_backend.open_sqlite_kv(":memory:", create=True)
    if not path:
        raise ValueError(f"empty sqlite path in URI: {uri!r}")
    return _sqlite_backend.open_sqlite_kv(path, create=create)


__all__ = [
    "KV",
    "ReadOnlyKV",
    "Batch",
    "Prefix",
    "open_kv",
]

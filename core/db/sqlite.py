from __future__ import annotations

"""
SQLite backend for the ledger KV
================================

One table, `ledger_kv(k BLOB PRIMARY KEY, v BLOB)`, holding the account
records, the last-index counter and the sparse Merkle tree nodes. BLOB keys
compare with memcmp, so prefix scans come back in key order.

The connection runs in autocommit mode (`isolation_level=None`); a batch is an
explicit `BEGIN IMMEDIATE ... COMMIT`. Writes issued through the store while a
batch is open join that transaction, which is how the engine keeps one
operation's account and tree writes together.

`PRAGMA user_version` records the schema version; opening a file written by a
newer schema, or a file that is not a SQLite database, raises
`core.errors.DatabaseError` instead of guessing.
"""

import sqlite3
from pathlib import Path
from typing import Iterator, List, Mapping, Optional, Tuple, Union

from core.errors import DatabaseError

from .kv import KV, Batch

SCHEMA_VERSION = 1

DEFAULT_PRAGMAS: Mapping[str, str] = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "temp_store": "MEMORY",
}

_DDL = "CREATE TABLE IF NOT EXISTS ledger_kv (k BLOB PRIMARY KEY, v BLOB NOT NULL) WITHOUT ROWID"
_GET = "SELECT v FROM ledger_kv WHERE k = ?"
_UPSERT = "INSERT INTO ledger_kv(k, v) VALUES(?, ?) ON CONFLICT(k) DO UPDATE SET v = excluded.v"
_DELETE = "DELETE FROM ledger_kv WHERE k = ?"


def _upper_bound(prefix: bytes) -> Optional[bytes]:
    """First key past every key that starts with `prefix`; None if unbounded."""
    head = prefix.rstrip(b"\xff")
    if not head:
        return None
    return head[:-1] + bytes([head[-1] + 1])


def _connect(path: str, pragmas: Optional[Mapping[str, str]]) -> sqlite3.Connection:
    conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    try:
        for name, value in {**DEFAULT_PRAGMAS, **(pragmas or {})}.items():
            conn.execute(f"PRAGMA {name}={value}")
        (version,) = conn.execute("PRAGMA user_version").fetchone()
        if version > SCHEMA_VERSION:
            raise DatabaseError("ledger schema is newer than supported", path=path, found=version, supported=SCHEMA_VERSION)
        conn.execute(_DDL)
        if version < SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    except sqlite3.DatabaseError as e:
        conn.close()
        raise DatabaseError("cannot open ledger database", path=path, error=str(e)).with_cause(e) from e
    except DatabaseError:
        conn.close()
        raise
    return conn


class SQLiteBatch(Batch):
    """
    One `BEGIN IMMEDIATE` transaction. Commits on a clean exit and rolls back
    when the block raises; the exception still propagates.
    """

    __slots__ = ("_kv", "_open")

    def __init__(self, kv: "SQLiteKV") -> None:
        self._kv = kv
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def __enter__(self) -> "SQLiteBatch":
        if self._open:
            raise RuntimeError("batch already open (nested batches not supported)")
        self._kv._conn.execute("BEGIN IMMEDIATE")
        self._open = True
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    def _require_open(self) -> None:
        if not self._open:
            raise RuntimeError("batch not open")

    def put(self, key: bytes, value: bytes) -> None:
        self._require_open()
        self._kv.put(key, value)

    def delete(self, key: bytes) -> None:
        self._require_open()
        self._kv.delete(key)

    def _finish(self, stmt: str) -> None:
        if self._open:
            self._open = False
            self._kv._conn.execute(stmt)

    def commit(self) -> None:
        self._finish("COMMIT")

    def rollback(self) -> None:
        self._finish("ROLLBACK")


class SQLiteKV(KV):
    """KV over a single SQLite connection. Build with `open_sqlite_kv`."""

    __slots__ = ("_conn",)

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, key: bytes) -> Optional[bytes]:
        row = self._conn.execute(_GET, (bytes(key),)).fetchone()
        return None if row is None else bytes(row[0])

    def has(self, key: bytes) -> bool:
        return self._conn.execute(_GET, (bytes(key),)).fetchone() is not None

    def iter_prefix(self, prefix: bytes) -> Iterator[Tuple[bytes, bytes]]:
        lo = bytes(prefix)
        hi = _upper_bound(lo)
        if hi is None:
            sql, args = "SELECT k, v FROM ledger_kv WHERE k >= ? ORDER BY k", (lo,)
        else:
            sql, args = "SELECT k, v FROM ledger_kv WHERE k >= ? AND k < ? ORDER BY k", (lo, hi)
        # fetched up front so callers may write while iterating
        rows: List[Tuple[bytes, bytes]] = self._conn.execute(sql, args).fetchall()
        for k, v in rows:
            yield bytes(k), bytes(v)

    def put(self, key: bytes, value: bytes) -> None:
        self._conn.execute(_UPSERT, (bytes(key), bytes(value)))

    def delete(self, key: bytes) -> None:
        self._conn.execute(_DELETE, (bytes(key),))

    def batch(self) -> SQLiteBatch:
        return SQLiteBatch(self)

    def close(self) -> None:
        self._conn.close()


def open_sqlite_kv(
    path: Union[str, Path],
    *,
    pragmas: Optional[Mapping[str, str]] = None,
    create: bool = True,
) -> SQLiteKV:
    """
    Open the ledger store at `path`; ":memory:" gives a private in-memory store.

    With `create=False` a missing file raises FileNotFoundError rather than
    silently starting an empty ledger. Parent directories are created otherwise.
    """
    target = str(path)
    if target != ":memory:":
        p = Path(target)
        if not p.exists():
            if not create:
                raise FileNotFoundError(f"ledger database not found at {target}")
            p.parent.mkdir(parents=True, exist_ok=True)
    return SQLiteKV(_connect(target, pragmas))


__all__ = ["SQLiteKV", "SQLiteBatch", "open_sqlite_kv", "SCHEMA_VERSION"]

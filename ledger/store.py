from __future__ import annotations

"""
Account store on top of the KV interface
========================================

Owns the persisted account records and the last-assigned-index counter.

Key layout (see core.db.kv)
---------------------------

    b"l"                               -> uvarint(last_index), zero-padded to 8 bytes
    b"a" | uvarint(index), 9 bytes     -> cbor(Account)

Every mutating call runs in one KV batch. When the caller passes an already
open `batch`, the writes join it and the caller decides commit/rollback; the
engine uses this to make a whole transition (records + tree) atomic.
"""

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from core.db.kv import KV, LAST_INDEX_KEY, Batch, account_key, decode_counter, encode_counter, get_or_raise
from core.errors import InvalidAccount, NotFound
from core.logging import get_logger

from .account import Account

log = get_logger("ledger.store")


class AccountStore:
    """
    Typed account view over a KV.

    This object is lightweight; callers own the KV's lifetime.
    """

    def __init__(self, kv: KV):
        self.kv = kv

    @contextmanager
    def _writer(self, batch: Optional[Batch]) -> Iterator[Batch]:
        if batch is not None:
            yield batch
            return
        with self.kv.batch() as b:
            yield b

    # --- counter ---

    def next_index(self) -> int:
        """Last assigned index; 0 when no account was ever created."""
        raw = self.kv.get(LAST_INDEX_KEY)
        return 0 if raw is None else decode_counter(raw)

    # --- accounts ---

    def create_account(self, draft: Account, batch: Optional[Batch] = None) -> Tuple[int, Account]:
        """Assign `next_index() + 1` and persist counter and record together."""
        if draft.index != 0:
            raise InvalidAccount("draft must not carry an index", index=draft.index)
        with self._writer(batch) as b:
            index = self.next_index() + 1
            account = draft.with_changes(index=index)
            b.put(LAST_INDEX_KEY, encode_counter(index))
            b.put(account_key(index), account.to_bytes())
        log.debug("store: created idx=%s", index)
        return index, account

    def get_account(self, index: int) -> Account:
        raw = get_or_raise(self.kv, account_key(index), NotFound(index, space="accounts"))
        return Account.from_bytes(raw)

    def has_account(self, index: int) -> bool:
        return self.kv.has(account_key(index))

    def update_account(self, account: Account, batch: Optional[Batch] = None) -> None:
        key = account_key(account.index)
        if not self.kv.has(key):
            raise NotFound(account.index, space="accounts")
        with self._writer(batch) as b:
            b.put(key, account.to_bytes())

    def iter_accounts(self) -> Iterator[Account]:
        """Accounts in index order."""
        for index in range(1, self.next_index() + 1):
            raw = self.kv.get(account_key(index))
            if raw is not None:
                yield Account.from_bytes(raw)


__all__ = ["AccountStore"]

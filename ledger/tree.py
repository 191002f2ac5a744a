"""
Authenticated tree adapter.

Keys the sparse Merkle tree by account index and treats commitments as opaque
field elements. Every proof leaving the adapter has exactly `depth + 1`
siblings; anything else means the tree is corrupted and is reported as an
InvariantViolation.

Capacity: leaf compaction requires any two keys to differ within their low
`depth - 1` bits, so sequentially assigned indices fit while
`index < 2**(depth - 1)`. Larger indices are rejected with TreeFull before the
tree is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from core.db.kv import KV, TREE_DEPTH_KEY, Batch, decode_counter, encode_counter
from core.errors import ConfigError, InvariantViolation, NotFound, TreeFull

from .smt import FNC_INSERT, FNC_UPDATE, ProcessorProof, SparseMerkleTree


@dataclass(frozen=True)
class TreeProof:
    old_root: int
    new_root: int
    siblings: Tuple[int, ...]
    old_key: int
    old_value: int
    new_key: int
    new_value: int
    is_old0: bool
    fnc: int

    @property
    def is_insert(self) -> bool:
        return self.fnc == FNC_INSERT


class TreeAdapter:
    def __init__(self, kv: KV, depth: int) -> None:
        self.depth = depth
        self.smt = SparseMerkleTree(kv, max_levels=depth)

    def ensure_depth(self) -> None:
        """Record the depth on first use; refuse to reopen a tree with another depth."""
        raw = self.smt.kv.get(TREE_DEPTH_KEY)
        if raw is None:
            self.smt.kv.put(TREE_DEPTH_KEY, encode_counter(self.depth))
            return
        stored = decode_counter(raw)
        if stored != self.depth:
            raise ConfigError("tree depth does not match the stored tree", configured=self.depth, stored=stored)

    def capacity(self) -> int:
        """Highest index that can be inserted."""
        return (1 << (self.depth - 1)) - 1

    def root(self) -> int:
        return self.smt.root()

    def get(self, index: int) -> Optional[int]:
        """Committed leaf value for `index`, or None."""
        return self.smt.value(index)

    def insert(self, index: int, commitment: int, batch: Optional[Batch] = None) -> TreeProof:
        self._check_index(index)
        return self._checked(self.smt.add_and_prove(index, commitment, batch=batch), FNC_INSERT)

    def update(self, index: int, commitment: int, batch: Optional[Batch] = None) -> TreeProof:
        self._check_index(index)
        return self._checked(self.smt.update_and_prove(index, commitment, batch=batch), FNC_UPDATE)

    def _check_index(self, index: int) -> None:
        if index < 1:
            raise NotFound(index, space="tree")
        if index > self.capacity():
            raise TreeFull(index, self.depth)

    def _checked(self, p: ProcessorProof, fnc: int) -> TreeProof:
        if len(p.siblings) != self.depth + 1:
            raise InvariantViolation(
                "invalid siblings length", expected=self.depth + 1, got=len(p.siblings)
            )
        if p.fnc != fnc:
            raise InvariantViolation("unexpected processor function", expected=fnc, got=p.fnc)
        if p.new_root != self.smt.root():
            raise InvariantViolation("tree root does not match proof", proof_root=p.new_root)
        return TreeProof(
            old_root=p.old_root,
            new_root=p.new_root,
            siblings=p.siblings,
            old_key=p.old_key,
            old_value=p.old_value,
            new_key=p.new_key,
            new_value=p.new_value,
            is_old0=p.is_old0,
            fnc=p.fnc,
        )


__all__ = ["TreeProof", "TreeAdapter"]

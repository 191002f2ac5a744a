from __future__ import annotations

"""
Sparse Merkle tree (iden3 / circomlib compatible)
=================================================

A leaf-compacted binary sparse Merkle tree over the BN254 scalar field with
the node hashing used by circomlib's SMT circuits:

    empty  = 0
    leaf   = Poseidon([key, value, 1])
    middle = Poseidon([left, right])

The path of a key is its bit sequence, least significant bit first: at level
`i` the key goes right when bit `i` is set. A leaf sits at the shallowest level
where its path is unique; inserting a key whose path shares a prefix with an
existing leaf pushes that leaf down until the two paths diverge.

With `max_levels = n`, two keys must differ within their low `n - 1` bits;
otherwise insertion raises `TreeFull`.

Processor proofs (`add_and_prove` / `update_and_prove`) carry the sibling list
padded with zeros to `max_levels + 1` entries, the length the SMTProcessor
circuit expects.

Storage
-------
Nodes live in the KV under the TREE prefix, keyed by node hash:

    TREE.key(b"n", hash) -> 0x01 | key:32 | value:32     (leaf)
                          -> 0x02 | left:32 | right:32    (middle)
    TREE_ROOT_KEY        -> root:32

Nodes are never deleted; the root pointer is re-read on every call so that a
rolled-back batch also rolls back the tree.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from core.db.kv import KV, TREE_ROOT_KEY, Batch, tree_node_key
from core.errors import DuplicateKey, InvariantViolation, NotFound, TreeFull
from core.logging import get_logger
from zk.field import ensure_field
from zk.poseidon import poseidon

log = get_logger("ledger.smt")

EMPTY = 0

FNC_UPDATE = 1
FNC_INSERT = 2

_LEAF = 0x01
_MIDDLE = 0x02
_NODE_LEN = 65


# ---------------------------------------------------------------------------
# Hashing & node codec
# ---------------------------------------------------------------------------


def leaf_hash(key: int, value: int) -> int:
    return poseidon([key, value, 1])


def middle_hash(left: int, right: int) -> int:
    return poseidon([left, right])


def path_bit(key: int, level: int) -> int:
    return (key >> level) & 1


@dataclass(frozen=True)
class Node:
    kind: int  # _LEAF | _MIDDLE
    a: int  # leaf key   | left child
    b: int  # leaf value | right child

    @property
    def is_leaf(self) -> bool:
        return self.kind == _LEAF

    def hash(self) -> int:
        return leaf_hash(self.a, self.b) if self.is_leaf else middle_hash(self.a, self.b)

    def to_bytes(self) -> bytes:
        return bytes((self.kind,)) + self.a.to_bytes(32, "big") + self.b.to_bytes(32, "big")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Node":
        if len(raw) != _NODE_LEN or raw[0] not in (_LEAF, _MIDDLE):
            raise InvariantViolation("corrupted tree node", length=len(raw))
        return cls(raw[0], int.from_bytes(raw[1:33], "big"), int.from_bytes(raw[33:], "big"))


# ---------------------------------------------------------------------------
# Proof types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessorProof:
    """Result of one mutating tree call, shaped for the SMTProcessor circuit."""

    fnc: int
    old_root: int
    new_root: int
    siblings: Tuple[int, ...]
    old_key: int
    old_value: int
    new_key: int
    new_value: int
    is_old0: bool


@dataclass(frozen=True)
class Proof:
    """
    Membership (existence=True) or non-membership proof for `key`.

    `siblings` run from the root downwards and are not padded. For a
    non-membership proof ending at another leaf, `aux_key`/`aux_value` hold
    that leaf's entry.
    """

    key: int
    existence: bool
    siblings: Tuple[int, ...]
    value: int = 0
    aux_key: Optional[int] = None
    aux_value: Optional[int] = None


@dataclass
class _Lookup:
    found: bool
    key: int = 0
    value: int = 0
    siblings: List[int] = field(default_factory=list)


def pad_siblings(siblings: List[int], max_levels: int) -> Tuple[int, ...]:
    if len(siblings) > max_levels + 1:
        raise InvariantViolation("sibling path longer than tree depth", got=len(siblings), depth=max_levels)
    return tuple(siblings) + (EMPTY,) * (max_levels + 1 - len(siblings))


def root_from_leaf(key: int, node_hash: int, siblings: Tuple[int, ...] | List[int]) -> int:
    """Fold `node_hash` up through `siblings` (root-first order) along key's path."""
    h = node_hash
    for lvl in range(len(siblings) - 1, -1, -1):
        if path_bit(key, lvl):
            h = middle_hash(siblings[lvl], h)
        else:
            h = middle_hash(h, siblings[lvl])
    return h


def verify(root: int, proof: Proof) -> bool:
    """Check a membership / non-membership proof against `root`."""
    if proof.existence:
        start = leaf_hash(proof.key, proof.value)
    elif proof.aux_key is not None:
        if proof.aux_key == proof.key:
            return False
        start = leaf_hash(proof.aux_key, proof.aux_value or 0)
    else:
        start = EMPTY
    return root_from_leaf(proof.key, start, proof.siblings) == root


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


class SparseMerkleTree:
    """
    KV-backed sparse Merkle tree.

    Mutating methods accept an optional open `batch`; when omitted they run in
    their own batch.
    """

    def __init__(self, kv: KV, max_levels: int) -> None:
        if max_levels < 2:
            raise ValueError("max_levels must be >= 2")
        self.kv = kv
        self.max_levels = max_levels

    # --- storage ---

    @contextmanager
    def _writer(self, batch: Optional[Batch]) -> Iterator[Batch]:
        if batch is not None:
            yield batch
            return
        with self.kv.batch() as b:
            yield b

    def root(self) -> int:
        raw = self.kv.get(TREE_ROOT_KEY)
        return EMPTY if raw is None else int.from_bytes(raw, "big")

    def _set_root(self, b: Batch, root: int) -> None:
        b.put(TREE_ROOT_KEY, root.to_bytes(32, "big"))

    def _node(self, h: int) -> Optional[Node]:
        if h == EMPTY:
            return None
        raw = self.kv.get(tree_node_key(h))
        if raw is None:
            raise InvariantViolation("missing tree node", hash=h)
        return Node.from_bytes(raw)

    def _store(self, b: Batch, node: Node) -> int:
        h = node.hash()
        b.put(tree_node_key(h), node.to_bytes())
        return h

    # --- lookup ---

    def _lookup(self, key: int) -> _Lookup:
        siblings: List[int] = []
        h = self.root()
        for lvl in range(self.max_levels):
            node = self._node(h)
            if node is None:
                return _Lookup(found=False, siblings=siblings)
            if node.is_leaf:
                return _Lookup(found=node.a == key, key=node.a, value=node.b, siblings=siblings)
            if path_bit(key, lvl):
                siblings.append(node.a)
                h = node.b
            else:
                siblings.append(node.b)
                h = node.a
        raise TreeFull(key, self.max_levels)

    def get(self, key: int) -> Tuple[int, int, Tuple[int, ...], bool]:
        """
        (found_key, found_value, siblings, found).

        When absent, found_key/found_value are those of the leaf met on the
        key's path (0, 0 if the path ends empty).
        """
        look = self._lookup(ensure_field("key", key))
        return look.key, look.value, tuple(look.siblings), look.found

    def value(self, key: int) -> Optional[int]:
        _, v, _, found = self.get(key)
        return v if found else None

    def prove(self, key: int) -> Proof:
        look = self._lookup(ensure_field("key", key))
        if look.found:
            return Proof(key=key, existence=True, siblings=tuple(look.siblings), value=look.value)
        if look.key or look.value:
            return Proof(
                key=key,
                existence=False,
                siblings=tuple(look.siblings),
                aux_key=look.key,
                aux_value=look.value,
            )
        return Proof(key=key, existence=False, siblings=tuple(look.siblings))

    # --- insertion ---

    def _add_leaf(self, b: Batch, new_leaf: Node, h: int, lvl: int) -> int:
        if lvl > self.max_levels - 1:
            raise TreeFull(new_leaf.a, self.max_levels)
        node = self._node(h)
        if node is None:
            return self._store(b, new_leaf)
        if node.is_leaf:
            if node.a == new_leaf.a:
                raise DuplicateKey(new_leaf.a)
            return self._push_leaf(b, new_leaf, node, lvl)
        if path_bit(new_leaf.a, lvl):
            right = self._add_leaf(b, new_leaf, node.b, lvl + 1)
            return self._store(b, Node(_MIDDLE, node.a, right))
        left = self._add_leaf(b, new_leaf, node.a, lvl + 1)
        return self._store(b, Node(_MIDDLE, left, node.b))

    def _push_leaf(self, b: Batch, new_leaf: Node, old_leaf: Node, lvl: int) -> int:
        if lvl > self.max_levels - 2:
            raise TreeFull(new_leaf.a, self.max_levels)
        new_bit = path_bit(new_leaf.a, lvl)
        if new_bit == path_bit(old_leaf.a, lvl):
            below = self._push_leaf(b, new_leaf, old_leaf, lvl + 1)
            middle = Node(_MIDDLE, EMPTY, below) if new_bit else Node(_MIDDLE, below, EMPTY)
            return self._store(b, middle)
        old_h = old_leaf.hash()
        new_h = self._store(b, new_leaf)
        middle = Node(_MIDDLE, old_h, new_h) if new_bit else Node(_MIDDLE, new_h, old_h)
        return self._store(b, middle)

    def add(self, key: int, value: int, batch: Optional[Batch] = None) -> int:
        """Insert a new leaf; returns the new root."""
        ensure_field("key", key)
        ensure_field("value", value)
        with self._writer(batch) as b:
            root = self._add_leaf(b, Node(_LEAF, key, value), self.root(), 0)
            self._set_root(b, root)
        log.debug("smt: add key=%s root=%s", key, root)
        return root

    def add_and_prove(self, key: int, value: int, batch: Optional[Batch] = None) -> ProcessorProof:
        old_root = self.root()
        look = self._lookup(ensure_field("key", key))
        if look.found:
            raise DuplicateKey(key)
        siblings = pad_siblings(look.siblings, self.max_levels)
        new_root = self.add(key, value, batch=batch)
        return ProcessorProof(
            fnc=FNC_INSERT,
            old_root=old_root,
            new_root=new_root,
            siblings=siblings,
            old_key=look.key,
            old_value=look.value,
            new_key=key,
            new_value=value,
            is_old0=look.key == 0,
        )

    # --- update ---

    def update_and_prove(self, key: int, value: int, batch: Optional[Batch] = None) -> ProcessorProof:
        """Replace the value of an existing leaf; NotFound when absent."""
        ensure_field("value", value)
        old_root = self.root()
        look = self._lookup(ensure_field("key", key))
        if not look.found:
            raise NotFound(key, space="tree")
        with self._writer(batch) as b:
            h = self._store(b, Node(_LEAF, key, value))
            for lvl in range(len(look.siblings) - 1, -1, -1):
                sib = look.siblings[lvl]
                middle = Node(_MIDDLE, sib, h) if path_bit(key, lvl) else Node(_MIDDLE, h, sib)
                h = self._store(b, middle)
            self._set_root(b, h)
        log.debug("smt: update key=%s root=%s", key, h)
        return ProcessorProof(
            fnc=FNC_UPDATE,
            old_root=old_root,
            new_root=h,
            siblings=pad_siblings(look.siblings, self.max_levels),
            old_key=key,
            old_value=look.value,
            new_key=key,
            new_value=value,
            is_old0=False,
        )

    def update(self, key: int, value: int, batch: Optional[Batch] = None) -> int:
        return self.update_and_prove(key, value, batch=batch).new_root


__all__ = [
    "EMPTY",
    "FNC_INSERT",
    "FNC_UPDATE",
    "Node",
    "Proof",
    "ProcessorProof",
    "SparseMerkleTree",
    "leaf_hash",
    "middle_hash",
    "path_bit",
    "pad_siblings",
    "root_from_leaf",
    "verify",
]

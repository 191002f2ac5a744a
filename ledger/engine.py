"""
State transition engine.

Implements the four mutating operations over the account store and the
authenticated tree:

    create_account(draft)
    deposit(index, amount, signer)
    withdraw(index, amount, signer)
    transfer(sender, receiver, amount, signer)

Every operation follows validate → mutate in memory → persist → re-commit →
prove → sign, and runs inside one KV batch: a failure at any step rolls back
the record, counter and tree writes together.

The signed digest is uniform across value-moving operations:

    digest = Poseidon([pre-mutation commitment, amount])

where the pre-mutation commitment is the proof's old leaf value.

Operations are serialized by a per-engine re-entrant lock. After an
InvariantViolation the engine refuses further writes (LedgerHalted) until an
operator calls `resume()`.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional

from core import logging as clog
from core.config import DEFAULT_TREE_DEPTH, Config
from core.db import open_kv
from core.db.kv import KV, Batch
from core.errors import (
    FieldOverflow,
    InsufficientBalance,
    InvalidAccount,
    InvalidAmount,
    InvariantViolation,
    LedgerHalted,
    SelfTransfer,
    SignerMismatch,
)
from zk.babyjub import Signature, on_curve, point
from zk.field import FIELD_MODULUS
from zk.poseidon import PoseidonParams, load_params_path, params_scope, poseidon

from .account import Account, commitment, validate
from .signer import Signer
from .store import AccountStore
from .tree import TreeAdapter, TreeProof
from .witness import (
    CreateAccountWitness,
    TransferWitness,
    UpdateWitness,
    create_account_witness,
    transfer_witness,
    update_witness,
)

log = clog.get_logger("ledger.engine")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateAccountResult:
    account: Account
    proof: TreeProof
    witness: CreateAccountWitness


@dataclass(frozen=True)
class UpdateResult:
    before: Account
    account: Account
    amount: int
    proof: TreeProof
    digest: int
    signature: Signature
    witness: UpdateWitness


@dataclass(frozen=True)
class TransferResult:
    sender_before: Account
    receiver_before: Account
    sender: Account
    receiver: Account
    amount: int
    sender_proof: TreeProof
    receiver_proof: TreeProof
    digest: int
    signature: Signature
    witness: TransferWitness


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("amount must be an integer", amount=str(amount))
    if amount <= 0:
        raise InvalidAmount("amount must be positive", amount=amount)
    if amount >= FIELD_MODULUS:
        raise FieldOverflow("amount", amount)
    return amount


def _check_signer(account: Account, signer: Signer) -> None:
    if tuple(int(c) for c in signer.public_key) != account.public_key:
        raise SignerMismatch(account.index)


def tx_digest(old_commitment: int, amount: int) -> int:
    """Message signed for deposit, withdraw and transfer."""
    return poseidon([old_commitment, amount])


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class StateTransitionEngine:
    """
    `params` overrides Poseidon parameter sets (by `bn254_t{t}` name) for this
    engine only; hashing done by its operations and `audit()` uses them, while
    the rest of the process keeps the circomlib defaults.
    """

    def __init__(
        self,
        kv: KV,
        depth: int = DEFAULT_TREE_DEPTH,
        params: Optional[Mapping[str, PoseidonParams]] = None,
    ) -> None:
        self.kv = kv
        self.store = AccountStore(kv)
        self.tree = TreeAdapter(kv, depth)
        self.tree.ensure_depth()
        self.params: Dict[str, PoseidonParams] = dict(params or {})
        self._lock = threading.RLock()
        self._halted: Optional[str] = None

    @classmethod
    def from_config(cls, cfg: Config) -> "StateTransitionEngine":
        """Open the configured KV; circuit Poseidon params, when given, apply to this engine only."""
        params: Dict[str, PoseidonParams] = {}
        if cfg.hash.poseidon_params is not None:
            load_params_path(cfg.hash.poseidon_params, into=params)
        return cls(open_kv(cfg.db.uri), depth=cfg.tree.depth, params=params)

    def close(self) -> None:
        self.kv.close()

    # --- halt control ---

    @property
    def halted(self) -> bool:
        return self._halted is not None

    def resume(self) -> None:
        """Operator acknowledgement after an invariant violation."""
        with self._lock:
            if self._halted is not None:
                log.warning("engine: resumed after halt reason=%s", self._halted)
            self._halted = None

    @contextmanager
    def _transition(self, op: str, **fields: Any) -> Iterator[Batch]:
        with self._lock:
            if self._halted is not None:
                raise LedgerHalted(self._halted)
            with clog.trace_scope(component="ledger", op=op, **fields), params_scope(self.params):
                try:
                    with self.kv.batch() as b:
                        yield b
                except InvariantViolation as e:
                    self._halted = e.message
                    log.critical("%s: invariant violated, halting writes: %s", op, e)
                    raise

    # --- reads ---

    def root(self) -> int:
        return self.tree.root()

    def get_account(self, index: int) -> Account:
        return self.store.get_account(index)

    def accounts(self) -> List[Account]:
        return list(self.store.iter_accounts())

    def audit(self) -> List[int]:
        """Indices whose recomputed commitment differs from the tree leaf."""
        bad = []
        with params_scope(self.params):
            for acc in self.store.iter_accounts():
                if self.tree.get(acc.index) != commitment(acc):
                    bad.append(acc.index)
        if bad:
            log.error("audit: %d account(s) out of sync with the tree: %s", len(bad), bad)
        return bad

    # --- internals ---

    def _commit(self, account: Account, b: Batch) -> TreeProof:
        """Persist an existing account and re-commit its leaf."""
        validate(account)
        self.store.update_account(account, batch=b)
        return self.tree.update(account.index, commitment(account), batch=b)

    @staticmethod
    def _check_old_value(before: Account, proof: TreeProof) -> None:
        if proof.old_value != commitment(before):
            raise InvariantViolation(
                "stored account does not match its committed leaf",
                index=before.index,
                leaf=proof.old_value,
            )

    # --- operations ---

    def create_account(self, draft: Account) -> CreateAccountResult:
        if draft.balance != 0 or draft.nonce != 0:
            raise InvalidAccount(
                "new account must start with zero balance and nonce",
                balance=draft.balance,
                nonce=draft.nonce,
            )
        validate(draft)
        if not on_curve(point(draft.ax, draft.ay)):
            raise InvalidAccount("public key is not on the curve")

        with self._transition("create_account") as b:
            index, account = self.store.create_account(draft, batch=b)
            proof = self.tree.insert(index, commitment(account), batch=b)
            witness = create_account_witness(account, proof)

        log.info("create_account: idx=%s root=%s", index, proof.new_root)
        return CreateAccountResult(account=account, proof=proof, witness=witness)

    def deposit(self, index: int, amount: int, signer: Signer) -> UpdateResult:
        amount = _check_amount(amount)
        with self._transition("deposit", index=index) as b:
            before = self.store.get_account(index)
            _check_signer(before, signer)
            new_balance = before.balance + amount
            if new_balance >= FIELD_MODULUS:
                raise FieldOverflow("balance", new_balance)
            after = before.with_changes(balance=new_balance, nonce=before.nonce + 1)
            proof = self._commit(after, b)
            self._check_old_value(before, proof)
            digest = tx_digest(proof.old_value, amount)
            signature = signer.sign(digest)
            witness = update_witness(before, amount, proof, signature)

        log.info("deposit: idx=%s amount=%s balance=%s root=%s", index, amount, after.balance, proof.new_root)
        return UpdateResult(before, after, amount, proof, digest, signature, witness)

    def withdraw(self, index: int, amount: int, signer: Signer) -> UpdateResult:
        amount = _check_amount(amount)
        with self._transition("withdraw", index=index) as b:
            before = self.store.get_account(index)
            _check_signer(before, signer)
            if amount > before.balance:
                raise InsufficientBalance(index, amount, before.balance)
            after = before.with_changes(balance=before.balance - amount, nonce=before.nonce + 1)
            proof = self._commit(after, b)
            self._check_old_value(before, proof)
            digest = tx_digest(proof.old_value, amount)
            signature = signer.sign(digest)
            witness = update_witness(before, amount, proof, signature)

        log.info("withdraw: idx=%s amount=%s balance=%s root=%s", index, amount, after.balance, proof.new_root)
        return UpdateResult(before, after, amount, proof, digest, signature, witness)

    def transfer(self, sender: int, receiver: int, amount: int, signer: Signer) -> TransferResult:
        amount = _check_amount(amount)
        if sender == receiver:
            raise SelfTransfer(sender)
        with self._transition("transfer", index=sender, receiver=receiver) as b:
            s_before = self.store.get_account(sender)
            r_before = self.store.get_account(receiver)
            _check_signer(s_before, signer)
            if amount > s_before.balance:
                raise InsufficientBalance(sender, amount, s_before.balance)
            r_balance = r_before.balance + amount
            if r_balance >= FIELD_MODULUS:
                raise FieldOverflow("balance", r_balance)

            s_after = s_before.with_changes(balance=s_before.balance - amount, nonce=s_before.nonce + 1)
            r_after = r_before.with_changes(balance=r_balance)

            s_proof = self._commit(s_after, b)
            self._check_old_value(s_before, s_proof)
            r_proof = self._commit(r_after, b)
            self._check_old_value(r_before, r_proof)

            digest = tx_digest(s_proof.old_value, amount)
            signature = signer.sign(digest)
            witness = transfer_witness(s_before, r_before, amount, s_proof, r_proof, signature)

        log.info(
            "transfer: from=%s to=%s amount=%s root=%s",
            sender,
            receiver,
            amount,
            r_proof.new_root,
        )
        return TransferResult(
            sender_before=s_before,
            receiver_before=r_before,
            sender=s_after,
            receiver=r_after,
            amount=amount,
            sender_proof=s_proof,
            receiver_proof=r_proof,
            digest=digest,
            signature=signature,
            witness=witness,
        )


__all__ = [
    "CreateAccountResult",
    "UpdateResult",
    "TransferResult",
    "StateTransitionEngine",
    "tx_digest",
]

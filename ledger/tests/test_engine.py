from __future__ import annotations

import dataclasses
import threading
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from core import config as cconfig
from core.db import open_kv
from core.db.kv import account_key
from core.errors import (
    ConfigError,
    FieldOverflow,
    InsufficientBalance,
    InvalidAccount,
    InvalidAmount,
    InvariantViolation,
    LedgerError,
    LedgerHalted,
    NotFound,
    SelfTransfer,
    SignerMismatch,
    TreeFull,
)
from ledger.account import Account, commitment
from ledger.engine import StateTransitionEngine, tx_digest
from zk.babyjub import verify_poseidon
from zk.field import FIELD_MODULUS
from zk.poseidon import circomlib_params, poseidon
from zk.tests import write_params

ADDR_A = "0x" + "11" * 20
ADDR_B = "0x" + "22" * 20


def _snapshot(engine: StateTransitionEngine):
    return engine.root(), [a.to_bytes() for a in engine.accounts()], engine.store.next_index()


# ------------------------------ create ---------------------------------------


def test_create_assigns_index_and_commits_leaf(engine, alice) -> None:
    res = engine.create_account(Account.draft(ADDR_A, alice.public_key))
    acc = res.account
    assert acc.index == 1
    assert (acc.balance, acc.nonce) == (0, 0)
    assert res.proof.is_insert and res.proof.is_old0
    assert res.proof.old_root == 0
    assert res.proof.new_root == engine.root()
    assert res.proof.new_value == commitment(acc)
    assert engine.tree.get(1) == commitment(acc)
    assert engine.get_account(1) == acc


def test_create_second_account(engine, alice, bob) -> None:
    first = engine.create_account(Account.draft(ADDR_A, alice.public_key))
    second = engine.create_account(Account.draft(ADDR_B, bob.public_key))
    assert second.account.index == 2
    assert second.proof.old_root == first.proof.new_root
    assert not second.proof.is_old0
    assert second.proof.old_key == 1


def test_create_rejects_funded_draft_and_bad_keys(engine, alice) -> None:
    draft = Account.draft(ADDR_A, alice.public_key)
    with pytest.raises(InvalidAccount):
        engine.create_account(draft.with_changes(balance=1))
    with pytest.raises(InvalidAccount):
        engine.create_account(draft.with_changes(ax=1, ay=1))
    with pytest.raises(FieldOverflow):
        engine.create_account(draft.with_changes(ax=FIELD_MODULUS))
    assert engine.store.next_index() == 0
    assert engine.root() == 0


def test_tree_full_rolls_back_counter(kv, alice) -> None:
    engine = StateTransitionEngine(kv, depth=3)
    for _ in range(3):
        engine.create_account(Account.draft(ADDR_A, alice.public_key))
    before = _snapshot(engine)
    with pytest.raises(TreeFull):
        engine.create_account(Account.draft(ADDR_A, alice.public_key))
    assert _snapshot(engine) == before


# ------------------------------ deposit / withdraw ---------------------------


def test_deposit_updates_balance_nonce_and_signs(engine, alice) -> None:
    created = engine.create_account(Account.draft(ADDR_A, alice.public_key))
    res = engine.deposit(1, 100, alice)
    assert res.before == created.account
    assert (res.account.balance, res.account.nonce) == (100, 1)
    assert res.proof.old_root == created.proof.new_root
    assert res.proof.old_value == commitment(created.account)
    assert res.proof.new_value == commitment(res.account)
    assert res.digest == poseidon([commitment(created.account), 100]) == tx_digest(res.proof.old_value, 100)
    assert verify_poseidon(alice.public_key, res.digest, res.signature)
    assert engine.get_account(1) == res.account


def test_withdraw(engine, alice, alice_account) -> None:
    res = engine.withdraw(alice_account.index, 1, alice)
    assert (res.account.balance, res.account.nonce) == (99, 2)
    assert verify_poseidon(alice.public_key, res.digest, res.signature)


def test_withdraw_entire_balance(engine, alice, alice_account) -> None:
    res = engine.withdraw(alice_account.index, 100, alice)
    assert res.account.balance == 0


def test_withdraw_insufficient_leaves_state(engine, alice, alice_account) -> None:
    before = _snapshot(engine)
    with pytest.raises(InsufficientBalance):
        engine.withdraw(alice_account.index, 101, alice)
    assert _snapshot(engine) == before


@pytest.mark.parametrize("amount", [0, -1, True, 1.5, "10"])
def test_invalid_amounts(engine, alice, alice_account, amount) -> None:
    with pytest.raises(InvalidAmount):
        engine.deposit(alice_account.index, amount, alice)


def test_amount_outside_field(engine, alice, alice_account) -> None:
    with pytest.raises(FieldOverflow):
        engine.deposit(alice_account.index, FIELD_MODULUS, alice)


def test_balance_overflow_rejected(engine, alice, alice_account) -> None:
    engine.deposit(alice_account.index, FIELD_MODULUS - 1 - alice_account.balance, alice)
    before = _snapshot(engine)
    with pytest.raises(FieldOverflow):
        engine.deposit(alice_account.index, 1, alice)
    assert _snapshot(engine) == before


def test_wrong_signer_rejected(engine, bob, alice_account) -> None:
    before = _snapshot(engine)
    with pytest.raises(SignerMismatch):
        engine.deposit(alice_account.index, 1, bob)
    assert _snapshot(engine) == before


def test_missing_account(engine, alice) -> None:
    with pytest.raises(NotFound):
        engine.deposit(7, 1, alice)


# ------------------------------ transfer -------------------------------------


def test_transfer_moves_value_and_chains_proofs(engine, alice, alice_account, bob_account) -> None:
    res = engine.transfer(alice_account.index, bob_account.index, 30, alice)
    assert (res.sender.balance, res.sender.nonce) == (70, alice_account.nonce + 1)
    assert (res.receiver.balance, res.receiver.nonce) == (30, bob_account.nonce)
    assert res.sender.balance + res.receiver.balance == 100
    assert res.receiver_proof.old_root == res.sender_proof.new_root
    assert res.receiver_proof.new_root == engine.root()
    assert res.digest == tx_digest(commitment(alice_account), 30)
    assert verify_poseidon(alice.public_key, res.digest, res.signature)
    assert res.sender_before == alice_account
    assert res.receiver_before == bob_account


def test_transfer_rejections_leave_state(engine, alice, bob, alice_account, bob_account) -> None:
    before = _snapshot(engine)
    with pytest.raises(SelfTransfer):
        engine.transfer(alice_account.index, alice_account.index, 1, alice)
    with pytest.raises(InsufficientBalance):
        engine.transfer(alice_account.index, bob_account.index, 101, alice)
    with pytest.raises(NotFound):
        engine.transfer(alice_account.index, 9, 1, alice)
    with pytest.raises(SignerMismatch):
        engine.transfer(alice_account.index, bob_account.index, 1, bob)
    assert _snapshot(engine) == before


def test_transfer_receiver_overflow(engine, alice, bob, alice_account, bob_account) -> None:
    engine.deposit(bob_account.index, FIELD_MODULUS - 1, bob)
    before = _snapshot(engine)
    with pytest.raises(FieldOverflow):
        engine.transfer(alice_account.index, bob_account.index, 1, alice)
    assert _snapshot(engine) == before


# ------------------------------ integrity ------------------------------------


def test_every_account_matches_its_leaf(engine, alice, alice_account, bob_account) -> None:
    engine.transfer(alice_account.index, bob_account.index, 5, alice)
    assert engine.audit() == []
    for acc in engine.accounts():
        assert engine.tree.get(acc.index) == commitment(acc)


def test_corrupted_record_halts_engine(engine, kv, alice, alice_account) -> None:
    kv.put(account_key(alice_account.index), alice_account.with_changes(balance=5000).to_bytes())
    assert engine.audit() == [alice_account.index]
    root = engine.root()

    with pytest.raises(InvariantViolation):
        engine.deposit(alice_account.index, 1, alice)
    assert engine.halted
    assert engine.root() == root
    with pytest.raises(LedgerHalted):
        engine.withdraw(alice_account.index, 1, alice)

    kv.put(account_key(alice_account.index), alice_account.to_bytes())
    engine.resume()
    assert not engine.halted
    assert engine.deposit(alice_account.index, 1, alice).account.balance == 101


def test_concurrent_deposits_serialize(engine, alice, alice_account) -> None:
    errors = []

    def worker() -> None:
        try:
            engine.deposit(alice_account.index, 1, alice)
        except Exception as e:  # pragma: no cover - surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    acc = engine.get_account(alice_account.index)
    assert (acc.balance, acc.nonce) == (106, alice_account.nonce + 6)
    assert engine.audit() == []


# ------------------------------ persistence ----------------------------------


def test_state_survives_reopen(tmp_path: Path, alice) -> None:
    uri = f"sqlite:///{tmp_path / 'state.db'}"
    engine = StateTransitionEngine(open_kv(uri), depth=10)
    engine.create_account(Account.draft(ADDR_A, alice.public_key))
    engine.deposit(1, 42, alice)
    root = engine.root()
    engine.close()

    again = StateTransitionEngine(open_kv(uri), depth=10)
    assert again.root() == root
    assert again.get_account(1).balance == 42
    assert again.create_account(Account.draft(ADDR_B, alice.public_key)).account.index == 2
    again.close()

    with pytest.raises(ConfigError):
        StateTransitionEngine(open_kv(uri), depth=12)


# ------------------------------ sequences ------------------------------------

STEPS = st.lists(
    st.tuples(
        st.sampled_from(["create", "deposit", "withdraw", "transfer"]),
        st.integers(min_value=0, max_value=4),  # account (0 never exists)
        st.integers(min_value=0, max_value=4),  # receiver
        st.integers(min_value=0, max_value=150),  # amount (0 is rejected)
        st.booleans(),  # sign with the other key
    ),
    max_size=12,
)


def _run(engine: StateTransitionEngine, op: str, i: int, j: int, amount: int, signer):
    if op == "deposit":
        return engine.deposit(i, amount, signer)
    if op == "withdraw":
        return engine.withdraw(i, amount, signer)
    return engine.transfer(i, j, amount, signer)


@settings(max_examples=10)
@given(steps=STEPS)
def test_random_sequences_keep_ledger_consistent(alice, bob, steps) -> None:
    engine = StateTransitionEngine(open_kv("memory://"), depth=10)
    owners = {}
    model = {}  # index -> (balance, nonce)
    try:
        for n, (op, i, j, amount, swap) in enumerate(steps):
            if op == "create":
                signer = (alice, bob)[n % 2]
                res = engine.create_account(Account.draft(ADDR_A, signer.public_key))
                assert res.account.index == len(model) + 1
                owners[res.account.index] = signer
                model[res.account.index] = (0, 0)
                continue

            signer = owners.get(i, alice)
            if swap:
                signer = bob if signer is alice else alice
            balance, nonce = model.get(i, (0, 0))
            ok = amount > 0 and i in model and not swap
            if op == "withdraw":
                ok = ok and amount <= balance
            elif op == "transfer":
                ok = ok and i != j and j in model and amount <= balance

            if not ok:
                before = _snapshot(engine)
                with pytest.raises(LedgerError):
                    _run(engine, op, i, j, amount, signer)
                assert _snapshot(engine) == before
                continue

            _run(engine, op, i, j, amount, signer)
            delta = amount if op == "deposit" else -amount
            model[i] = (balance + delta, nonce + 1)
            if op == "transfer":
                r_balance, r_nonce = model[j]
                model[j] = (r_balance + amount, r_nonce)

            for idx, (b, nn) in model.items():
                acc = engine.get_account(idx)
                assert (acc.balance, acc.nonce) == (b, nn)

        assert engine.store.next_index() == len(model)
        assert [a.index for a in engine.accounts()] == list(range(1, len(model) + 1))
        assert engine.audit() == []
    finally:
        engine.close()


# ------------------------------ poseidon params ------------------------------


def test_engine_params_do_not_leak(tmp_path: Path, alice) -> None:
    base = circomlib_params(4)
    rc = [list(row) for row in base.rc]
    rc[0][0] = (rc[0][0] + 1) % FIELD_MODULUS
    path = write_params(tmp_path, dataclasses.replace(base, rc=rc), "t4.json")
    default_hash = poseidon([1, 2, 3])

    cfg = cconfig.load(db={"uri": "memory://"}, tree={"depth": 10}, hash={"poseidon_params": str(path)})
    custom = StateTransitionEngine.from_config(cfg)
    plain = StateTransitionEngine(open_kv("memory://"), depth=10)
    try:
        assert set(custom.params) == {"bn254_t4"}
        assert plain.params == {}
        assert poseidon([1, 2, 3]) == default_hash

        draft = Account.draft(ADDR_A, alice.public_key)
        custom.create_account(draft)
        plain.create_account(draft)
        # a lone leaf is the root, hashed with t=4
        assert custom.root() != plain.root()
        assert custom.audit() == []
        assert plain.audit() == []
        assert poseidon([1, 2, 3]) == default_hash
    finally:
        custom.close()
        plain.close()

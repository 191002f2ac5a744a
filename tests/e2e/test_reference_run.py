"""
Reference run through the engine API: create A, deposit 100, withdraw 1,
create B, transfer 1 from A to B, then over-withdraw 1000. Every witness must
chain onto the state left by the previous one; the failed withdrawal leaves
everything as it was.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import InsufficientBalance
from ledger.account import Account, commitment
from ledger.witness import write_witness
from zk.babyjub import verify_poseidon

from . import read_witness

pytestmark = pytest.mark.e2e

ZERO = "0x" + "00" * 20


def test_reference_run(tmp_path: Path, engine, alice, bob) -> None:
    a = engine.create_account(Account.draft(ZERO, alice.public_key))
    write_witness(a.witness, tmp_path / "create-account-test" / "input.json")
    idx = a.account.index

    dep = engine.deposit(idx, 100, alice)
    write_witness(dep.witness, tmp_path / "deposit-test" / "input.json")

    wd = engine.withdraw(idx, 1, alice)
    write_witness(wd.witness, tmp_path / "withdraw-test" / "input.json")

    b = engine.create_account(Account.draft(ZERO, bob.public_key))
    tr = engine.transfer(idx, b.account.index, 1, alice)
    write_witness(tr.witness, tmp_path / "transfer-test" / "input.json")

    create = read_witness(tmp_path, "create")
    deposit = read_witness(tmp_path, "deposit")
    withdraw = read_witness(tmp_path, "withdraw")
    transfer = read_witness(tmp_path, "transfer")

    # roots chain across the four files
    assert create["oldStateRoot"] == "0"
    assert deposit["oldStateRoot"] == str(a.proof.new_root)
    assert withdraw["oldStateRoot"] == str(dep.proof.new_root)
    assert transfer["senderOldStateRoot"] == str(b.proof.new_root)

    # pre-mutation values
    assert (deposit["balance"], deposit["nonce"], deposit["amount"]) == ("0", "0", "100")
    assert (withdraw["balance"], withdraw["nonce"], withdraw["amount"]) == ("100", "1", "1")
    assert (transfer["senderBalance"], transfer["senderNonce"]) == ("99", "2")
    assert (transfer["receiverIdx"], transfer["receiverBalance"]) == ("2", "0")

    # final state
    sender = engine.get_account(idx)
    receiver = engine.get_account(b.account.index)
    assert (sender.balance, sender.nonce) == (98, 3)
    assert (receiver.balance, receiver.nonce) == (1, 0)
    assert engine.tree.get(idx) == commitment(sender)
    assert engine.tree.get(b.account.index) == commitment(receiver)
    assert engine.root() == tr.receiver_proof.new_root
    assert engine.audit() == []

    for res in (dep, wd, tr):
        assert verify_poseidon(alice.public_key, res.digest, res.signature)

    # withdrawing more than the balance fails and changes nothing
    root = engine.root()
    with pytest.raises(InsufficientBalance):
        engine.withdraw(idx, 1000, alice)
    after = engine.get_account(idx)
    assert (after.balance, after.nonce) == (98, 3)
    assert engine.root() == root
    assert engine.audit() == []

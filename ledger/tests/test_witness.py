from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from core.errors import InvariantViolation
from ledger.account import Account
from ledger.witness import transfer_witness, write_witness

ADDR = "0x" + "00" * 19 + "ff"

CREATE_FIELDS = [
    "balance", "nonce", "ethAddr", "ax", "ay",
    "oldStateRoot", "siblings", "isOld0", "oldKey", "oldValue", "newKey",
]
UPDATE_FIELDS = [
    "idx", "balance", "amount", "nonce", "ethAddr", "ax", "ay",
    "oldStateRoot", "siblings", "isOld0", "s", "r8x", "r8y",
]
TRANSFER_FIELDS = [
    "senderIdx", "senderBalance", "senderNonce", "senderEthAddr", "senderAx", "senderAy",
    "senderOldStateRoot", "senderSiblings", "senderIsOld0",
    "transferAmount", "senderS", "senderR8x", "senderR8y",
    "receiverIdx", "receiverBalance", "receiverNonce", "receiverEthAddr", "receiverAx", "receiverAy",
    "receiverSiblings", "receiverIsOld0",
]


def _all_strings(d: dict) -> bool:
    for v in d.values():
        if isinstance(v, list):
            if not all(isinstance(x, str) and x.isdigit() for x in v):
                return False
        elif not (isinstance(v, str) and v.isdigit()):
            return False
    return True


def test_create_witness_shape(engine, alice) -> None:
    res = engine.create_account(Account.draft(ADDR, alice.public_key))
    d = res.witness.to_json_dict()
    assert list(d) == CREATE_FIELDS
    assert _all_strings(d)
    assert d["ethAddr"] == "255"
    assert d["isOld0"] == "1"
    assert d["oldStateRoot"] == "0"
    assert d["newKey"] == "1"
    assert len(d["siblings"]) == engine.tree.depth + 1
    assert "idx" not in d


def test_update_witness_uses_pre_mutation_values(engine, alice, alice_account) -> None:
    res = engine.withdraw(alice_account.index, 1, alice)
    d = res.witness.to_json_dict()
    assert list(d) == UPDATE_FIELDS
    assert _all_strings(d)
    assert d["idx"] == str(alice_account.index)
    assert d["balance"] == "100"
    assert d["amount"] == "1"
    assert d["nonce"] == str(alice_account.nonce)
    assert d["oldStateRoot"] == str(res.proof.old_root)
    assert (d["s"], d["r8x"], d["r8y"]) == (str(res.signature.s), str(res.signature.r8x), str(res.signature.r8y))
    assert d["isOld0"] == "0"


def test_transfer_witness_shape(engine, alice, alice_account, bob_account) -> None:
    res = engine.transfer(alice_account.index, bob_account.index, 1, alice)
    d = res.witness.to_json_dict()
    assert list(d) == TRANSFER_FIELDS
    assert _all_strings(d)
    assert d["senderBalance"] == "100"
    assert d["receiverBalance"] == "0"
    assert d["transferAmount"] == "1"
    assert len(d["senderSiblings"]) == len(d["receiverSiblings"]) == engine.tree.depth + 1
    assert d["senderOldStateRoot"] == str(res.sender_proof.old_root)


def test_transfer_witness_requires_chained_proofs(engine, alice, alice_account, bob_account) -> None:
    res = engine.transfer(alice_account.index, bob_account.index, 1, alice)
    broken = dataclasses.replace(res.receiver_proof, old_root=res.receiver_proof.old_root + 1)
    with pytest.raises(InvariantViolation):
        transfer_witness(
            res.sender_before, res.receiver_before, 1, res.sender_proof, broken, res.signature
        )


def test_write_witness_creates_dirs(tmp_path: Path, engine, alice) -> None:
    res = engine.create_account(Account.draft(ADDR, alice.public_key))
    out = write_witness(res.witness, tmp_path / "create-account-test" / "input.json")
    loaded = json.loads(out.read_text(encoding="utf-8"))
    assert list(loaded) == CREATE_FIELDS
    assert loaded == dict(res.witness.to_json_dict())

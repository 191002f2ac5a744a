"""
Witness records consumed by the ledger circuits.

One record type per operation. `to_json_dict()` returns the exact field names
and order the circuits read; every number is a base-10 string and `isOld0` is
"1" or "0". Account values in update and transfer records are the
pre-mutation snapshot.
"""

from __future__ import annotations

import json
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Union

from core.errors import InvariantViolation
from core.logging import get_logger
from zk.babyjub import Signature
from zk.field import to_decimal

from .account import Account
from .tree import TreeProof

log = get_logger("ledger.witness")

JsonWitness = Dict[str, Union[str, List[str]]]


def _flag(b: bool) -> str:
    return "1" if b else "0"


def _siblings(proof: TreeProof) -> List[str]:
    return [to_decimal(s) for s in proof.siblings]


@dataclass(frozen=True)
class CreateAccountWitness:
    account: Account
    proof: TreeProof

    def to_json_dict(self) -> JsonWitness:
        a, p = self.account, self.proof
        return OrderedDict(
            [
                ("balance", to_decimal(a.balance)),
                ("nonce", to_decimal(a.nonce)),
                ("ethAddr", to_decimal(a.address_int)),
                ("ax", to_decimal(a.ax)),
                ("ay", to_decimal(a.ay)),
                ("oldStateRoot", to_decimal(p.old_root)),
                ("siblings", _siblings(p)),
                ("isOld0", _flag(p.is_old0)),
                ("oldKey", to_decimal(p.old_key)),
                ("oldValue", to_decimal(p.old_value)),
                ("newKey", to_decimal(p.new_key)),
            ]
        )


@dataclass(frozen=True)
class UpdateWitness:
    """Deposit and withdraw share this shape."""

    before: Account
    amount: int
    proof: TreeProof
    signature: Signature

    def to_json_dict(self) -> JsonWitness:
        a, p, sig = self.before, self.proof, self.signature
        return OrderedDict(
            [
                ("idx", to_decimal(a.index)),
                ("balance", to_decimal(a.balance)),
                ("amount", to_decimal(self.amount)),
                ("nonce", to_decimal(a.nonce)),
                ("ethAddr", to_decimal(a.address_int)),
                ("ax", to_decimal(a.ax)),
                ("ay", to_decimal(a.ay)),
                ("oldStateRoot", to_decimal(p.old_root)),
                ("siblings", _siblings(p)),
                ("isOld0", _flag(p.is_old0)),
                ("s", to_decimal(sig.s)),
                ("r8x", to_decimal(sig.r8x)),
                ("r8y", to_decimal(sig.r8y)),
            ]
        )


@dataclass(frozen=True)
class TransferWitness:
    sender_before: Account
    receiver_before: Account
    amount: int
    sender_proof: TreeProof
    receiver_proof: TreeProof
    signature: Signature

    def to_json_dict(self) -> JsonWitness:
        s, r = self.sender_before, self.receiver_before
        sp, rp, sig = self.sender_proof, self.receiver_proof, self.signature
        return OrderedDict(
            [
                ("senderIdx", to_decimal(s.index)),
                ("senderBalance", to_decimal(s.balance)),
                ("senderNonce", to_decimal(s.nonce)),
                ("senderEthAddr", to_decimal(s.address_int)),
                ("senderAx", to_decimal(s.ax)),
                ("senderAy", to_decimal(s.ay)),
                ("senderOldStateRoot", to_decimal(sp.old_root)),
                ("senderSiblings", _siblings(sp)),
                ("senderIsOld0", _flag(sp.is_old0)),
                ("transferAmount", to_decimal(self.amount)),
                ("senderS", to_decimal(sig.s)),
                ("senderR8x", to_decimal(sig.r8x)),
                ("senderR8y", to_decimal(sig.r8y)),
                ("receiverIdx", to_decimal(r.index)),
                ("receiverBalance", to_decimal(r.balance)),
                ("receiverNonce", to_decimal(r.nonce)),
                ("receiverEthAddr", to_decimal(r.address_int)),
                ("receiverAx", to_decimal(r.ax)),
                ("receiverAy", to_decimal(r.ay)),
                ("receiverSiblings", _siblings(rp)),
                ("receiverIsOld0", _flag(rp.is_old0)),
            ]
        )


Witness = Union[CreateAccountWitness, UpdateWitness, TransferWitness]


def create_account_witness(account: Account, proof: TreeProof) -> CreateAccountWitness:
    return CreateAccountWitness(account=account, proof=proof)


def update_witness(before: Account, amount: int, proof: TreeProof, signature: Signature) -> UpdateWitness:
    return UpdateWitness(before=before, amount=amount, proof=proof, signature=signature)


def transfer_witness(
    sender_before: Account,
    receiver_before: Account,
    amount: int,
    sender_proof: TreeProof,
    receiver_proof: TreeProof,
    signature: Signature,
) -> TransferWitness:
    if receiver_proof.old_root != sender_proof.new_root:
        raise InvariantViolation(
            "receiver proof does not chain from sender proof",
            sender_new_root=sender_proof.new_root,
            receiver_old_root=receiver_proof.old_root,
        )
    return TransferWitness(
        sender_before=sender_before,
        receiver_before=receiver_before,
        amount=amount,
        sender_proof=sender_proof,
        receiver_proof=receiver_proof,
        signature=signature,
    )


def write_witness(record: Witness, path: Union[str, Path]) -> Path:
    """Write the record as pretty JSON, creating parent directories."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(record.to_json_dict(), indent=2) + "\n", encoding="utf-8")
    log.info("witness: wrote %s (%s)", p, type(record).__name__)
    return p


__all__ = [
    "CreateAccountWitness",
    "UpdateWitness",
    "TransferWitness",
    "Witness",
    "create_account_witness",
    "update_witness",
    "transfer_witness",
    "write_witness",
]

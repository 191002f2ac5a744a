from __future__ import annotations

import pytest
from eth_utils import to_checksum_address
from hypothesis import given
from hypothesis import strategies as st

from core.errors import DeserializationError, FieldOverflow, InvalidAccount
from core.encoding import cbor_dumps
from ledger.account import ZERO_ADDRESS, Account, commitment, encode, parse_address, validate
from zk.field import FIELD_MODULUS
from zk.poseidon import poseidon

ADDR = "0x" + "ab" * 20
felt = st.integers(min_value=0, max_value=FIELD_MODULUS - 1)


def _acc(**kw) -> Account:
    base = dict(index=1, eth_address=bytes.fromhex("ab" * 20), nonce=0, balance=0, ax=5, ay=6)
    base.update(kw)
    return Account(**base)


# ------------------------------ addresses ------------------------------------


def test_parse_address_forms() -> None:
    raw = bytes.fromhex("ab" * 20)
    assert parse_address(ADDR) == raw
    assert parse_address(ADDR.upper().replace("0X", "0x")) == raw
    assert parse_address(raw) == raw


@pytest.mark.parametrize("bad", ["0x1234", "not-an-address", b"\x00" * 19])
def test_parse_address_rejects(bad) -> None:
    with pytest.raises(InvalidAccount):
        parse_address(bad)


def test_address_int_is_big_endian() -> None:
    a = _acc(eth_address=b"\x00" * 19 + b"\x01")
    assert a.address_int == 1
    assert _acc(eth_address=ZERO_ADDRESS).address_int == 0


# ------------------------------ encoding -------------------------------------


def test_encode_order() -> None:
    a = _acc(index=3, nonce=4, balance=5, eth_address=b"\x00" * 19 + b"\x07", ax=8, ay=9)
    assert encode(a) == (3, 4, 5, 7, 8, 9)
    assert commitment(a) == poseidon([3, 4, 5, 7, 8, 9])


@given(index=st.integers(1, 2**32), nonce=st.integers(0, 2**64), balance=felt, ax=felt, ay=felt)
def test_commitment_changes_with_every_field(index, nonce, balance, ax, ay) -> None:
    a = _acc(index=index, nonce=nonce, balance=balance, ax=ax, ay=ay)
    c = commitment(a)
    assert c == commitment(a)
    assert c != commitment(a.with_changes(nonce=nonce + 1))
    assert c != commitment(a.with_changes(index=index + 1))


def test_validate_bounds() -> None:
    validate(_acc(balance=FIELD_MODULUS - 1))
    with pytest.raises(FieldOverflow):
        validate(_acc(balance=FIELD_MODULUS))
    with pytest.raises(FieldOverflow):
        validate(_acc(nonce=-1))
    with pytest.raises(InvalidAccount):
        validate(_acc(eth_address=b"\x01"))


def test_draft_shape() -> None:
    d = Account.draft(ADDR, (5, 6))
    assert (d.index, d.nonce, d.balance) == (0, 0, 0)
    assert d.public_key == (5, 6)


# ------------------------------ records --------------------------------------


def test_record_roundtrip_preserves_big_values() -> None:
    a = _acc(balance=FIELD_MODULUS - 1, ax=FIELD_MODULUS - 2)
    assert Account.from_bytes(a.to_bytes()) == a


def test_record_tolerates_unknown_fields() -> None:
    rec = _acc().to_record()
    rec["memo"] = "added later"
    assert Account.from_bytes(cbor_dumps(rec)) == _acc()


def test_malformed_records() -> None:
    with pytest.raises(DeserializationError):
        Account.from_bytes(cbor_dumps([1, 2, 3]))
    with pytest.raises(DeserializationError):
        Account.from_bytes(cbor_dumps({"index": 1}))


def test_json_view_uses_checksum_and_strings() -> None:
    j = _acc(balance=7).to_json()
    assert j["balance"] == "7"
    assert j["ethAddress"] == to_checksum_address(ADDR)

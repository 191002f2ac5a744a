"""
Account model and field encoding.

An account is committed into the tree as

    Poseidon([index, nonce, balance, address_int, ax, ay])

where `address_int` is the 20-byte Ethereum address read big-endian. This is
the only supported commitment profile; the order is part of the circuit
contract and must not change.

Records are persisted as canonical CBOR maps keyed by field name so that new
optional attributes can be added without breaking old rows.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Tuple, Union

from eth_utils import to_canonical_address, to_checksum_address

from core.encoding import cbor_dumps, cbor_loads
from core.errors import DeserializationError, FieldOverflow, InvalidAccount
from core.utils.bytes import be_to_int
from zk.field import ensure_field
from zk.poseidon import poseidon

ADDRESS_LEN = 20
ZERO_ADDRESS = b"\x00" * ADDRESS_LEN

RECORD_VERSION = 1


def parse_address(value: Union[str, bytes, bytearray]) -> bytes:
    """Normalize a hex string or raw bytes into a 20-byte address."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != ADDRESS_LEN:
            raise InvalidAccount("eth address must be 20 bytes", length=len(value))
        return bytes(value)
    try:
        return bytes(to_canonical_address(value))
    except (ValueError, TypeError) as e:
        raise InvalidAccount("invalid eth address", value=str(value)) from e


@dataclass(frozen=True)
class Account:
    index: int
    eth_address: bytes
    nonce: int
    balance: int
    ax: int
    ay: int

    @classmethod
    def draft(cls, eth_address: Union[str, bytes], public_key: Tuple[int, int]) -> "Account":
        """A not-yet-created account (index 0, empty balance and nonce)."""
        ax, ay = public_key
        return cls(
            index=0,
            eth_address=parse_address(eth_address),
            nonce=0,
            balance=0,
            ax=int(ax),
            ay=int(ay),
        )

    @property
    def address_int(self) -> int:
        return be_to_int(self.eth_address)

    @property
    def checksum_address(self) -> str:
        return to_checksum_address(self.eth_address)

    @property
    def public_key(self) -> Tuple[int, int]:
        return (self.ax, self.ay)

    def with_changes(self, **changes: Any) -> "Account":
        return replace(self, **changes)

    # --- record codec ---

    def to_record(self) -> Dict[str, Any]:
        return {
            "v": RECORD_VERSION,
            "index": self.index,
            "ethAddress": self.eth_address,
            "nonce": self.nonce,
            "balance": self.balance,
            "ax": self.ax,
            "ay": self.ay,
        }

    def to_bytes(self) -> bytes:
        return cbor_dumps(self.to_record())

    @classmethod
    def from_record(cls, m: Dict[str, Any]) -> "Account":
        try:
            return cls(
                index=int(m["index"]),
                eth_address=bytes(m.get("ethAddress", ZERO_ADDRESS)),
                nonce=int(m.get("nonce", 0)),
                balance=int(m.get("balance", 0)),
                ax=int(m["ax"]),
                ay=int(m["ay"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DeserializationError("malformed account record", error=str(e)) from e

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Account":
        m = cbor_loads(raw)
        if not isinstance(m, dict):
            raise DeserializationError("account record must be a map", got=type(m).__name__)
        return cls.from_record(m)

    def to_json(self) -> Dict[str, str]:
        return {
            "index": str(self.index),
            "ethAddress": self.checksum_address,
            "nonce": str(self.nonce),
            "balance": str(self.balance),
            "ax": str(self.ax),
            "ay": str(self.ay),
        }


def validate(account: Account) -> None:
    """
    Range-check every attribute; raises FieldOverflow (an InvalidAmount) when a
    value is negative or does not fit the scalar field.
    """
    if len(account.eth_address) != ADDRESS_LEN:
        raise InvalidAccount("eth address must be 20 bytes", length=len(account.eth_address))
    for name in ("index", "nonce", "balance", "ax", "ay"):
        value = getattr(account, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise FieldOverflow(name, value)
        ensure_field(name, value)


def encode(account: Account) -> Tuple[int, int, int, int, int, int]:
    """Fixed-order field encoding: (index, nonce, balance, address_int, ax, ay)."""
    return (
        account.index,
        account.nonce,
        account.balance,
        account.address_int,
        account.ax,
        account.ay,
    )


def commitment(account: Account) -> int:
    """Leaf value committed into the tree for `account`."""
    return poseidon(encode(account))


__all__ = [
    "ADDRESS_LEN",
    "ZERO_ADDRESS",
    "Account",
    "parse_address",
    "validate",
    "encode",
    "commitment",
]

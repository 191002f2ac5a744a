"""
core.utils.bytes
================

Lightweight, dependency-free helpers around byte handling:

- Hex helpers: to_hex/from_hex, 0x-prefix management
- Length guard: expect_len
- Integer conversions: be_to_int / int_to_le / le_to_int
- Unsigned LEB128 varints: put_uvarint / read_uvarint, plus fixed-width
  zero-padded variants used for storage keys

This module deliberately does **not** import anything outside the stdlib,
so it can be used across the codebase (including very early boot paths).

Examples
--------
>>> to_hex(b"\\x01\\x02")
'0x0102'
>>> from_hex('0xdeadbeef')
b'\\xde\\xad\\xbe\\xef'
>>> put_uvarint(300)
b'\\xac\\x02'
>>> read_uvarint(b'\\xac\\x02\\x00\\x00')
(300, 2)
>>> padded_uvarint(1, 8)
b'\\x01\\x00\\x00\\x00\\x00\\x00\\x00\\x00'
"""

from __future__ import annotations

from typing import Tuple, Union

BytesLike = Union[bytes, bytearray, memoryview]

MAX_UVARINT_LEN_64 = 10


# -----------------------
# Basic bytes/hex helpers
# -----------------------

def is_byteslike(x: object) -> bool:
    return isinstance(x, (bytes, bytearray, memoryview))


def strip0x(s: str) -> str:
    return s[2:] if s.startswith(("0x", "0X")) else s


def to_hex(data: BytesLike, *, prefix: bool = True) -> str:
    """Return lowercase hex string of data."""
    if not is_byteslike(data):
        raise TypeError("to_hex expects bytes-like")
    h = bytes(data).hex()
    return f"0x{h}" if prefix else h


def from_hex(h: str) -> bytes:
    """Parse hex string with or without 0x prefix; ignores surrounding whitespace."""
    if not isinstance(h, str):
        raise TypeError("from_hex expects str")
    h = strip0x(h.strip())
    if len(h) % 2 == 1:
        h = "0" + h
    try:
        return bytes.fromhex(h)
    except ValueError as e:
        raise ValueError(f"invalid hex string: {e}") from e


def expect_len(data: BytesLike, n: int, *, name: str = "bytes") -> bytes:
    bb = bytes(data)
    if len(bb) != n:
        raise ValueError(f"{name} must be exactly {n} bytes (got {len(bb)})")
    return bb


# ------------------
# Integer conversions
# ------------------

def be_to_int(data: BytesLike) -> int:
    return int.from_bytes(bytes(data), "big")


def int_to_le(x: int, length: int) -> bytes:
    if x < 0:
        raise ValueError("negative integers not supported")
    return x.to_bytes(length, "little")


def le_to_int(data: BytesLike) -> int:
    return int.from_bytes(bytes(data), "little")


# -----------------
# Unsigned varints
# -----------------

def put_uvarint(n: int) -> bytes:
    """Unsigned LEB128 encoding (7 data bits per byte, MSB = continuation)."""
    if n < 0:
        raise ValueError("uvarint must be non-negative")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(0x80 | b)
        else:
            out.append(b)
            return bytes(out)


def read_uvarint(data: BytesLike) -> Tuple[int, int]:
    """
    Decode a uvarint from the start of `data`.

    Returns (value, bytes_consumed). Trailing bytes (e.g. zero padding) are
    left untouched. Raises ValueError on truncated or over-long input.
    """
    value = 0
    shift = 0
    for i, b in enumerate(bytes(data)):
        if i >= MAX_UVARINT_LEN_64:
            break
        value |= (b & 0x7F) << shift
        if not b & 0x80:
            return value, i + 1
        shift += 7
    raise ValueError("truncated or overlong uvarint")


def padded_uvarint(n: int, width: int) -> bytes:
    """uvarint(n) right-padded with zero bytes to `width`."""
    enc = put_uvarint(n)
    if len(enc) > width:
        raise ValueError(f"uvarint({n}) does not fit in {width} bytes")
    return enc.ljust(width, b"\x00")


__all__ = [
    "BytesLike",
    "is_byteslike",
    "strip0x",
    "to_hex",
    "from_hex",
    "expect_len",
    "be_to_int",
    "int_to_le",
    "le_to_int",
    "put_uvarint",
    "read_uvarint",
    "padded_uvarint",
]

"""
Baby Jubjub curve and EdDSA-Poseidon signatures.

Twisted Edwards curve  a·x² + y² = 1 + d·x²·y²  over the BN254 scalar field,
with a = 168700 and d = 168696 (the curve embedded in the circuits). Points are
affine pairs of `Fr` elements; the neutral element is (0, 1).

Signing follows the circomlib EdDSA-Poseidon scheme:

  h      = H512(private_key)                  (64 bytes)
  s      = prune(h[0:32]) as little-endian int
  A      = B8 · (s >> 3)                      public key
  r      = H512(h[32:64] ‖ le32(msg)) mod l
  R8     = B8 · r
  hm     = Poseidon([R8.x, R8.y, A.x, A.y, msg])
  S      = (r + hm · s) mod l

and a signature (R8, S) verifies when  B8·S == R8 + A·(8·hm).

H512 is BLAKE-512 (zk.blake512), so a 32-byte seed yields the same public key
and signatures as circomlibjs and go-iden3-crypto.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Tuple, Union

from core.utils.bytes import expect_len, from_hex, int_to_le, le_to_int, to_hex

from .blake512 import blake512
from .field import FIELD_MODULUS, Fr, ensure_field
from .poseidon import poseidon

A = Fr(168700)
D = Fr(168696)

# Generator of the prime-order subgroup (B8 = 8 · Base).
B8 = (
    Fr(5299619240641551281634865583518297030282874472190772894086521144482721001553),
    Fr(16950150798460657717958625567821834550301663161624707787222815936182638968203),
)
SUBORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041
ORDER = SUBORDER * 8

IDENTITY = (Fr(0), Fr(1))

PRIVATE_KEY_LEN = 32

Point = Tuple[Fr, Fr]


# ---------------------------
# Curve arithmetic
# ---------------------------


def point(x: int, y: int) -> Point:
    return (Fr(ensure_field("x", x)), Fr(ensure_field("y", y)))


def add(p: Point, q: Point) -> Point:
    x1, y1 = p
    x2, y2 = q
    k = D * x1 * x2 * y1 * y2
    x3 = (x1 * y2 + y1 * x2) / (Fr(1) + k)
    y3 = (y1 * y2 - A * x1 * x2) / (Fr(1) - k)
    return (x3, y3)


def mul(p: Point, e: int) -> Point:
    """Double-and-add scalar multiplication."""
    if e < 0:
        raise ValueError("scalar must be non-negative")
    result = IDENTITY
    addend = p
    while e:
        if e & 1:
            result = add(result, addend)
        addend = add(addend, addend)
        e >>= 1
    return result


def on_curve(p: Point) -> bool:
    x, y = p
    x2 = x * x
    y2 = y * y
    return A * x2 + y2 == Fr(1) + D * x2 * y2


def in_subgroup(p: Point) -> bool:
    return on_curve(p) and mul(p, SUBORDER) == IDENTITY


def as_ints(p: Point) -> Tuple[int, int]:
    return (int(p[0]), int(p[1]))


# ---------------------------
# Signatures
# ---------------------------


@dataclass(frozen=True)
class Signature:
    r8x: int
    r8y: int
    s: int

    @property
    def r8(self) -> Point:
        return point(self.r8x, self.r8y)

    def to_dict(self) -> dict:
        return {"r8x": str(self.r8x), "r8y": str(self.r8y), "s": str(self.s)}


def _prune(buf: bytes) -> bytes:
    b = bytearray(buf)
    b[0] &= 0xF8
    b[31] &= 0x7F
    b[31] |= 0x40
    return bytes(b)


class PrivateKey:
    """32-byte EdDSA-Poseidon private key; the public key is derived once and cached."""

    __slots__ = ("_raw", "_h", "_public")

    def __init__(self, raw: bytes) -> None:
        self._raw = expect_len(raw, PRIVATE_KEY_LEN, name="private key")
        self._h = blake512(self._raw)
        self._public: Point | None = None

    @classmethod
    def generate(cls) -> "PrivateKey":
        return cls(secrets.token_bytes(PRIVATE_KEY_LEN))

    @classmethod
    def from_hex(cls, h: str) -> "PrivateKey":
        return cls(from_hex(h))

    def to_hex(self) -> str:
        return to_hex(self._raw)

    def __repr__(self) -> str:
        return "PrivateKey(<redacted>)"

    @property
    def scalar(self) -> int:
        """Pruned little-endian scalar s (a multiple of 8)."""
        return le_to_int(_prune(self._h[:32]))

    def public_key(self) -> Point:
        if self._public is None:
            self._public = mul(B8, self.scalar >> 3)
        return self._public

    def sign_poseidon(self, msg: int) -> Signature:
        ensure_field("msg", msg)
        r = le_to_int(blake512(self._h[32:64] + int_to_le(msg, 32))) % SUBORDER
        r8 = mul(B8, r)
        ax, ay = as_ints(self.public_key())
        r8x, r8y = as_ints(r8)
        hm = poseidon([r8x, r8y, ax, ay, msg])
        s = (r + hm * self.scalar) % SUBORDER
        return Signature(r8x=r8x, r8y=r8y, s=s)


def verify_poseidon(public_key: Union[Point, Tuple[int, int]], msg: int, sig: Signature) -> bool:
    """Check B8·S == R8 + A·(8·hm). Returns False for malformed inputs."""
    if not (0 <= msg < FIELD_MODULUS) or not (0 <= sig.s < SUBORDER):
        return False
    if not (0 <= sig.r8x < FIELD_MODULUS and 0 <= sig.r8y < FIELD_MODULUS):
        return False
    pub = (Fr(int(public_key[0])), Fr(int(public_key[1])))
    r8 = (Fr(sig.r8x), Fr(sig.r8y))
    if not on_curve(pub) or not on_curve(r8):
        return False
    ax, ay = as_ints(pub)
    hm = poseidon([sig.r8x, sig.r8y, ax, ay, msg])
    left = mul(B8, sig.s)
    right = add(r8, mul(pub, 8 * hm))
    return left == right


__all__ = [
    "A",
    "D",
    "B8",
    "SUBORDER",
    "ORDER",
    "IDENTITY",
    "Point",
    "point",
    "add",
    "mul",
    "on_curve",
    "in_subgroup",
    "as_ints",
    "Signature",
    "PrivateKey",
    "verify_poseidon",
]

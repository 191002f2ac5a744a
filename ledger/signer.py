"""
Signing capability injected into the engine per call.

The engine never holds key material: callers pass any object satisfying
`Signer`. `KeySigner` wraps an in-memory Baby Jubjub private key.
"""

from __future__ import annotations

from typing import Protocol, Tuple, runtime_checkable

from zk.babyjub import PrivateKey, Signature, as_ints


@runtime_checkable
class Signer(Protocol):
    @property
    def public_key(self) -> Tuple[int, int]:
        """(ax, ay) of the signing key."""
        ...

    def sign(self, digest: int) -> Signature: ...


class KeySigner:
    __slots__ = ("_key",)

    def __init__(self, key: PrivateKey) -> None:
        self._key = key

    @classmethod
    def generate(cls) -> "KeySigner":
        return cls(PrivateKey.generate())

    @classmethod
    def from_hex(cls, h: str) -> "KeySigner":
        return cls(PrivateKey.from_hex(h))

    @property
    def public_key(self) -> Tuple[int, int]:
        return as_ints(self._key.public_key())

    def sign(self, digest: int) -> Signature:
        return self._key.sign_poseidon(digest)

    def __repr__(self) -> str:
        ax, _ = self.public_key
        return f"KeySigner(ax={str(ax)[:12]}…)"


__all__ = ["Signer", "KeySigner"]

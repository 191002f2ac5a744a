"""
zk — field, hash and signature primitives shared with the ledger circuits.

- `zk.field`    : BN254 scalar field helpers
- `zk.poseidon` : Poseidon hash (circomlib layout and constants, overridable)
- `zk.blake512` : BLAKE-512, the key expansion hash of circomlib EdDSA
- `zk.babyjub`  : Baby Jubjub curve and EdDSA-Poseidon signatures
"""

from .field import FIELD_MODULUS
from .poseidon import poseidon

__all__ = ["FIELD_MODULUS", "poseidon"]

"""
ledger — rollup account ledger.

- `ledger.account` : account record and its field commitment
- `ledger.store`   : persisted records and the index counter
- `ledger.smt`     : circomlib-compatible sparse Merkle tree
- `ledger.tree`    : index-keyed adapter with depth-checked proofs
- `ledger.witness` : circuit witness records (create / deposit / withdraw / transfer)
- `ledger.engine`  : state transition engine tying the above together
- `ledger.cli`     : `rollup-ledger` command line
"""

from .account import Account, commitment
from .engine import StateTransitionEngine
from .signer import KeySigner, Signer

__all__ = ["Account", "commitment", "StateTransitionEngine", "KeySigner", "Signer"]

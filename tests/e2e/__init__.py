"""
End-to-end tests: the reference run through the engine and through the
`rollup-ledger` CLI, checked against the witness files it writes.

Marked `e2e`; they run in the default suite and can be selected with
`-m e2e` (see tests/noxfile.py).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

WITNESS_PATHS = {
    "create": ("create-account-test", "input.json"),
    "deposit": ("deposit-test", "input.json"),
    "withdraw": ("withdraw-test", "input.json"),
    "transfer": ("transfer-test", "input.json"),
}


def read_witness(base: Path, kind: str) -> Dict[str, Any]:
    with base.joinpath(*WITNESS_PATHS[kind]).open("r", encoding="utf-8") as fh:
        return json.load(fh)


__all__ = ["WITNESS_PATHS", "read_witness"]

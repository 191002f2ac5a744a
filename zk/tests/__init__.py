"""
zk.tests helpers

- params_json(params, name=None) -> dict in the circuit export layout
- write_params(dirpath, params, filename) -> Path
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from zk.poseidon import PoseidonParams


def params_json(params: PoseidonParams, name: Optional[str] = None) -> Dict[str, Any]:
    """Serialize params the way circuit tooling exports them (hex strings)."""
    out: Dict[str, Any] = {
        "t": params.t,
        "R_F": params.R_F,
        "R_P": params.R_P,
        "alpha": params.alpha,
        "mds": [[hex(v) for v in row] for row in params.mds],
        "rc": [[hex(v) for v in row] for row in params.rc],
    }
    if name:
        out["name"] = name
    return out


def write_params(dirpath: Path, params: PoseidonParams, filename: str, name: Optional[str] = None) -> Path:
    p = Path(dirpath) / filename
    p.write_text(json.dumps(params_json(params, name)), encoding="utf-8")
    return p


__all__ = ["params_json", "write_params"]

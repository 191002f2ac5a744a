"""
Version helpers for the rollup ledger.

- Exposes __version__.
- Resolution order:
    1) ROLLUP_VERSION env var (authoritative override)
    2) installed distribution metadata (`rollup-ledger`)
    3) DEFAULT_VERSION
"""

from __future__ import annotations

import os
from importlib.metadata import PackageNotFoundError, version as _dist_version

DEFAULT_VERSION = "0.1.0"
DIST_NAME = "rollup-ledger"


def resolve_version() -> str:
    env = os.environ.get("ROLLUP_VERSION")
    if env:
        return env.strip()
    try:
        return _dist_version(DIST_NAME)
    except PackageNotFoundError:
        return DEFAULT_VERSION


__version__ = resolve_version()

__all__ = ["__version__", "resolve_version", "DEFAULT_VERSION"]

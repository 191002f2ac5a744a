"""
Rollup ledger core package.

Ambient substrate shared by the `zk` and `ledger` packages: error types,
structured logging, layered configuration and the key-value store.

Only re-exports the version here to keep import-time side effects near zero.
"""

from __future__ import annotations

from .version import __version__


def get_version() -> str:
    """Return the semantic version string for this package."""
    return __version__


__all__ = ["__version__", "get_version"]

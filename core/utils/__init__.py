"""
core.utils
----------

Small stdlib-only helpers shared by the ledger packages.

- `bytes` : hex/bytes helpers, length guards, unsigned varints

Prefer module-qualified access (`from core.utils import bytes as bytes_utils`)
since the submodule name shadows the builtin.
"""

"""
zk.poseidon
===========

Poseidon hash over the BN254 scalar field (Fr), in the circomlib layout used by
the ledger circuits and the iden3 sparse Merkle tree.

Layout
------
`poseidon(inputs)` hashes 1..(MAX_WIDTH-1) field elements:

  t      = len(inputs) + 1
  state  = [0, *inputs]
  state  = permute(state, params["bn254_t{t}"])
  return state[0]

There is no sponge: one permutation per call, width chosen by arity.

Parameters
----------
The default set for every width 2..7 is circomlib's (go-iden3-crypto uses the
same one): R_F = 8, R_P = 56/57/56/60/60/63, alpha = 5, with round constants
and the Cauchy MDS matrix drawn from the Grain LFSR of the Poseidon reference
parameter script. They are derived on first use of a width and cached.

Other sets can replace a width:

- globally: `register_params(...)`, `load_params_json(...)`, `load_params_path(...)`
- for one block of code: `with params_scope({...}): ...` (contextvar based,
  so one engine's circuit parameters do not leak into another's)

Lookup order is scoped set, then global registry, then circomlib defaults.

JSON schema (example)
---------------------
{
  "field": "bn254:fr",
  "alpha": 5,
  "t": 3,
  "R_F": 8,
  "R_P": 57,
  "mds": [[...t ints...], [...], [...]],
  "rc":  [[...t ints...], ... R_F+R_P rows ...]
}

All integers are encoded as decimal strings, 0x-hex strings or JSON numbers.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, MutableMapping, Optional, Sequence, Union

from core.errors import ConfigError
from core.logging import get_logger

from .field import FIELD_MODULUS, ensure_field

log = get_logger("zk.poseidon")

_MOD = FIELD_MODULUS

MIN_WIDTH = 2
MAX_WIDTH = 7

# circomlib partial round counts for t = 2..7
CIRCOM_PARTIAL_ROUNDS = {2: 56, 3: 57, 4: 56, 5: 60, 6: 60, 7: 63}
FULL_ROUNDS = 8
FIELD_BITS = 254


def _fpow_alpha(x: int, alpha: int) -> int:
    if alpha == 5:
        x2 = x * x % _MOD
        x4 = x2 * x2 % _MOD
        return x * x4 % _MOD
    return pow(x, alpha, _MOD)


# ---------------------------
# Parameters & registry
# ---------------------------


@dataclass(frozen=True)
class PoseidonParams:
    t: int  # state width
    R_F: int  # number of full rounds
    R_P: int  # number of partial rounds
    alpha: int  # S-box exponent (odd >= 3, commonly 5)
    mds: List[List[int]]  # t x t
    rc: List[List[int]]  # (R_F + R_P) x t

    def validate(self) -> None:
        if self.t < MIN_WIDTH:
            raise ValueError(f"t must be >= {MIN_WIDTH}")
        if self.R_F % 2 != 0:
            raise ValueError("R_F must be even (split half-before/after partial rounds)")
        if self.alpha < 3 or self.alpha % 2 == 0:
            raise ValueError("alpha must be an odd integer >= 3")
        if len(self.mds) != self.t or any(len(row) != self.t for row in self.mds):
            raise ValueError("mds must be t x t")
        expected_rounds = self.R_F + self.R_P
        if len(self.rc) != expected_rounds or any(len(row) != self.t for row in self.rc):
            raise ValueError(f"rc must be (R_F+R_P) x t = {expected_rounds} x {self.t}")


ParamSet = MutableMapping[str, PoseidonParams]

_PARAMS_REGISTRY: Dict[str, PoseidonParams] = {}
_SCOPED: ContextVar[Optional[Mapping[str, PoseidonParams]]] = ContextVar("poseidon_params", default=None)


def params_name(t: int) -> str:
    return f"bn254_t{t}"


_DEFAULT_NAMES = {params_name(t): t for t in CIRCOM_PARTIAL_ROUNDS}


def register_params(name: str, params: PoseidonParams, into: Optional[ParamSet] = None) -> None:
    """
    Register a parameter set under `name`, replacing any previous set.

    With `into`, the set goes to that mapping (e.g. one engine's parameters)
    instead of the process-wide registry.
    """
    if not name or not isinstance(name, str):
        raise ValueError("name must be a non-empty string")
    params.validate()
    target = _PARAMS_REGISTRY if into is None else into
    if into is None and name in _PARAMS_REGISTRY and _PARAMS_REGISTRY[name] != params:
        log.warning("poseidon: replacing process-wide params name=%s", name)
    target[name] = params


def reset_params() -> None:
    """Drop every process-wide override; lookups fall back to circomlib defaults."""
    _PARAMS_REGISTRY.clear()


def get_params(name: str) -> PoseidonParams:
    scoped = _SCOPED.get()
    if scoped is not None and name in scoped:
        return scoped[name]
    if name in _PARAMS_REGISTRY:
        return _PARAMS_REGISTRY[name]
    if name in _DEFAULT_NAMES:
        return circomlib_params(_DEFAULT_NAMES[name])
    raise KeyError(
        f"Poseidon params '{name}' are not registered. "
        "Load them with load_params_json(...) or register_params(...)."
    )


@contextmanager
def params_scope(params: Mapping[str, PoseidonParams]) -> Iterator[None]:
    """Hash with `params` (layered over any enclosing scope) inside the block."""
    token = _SCOPED.set({**(_SCOPED.get() or {}), **params})
    try:
        yield
    finally:
        _SCOPED.reset(token)


def _to_int(x: Union[int, str]) -> int:
    if isinstance(x, int):
        return x % _MOD
    s = str(x).strip().lower()
    if s.startswith("0x"):
        return int(s, 16) % _MOD
    return int(s) % _MOD


def load_params_json(
    path: Union[str, Path], name: Optional[str] = None, into: Optional[ParamSet] = None
) -> PoseidonParams:
    """
    Load a Poseidon params JSON file and register it (globally, or in `into`).

    Name resolution: explicit `name`, then the file's "name" key, then
    `bn254_t{t}`.
    """
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        raw = json.load(f)

    t = int(raw["t"])
    params = PoseidonParams(
        t=t,
        R_F=int(raw["R_F"]),
        R_P=int(raw["R_P"]),
        alpha=int(raw.get("alpha", 5)),
        mds=[[_to_int(v) for v in row] for row in raw["mds"]],
        rc=[[_to_int(v) for v in row] for row in raw["rc"]],
    )
    reg_name = name or raw.get("name") or params_name(t)
    register_params(reg_name, params, into=into)
    log.info("poseidon: loaded params name=%s t=%s R_F=%s R_P=%s file=%s", reg_name, t, params.R_F, params.R_P, p)
    return params


def load_params_path(path: Union[str, Path], into: Optional[ParamSet] = None) -> List[str]:
    """
    Load a single params file or every *.json file of a directory.

    Returns the registered names. Raises ConfigError on unreadable or
    malformed files.
    """
    p = Path(path)
    files = sorted(p.glob("*.json")) if p.is_dir() else [p]
    if not files:
        raise ConfigError("no poseidon params files found", path=str(p))
    names: List[str] = []
    for f in files:
        try:
            params = load_params_json(f, into=into)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigError("invalid poseidon params file", path=str(f), error=str(e)) from e
        names.append(params_name(params.t))
    return names


# ---------------------------
# circomlib parameters (Grain LFSR)
# ---------------------------

_GRAIN_MASK = (1 << 80) - 1


def _lfsr(state: int) -> Iterator[int]:
    # x^80 + x^62 + x^51 + x^38 + x^23 + x^13 + 1; bit i of the register
    # sequence is bit (79 - i) of `state`
    while True:
        bit = ((state >> 17) ^ (state >> 28) ^ (state >> 41) ^ (state >> 56) ^ (state >> 66) ^ (state >> 79)) & 1
        state = ((state << 1) & _GRAIN_MASK) | bit
        yield bit


def _grain_bits(t: int, R_F: int, R_P: int) -> Iterator[int]:
    """
    Self-shrinking Grain stream seeded with the parameter description:
    field = prime (0b01), S-box = x^alpha (0b0000), 254-bit elements, t, R_F,
    R_P, then thirty 1 bits. The first 160 clocks are discarded; afterwards
    bits come in pairs and the second is emitted only when the first is 1.
    """
    seed = f"{1:02b}{0:04b}{FIELD_BITS:012b}{t:012b}{R_F:010b}{R_P:010b}" + "1" * 30
    raw = _lfsr(int(seed, 2))
    for _ in range(160):
        next(raw)
    for first in raw:
        second = next(raw)
        if first:
            yield second


def _take(bits: Iterator[int], n: int) -> int:
    v = 0
    for _ in range(n):
        v = (v << 1) | next(bits)
    return v


@lru_cache(maxsize=None)
def circomlib_params(t: int) -> PoseidonParams:
    """
    circomlib's parameter set for width `t`.

    Round constants are rejection-sampled 254-bit draws below the modulus; the
    MDS matrix is M[i][j] = 1 / (x_i + y_j) from the next 2t draws (reduced mod
    p), redrawn when the x/y values collide.
    """
    if t not in CIRCOM_PARTIAL_ROUNDS:
        raise ValueError(f"no circomlib round count for t={t}")
    R_P = CIRCOM_PARTIAL_ROUNDS[t]
    bits = _grain_bits(t, FULL_ROUNDS, R_P)

    flat: List[int] = []
    while len(flat) < (FULL_ROUNDS + R_P) * t:
        v = _take(bits, FIELD_BITS)
        if v < _MOD:
            flat.append(v)
    rc = [flat[r * t : (r + 1) * t] for r in range(FULL_ROUNDS + R_P)]

    while True:
        draws = [_take(bits, FIELD_BITS) % _MOD for _ in range(2 * t)]
        xs, ys = draws[:t], draws[t:]
        if len(set(draws)) == 2 * t and all((x + y) % _MOD for x in xs for y in ys):
            break
    mds = [[pow(x + y, _MOD - 2, _MOD) for y in ys] for x in xs]

    params = PoseidonParams(t=t, R_F=FULL_ROUNDS, R_P=R_P, alpha=5, mds=mds, rc=rc)
    params.validate()
    log.debug("poseidon: derived circomlib params t=%s R_P=%s", t, R_P)
    return params


# ---------------------------
# Permutation
# ---------------------------


def _apply_mds(state: List[int], mds: List[List[int]]) -> List[int]:
    t = len(state)
    return [sum(mds[i][j] * state[j] for j in range(t)) % _MOD for i in range(t)]


def poseidon_permute(state: Sequence[int], params: PoseidonParams) -> List[int]:
    """
    Poseidon permutation.

    Round schedule:
      - First R_F/2 full rounds (S-box on all t elements)
      - R_P partial rounds (S-box on the *first* element only)
      - Last  R_F/2 full rounds

    Each round: add round constants, S-box, MDS mix.
    """
    t, R_F, R_P, alpha, mds, rc = params.t, params.R_F, params.R_P, params.alpha, params.mds, params.rc
    if len(state) != t:
        raise ValueError(f"state length {len(state)} != t={t}")

    x = [int(v) % _MOD for v in state]
    half = R_F // 2
    for r in range(R_F + R_P):
        row = rc[r]
        x = [(x[i] + row[i]) % _MOD for i in range(t)]
        if r < half or r >= half + R_P:
            x = [_fpow_alpha(v, alpha) for v in x]
        else:
            x[0] = _fpow_alpha(x[0], alpha)
        x = _apply_mds(x, mds)
    return x


# ---------------------------
# Hash interface
# ---------------------------


def poseidon(inputs: Sequence[int]) -> int:
    """
    Hash 1..MAX_WIDTH-1 field elements (circomlib layout, see module docs).

    Inputs must already be canonical field elements; out-of-range values raise
    FieldOverflow rather than being reduced.
    """
    n = len(inputs)
    if not (1 <= n <= MAX_WIDTH - 1):
        raise ValueError(f"poseidon supports 1..{MAX_WIDTH - 1} inputs (got {n})")
    state = [0]
    for i, v in enumerate(inputs):
        state.append(ensure_field(f"input[{i}]", int(v)))
    params = get_params(params_name(n + 1))
    return poseidon_permute(state, params)[0]


__all__ = [
    "PoseidonParams",
    "ParamSet",
    "MAX_WIDTH",
    "params_name",
    "register_params",
    "reset_params",
    "get_params",
    "params_scope",
    "load_params_json",
    "load_params_path",
    "circomlib_params",
    "poseidon_permute",
    "poseidon",
]

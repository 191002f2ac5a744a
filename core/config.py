"""
Rollup ledger configuration loader.

Goals
-----
- Zero external deps (stdlib only).
- Layered config with clear precedence:
    1) Explicit overrides passed to `load()` (highest)
    2) Environment variables (ROLLUP_*)
    3) Config file (TOML or JSON)
    4) Built-in defaults (lowest)
- Safe, typed dataclasses with validation.

This module configures:
  - data, witness and log paths
  - database URI
  - sparse Merkle tree depth
  - Poseidon parameter file(s) shared with the circuits
  - log level / format
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError

# ------------------------------
# Defaults & helpers
# ------------------------------

DEFAULT_TREE_DEPTH = 10
MIN_TREE_DEPTH = 2
MAX_TREE_DEPTH = 64
DEFAULT_DB_FILENAME = "state.db"
DEFAULT_LOG_LEVEL = "INFO"


def _expand(p: str | Path) -> Path:
    return Path(p).expanduser().resolve()


def _default_data_dir() -> Path:
    override = os.environ.get("ROLLUP_DATA_DIR")
    if override:
        return _expand(override)
    return _expand(Path.cwd() / ".rollup")


def _parse_bool(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None or v == "":
        return default
    try:
        return int(v, 0)
    except ValueError as e:
        raise ConfigError(f"{name} must be int", value=v) from e


# ------------------------------
# Typed configuration model
# ------------------------------

@dataclass
class PathsConfig:
    data_dir: Path
    witness_dir: Path
    logs_dir: Path

    @staticmethod
    def defaults() -> "PathsConfig":
        root = _default_data_dir()
        return PathsConfig(
            data_dir=root,
            witness_dir=_expand(Path.cwd()),
            logs_dir=root / "logs",
        )


@dataclass
class DBConfig:
    uri: str  # e.g. sqlite:///home/user/.rollup/state.db or memory://

    @staticmethod
    def sqlite_default(paths: PathsConfig) -> "DBConfig":
        return DBConfig(uri=f"sqlite:///{paths.data_dir / DEFAULT_DB_FILENAME}")


@dataclass
class TreeConfig:
    depth: int = DEFAULT_TREE_DEPTH

    def validate(self) -> None:
        if not (MIN_TREE_DEPTH <= self.depth <= MAX_TREE_DEPTH):
            raise ConfigError("tree depth out of range", depth=self.depth, max=MAX_TREE_DEPTH)


@dataclass
class HashConfig:
    # File or directory of Poseidon parameter JSON files exported from the circuits.
    poseidon_params: Optional[Path] = None

    def validate(self) -> None:
        if self.poseidon_params is not None and not self.poseidon_params.exists():
            raise ConfigError("poseidon params path does not exist", path=str(self.poseidon_params))


@dataclass
class LogConfig:
    level: str = DEFAULT_LOG_LEVEL
    format: str = ""  # "json" | "text" | "" (auto)
    to_file: bool = False

    def validate(self) -> None:
        if self.level.upper() not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ConfigError("unknown log level", level=self.level)
        if self.format not in {"", "json", "text"}:
            raise ConfigError("unknown log format", format=self.format)


@dataclass
class Config:
    paths: PathsConfig
    db: DBConfig
    tree: TreeConfig
    hash: HashConfig
    log: LogConfig

    def ensure_dirs(self) -> None:
        self.paths.data_dir.mkdir(parents=True, exist_ok=True)
        self.paths.witness_dir.mkdir(parents=True, exist_ok=True)
        if self.log.to_file:
            self.paths.logs_dir.mkdir(parents=True, exist_ok=True)

    def validate(self) -> None:
        self.tree.validate()
        self.hash.validate()
        self.log.validate()
        if not self.db.uri.strip():
            raise ConfigError("db uri must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        def _normalize(obj: Any) -> Any:
            if isinstance(obj, Path):
                return str(obj)
            if isinstance(obj, dict):
                return {k: _normalize(v) for k, v in obj.items()}
            return obj

        return _normalize(asdict(self))


# ------------------------------
# File loader (TOML / JSON)
# ------------------------------

def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError("config file not found", path=str(path))
    suffix = path.suffix.lower()
    with path.open("rb") as f:
        if suffix in {".toml", ".tml"}:
            return tomllib.load(f)
        if suffix == ".json":
            return json.load(f)
    raise ConfigError("unsupported config format; use .toml or .json", suffix=suffix)


def _merge_dict(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow + nested dict merge: values in b override a."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


# ------------------------------
# Main loader
# ------------------------------

def load(config_file: Optional[str | Path] = None, **overrides: Any) -> Config:
    """
    Load the ledger configuration.

    Precedence: overrides > env > file > defaults.

    Parameters
    ----------
    config_file : str | Path | None
        Optional path to a TOML or JSON file with keys:
          paths: { data_dir, witness_dir, logs_dir }
          db:    { uri }
          tree:  { depth }
          hash:  { poseidon_params }
          log:   { level, format, to_file }

    overrides : Any
        Keyword overrides, e.g. load(tree={"depth": 16}, db={"uri": "memory://"})
    """
    paths = PathsConfig.defaults()
    base: Dict[str, Any] = {
        "paths": {k: str(v) for k, v in asdict(paths).items()},
        "db": asdict(DBConfig.sqlite_default(paths)),
        "tree": asdict(TreeConfig()),
        "hash": {"poseidon_params": None},
        "log": asdict(LogConfig()),
    }

    if config_file:
        base = _merge_dict(base, _load_file(_expand(config_file)))

    env = os.environ
    if "ROLLUP_DATA_DIR" in env:
        base["paths"]["data_dir"] = env["ROLLUP_DATA_DIR"]
        if "db" not in (overrides or {}) and "ROLLUP_DB_URI" not in env:
            base["db"]["uri"] = f"sqlite:///{_expand(env['ROLLUP_DATA_DIR']) / DEFAULT_DB_FILENAME}"
    if "ROLLUP_WITNESS_DIR" in env:
        base["paths"]["witness_dir"] = env["ROLLUP_WITNESS_DIR"]
    if "ROLLUP_LOGS_DIR" in env:
        base["paths"]["logs_dir"] = env["ROLLUP_LOGS_DIR"]
    if "ROLLUP_DB_URI" in env:
        base["db"]["uri"] = env["ROLLUP_DB_URI"]
    if "ROLLUP_TREE_DEPTH" in env:
        base["tree"]["depth"] = _env_int("ROLLUP_TREE_DEPTH", DEFAULT_TREE_DEPTH)
    if "ROLLUP_POSEIDON_PARAMS" in env:
        base["hash"]["poseidon_params"] = env["ROLLUP_POSEIDON_PARAMS"]
    if "ROLLUP_LOG_LEVEL" in env:
        base["log"]["level"] = env["ROLLUP_LOG_LEVEL"].strip().upper()
    if "ROLLUP_LOG_FORMAT" in env:
        base["log"]["format"] = env["ROLLUP_LOG_FORMAT"].strip().lower()
    if "ROLLUP_LOG_TO_FILE" in env:
        base["log"]["to_file"] = _parse_bool(env["ROLLUP_LOG_TO_FILE"])

    if overrides:
        base = _merge_dict(base, overrides)

    try:
        params = base["hash"].get("poseidon_params")
        cfg = Config(
            paths=PathsConfig(
                data_dir=_expand(base["paths"]["data_dir"]),
                witness_dir=_expand(base["paths"]["witness_dir"]),
                logs_dir=_expand(base["paths"]["logs_dir"]),
            ),
            db=DBConfig(uri=str(base["db"]["uri"])),
            tree=TreeConfig(depth=int(base["tree"]["depth"])),
            hash=HashConfig(poseidon_params=_expand(params) if params else None),
            log=LogConfig(
                level=str(base["log"]["level"]).upper(),
                format=str(base["log"].get("format") or ""),
                to_file=bool(base["log"].get("to_file", False)),
            ),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError("malformed configuration", error=str(e)) from e

    cfg.validate()
    return cfg


__all__ = [
    "Config",
    "PathsConfig",
    "DBConfig",
    "TreeConfig",
    "HashConfig",
    "LogConfig",
    "DEFAULT_TREE_DEPTH",
    "load",
]

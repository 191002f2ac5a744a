"""
Rollup ledger — core.logging
----------------------------

Structured logging on top of the stdlib `logging` package.

- One JSON object per line, or a compact text line (colored on a TTY)
- Per-operation context carried in a ContextVar: every record emitted inside
  `trace_scope(op="deposit", index=1)` carries `trace_id`, `op`, `index`
- Field elements (ints above 2**53) are written as decimal strings, bytes as
  0x-hex; a logged LedgerError contributes its stable `code`

Usage
-----
    from core import logging as clog

    clog.configure(level="INFO")          # once, at process start
    log = clog.get_logger("ledger.engine")

    with clog.trace_scope(component="ledger", op="deposit", index=1):
        log.info("deposit: applied")

`configure()` only replaces handlers it installed itself, so test harnesses and
embedding applications keep their own.
"""

from __future__ import annotations

import datetime as _dt
import io
import json
import logging
import os
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

_FIELDS: ContextVar[Dict[str, Any]] = ContextVar("ledger_log_fields", default={})

# Shown first, in this order, by the text formatter.
TEXT_KEYS = ("op", "index", "receiver", "trace_id")

_SAFE_INT = 1 << 53
_OWNED = "_ledger_handler"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_STD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "taskName"}


# ----------------------------
# Context
# ----------------------------


def context() -> Dict[str, Any]:
    return dict(_FIELDS.get())


def bind(**fields: Any) -> None:
    _FIELDS.set({**_FIELDS.get(), **{k: jsonable(v) for k, v in fields.items()}})


def unbind(*keys: str) -> None:
    _FIELDS.set({k: v for k, v in _FIELDS.get().items() if k not in keys})


def clear_context() -> None:
    _FIELDS.set({})


def short_uuid() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def trace_scope(trace_id: Optional[str] = None, **fields: Any) -> Iterator[str]:
    """
    Bind `fields` plus a trace id for the duration of the block and yield the
    trace id. An enclosing scope's trace id is reused unless one is given.
    """
    saved = _FIELDS.get()
    tid = trace_id or saved.get("trace_id") or short_uuid()
    token = _FIELDS.set({**saved, "trace_id": tid, **{k: jsonable(v) for k, v in fields.items()}})
    try:
        yield tid
    finally:
        _FIELDS.reset(token)


# ----------------------------
# Value coercion
# ----------------------------


def jsonable(v: Any) -> Any:
    """Coerce a log field to something json.dumps writes losslessly."""
    if v is None or isinstance(v, (bool, str, float)):
        return v
    if isinstance(v, int):
        return v if -_SAFE_INT < v < _SAFE_INT else str(v)
    if isinstance(v, (bytes, bytearray, memoryview)):
        return "0x" + bytes(v).hex()
    if isinstance(v, (list, tuple)):
        return [jsonable(x) for x in v]
    if isinstance(v, dict):
        return {str(k): jsonable(x) for k, x in v.items()}
    to_dict = getattr(v, "to_dict", None)
    if callable(to_dict):
        return jsonable(to_dict())
    return str(v)


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STD_ATTRS and not k.startswith("_")}


def _error_code(record: logging.LogRecord) -> Optional[str]:
    if not record.exc_info or record.exc_info[1] is None:
        return None
    code = getattr(record.exc_info[1], "code", None)
    return None if code is None else str(getattr(code, "value", code))


def _timestamp(record: logging.LogRecord) -> str:
    return _dt.datetime.fromtimestamp(record.created, _dt.timezone.utc).isoformat(timespec="milliseconds")


# ----------------------------
# Formatters
# ----------------------------


class JSONFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        out: Dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        out.update(_FIELDS.get())
        for k, v in _record_fields(record).items():
            out.setdefault(k, jsonable(v))
        code = _error_code(record)
        if code:
            out["error_code"] = code
        if record.exc_info:
            out["exc"] = "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return json.dumps(out, separators=(",", ":"), default=str)


_COLORS = {
    logging.DEBUG: "\x1b[90m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[1;35m",
}
_RESET = "\x1b[0m"


class TextFormatter(logging.Formatter):
    """
    12:34:56.789 INFO  ledger.engine [op=deposit index=1 trace_id=ab12..] deposit: idx=1 amount=5
    """

    def __init__(self, color: bool = False) -> None:
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        fields = {**_FIELDS.get(), **{k: jsonable(v) for k, v in _record_fields(record).items()}}
        ordered = [k for k in TEXT_KEYS if k in fields] + sorted(k for k in fields if k not in TEXT_KEYS)
        ctx = " ".join(f"{k}={fields[k]}" for k in ordered)

        level = f"{record.levelname:<5}"
        if self.color:
            level = f"{_COLORS.get(record.levelno, '')}{level}{_RESET}"
        line = f"{_timestamp(record)[11:23]} {level} {record.name}"
        if ctx:
            line += f" [{ctx}]"
        line += f" {record.getMessage()}"
        if record.exc_info:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return line


# ----------------------------
# Setup
# ----------------------------


def _is_tty(stream: Any) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


def _level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def _own(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED, True)
    return handler


def configure(
    *,
    json: Optional[bool] = None,
    level: str | int = "INFO",
    stream: Optional[io.TextIOBase] = None,
    file_path: Optional[Path | str] = None,
) -> None:
    """
    Install the ledger's console handler (and optionally a JSON file handler)
    on the root logger.

    json=None picks the format from ROLLUP_LOG_FORMAT, falling back to text on
    a TTY and JSON otherwise. Calling again replaces the previous handlers.
    """
    stream = stream if stream is not None else sys.stderr
    if json is None:
        env = os.environ.get("ROLLUP_LOG_FORMAT", "").strip().lower()
        json = env == "json" if env in ("json", "text") else not _is_tty(stream)

    root = logging.getLogger()
    for h in [h for h in root.handlers if getattr(h, _OWNED, False)]:
        root.removeHandler(h)
        h.close()
    lvl = _level(level)
    root.setLevel(lvl)

    console = _own(logging.StreamHandler(stream))
    color = _is_tty(stream) and "NO_COLOR" not in os.environ
    console.setFormatter(JSONFormatter() if json else TextFormatter(color=color))
    console.setLevel(lvl)
    root.addHandler(console)

    if file_path:
        p = Path(file_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        fh = _own(logging.FileHandler(p, encoding="utf-8"))
        fh.setFormatter(JSONFormatter())
        fh.setLevel(lvl)
        root.addHandler(fh)


def configure_from_config(cfg: Any) -> None:
    """Apply `core.config.Config.log`; file logs go to <logs_dir>/ledger.log."""
    fmt = (cfg.log.format or "").strip().lower()
    configure(
        json={"json": True, "text": False}.get(fmt),
        level=cfg.log.level,
        file_path=Path(cfg.paths.logs_dir) / "ledger.log" if cfg.log.to_file else None,
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or "ledger")


class ContextAdapter(logging.LoggerAdapter):
    """Adds constant fields to every record; call-site `extra=` wins on clashes."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def with_fields(logger: logging.Logger, **fields: Any) -> ContextAdapter:
    return ContextAdapter(logger, {k: jsonable(v) for k, v in fields.items()})


__all__ = [
    "bind",
    "unbind",
    "clear_context",
    "context",
    "short_uuid",
    "trace_scope",
    "jsonable",
    "configure",
    "configure_from_config",
    "get_logger",
    "with_fields",
    "ContextAdapter",
    "JSONFormatter",
    "TextFormatter",
]

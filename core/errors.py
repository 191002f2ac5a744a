"""
Rollup ledger — core.errors
---------------------------

A small, consistent error system for the ledger and its primitives.

Design goals
------------
- One root `LedgerError` with machine-friendly `code` and optional `data`.
- Concrete subclasses for the failure kinds a state transition can report
  (missing records, duplicate leaves, bad amounts, insufficient funds) plus the
  fatal `InvariantViolation`.
- Non-invasive helpers to enrich errors with contextual fields.
- Safe JSON representation (`to_dict`) suitable for logs and CLI output.
- Clear separation of *retryable* vs *permanent* failures.

Validation errors are raised before any write reaches storage. An
`InvariantViolation` means the tree or the encoding is corrupted; the engine
stops accepting writes once one has been raised.

This module uses only stdlib to avoid boot-time dependency cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

# ---------------------------------------------------------------------------
# Error codes & classes
# ---------------------------------------------------------------------------


class Severity(IntEnum):
    """Optional severity hint for operators."""

    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


class LedgerErrorCode(str, Enum):
    # Generic
    INTERNAL = "LEDGER/INTERNAL"

    # Config / environment / startup
    CONFIG = "LEDGER/CONFIG"

    # Encoding / decoding
    SERIALIZATION = "LEDGER/SERIALIZATION"
    DESERIALIZATION = "LEDGER/DESERIALIZATION"

    # DB / storage / tree
    DB = "LEDGER/DB"
    NOT_FOUND = "LEDGER/NOT_FOUND"
    DUPLICATE_KEY = "LEDGER/DUPLICATE_KEY"
    TREE_FULL = "LEDGER/TREE_FULL"

    # Transition validation
    INVALID_AMOUNT = "LEDGER/INVALID_AMOUNT"
    FIELD_OVERFLOW = "LEDGER/FIELD_OVERFLOW"
    INSUFFICIENT_BALANCE = "LEDGER/INSUFFICIENT_BALANCE"
    INVALID_ACCOUNT = "LEDGER/INVALID_ACCOUNT"
    SELF_TRANSFER = "LEDGER/SELF_TRANSFER"
    SIGNER_MISMATCH = "LEDGER/SIGNER_MISMATCH"

    # Fatal
    INVARIANT = "LEDGER/INVARIANT_VIOLATION"
    HALTED = "LEDGER/HALTED"


@dataclass(eq=False)
class LedgerError(Exception):
    """
    Root error for ledger components.

    Attributes
    ----------
    code: str
        Machine-stable error code (see LedgerErrorCode).
    message: str
        Human hint suitable for logs; avoid leaking secrets.
    data: dict
        Optional machine data (indices, amounts, roots). Must be JSON-serializable.
    severity: Severity
        Optional severity hint (default ERROR).
    retryable: bool
        Whether the operation may succeed on retry without changing inputs.
    cause: Optional[BaseException]
        Wrapped original exception; not included in equality comparison.
    """

    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    severity: Severity = Severity.ERROR
    retryable: bool = False
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        super().__init__(f"{self.code}: {self.message}")

    # ---------------- Public API ----------------

    def with_context(self, **ctx: Any) -> "LedgerError":
        """Return a *new* error with extra context merged (does not mutate)."""
        d = dict(self.data)
        for k, v in ctx.items():
            d[k] = _coerce_json(v)
        return self._clone(data=d)

    def with_cause(self, exc: BaseException) -> "LedgerError":
        """Attach/replace the causal exception (returns a new instance)."""
        return self._clone(data=dict(self.data), cause=exc)

    def _clone(self, **changes: Any) -> "LedgerError":
        # Subclasses have narrower __init__ signatures; copy state instead.
        err = type(self).__new__(type(self))
        err.__dict__.update(self.__dict__)
        err.__dict__.update(changes)
        err.args = self.args
        return err

    @property
    def fatal(self) -> bool:
        return self.severity >= Severity.CRITICAL

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """JSON-safe shape suitable for logs and CLI output."""
        out = {
            "code": str(getattr(self.code, "value", self.code)),
            "message": self.message,
            "data": _coerce_json(self.data),
            "severity": int(self.severity),
            "retryable": self.retryable,
        }
        if include_cause and self.cause is not None:
            out["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return out

    def __str__(self) -> str:  # pragma: no cover - human formatting
        code = getattr(self.code, "value", self.code)
        parts = [f"{code}: {self.message}"]
        if self.data:
            preview = ", ".join(f"{k}={_preview(v)}" for k, v in self.data.items())
            parts.append(f"[{preview}]")
        return " ".join(parts)


# Concrete subclasses (thin wrappers for ergonomics)
class InternalError(LedgerError):
    def __init__(self, message="internal error", **data: Any) -> None:
        super().__init__(
            code=LedgerErrorCode.INTERNAL, message=message, data=_jsonmap(data)
        )


class ConfigError(LedgerError):
    def __init__(self, message="invalid configuration", **data: Any) -> None:
        super().__init__(
            code=LedgerErrorCode.CONFIG,
            message=message,
            data=_jsonmap(data),
            retryable=False,
        )


class SerializationError(LedgerError):
    def __init__(self, message="serialization failed", **data: Any) -> None:
        super().__init__(
            code=LedgerErrorCode.SERIALIZATION, message=message, data=_jsonmap(data)
        )


class DeserializationError(LedgerError):
    def __init__(self, message="deserialization failed", **data: Any) -> None:
        super().__init__(
            code=LedgerErrorCode.DESERIALIZATION, message=message, data=_jsonmap(data)
        )


class DatabaseError(LedgerError):
    def __init__(
        self, message="database error", retryable: bool = False, **data: Any
    ) -> None:
        super().__init__(
            code=LedgerErrorCode.DB,
            message=message,
            data=_jsonmap(data),
            retryable=retryable,
        )


class NotFound(LedgerError):
    """Account record or tree key absent."""

    def __init__(self, key: Any, space: str = "accounts") -> None:
        super().__init__(
            code=LedgerErrorCode.NOT_FOUND,
            message=f"not found in {space}",
            data=_jsonmap({"key": key, "space": space}),
        )


class DuplicateKey(LedgerError):
    """Re-insertion of a leaf that is already committed."""

    def __init__(self, key: Any, space: str = "tree") -> None:
        super().__init__(
            code=LedgerErrorCode.DUPLICATE_KEY,
            message=f"key already exists in {space}",
            data=_jsonmap({"key": key, "space": space}),
        )


class TreeFull(LedgerError):
    def __init__(self, key: Any, depth: int) -> None:
        super().__init__(
            code=LedgerErrorCode.TREE_FULL,
            message="key does not fit in the tree",
            data=_jsonmap({"key": key, "depth": depth}),
        )


class InvalidAmount(LedgerError):
    def __init__(self, message="invalid amount", **data: Any) -> None:
        super().__init__(
            code=LedgerErrorCode.INVALID_AMOUNT, message=message, data=_jsonmap(data)
        )


class FieldOverflow(InvalidAmount):
    """A value does not fit in the scalar field; it is never reduced silently."""

    def __init__(self, name: str, value: int) -> None:
        super().__init__(message=f"{name} out of field range", name=name, value=value)
        self.code = LedgerErrorCode.FIELD_OVERFLOW


class InsufficientBalance(LedgerError):
    def __init__(self, index: int, needed: int, balance: int) -> None:
        super().__init__(
            code=LedgerErrorCode.INSUFFICIENT_BALANCE,
            message="insufficient balance",
            data={"index": index, "needed": str(needed), "balance": str(balance)},
        )


class InvalidAccount(LedgerError):
    def __init__(self, message="invalid account", **data: Any) -> None:
        super().__init__(
            code=LedgerErrorCode.INVALID_ACCOUNT, message=message, data=_jsonmap(data)
        )


class SelfTransfer(LedgerError):
    def __init__(self, index: int) -> None:
        super().__init__(
            code=LedgerErrorCode.SELF_TRANSFER,
            message="sender and receiver are the same account",
            data={"index": index},
        )


class SignerMismatch(LedgerError):
    def __init__(self, index: int) -> None:
        super().__init__(
            code=LedgerErrorCode.SIGNER_MISMATCH,
            message="signer key does not match the account public key",
            data={"index": index},
        )


class InvariantViolation(LedgerError):
    """Internal consistency check failed; the tree or encoding is corrupted."""

    def __init__(self, message="invariant violated", **data: Any) -> None:
        super().__init__(
            code=LedgerErrorCode.INVARIANT,
            message=message,
            data=_jsonmap(data),
            severity=Severity.CRITICAL,
            retryable=False,
        )


class LedgerHalted(LedgerError):
    def __init__(self, reason: str) -> None:
        super().__init__(
            code=LedgerErrorCode.HALTED,
            message="ledger halted after invariant violation",
            data={"reason": reason},
            severity=Severity.CRITICAL,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

T = TypeVar("T", bound=LedgerError)


def wrap(exc: BaseException, *, as_: Type[T] = InternalError, **ctx: Any) -> LedgerError:
    """
    Wrap any exception into a LedgerError subclass, attaching context.
    If `exc` is already a LedgerError, returns a context-enriched copy.
    """
    if isinstance(exc, LedgerError):
        return exc.with_context(**ctx)
    err = as_("wrapped exception", **ctx)  # type: ignore[call-arg]
    return err.with_cause(exc)


def _jsonmap(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: _coerce_json(v) for k, v in data.items()}


def _coerce_json(v: Any) -> Any:
    # Keep JSON primitives; stringify the rest; hex-encode bytes.
    # Big ints are stringified so field elements survive JSON consumers.
    if isinstance(v, bool) or v is None or isinstance(v, (float, str)):
        return v
    if isinstance(v, int):
        return v if abs(v) < (1 << 53) else str(v)
    if isinstance(v, dict):
        return {str(k): _coerce_json(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_coerce_json(x) for x in v]
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    return str(v)


def _preview(v: Any, limit: int = 96) -> str:
    s = str(_coerce_json(v))
    return s if len(s) <= limit else s[:limit] + "…"


__all__ = [
    "Severity",
    "LedgerErrorCode",
    "LedgerError",
    "InternalError",
    "ConfigError",
    "SerializationError",
    "DeserializationError",
    "DatabaseError",
    "NotFound",
    "DuplicateKey",
    "TreeFull",
    "InvalidAmount",
    "FieldOverflow",
    "InsufficientBalance",
    "InvalidAccount",
    "SelfTransfer",
    "SignerMismatch",
    "InvariantViolation",
    "LedgerHalted",
    "wrap",
]

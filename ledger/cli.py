"""
rollup-ledger — command-line interface for the rollup account ledger.

Commands:
  - rollup-ledger demo                          Reference run; writes the four witness files
  - rollup-ledger keygen                        Generate a Baby Jubjub key
  - rollup-ledger create-account --key ...      Create an account for a key
  - rollup-ledger deposit IDX AMOUNT --key ...  Deposit into an account
  - rollup-ledger withdraw IDX AMOUNT --key ... Withdraw from an account
  - rollup-ledger transfer FROM TO AMOUNT --key ...
  - rollup-ledger account IDX / accounts / root / audit

Configuration is resolved in this order (highest to lowest priority):
  1. Command-line flags (--db, --depth, --witness-dir)
  2. Environment variables (ROLLUP_DB_URI, ROLLUP_TREE_DEPTH, ...)
  3. Config file (--config or ROLLUP_CONFIG)
  4. Built-in defaults (./.rollup/state.db, depth 10)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from core import config as cconfig
from core import logging as clog
from core.errors import LedgerError
from zk.babyjub import PrivateKey, as_ints

from .account import ZERO_ADDRESS, Account
from .engine import StateTransitionEngine
from .signer import KeySigner
from .witness import Witness, write_witness

app = typer.Typer(
    name="rollup-ledger",
    help="Rollup account ledger: state transitions and circuit witnesses",
    no_args_is_help=True,
    add_completion=False,
)

log = clog.get_logger("ledger.cli")

WITNESS_FILES = {
    "create": Path("create-account-test") / "input.json",
    "deposit": Path("deposit-test") / "input.json",
    "withdraw": Path("withdraw-test") / "input.json",
    "transfer": Path("transfer-test") / "input.json",
}


class GlobalContext:
    def __init__(self) -> None:
        self.config_path: Optional[str] = None
        self.overrides: Dict[str, Any] = {}
        self.json_output: bool = False


_ctx = GlobalContext()


@app.callback()
def main_callback(
    config: Optional[str] = typer.Option(None, "--config", help="Path to a TOML/JSON config file", envvar="ROLLUP_CONFIG"),
    db: Optional[str] = typer.Option(None, "--db", help="DB URI (sqlite:///path or memory://)"),
    depth: Optional[int] = typer.Option(None, "--depth", help="Sparse Merkle tree depth"),
    witness_dir: Optional[Path] = typer.Option(None, "--witness-dir", help="Directory for witness files"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON instead of human-readable text"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    overrides: Dict[str, Any] = {}
    if db:
        overrides["db"] = {"uri": db}
    if depth is not None:
        overrides["tree"] = {"depth": depth}
    if witness_dir is not None:
        overrides["paths"] = {"witness_dir": str(witness_dir)}
    if verbose:
        overrides["log"] = {"level": "DEBUG"}
    _ctx.config_path = config
    _ctx.overrides = overrides
    _ctx.json_output = json_output


def _load_config() -> cconfig.Config:
    cfg = cconfig.load(_ctx.config_path, **_ctx.overrides)
    clog.configure_from_config(cfg)
    return cfg


def _fail(err: LedgerError) -> None:
    typer.echo(json.dumps({"error": err.to_dict()}), err=True)
    raise typer.Exit(1)


def _emit(payload: Dict[str, Any]) -> None:
    if _ctx.json_output:
        typer.echo(json.dumps(payload, indent=2))
        return
    for k, v in payload.items():
        typer.echo(f"{k}: {v}")


def _open_engine(cfg: cconfig.Config) -> StateTransitionEngine:
    cfg.ensure_dirs()
    return StateTransitionEngine.from_config(cfg)


def _write(cfg: cconfig.Config, record: Witness, target: Optional[Path]) -> Optional[str]:
    if target is None:
        return None
    path = target if target.is_absolute() else cfg.paths.witness_dir / target
    return str(write_witness(record, path))


def _signer(key: str) -> KeySigner:
    try:
        return KeySigner.from_hex(key)
    except ValueError as e:
        typer.echo(f"Error: invalid private key: {e}", err=True)
        raise typer.Exit(1)


KeyOption = typer.Option(..., "--key", "-k", help="Private key (32-byte hex)", envvar="ROLLUP_PRIVATE_KEY")
WitnessOption = typer.Option(None, "--witness", "-w", help="Write the witness JSON to this path (relative to --witness-dir)")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def keygen() -> None:
    """Generate a new Baby Jubjub private key and print its public key."""
    key = PrivateKey.generate()
    ax, ay = as_ints(key.public_key())
    _emit({"privateKey": key.to_hex(), "ax": str(ax), "ay": str(ay)})


@app.command("create-account")
def create_account(
    key: str = KeyOption,
    eth_address: str = typer.Option("0x" + ZERO_ADDRESS.hex(), "--eth-address", "-a", help="Ethereum address (20-byte hex)"),
    witness: Optional[Path] = WitnessOption,
) -> None:
    """Create an account for the given key and address."""
    cfg = _load_config()
    signer = _signer(key)
    engine = _open_engine(cfg)
    try:
        res = engine.create_account(Account.draft(eth_address, signer.public_key))
        written = _write(cfg, res.witness, witness)
    except LedgerError as e:
        _fail(e)
    finally:
        engine.close()
    _emit({"index": res.account.index, "root": str(res.proof.new_root), "witness": written})


@app.command()
def deposit(
    index: int = typer.Argument(..., help="Account index"),
    amount: int = typer.Argument(..., help="Amount to deposit"),
    key: str = KeyOption,
    witness: Optional[Path] = WitnessOption,
) -> None:
    """Deposit AMOUNT into account INDEX."""
    cfg = _load_config()
    engine = _open_engine(cfg)
    try:
        res = engine.deposit(index, amount, _signer(key))
        written = _write(cfg, res.witness, witness)
    except LedgerError as e:
        _fail(e)
    finally:
        engine.close()
    _emit({"index": index, "balance": str(res.account.balance), "nonce": res.account.nonce, "root": str(res.proof.new_root), "witness": written})


@app.command()
def withdraw(
    index: int = typer.Argument(..., help="Account index"),
    amount: int = typer.Argument(..., help="Amount to withdraw"),
    key: str = KeyOption,
    witness: Optional[Path] = WitnessOption,
) -> None:
    """Withdraw AMOUNT from account INDEX."""
    cfg = _load_config()
    engine = _open_engine(cfg)
    try:
        res = engine.withdraw(index, amount, _signer(key))
        written = _write(cfg, res.witness, witness)
    except LedgerError as e:
        _fail(e)
    finally:
        engine.close()
    _emit({"index": index, "balance": str(res.account.balance), "nonce": res.account.nonce, "root": str(res.proof.new_root), "witness": written})


@app.command()
def transfer(
    sender: int = typer.Argument(..., help="Sender account index"),
    receiver: int = typer.Argument(..., help="Receiver account index"),
    amount: int = typer.Argument(..., help="Amount to transfer"),
    key: str = KeyOption,
    witness: Optional[Path] = WitnessOption,
) -> None:
    """Transfer AMOUNT from SENDER to RECEIVER (signed by the sender's key)."""
    cfg = _load_config()
    engine = _open_engine(cfg)
    try:
        res = engine.transfer(sender, receiver, amount, _signer(key))
        written = _write(cfg, res.witness, witness)
    except LedgerError as e:
        _fail(e)
    finally:
        engine.close()
    _emit(
        {
            "sender": sender,
            "senderBalance": str(res.sender.balance),
            "receiver": receiver,
            "receiverBalance": str(res.receiver.balance),
            "root": str(res.receiver_proof.new_root),
            "witness": written,
        }
    )


@app.command()
def account(index: int = typer.Argument(..., help="Account index")) -> None:
    """Show one account."""
    cfg = _load_config()
    engine = _open_engine(cfg)
    try:
        acc = engine.get_account(index)
    except LedgerError as e:
        _fail(e)
    finally:
        engine.close()
    _emit(acc.to_json())


@app.command()
def accounts() -> None:
    """List all accounts in index order."""
    cfg = _load_config()
    engine = _open_engine(cfg)
    try:
        rows = [a.to_json() for a in engine.accounts()]
    finally:
        engine.close()
    if _ctx.json_output:
        typer.echo(json.dumps(rows, indent=2))
        return
    for r in rows:
        typer.echo(f"{r['index']:>5}  balance={r['balance']}  nonce={r['nonce']}  {r['ethAddress']}")


@app.command()
def root() -> None:
    """Print the current state root."""
    cfg = _load_config()
    engine = _open_engine(cfg)
    try:
        r = engine.root()
    finally:
        engine.close()
    _emit({"root": str(r)})


@app.command()
def audit() -> None:
    """Recompute every account commitment and compare it with the tree."""
    cfg = _load_config()
    engine = _open_engine(cfg)
    try:
        bad = engine.audit()
    finally:
        engine.close()
    _emit({"ok": not bad, "mismatched": bad})
    if bad:
        raise typer.Exit(2)


@app.command()
def demo(
    db: str = typer.Option("memory://", "--db", help="DB URI for the demo run (default: in-memory)"),
) -> None:
    """
    Reference run: create A, deposit 100, withdraw 1, create B, transfer 1 A→B.

    Writes create-account-test/, deposit-test/, withdraw-test/ and
    transfer-test/input.json under the witness directory.
    """
    _ctx.overrides = {**_ctx.overrides, "db": {"uri": db}}
    cfg = _load_config()
    engine = _open_engine(cfg)
    key_a = KeySigner.generate()
    key_b = KeySigner.generate()
    try:
        a = engine.create_account(Account.draft(ZERO_ADDRESS, key_a.public_key))
        written = {"create": _write(cfg, a.witness, WITNESS_FILES["create"])}
        idx = a.account.index

        dep = engine.deposit(idx, 100, key_a)
        written["deposit"] = _write(cfg, dep.witness, WITNESS_FILES["deposit"])

        wd = engine.withdraw(idx, 1, key_a)
        written["withdraw"] = _write(cfg, wd.witness, WITNESS_FILES["withdraw"])

        b = engine.create_account(Account.draft(ZERO_ADDRESS, key_b.public_key))
        tr = engine.transfer(idx, b.account.index, 1, key_a)
        written["transfer"] = _write(cfg, tr.witness, WITNESS_FILES["transfer"])
    except LedgerError as e:
        _fail(e)
    finally:
        engine.close()

    log.info("demo: done root=%s", tr.receiver_proof.new_root)
    _emit({"root": str(tr.receiver_proof.new_root), **written})


def main() -> None:
    """Entry point for the rollup-ledger CLI."""
    app()


if __name__ == "__main__":
    main()

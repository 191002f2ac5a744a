"""
Nox sessions for the rollup ledger.

Sessions:
  - lint : ruff + black + mypy over core, zk and ledger
  - unit : package tests (everything not marked 'e2e')
  - e2e  : reference run and CLI tests (marker 'e2e')
  - all  : lint + unit + e2e on the default interpreter

Pass extra args to pytest like:
  nox -f tests/noxfile.py -s unit -- -k "smt and not hypothesis" -vv
"""

from __future__ import annotations

from pathlib import Path

import nox

nox.options.reuse_venv = True
nox.options.stop_on_first_error = False

REPO_ROOT = Path(__file__).resolve().parents[1]
PY_PATHS = ["core", "zk", "ledger", "tests", "conftest.py"]

TEST_PYTHONS = ["3.11", "3.12"]


def _common_env(session: nox.Session) -> None:
    session.env.setdefault("PYTHONUNBUFFERED", "1")
    # keep host ledger settings out of the test run
    for key in list(session.env):
        if key.startswith("ROLLUP_"):
            session.env.pop(key)


def _install_test_stack(session: nox.Session) -> None:
    session.run("python", "-m", "pip", "install", "--upgrade", "pip", silent=True)
    session.install("-e", f"{REPO_ROOT}[test]")


@nox.session(name="lint", python="3.11")
def lint(session: nox.Session) -> None:
    """Static analysis: ruff, black (check), mypy."""
    _common_env(session)
    session.install("ruff>=0.6.0", "black>=24.3.0", "mypy>=1.10.0")
    session.install("-e", str(REPO_ROOT))
    with session.chdir(str(REPO_ROOT)):
        session.run("ruff", "check", *PY_PATHS)
        session.run("black", "--check", *PY_PATHS)
        session.run(
            "mypy",
            "--pretty",
            "--show-error-codes",
            "--ignore-missing-imports",
            "core",
            "zk",
            "ledger",
        )


@nox.session(name="unit", python=TEST_PYTHONS)
def unit(session: nox.Session) -> None:
    """Package tests only (no e2e)."""
    _common_env(session)
    _install_test_stack(session)
    with session.chdir(str(REPO_ROOT)):
        session.run("pytest", "-m", "not e2e", "-q", *session.posargs)


@nox.session(name="e2e", python="3.11")
def e2e(session: nox.Session) -> None:
    """Reference run + CLI."""
    _common_env(session)
    _install_test_stack(session)
    with session.chdir(str(REPO_ROOT)):
        session.run("pytest", "-m", "e2e", "-vv", *session.posargs)


@nox.session(name="all", python="3.11")
def all_(session: nox.Session) -> None:
    """Run a sensible default stack locally."""
    session.notify("lint")
    session.notify("unit-3.11")
    session.notify("e2e")

"""
Shared pytest fixtures:
- Isolated environment (no ROLLUP_* leakage from the host, cwd under tmp)
- In-memory KV and a fresh engine per test
- Deterministic signers for two accounts
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

import pytest
from hypothesis import HealthCheck, settings

from core.db import open_kv
from core.db.kv import KV
from ledger.account import Account
from ledger.engine import StateTransitionEngine
from ledger.signer import KeySigner

# Poseidon and curve arithmetic are pure Python; keep property runs short.
settings.register_profile(
    "ledger",
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ledger"))

ALICE_KEY = "0x" + "01" * 32
BOB_KEY = "0x" + "02" * 32
ALICE_ADDRESS = "0x" + "11" * 20
BOB_ADDRESS = "0x" + "22" * 20

TEST_DEPTH = 10


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for k in list(os.environ):
        if k.startswith("ROLLUP_"):
            monkeypatch.delenv(k, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def kv() -> Iterator[KV]:
    store = open_kv("memory://")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def engine(kv: KV) -> StateTransitionEngine:
    return StateTransitionEngine(kv, depth=TEST_DEPTH)


@pytest.fixture(scope="session")
def alice() -> KeySigner:
    return KeySigner.from_hex(ALICE_KEY)


@pytest.fixture(scope="session")
def bob() -> KeySigner:
    return KeySigner.from_hex(BOB_KEY)


@pytest.fixture
def alice_account(engine: StateTransitionEngine, alice: KeySigner) -> Account:
    """Alice's account, created and funded with 100."""
    created = engine.create_account(Account.draft(ALICE_ADDRESS, alice.public_key))
    return engine.deposit(created.account.index, 100, alice).account


@pytest.fixture
def bob_account(engine: StateTransitionEngine, bob: KeySigner, alice_account: Account) -> Account:
    return engine.create_account(Account.draft(BOB_ADDRESS, bob.public_key)).account

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "olink" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from olink.store.sqlite_db import SqliteDB  # noqa: E402
from olink.store.transfer_store import TransactionStore  # noqa: E402
from olink.testing.sigtools import deterministic_keypair  # noqa: E402


@pytest.fixture(autouse=True)
def _test_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OLINK_MODE", "test")


@pytest.fixture
def alice_keys() -> tuple[str, str]:
    return deterministic_keypair(label="alice")


@pytest.fixture
def store(tmp_path: Path) -> TransactionStore:
    return TransactionStore(db=SqliteDB(path=str(tmp_path / "device.db")))

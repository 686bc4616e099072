from __future__ import annotations

import json
from pathlib import Path

import pytest

from olink.store.sqlite_db import SqliteDB
from olink.store.transfer_store import TransactionStore
from olink.sync.agent import SyncAgent
from olink.sync.ledger_client import HttpLedgerClient
from olink.sync.probe import StaticProbe
from olink.sync import worker as worker_mod
from olink.sync.worker import main
from olink.transfer.factory import TransactionFactory
from olink.transfer.state_machine import Party, VerificationEvent, apply_event


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep pytest's own log handlers in place.
    monkeypatch.setattr(worker_mod, "configure_structured_logging", lambda: None)


def test_worker_run_once_with_empty_queue(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = main(["--db", str(tmp_path / "w.db")])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {"ok": True, "processed": 0, "synced": 0, "deferred": 0, "failed": 0, "skipped": 0}


def test_worker_defers_when_ledger_is_not_configured(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch, alice_keys
) -> None:
    sk, pk = alice_keys
    monkeypatch.delenv("OLINK_LEDGER_URL", raising=False)
    db_path = str(tmp_path / "w.db")
    store = TransactionStore(db=SqliteDB(path=db_path))
    rec = TransactionFactory().create(amount=3, recipient="bob", creator="alice", signing_key=sk)
    store.upsert(apply_event(rec, VerificationEvent(party=Party.SENDER)).record, public_key=pk)

    # Queue a job the same way the confirmation path does.
    agent = SyncAgent(store=store, ledger=HttpLedgerClient(base_url=""), probe=StaticProbe(reachable=False))
    agent.on_local_confirmation(rec.id)
    job = agent.queue.get(rec.id)
    job["next_attempt_ms"] = 0
    agent.queue.put(job)

    rc = main(["--db", db_path])

    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out["processed"] == 1
    assert out["deferred"] == 1
    assert agent.queue.get(rec.id)["attempts"] == 2

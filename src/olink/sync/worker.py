# src/olink/sync/worker.py
from __future__ import annotations

import argparse
import json
import sys
import time
from typing import List

from olink.config import ProtocolConfig, load_protocol_config
from olink.env import load_dotenv_if_present
from olink.store.sqlite_db import SqliteDB
from olink.store.transfer_store import TransactionStore
from olink.structured_logging import configure_structured_logging
from olink.sync.agent import SyncAgent, SyncPolicy, SyncRetryLoop
from olink.sync.ledger_client import HttpLedgerClient
from olink.sync.probe import HttpConnectivityProbe


def build_sync_agent(cfg: ProtocolConfig) -> SyncAgent:
    store = TransactionStore(db=SqliteDB(path=cfg.db_path))
    return SyncAgent(
        store=store,
        ledger=HttpLedgerClient(base_url=cfg.ledger_url, timeout_s=cfg.ledger_timeout_s),
        probe=HttpConnectivityProbe(base_url=cfg.ledger_url, timeout_s=cfg.probe_timeout_s),
        policy=SyncPolicy.from_config(cfg),
    )


def _parse_args(argv: List[str], cfg: ProtocolConfig) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="OLink ledger sync worker (SQLite-backed)")
    ap.add_argument("--db", dest="db_path", default=cfg.db_path)
    ap.add_argument("--ledger-url", dest="ledger_url", default=cfg.ledger_url)
    ap.add_argument("--loop", dest="loop", action="store_true", help="keep draining the queue until interrupted")
    ap.add_argument("--interval-ms", dest="interval_ms", type=int, default=cfg.sync_interval_ms)
    ap.add_argument("--max-attempts", dest="max_attempts", type=int, default=cfg.sync_max_attempts)
    return ap.parse_args(argv)


def main(argv: List[str]) -> int:
    load_dotenv_if_present()
    configure_structured_logging()

    base = load_protocol_config()
    args = _parse_args(argv, base)

    cfg = ProtocolConfig(
        mode=base.mode,
        db_path=str(args.db_path),
        ledger_url=str(args.ledger_url or "").strip().rstrip("/"),
        ledger_timeout_s=base.ledger_timeout_s,
        probe_timeout_s=base.probe_timeout_s,
        sync_max_attempts=max(1, int(args.max_attempts)),
        sync_backoff_base_ms=base.sync_backoff_base_ms,
        sync_backoff_cap_ms=base.sync_backoff_cap_ms,
        sync_interval_ms=max(50, int(args.interval_ms)),
    )
    agent = build_sync_agent(cfg)

    if not args.loop:
        res = agent.run_once()
        print(json.dumps(res, indent=2))
        return 0 if res.get("ok") else 1

    loop = SyncRetryLoop(agent=agent, interval_ms=cfg.sync_interval_ms)
    loop.start()
    try:
        while loop.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        loop.stop()
    return 0


def _cli() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

# src/olink/sync/agent.py
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from olink.config import ProtocolConfig
from olink.errors import RecordNotFound, StoreUnavailable, SyncUnreachable
from olink.store.sqlite_db import SqliteDB, _canon_json, _now_ms
from olink.store.transfer_store import TransactionStore
from olink.structured_logging import log_event
from olink.sync.ledger_client import LedgerClient
from olink.sync.probe import ConnectivityProbe
from olink.transfer.record import TransferRecord

log = logging.getLogger("olink.sync")

Json = Dict[str, Any]

SYNCED = "synced"
DEFERRED = "deferred"
ALREADY_SYNCED = "already_synced"
NOTHING_TO_SYNC = "nothing_to_sync"
FAILED = "failed"
CANCELLED = "cancelled"


def _safe_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _flags(record: TransferRecord) -> Json:
    return {"sender": bool(record.sender_verified), "recipient": bool(record.recipient_verified)}


def _covers(synced: Any, record: TransferRecord) -> bool:
    """True if the ledger has already acknowledged every flag set on `record`."""
    if not isinstance(synced, dict):
        return False
    if record.sender_verified and not synced.get("sender"):
        return False
    if record.recipient_verified and not synced.get("recipient"):
        return False
    return True


@dataclass(frozen=True, slots=True)
class SyncPolicy:
    max_attempts: int = 8
    backoff_base_ms: int = 500
    backoff_cap_ms: int = 60_000

    @staticmethod
    def from_config(cfg: ProtocolConfig) -> "SyncPolicy":
        return SyncPolicy(
            max_attempts=int(cfg.sync_max_attempts),
            backoff_base_ms=int(cfg.sync_backoff_base_ms),
            backoff_cap_ms=int(cfg.sync_backoff_cap_ms),
        )

    def backoff_ms(self, attempts: int) -> int:
        # base * 2^(a-1), capped; attempts starts at 1 for the first failure.
        a = max(1, int(attempts))
        base = max(1, int(self.backoff_base_ms))
        cap = max(base, int(self.backoff_cap_ms))
        return int(min(cap, base * (2 ** min(a - 1, 30))))


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    record_id: str
    state: str
    attempts: int = 0
    error: str = ""

    @property
    def synced(self) -> bool:
        return self.state in {SYNCED, ALREADY_SYNCED}


class SyncJobQueue:
    """SQLite-backed per-record sync jobs.

    Table: sync_jobs(record_id PRIMARY KEY, job_json, next_attempt_ms, updated_ts_ms)

    One job per record id. A job remembers which flags the ledger has
    acknowledged ("synced"), so a repeat request for an already-synced flag
    set never produces a second push. Jobs the ledger rejected outright are
    kept with "terminal": true and are never due again.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self.db = db

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            log_event(log, "store_unavailable", level=logging.ERROR, op=op, error=str(e))
            raise StoreUnavailable(op, {"error": str(e), "path": self.db.path}) from e

    def get(self, record_id: str) -> Optional[Json]:
        with self._guard("sync_job_get"):
            with self.db.connection() as con:
                row = con.execute(
                    "SELECT job_json FROM sync_jobs WHERE record_id=? LIMIT 1;", (str(record_id),)
                ).fetchone()
        if row is None:
            return None
        job = json.loads(str(row["job_json"]))
        return job if isinstance(job, dict) else None

    def put(self, job: Json) -> None:
        record_id = str(job.get("record_id") or "").strip()
        if not record_id:
            raise ValueError("sync job requires record_id")
        with self._guard("sync_job_put"):
            with self.db.write_tx() as con:
                con.execute(
                    """
                    INSERT INTO sync_jobs(record_id, job_json, next_attempt_ms, updated_ts_ms)
                    VALUES(?, ?, ?, ?)
                    ON CONFLICT(record_id) DO UPDATE SET
                      job_json=excluded.job_json,
                      next_attempt_ms=excluded.next_attempt_ms,
                      updated_ts_ms=excluded.updated_ts_ms;
                    """,
                    (record_id, _canon_json(job), _safe_int(job.get("next_attempt_ms"), 0), _now_ms()),
                )

    def due(self, now_ms: int, *, limit: int = 200) -> List[Json]:
        with self._guard("sync_job_due"):
            with self.db.connection() as con:
                rows = con.execute(
                    """
                    SELECT job_json
                    FROM sync_jobs
                    WHERE next_attempt_ms <= ?
                    ORDER BY next_attempt_ms ASC, record_id ASC
                    LIMIT ?;
                    """,
                    (int(now_ms), max(1, int(limit))),
                ).fetchall()

        out: List[Json] = []
        for r in rows:
            job = json.loads(str(r["job_json"]))
            if isinstance(job, dict) and job.get("status") != SYNCED and not job.get("terminal"):
                out.append(job)
        return out


class SyncAgent:
    """Pushes locally confirmed records to the remote ledger.

    Local confirmation and ledger durability are independent: nothing here
    ever rewrites a record. Failures leave a queued job that run_once() (or a
    SyncRetryLoop) picks up again after backoff.
    """

    def __init__(
        self,
        *,
        store: TransactionStore,
        ledger: LedgerClient,
        probe: ConnectivityProbe,
        policy: Optional[SyncPolicy] = None,
        queue: Optional[SyncJobQueue] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.probe = probe
        self.policy = policy or SyncPolicy()
        self.queue = queue or SyncJobQueue(db=store.db)
        self._lock = threading.RLock()

    def _load_job(self, record: TransferRecord, now: int) -> Json:
        job = self.queue.get(record.id)
        if job is None:
            job = {
                "record_id": record.id,
                "created_ms": now,
                "attempts": 0,
                "next_attempt_ms": now,
                "status": "pending",
                "synced": {"sender": False, "recipient": False},
            }
        want = _flags(record)
        if job.get("want") != want and not job.get("terminal"):
            # A newly set flag is a fresh sync request.
            job["want"] = want
            job["attempts"] = 0
            job["next_attempt_ms"] = now
            if not _covers(job.get("synced"), record):
                job["status"] = "pending"
        return job

    def _probe(self) -> bool:
        try:
            return bool(self.probe.is_reachable())
        except Exception as e:
            log_event(log, "probe_failed", level=logging.WARNING, error=f"{type(e).__name__}:{e}")
            return False

    def _record_failure(self, job: Json, error: str, now: int, *, terminal: bool = False) -> SyncOutcome:
        attempts = _safe_int(job.get("attempts"), 0) + 1
        job["attempts"] = attempts
        job["last_error"] = str(error)[:2000]
        job["last_error_ms"] = now

        if terminal:
            job["status"] = FAILED
            job["terminal"] = True
            job["next_attempt_ms"] = now
        elif attempts >= int(self.policy.max_attempts):
            # Keep the job for later; stop hot-looping.
            job["status"] = FAILED
            job["next_attempt_ms"] = now + int(self.policy.backoff_cap_ms)
        else:
            job["status"] = "retrying"
            job["next_attempt_ms"] = now + self.policy.backoff_ms(attempts)

        self.queue.put(job)
        log_event(
            log,
            "sync_rejected" if terminal else "sync_deferred",
            level=logging.WARNING,
            id=job.get("record_id"),
            attempts=attempts,
            error=job["last_error"],
            next_attempt_ms=job["next_attempt_ms"],
        )
        state = FAILED if terminal else DEFERRED
        return SyncOutcome(record_id=str(job.get("record_id")), state=state, attempts=attempts, error=job["last_error"])

    def _attempt(self, record: TransferRecord, job: Json, now: int, *, reachable: Optional[bool] = None) -> SyncOutcome:
        with self._lock:
            if job.get("terminal"):
                return SyncOutcome(
                    record_id=record.id,
                    state=FAILED,
                    attempts=_safe_int(job.get("attempts"), 0),
                    error=str(job.get("last_error") or ""),
                )

            if _covers(job.get("synced"), record):
                if job.get("status") != SYNCED:
                    job["status"] = SYNCED
                    self.queue.put(job)
                return SyncOutcome(record_id=record.id, state=ALREADY_SYNCED, attempts=_safe_int(job.get("attempts"), 0))

            public_key = self.store.get_public_key(record.id)
            if not public_key:
                return self._record_failure(job, "missing_public_key", now)

            if reachable is None:
                reachable = self._probe()
            if not reachable:
                return self._record_failure(job, "ledger_unreachable", now)

            try:
                res = self.ledger.push(record, public_key)
            except Exception as e:
                return self._record_failure(job, f"{type(e).__name__}:{e}", now)
            if not res.ok:
                return self._record_failure(job, res.error or f"http_status:{res.status_code}", now, terminal=res.rejected)

            attempts = _safe_int(job.get("attempts"), 0) + 1
            job["attempts"] = attempts
            job["status"] = SYNCED
            job["synced"] = _flags(record)
            job["synced_ms"] = now
            job["next_attempt_ms"] = now
            job.pop("last_error", None)
            self.queue.put(job)

        log_event(log, "sync_pushed", id=record.id, status=record.status.value, attempts=attempts)
        return SyncOutcome(record_id=record.id, state=SYNCED, attempts=attempts)

    def _current(self, record_id: str) -> TransferRecord:
        record = self.store.get_by_id(record_id)
        if record is None:
            raise RecordNotFound("unknown_record", {"id": record_id})
        return record

    def on_local_confirmation(self, record_id: str) -> SyncOutcome:
        """Sync a record whose verification flag was just set locally."""
        record = self._current(record_id)
        if not (record.sender_verified or record.recipient_verified):
            return SyncOutcome(record_id=record.id, state=NOTHING_TO_SYNC)
        now = _now_ms()
        with self._lock:
            job = self._load_job(record, now)
            if _covers(job.get("synced"), record):
                log_event(log, "sync_skip_already_synced", id=record.id)
                return SyncOutcome(record_id=record.id, state=ALREADY_SYNCED, attempts=_safe_int(job.get("attempts"), 0))
            return self._attempt(record, job, now)

    def run_once(self, now_ms: Optional[int] = None) -> Json:
        """Process due jobs once. Probes connectivity once per pass."""
        now = int(now_ms) if now_ms is not None else _now_ms()
        jobs = self.queue.due(now)

        stats = {"processed": 0, "synced": 0, "deferred": 0, "failed": 0, "skipped": 0}
        if not jobs:
            return {"ok": True, **stats}

        reachable = self._probe()
        for snapshot in jobs:
            record_id = str(snapshot.get("record_id") or "")
            with self._lock:
                # The snapshot may be stale: a confirmation can sync the record
                # between due() and here.
                record = self.store.get_by_id(record_id)
                if record is None or self.queue.get(record_id) is None:
                    stats["skipped"] += 1
                    continue
                outcome = self._attempt(record, self._load_job(record, now), now, reachable=reachable)
            stats["processed"] += 1
            if outcome.state == SYNCED:
                stats["synced"] += 1
            elif outcome.state == ALREADY_SYNCED:
                stats["skipped"] += 1
            elif outcome.state == FAILED or outcome.attempts >= int(self.policy.max_attempts):
                stats["failed"] += 1
            else:
                stats["deferred"] += 1

        log_event(log, "sync_pass", reachable=reachable, **stats)
        return {"ok": True, **stats}

    def sync_with_retry(self, record_id: str, *, cancel: Optional[threading.Event] = None) -> SyncOutcome:
        """Push with bounded exponential backoff.

        Raises SyncUnreachable after policy.max_attempts failures, or at once
        when the ledger rejects the record. An exhausted job stays queued, so a
        later run_once() can still deliver it. Setting `cancel` stops waiting
        between attempts; local state is untouched.
        """
        cancel = cancel or threading.Event()
        outcome = self.on_local_confirmation(record_id)
        while True:
            if outcome.synced or outcome.state == NOTHING_TO_SYNC:
                return outcome
            if outcome.state == FAILED:
                raise SyncUnreachable(
                    "ledger_rejected",
                    {"id": record_id, "attempts": outcome.attempts, "last_error": outcome.error},
                )
            if outcome.attempts >= int(self.policy.max_attempts):
                raise SyncUnreachable(
                    "max_attempts_exhausted",
                    {"id": record_id, "attempts": outcome.attempts, "last_error": outcome.error},
                )
            if cancel.wait(self.policy.backoff_ms(outcome.attempts) / 1000.0):
                log_event(log, "sync_cancelled", id=record_id, attempts=outcome.attempts)
                return SyncOutcome(record_id=record_id, state=CANCELLED, attempts=outcome.attempts, error=outcome.error)

            record = self._current(record_id)
            with self._lock:
                job = self._load_job(record, _now_ms())
                outcome = self._attempt(record, job, _now_ms())


class SyncRetryLoop:
    """Background thread draining the sync queue at a fixed interval.

    stop() is the cancellation point for background retries; already merged
    local state is never touched.
    """

    def __init__(self, *, agent: SyncAgent, interval_ms: int = 2_000) -> None:
        self._agent = agent
        self._interval_s = max(0.05, float(interval_ms) / 1000.0)
        self._stop = threading.Event()
        self._t: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._t is not None and self._t.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._t = threading.Thread(target=self._run, name="olink-sync-loop", daemon=True)
        self._t.start()

    def stop(self) -> None:
        self._stop.set()
        t = self._t
        if t is not None:
            t.join(timeout=2.0)
        self._t = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._agent.run_once()
            except Exception:
                log.exception("sync loop pass failed")
            self._stop.wait(self._interval_s)

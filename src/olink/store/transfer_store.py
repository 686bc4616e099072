# src/olink/store/transfer_store.py
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Callable, Iterator, List, Optional

from olink.errors import StoreUnavailable
from olink.store.sqlite_db import SqliteDB, _now_ms
from olink.structured_logging import log_event
from olink.transfer.record import TransferRecord
from olink.transfer.state_machine import merge_records, signed_fields_match

log = logging.getLogger("olink.store")

Observer = Callable[[TransferRecord], None]


def _row_to_record(row: sqlite3.Row) -> TransferRecord:
    vts = row["verification_ts_ms"]
    return TransferRecord(
        id=str(row["id"]),
        amount=Decimal(str(row["amount"])),
        sender=str(row["sender"]),
        recipient=str(row["recipient"]),
        timestamp=int(row["timestamp_ms"]),
        description=row["description"],
        signature=str(row["signature"]),
        sender_verified=bool(row["sender_verified"]),
        recipient_verified=bool(row["recipient_verified"]),
        verification_timestamp=int(vts) if vts is not None else None,
    )


class TransactionStore:
    """Durable local keyed store for transfer records.

    One row per record id. upsert() merges instead of overwriting, which makes
    this class the single point enforcing flag monotonicity even when a caller
    hands in a stale copy.

    Observers registered with subscribe() are called after every committed
    upsert with the merged record (push-on-write).
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._observers: List[Observer] = []
        self._observers_lock = threading.Lock()
        with self._guard("init_schema"):
            self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            log_event(log, "store_unavailable", level=logging.ERROR, op=op, error=str(e))
            raise StoreUnavailable(op, {"error": str(e), "path": self._db.path}) from e

    def upsert(self, record: TransferRecord, *, public_key: Optional[str] = None) -> TransferRecord:
        with self._guard("upsert"):
            with self._db.write_tx() as con:
                row = con.execute("SELECT * FROM transfers WHERE id=? LIMIT 1;", (record.id,)).fetchone()
                existing = _row_to_record(row) if row is not None else None
                existing_pk = row["public_key"] if row is not None else None

                if existing is not None and not signed_fields_match(existing, record):
                    log_event(log, "transfer_signed_field_conflict", level=logging.WARNING, id=record.id)

                merged = merge_records(existing, record)
                pk = existing_pk or (public_key.strip() if isinstance(public_key, str) and public_key.strip() else None)

                con.execute(
                    """
                    INSERT INTO transfers(
                      id, amount, sender, recipient, timestamp_ms, description, signature, public_key,
                      sender_verified, recipient_verified, verification_ts_ms, updated_ts_ms
                    )
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      public_key=excluded.public_key,
                      sender_verified=excluded.sender_verified,
                      recipient_verified=excluded.recipient_verified,
                      verification_ts_ms=excluded.verification_ts_ms,
                      updated_ts_ms=excluded.updated_ts_ms;
                    """,
                    (
                        merged.id,
                        str(merged.amount),
                        merged.sender,
                        merged.recipient,
                        int(merged.timestamp),
                        merged.description,
                        merged.signature,
                        pk,
                        int(merged.sender_verified),
                        int(merged.recipient_verified),
                        merged.verification_timestamp,
                        _now_ms(),
                    ),
                )

        log_event(log, "transfer_upserted", id=merged.id, status=merged.status.value, created=existing is None)
        self._notify(merged)
        return merged

    def get_by_id(self, record_id: str) -> Optional[TransferRecord]:
        with self._guard("get_by_id"):
            with self._db.connection() as con:
                row = con.execute("SELECT * FROM transfers WHERE id=? LIMIT 1;", (str(record_id),)).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_public_key(self, record_id: str) -> Optional[str]:
        with self._guard("get_public_key"):
            with self._db.connection() as con:
                row = con.execute("SELECT public_key FROM transfers WHERE id=? LIMIT 1;", (str(record_id),)).fetchone()
        if row is None or row["public_key"] is None:
            return None
        return str(row["public_key"])

    def list_records(self, *, limit: int = 200) -> List[TransferRecord]:
        with self._guard("list_records"):
            with self._db.connection() as con:
                rows = con.execute(
                    "SELECT * FROM transfers ORDER BY timestamp_ms DESC, id ASC LIMIT ?;",
                    (max(1, int(limit)),),
                ).fetchall()
        return [_row_to_record(r) for r in rows]

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a callable that unregisters it."""
        with self._observers_lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._observers_lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _unsubscribe

    def _notify(self, record: TransferRecord) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        for obs in observers:
            try:
                obs(record)
            except Exception:
                # The write is already committed; an observer must not fail it.
                log.exception("store observer failed id=%s", record.id)

"""
OLink: offline transfer confirmation protocol

Two parties exchange a signed transfer record out-of-band (a scannable code),
confirm it without a live network connection, and later reconcile with a
remote ledger.

Layout:
  - transfer: record type, canonical bytes, signing, factory, state machine
  - store: durable local SQLite store with monotonic merge-on-upsert
  - codec: QR payload encoding/decoding
  - sync: connectivity probe, ledger client contract, sync agent + worker
  - protocol: device-side orchestration (create / import / confirm)
  - authz: per-principal confirmation authorization
  - watch: push-on-write record observation
  - notify: best-effort transfer notifications (SMTP)
  - ledger_api: reference ledger HTTP service (FastAPI)
"""

from __future__ import annotations

__all__ = [
    "transfer",
    "store",
    "codec",
    "sync",
    "protocol",
    "authz",
    "watch",
    "notify",
    "ledger_api",
]

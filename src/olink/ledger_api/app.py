# src/olink/ledger_api/app.py
from __future__ import annotations

import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from olink.codec import decode_payload, record_to_wire
from olink.errors import TamperedSignature, TransferError
from olink.ledger_api.errors import ApiError
from olink.ledger_api.middleware import RequestLogMiddleware
from olink.store.sqlite_db import SqliteDB
from olink.store.transfer_store import TransactionStore
from olink.transfer.signing import verify_record
from olink.transfer.state_machine import signed_fields_match

Json = Dict[str, Any]


def _ingest(store: TransactionStore, raw: bytes) -> Json:
    payload = decode_payload(raw)
    record = payload.record
    if not verify_record(record, record.signature, payload.public_key):
        raise TamperedSignature("signature_invalid", {"id": record.id})

    existing = store.get_by_id(record.id)
    if existing is not None and not signed_fields_match(existing, record):
        raise ApiError(409, "record_conflict", "a different record is already stored under this id", {"id": record.id})

    # Idempotent by id: the store merges flags and keeps signed fields.
    merged = store.upsert(record, public_key=payload.public_key)
    return {"ok": True, "record": record_to_wire(merged), "status": merged.status.value}


def create_app(*, db_path: Optional[str] = None) -> FastAPI:
    """Create the reference ledger service.

    It implements the ledger side of the sync contract for local
    deployments and integration tests: signature-checked, idempotent by id.
    """
    mode = os.environ.get("OLINK_MODE", "prod").strip().lower()
    path = db_path or os.environ.get("OLINK_LEDGER_DB_PATH", "./data/olink-ledger.db")

    if mode == "prod":
        app = FastAPI(title="OLink Reference Ledger", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="OLink Reference Ledger")

    store = TransactionStore(db=SqliteDB(path=path))
    app.state.store = store
    app.add_middleware(RequestLogMiddleware)

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(exc.to_json(), status_code=exc.status_code)

    @app.exception_handler(TransferError)
    async def _transfer_error(request: Request, exc: TransferError) -> JSONResponse:
        err = ApiError.from_transfer_error(exc)
        return JSONResponse(err.to_json(), status_code=err.status_code)

    @app.get("/v1/health")
    def health() -> Json:
        return {"ok": True}

    @app.post("/v1/transfers")
    async def push_transfer(request: Request) -> Json:
        raw = await request.body()
        return await run_in_threadpool(_ingest, store, raw)

    @app.get("/v1/transfers/{record_id}")
    def get_transfer(record_id: str) -> Json:
        record = store.get_by_id(record_id)
        if record is None:
            raise ApiError.not_found("record_not_found", "unknown transfer id", {"id": record_id})
        return {"ok": True, "record": record_to_wire(record), "status": record.status.value}

    return app

# src/olink/config.py
from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    mode: str  # "prod" | "dev" | "test"
    db_path: str

    # Remote ledger collaborator
    ledger_url: str
    ledger_timeout_s: float
    probe_timeout_s: float

    # Sync retry / backoff
    sync_max_attempts: int
    sync_backoff_base_ms: int
    sync_backoff_cap_ms: int
    sync_interval_ms: int


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    return v.strip() if isinstance(v, str) and v.strip() else default


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return float(raw) if raw else float(default)
    except ValueError:
        return float(default)


def load_protocol_config() -> ProtocolConfig:
    mode = _env_str("OLINK_MODE", "prod").lower()
    db_path = _env_str("OLINK_DB_PATH", "./data/olink.db")

    ledger_url = _env_str("OLINK_LEDGER_URL", "").rstrip("/")
    ledger_timeout_s = max(0.1, _env_float("OLINK_LEDGER_TIMEOUT_S", 10.0))
    # The probe must never block for long; fail closed instead.
    probe_timeout_s = max(0.1, min(30.0, _env_float("OLINK_PROBE_TIMEOUT_S", 3.0)))

    max_attempts = max(1, _env_int("OLINK_SYNC_MAX_ATTEMPTS", 8))
    backoff_base_ms = max(1, _env_int("OLINK_SYNC_BACKOFF_BASE_MS", 500))
    backoff_cap_ms = max(backoff_base_ms, _env_int("OLINK_SYNC_BACKOFF_CAP_MS", 60_000))
    interval_ms = max(50, _env_int("OLINK_SYNC_INTERVAL_MS", 2_000))

    return ProtocolConfig(
        mode=mode,
        db_path=db_path,
        ledger_url=ledger_url,
        ledger_timeout_s=float(ledger_timeout_s),
        probe_timeout_s=float(probe_timeout_s),
        sync_max_attempts=int(max_attempts),
        sync_backoff_base_ms=int(backoff_base_ms),
        sync_backoff_cap_ms=int(backoff_cap_ms),
        sync_interval_ms=int(interval_ms),
    )

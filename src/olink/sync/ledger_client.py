# src/olink/sync/ledger_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Protocol

from olink.codec import payload_to_dict
from olink.transfer.record import TransferRecord

# Client errors that can still succeed on a later attempt.
_RETRYABLE_4XX = frozenset({408, 425, 429})


@dataclass(frozen=True, slots=True)
class LedgerPushResult:
    ok: bool
    error: str = ""
    status_code: int = 0

    @property
    def rejected(self) -> bool:
        """The ledger refused the record itself (e.g. 409 record_conflict); retrying cannot help."""
        return 400 <= int(self.status_code) < 500 and int(self.status_code) not in _RETRYABLE_4XX


class LedgerClient(Protocol):
    """Remote ledger contract.

    push() must be idempotent by record id: pushing the same record twice
    leaves the ledger as if it had been pushed once.
    """

    def push(self, record: TransferRecord, public_key: str) -> LedgerPushResult: ...


class HttpLedgerClient:
    """POSTs the QR payload JSON to {base_url}/v1/transfers."""

    def __init__(self, *, base_url: str, timeout_s: float = 10.0) -> None:
        self.base_url = str(base_url or "").strip().rstrip("/")
        self.timeout_s = max(0.1, float(timeout_s))

    def push(self, record: TransferRecord, public_key: str) -> LedgerPushResult:
        if not self.base_url:
            return LedgerPushResult(ok=False, error="ledger_url_not_configured")

        body = json.dumps(payload_to_dict(record, public_key), sort_keys=True, separators=(",", ":")).encode("utf-8")
        try:
            req = urllib.request.Request(
                url=f"{self.base_url}/v1/transfers",
                data=body,
                method="POST",
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                if 200 <= status < 300:
                    return LedgerPushResult(ok=True, status_code=status)
                return LedgerPushResult(ok=False, error=f"http_status:{status}", status_code=status)
        except urllib.error.HTTPError as e:
            detail = ""
            try:
                detail = e.read().decode("utf-8", errors="replace")[:300]
            except OSError:
                detail = str(e)
            return LedgerPushResult(ok=False, error=detail or str(e), status_code=int(getattr(e, "code", 0) or 0))
        except Exception as e:
            # URLError, timeouts, malformed URLs.
            return LedgerPushResult(ok=False, error=f"{type(e).__name__}:{e}")

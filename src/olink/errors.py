from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass
class TransferError(Exception):
    """Canonical error type for the transfer protocol.

    Subclasses only override `code`; callers distinguish failure kinds by type
    (or by `code` once the error crosses an HTTP boundary).
    """

    code: ClassVar[str] = "transfer_error"

    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidRecord(TransferError):
    code = "invalid_record"


class TamperedSignature(TransferError):
    code = "tampered_signature"


class AlreadyCompleted(TransferError):
    code = "already_completed"


class AlreadyVerified(TransferError):
    code = "already_verified"


class SyncUnreachable(TransferError):
    code = "sync_unreachable"


class StoreUnavailable(TransferError):
    code = "store_unavailable"


class Unauthorized(TransferError):
    code = "unauthorized"


class PayloadDecodeError(TransferError):
    code = "payload_decode_failed"


class RecordNotFound(TransferError):
    code = "record_not_found"

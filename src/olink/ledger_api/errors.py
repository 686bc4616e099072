from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from olink.errors import TransferError


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def from_transfer_error(e: TransferError) -> "ApiError":
        details = e.details if isinstance(e.details, dict) else {}
        if e.code == "store_unavailable":
            # Never leak filesystem paths to clients.
            return ApiError.unavailable(e.code, e.reason, {})
        if e.code == "record_not_found":
            return ApiError.not_found(e.code, e.reason, details)
        return ApiError.bad_request(e.code, e.reason, details)

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}

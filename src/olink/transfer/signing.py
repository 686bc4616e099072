# src/olink/transfer/signing.py
from __future__ import annotations

from decimal import Decimal
from typing import Any

from olink.crypto.sig import sign_ed25519, verify_ed25519_signature
from olink.errors import InvalidRecord
from olink.transfer.canon import canonical_signed_bytes, ensure_valid_amount
from olink.transfer.record import TransferRecord


def _nonempty_str(v: Any) -> bool:
    return isinstance(v, str) and bool(v.strip())


def is_structurally_complete(record: Any) -> bool:
    """True if every signed field is present with the right type."""
    if not isinstance(record, TransferRecord):
        return False
    if not (_nonempty_str(record.id) and _nonempty_str(record.sender) and _nonempty_str(record.recipient)):
        return False
    if not isinstance(record.amount, Decimal) or not record.amount.is_finite() or record.amount <= 0:
        return False
    if isinstance(record.timestamp, bool) or not isinstance(record.timestamp, int):
        return False
    if record.description is not None and not isinstance(record.description, str):
        return False
    return True


def sign_record(record: TransferRecord, privkey: str) -> str:
    """Sign the record's economically meaningful fields; returns a hex signature."""
    ensure_valid_amount(record.amount)
    if not is_structurally_complete(record):
        raise InvalidRecord("record_incomplete", {"id": getattr(record, "id", None)})
    return sign_ed25519(message=canonical_signed_bytes(record), privkey=privkey, encoding="hex")


def verify_record(record: Any, signature: Any, pubkey: Any) -> bool:
    """Check `signature` over the record's canonical bytes.

    Pure. Never raises: malformed input, a differing signature or an
    incomplete record all yield False.
    """
    if not is_structurally_complete(record):
        return False
    if not _nonempty_str(signature) or not _nonempty_str(pubkey):
        return False
    try:
        msg = canonical_signed_bytes(record)
    except (TypeError, ValueError):
        return False
    return verify_ed25519_signature(message=msg, sig=signature, pubkey=pubkey)

# src/olink/transfer/canon.py
from __future__ import annotations

"""Canonical byte encoding of a transfer's signed fields.

Both devices and the ledger must derive identical bytes from the same record,
so this module is the single source of truth for:
  - which fields are signed (flags and verification time are NOT)
  - amount formatting (plain decimal string, no exponent, no trailing zeros)
  - key ordering and separators (sorted, compact JSON, UTF-8)
"""

import json
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from olink.errors import InvalidRecord
from olink.transfer.record import TransferRecord

Json = Dict[str, Any]

SIGNING_SCHEMA = "olink.transfer/1"


def to_decimal(value: Any) -> Decimal:
    """Coerce a user or wire supplied amount to Decimal.

    Floats go through repr() so 25.1 becomes Decimal("25.1"), not its binary expansion.
    """
    if isinstance(value, bool):
        raise InvalidRecord("amount_not_numeric", {"amount": value})
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, float):
            d = Decimal(repr(value))
        elif isinstance(value, (int, str)):
            d = Decimal(str(value).strip())
        else:
            raise InvalidRecord("amount_not_numeric", {"amount": repr(value)})
    except InvalidOperation as e:
        raise InvalidRecord("amount_not_numeric", {"amount": str(value)}) from e
    if not d.is_finite():
        raise InvalidRecord("amount_not_finite", {"amount": str(value)})
    return d


def format_amount(amount: Decimal) -> str:
    """Locale-independent, exponent-free rendering: 25.00 -> "25", 1E+2 -> "100"."""
    d = amount.normalize()
    s = format(d, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s or "0"


def amount_to_json_number(amount: Decimal) -> int | float:
    """Render an amount as a JSON number without losing value.

    Raises InvalidRecord if the amount cannot survive a JSON number round trip.
    """
    d = amount.normalize()
    if d == d.to_integral_value():
        return int(d)
    f = float(d)
    if not math.isfinite(f) or Decimal(repr(f)) != d:
        raise InvalidRecord("amount_not_representable", {"amount": format_amount(amount)})
    return f


def ensure_valid_amount(amount: Decimal) -> None:
    if not isinstance(amount, Decimal) or not amount.is_finite():
        raise InvalidRecord("amount_not_finite", {"amount": str(amount)})
    if amount <= 0:
        raise InvalidRecord("amount_must_be_positive", {"amount": format_amount(amount)})
    amount_to_json_number(amount)


def canonical_signed_fields(record: TransferRecord) -> Json:
    return {
        "schema": SIGNING_SCHEMA,
        "id": str(record.id),
        "amount": format_amount(record.amount),
        "sender": str(record.sender),
        "recipient": str(record.recipient),
        "timestamp": int(record.timestamp),
        "description": record.description,
    }


def canonical_signed_bytes(record: TransferRecord) -> bytes:
    obj = canonical_signed_fields(record)
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

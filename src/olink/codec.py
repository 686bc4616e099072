# src/olink/codec.py
from __future__ import annotations

"""QR payload codec.

The payload is the opaque blob handed to the (external) code renderer and
read back by the (external) scanner:

  {"record": {...TransferRecord, camelCase...}, "publicKey": "<hex>"}

Encoding is canonical JSON. Decoding parses numbers as Decimal so amounts
survive exactly, then validates the shape with pydantic.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError

from olink.errors import InvalidRecord, PayloadDecodeError
from olink.transfer.canon import amount_to_json_number, to_decimal
from olink.transfer.record import TransferRecord

Json = Dict[str, Any]


class RecordModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1)
    amount: Decimal
    recipient: str = Field(..., min_length=1)
    sender: str = Field(..., min_length=1)
    timestamp: StrictInt
    description: Optional[str] = None
    signature: str = Field(..., min_length=1)
    sender_verified: StrictBool = Field(False, alias="senderVerified")
    recipient_verified: StrictBool = Field(False, alias="recipientVerified")
    verification_timestamp: Optional[StrictInt] = Field(None, alias="verificationTimestamp")


class PayloadModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    record: RecordModel
    public_key: str = Field(..., min_length=1, alias="publicKey")


@dataclass(frozen=True, slots=True)
class QRPayload:
    record: TransferRecord
    public_key: str


def record_to_wire(record: TransferRecord) -> Json:
    out = record.to_dict()
    out["amount"] = amount_to_json_number(record.amount)
    return out


def payload_to_dict(record: TransferRecord, public_key: str) -> Json:
    return {"record": record_to_wire(record), "publicKey": str(public_key)}


def encode_payload(record: TransferRecord, public_key: str) -> str:
    """Serialize a record plus its signer's public key into the transport blob."""
    if not isinstance(public_key, str) or not public_key.strip():
        raise InvalidRecord("public_key_required", {"id": record.id})
    return json.dumps(payload_to_dict(record, public_key), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _model_to_record(m: RecordModel) -> TransferRecord:
    try:
        amount = to_decimal(m.amount)
    except InvalidRecord as e:
        raise PayloadDecodeError("invalid_amount", {"amount": str(m.amount)}) from e
    return TransferRecord(
        id=m.id,
        amount=amount,
        sender=m.sender,
        recipient=m.recipient,
        timestamp=int(m.timestamp),
        description=m.description,
        signature=m.signature,
        sender_verified=bool(m.sender_verified),
        recipient_verified=bool(m.recipient_verified),
        verification_timestamp=m.verification_timestamp,
    )


def payload_from_dict(obj: Any) -> QRPayload:
    if not isinstance(obj, dict):
        raise PayloadDecodeError("payload_not_object")
    rec = obj.get("record")
    amount = rec.get("amount") if isinstance(rec, dict) else None
    if isinstance(amount, (bool, str)):
        # Wire amounts are JSON numbers only.
        raise PayloadDecodeError("invalid_amount", {"amount": amount})
    try:
        m = PayloadModel.model_validate(obj)
    except ValidationError as e:
        raise PayloadDecodeError("invalid_payload", {"errors": e.errors(include_url=False, include_context=False, include_input=False)}) from e
    return QRPayload(record=_model_to_record(m.record), public_key=m.public_key.strip())


def decode_payload(blob: Union[str, bytes]) -> QRPayload:
    """Parse a scanned blob back into a QRPayload.

    Raises PayloadDecodeError for anything that is not a well-formed payload.
    Signature checking is the caller's job (olink.transfer.signing).
    """
    try:
        if isinstance(blob, bytes):
            blob = blob.decode("utf-8")
        obj = json.loads(blob, parse_float=Decimal)
    except UnicodeDecodeError as e:
        raise PayloadDecodeError("invalid_utf8", {"error": str(e)}) from e
    except (ValueError, TypeError, RecursionError) as e:
        # JSONDecodeError, oversized integers, pathological nesting.
        raise PayloadDecodeError("invalid_json", {"error": str(e)}) from e
    return payload_from_dict(obj)

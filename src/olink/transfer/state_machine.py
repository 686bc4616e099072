# src/olink/transfer/state_machine.py
from __future__ import annotations

"""Verification state machine.

    pending --(one flag)--> partially_verified --(other flag)--> completed

Flags only move false -> true. `completed` is terminal. Everything here is a
pure function over immutable records; persistence lives in the store, which
calls merge_records() as its single merge rule.
"""

import dataclasses
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from olink.errors import AlreadyCompleted, AlreadyVerified
from olink.transfer.record import TransferRecord, VerificationStatus


def _now_ms() -> int:
    return int(time.time() * 1000)


class Party(str, Enum):
    SENDER = "sender"
    RECIPIENT = "recipient"

    def flag_of(self, record: TransferRecord) -> bool:
        if self is Party.SENDER:
            return bool(record.sender_verified)
        return bool(record.recipient_verified)

    def principal_of(self, record: TransferRecord) -> str:
        return record.sender if self is Party.SENDER else record.recipient


@dataclass(frozen=True, slots=True)
class VerificationEvent:
    party: Party
    ts_ms: Optional[int] = None


@dataclass(frozen=True, slots=True)
class Transition:
    record: TransferRecord
    status: VerificationStatus
    changed: bool


def apply_event(record: TransferRecord, event: VerificationEvent) -> Transition:
    """Set the event's flag on `record`.

    Raises:
      AlreadyCompleted: record is completed; nothing further is meaningful.
      AlreadyVerified: this party's flag is already set.
    """
    if record.status is VerificationStatus.COMPLETED:
        raise AlreadyCompleted("record_completed", {"id": record.id})

    party = Party(event.party)
    if party.flag_of(record):
        raise AlreadyVerified("flag_already_set", {"id": record.id, "party": party.value})

    ts = int(event.ts_ms) if event.ts_ms is not None else _now_ms()
    vts = record.verification_timestamp if record.verification_timestamp is not None else ts

    if party is Party.SENDER:
        updated = dataclasses.replace(record, sender_verified=True, verification_timestamp=vts)
    else:
        updated = dataclasses.replace(record, recipient_verified=True, verification_timestamp=vts)

    return Transition(record=updated, status=updated.status, changed=True)


def _earliest(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return min(int(a), int(b))


def signed_fields_match(a: TransferRecord, b: TransferRecord) -> bool:
    return a.signed_fields() == b.signed_fields() and a.signature == b.signature


def merge_records(existing: Optional[TransferRecord], incoming: TransferRecord) -> TransferRecord:
    """Merge two copies of the same logical record.

    - signed fields and signature: existing copy wins (immutable after signing)
    - flags: logical OR (never regress)
    - verification_timestamp: earliest non-null

    Commutative on flags, so copies mutated independently on two devices
    converge regardless of arrival order.
    """
    if existing is None:
        return incoming
    if existing.id != incoming.id:
        raise ValueError(f"cannot merge different records: {existing.id} != {incoming.id}")

    return dataclasses.replace(
        existing,
        sender_verified=bool(existing.sender_verified or incoming.sender_verified),
        recipient_verified=bool(existing.recipient_verified or incoming.recipient_verified),
        verification_timestamp=_earliest(existing.verification_timestamp, incoming.verification_timestamp),
    )

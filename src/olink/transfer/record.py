from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

Json = Dict[str, Any]


class VerificationStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_VERIFIED = "partially_verified"
    COMPLETED = "completed"


def status_of(sender_verified: bool, recipient_verified: bool) -> VerificationStatus:
    if sender_verified and recipient_verified:
        return VerificationStatus.COMPLETED
    if sender_verified or recipient_verified:
        return VerificationStatus.PARTIALLY_VERIFIED
    return VerificationStatus.PENDING


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """A signed transfer between two principals.

    Signed fields: id, amount, sender, recipient, timestamp, description.
    The verification flags and timestamp are outside the signature and only
    ever move forward (see olink.transfer.state_machine).
    """

    id: str
    amount: Decimal
    sender: str
    recipient: str
    timestamp: int
    description: Optional[str] = None
    signature: str = ""

    sender_verified: bool = False
    recipient_verified: bool = False
    verification_timestamp: Optional[int] = None

    @property
    def status(self) -> VerificationStatus:
        return status_of(self.sender_verified, self.recipient_verified)

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def signed_fields(self) -> Json:
        return {
            "id": self.id,
            "amount": self.amount,
            "sender": self.sender,
            "recipient": self.recipient,
            "timestamp": self.timestamp,
            "description": self.description,
        }

    def to_dict(self) -> Json:
        """Wire-shaped dict (camelCase keys, as carried in the QR payload)."""
        out: Json = {
            "id": self.id,
            "amount": self.amount,
            "sender": self.sender,
            "recipient": self.recipient,
            "timestamp": self.timestamp,
            "signature": self.signature,
            "senderVerified": self.sender_verified,
            "recipientVerified": self.recipient_verified,
        }
        if self.description is not None:
            out["description"] = self.description
        if self.verification_timestamp is not None:
            out["verificationTimestamp"] = self.verification_timestamp
        return out

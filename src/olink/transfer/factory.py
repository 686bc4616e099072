from __future__ import annotations

import dataclasses
import secrets
import time
import uuid
from typing import Any, Callable, Optional

from olink.errors import InvalidRecord
from olink.transfer.canon import ensure_valid_amount, to_decimal
from olink.transfer.record import TransferRecord
from olink.transfer.signing import sign_record

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return uuid.uuid4().hex


def anonymous_principal() -> str:
    """Local tag for a creator with no identity provider account."""
    return "wallet_" + "".join(secrets.choice(_BASE36) for _ in range(4))


class TransactionFactory:
    """Builds new signed transfer records.

    No persistence: the caller stores the result through TransactionStore.
    """

    def __init__(
        self,
        *,
        now_ms: Callable[[], int] = _now_ms,
        new_id: Callable[[], str] = _new_id,
    ) -> None:
        self._now_ms = now_ms
        self._new_id = new_id

    def create(
        self,
        *,
        amount: Any,
        recipient: str,
        signing_key: str,
        description: Optional[str] = None,
        creator: Optional[str] = None,
    ) -> TransferRecord:
        amount_d = to_decimal(amount)
        ensure_valid_amount(amount_d)

        if not isinstance(recipient, str) or not recipient.strip():
            raise InvalidRecord("recipient_required")

        sender = creator.strip() if isinstance(creator, str) and creator.strip() else anonymous_principal()

        if description is not None and not isinstance(description, str):
            raise InvalidRecord("description_not_text")

        record = TransferRecord(
            id=self._new_id(),
            amount=amount_d,
            sender=sender,
            recipient=recipient.strip(),
            timestamp=int(self._now_ms()),
            description=description,
        )
        return dataclasses.replace(record, signature=sign_record(record, signing_key))

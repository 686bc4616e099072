# src/olink/protocol.py
from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

from olink.authz import AuthorizationCheck
from olink.codec import QRPayload, decode_payload, encode_payload
from olink.crypto.sig import public_key_for
from olink.errors import InvalidRecord, RecordNotFound, TamperedSignature, Unauthorized
from olink.notify.email import Notifier
from olink.store.transfer_store import TransactionStore
from olink.structured_logging import log_event
from olink.sync.agent import SyncAgent, SyncOutcome
from olink.transfer.factory import TransactionFactory
from olink.transfer.record import TransferRecord, VerificationStatus
from olink.transfer.signing import verify_record
from olink.transfer.state_machine import Party, VerificationEvent, apply_event, merge_records, signed_fields_match

log = logging.getLogger("olink.protocol")

CreditHook = Callable[[TransferRecord, Party], None]
KeyResolver = Callable[[str], Optional[str]]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class ConfirmationResult:
    record: TransferRecord
    status: VerificationStatus
    sync: Optional[SyncOutcome] = None


class TransferService:
    """Device-side orchestration of the dual-party confirmation protocol.

    create_transfer: Factory -> Signer -> Store -> Codec
    confirm_as_*:    Codec -> Verifier -> StateMachine -> Store -> SyncAgent

    Every collaborator is injected; the service holds no global state.
    """

    def __init__(
        self,
        *,
        store: TransactionStore,
        authorizer: AuthorizationCheck,
        signing_key: Optional[str] = None,
        sync_agent: Optional[SyncAgent] = None,
        notifier: Optional[Notifier] = None,
        credit_hook: Optional[CreditHook] = None,
        key_resolver: Optional[KeyResolver] = None,
        factory: Optional[TransactionFactory] = None,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.authorizer = authorizer
        self.sync_agent = sync_agent
        self.notifier = notifier
        self.credit_hook = credit_hook
        self.key_resolver = key_resolver
        self.factory = factory or TransactionFactory(now_ms=now_ms)
        self._signing_key = signing_key
        self._now_ms = now_ms
        self.public_key = public_key_for(signing_key) if signing_key else None

    def create_transfer(
        self,
        *,
        amount: Any,
        recipient: str,
        description: Optional[str] = None,
        creator: Optional[str] = None,
    ) -> Tuple[TransferRecord, str]:
        """Build, sign and persist a new record; return it with its QR payload blob."""
        if not self._signing_key or not self.public_key:
            raise InvalidRecord("signing_key_required")

        record = self.factory.create(
            amount=amount,
            recipient=recipient,
            description=description,
            creator=creator,
            signing_key=self._signing_key,
        )
        stored = self.store.upsert(record, public_key=self.public_key)
        blob = encode_payload(stored, self.public_key)
        log_event(log, "transfer_created", id=stored.id, sender=stored.sender, recipient=stored.recipient)
        return stored, blob

    def verify_payload(self, payload: QRPayload) -> QRPayload:
        record = payload.record
        if self.key_resolver is not None:
            trusted = self.key_resolver(record.sender)
            if trusted is not None and trusted.strip().lower() != payload.public_key.strip().lower():
                log_event(log, "transfer_key_mismatch", level=logging.WARNING, id=record.id, sender=record.sender)
                raise TamperedSignature("public_key_not_bound_to_sender", {"id": record.id})

        if not verify_record(record, record.signature, payload.public_key):
            log_event(log, "transfer_tampered", level=logging.WARNING, id=record.id)
            raise TamperedSignature("signature_invalid", {"id": record.id})
        return payload

    def import_payload(self, blob: Union[str, bytes]) -> QRPayload:
        """Decode and verify a scanned blob. Nothing is persisted."""
        return self.verify_payload(decode_payload(blob))

    def confirm_as_sender(
        self,
        payload: Union[str, bytes, QRPayload],
        *,
        principal: str,
        credential: str,
        notify_address: Optional[str] = None,
    ) -> ConfirmationResult:
        return self._confirm(payload, Party.SENDER, principal, credential, notify_address)

    def confirm_as_recipient(
        self,
        payload: Union[str, bytes, QRPayload],
        *,
        principal: str,
        credential: str,
        notify_address: Optional[str] = None,
    ) -> ConfirmationResult:
        return self._confirm(payload, Party.RECIPIENT, principal, credential, notify_address)

    def _confirm(
        self,
        payload: Union[str, bytes, QRPayload],
        party: Party,
        principal: str,
        credential: str,
        notify_address: Optional[str],
    ) -> ConfirmationResult:
        qp = self.verify_payload(payload) if isinstance(payload, QRPayload) else self.import_payload(payload)
        # Flags and verification time are outside the signature; only the local
        # copy and this confirmation may set them.
        incoming = dataclasses.replace(
            qp.record, sender_verified=False, recipient_verified=False, verification_timestamp=None
        )

        stored = self.store.get_by_id(incoming.id)
        if stored is not None and not signed_fields_match(stored, incoming):
            log_event(log, "transfer_conflict", level=logging.WARNING, id=incoming.id)
            raise TamperedSignature("signed_fields_conflict_with_local_copy", {"id": incoming.id})

        # Raises AlreadyCompleted / AlreadyVerified before any credential is checked.
        transition = apply_event(merge_records(stored, incoming), VerificationEvent(party=party, ts_ms=self._now_ms()))

        owner = party.principal_of(incoming)
        if principal != owner or not self.authorizer.authorize(principal, credential):
            log_event(log, "confirmation_refused", level=logging.WARNING, id=incoming.id, party=party.value)
            raise Unauthorized("confirmation_not_authorized", {"id": incoming.id, "party": party.value})

        # Persist before anything else: confirmed implies persisted.
        merged = self.store.upsert(transition.record, public_key=qp.public_key)
        log_event(log, "transfer_confirmed", id=merged.id, party=party.value, status=merged.status.value)

        outcome: Optional[SyncOutcome] = None
        if self.sync_agent is not None:
            outcome = self.sync_agent.on_local_confirmation(merged.id)

        if self.credit_hook is not None:
            self.credit_hook(merged, party)

        self._notify(merged, notify_address)
        return ConfirmationResult(record=merged, status=merged.status, sync=outcome)

    def _notify(self, record: TransferRecord, address: Optional[str]) -> None:
        if self.notifier is None or not address:
            return
        try:
            self.notifier.notify(record, address)
        except Exception as e:
            # Fire-and-forget: notification never fails the protocol.
            log_event(log, "notify_failed", level=logging.WARNING, id=record.id, error=f"{type(e).__name__}:{e}")

    def status(self, record_id: str) -> VerificationStatus:
        record = self.store.get_by_id(record_id)
        if record is None:
            raise RecordNotFound("unknown_record", {"id": record_id})
        return record.status

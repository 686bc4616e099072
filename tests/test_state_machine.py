from __future__ import annotations

import dataclasses
from decimal import Decimal

import pytest

from olink.errors import AlreadyCompleted, AlreadyVerified
from olink.transfer.record import TransferRecord, VerificationStatus, status_of
from olink.transfer.state_machine import Party, VerificationEvent, apply_event, merge_records


def _rec(**kw) -> TransferRecord:
    base = dict(
        id="t1",
        amount=Decimal("25.00"),
        sender="alice",
        recipient="bob",
        timestamp=1_700_000_000_000,
        description="lunch",
        signature="ab" * 64,
    )
    base.update(kw)
    return TransferRecord(**base)


def test_status_is_derived_from_flags() -> None:
    assert status_of(False, False) is VerificationStatus.PENDING
    assert status_of(True, False) is VerificationStatus.PARTIALLY_VERIFIED
    assert status_of(False, True) is VerificationStatus.PARTIALLY_VERIFIED
    assert status_of(True, True) is VerificationStatus.COMPLETED


def test_first_event_sets_flag_and_verification_timestamp() -> None:
    t = apply_event(_rec(), VerificationEvent(party=Party.SENDER, ts_ms=100))
    assert t.changed is True
    assert t.record.sender_verified is True
    assert t.record.recipient_verified is False
    assert t.record.verification_timestamp == 100
    assert t.status is VerificationStatus.PARTIALLY_VERIFIED


def test_second_event_completes_and_keeps_first_timestamp() -> None:
    t1 = apply_event(_rec(), VerificationEvent(party=Party.RECIPIENT, ts_ms=100))
    t2 = apply_event(t1.record, VerificationEvent(party=Party.SENDER, ts_ms=200))
    assert t2.status is VerificationStatus.COMPLETED
    assert t2.record.verification_timestamp == 100


def test_event_without_timestamp_uses_clock() -> None:
    t = apply_event(_rec(), VerificationEvent(party=Party.SENDER))
    assert isinstance(t.record.verification_timestamp, int)
    assert t.record.verification_timestamp > 0


def test_same_party_twice_is_already_verified() -> None:
    t = apply_event(_rec(), VerificationEvent(party=Party.SENDER, ts_ms=1))
    with pytest.raises(AlreadyVerified) as ei:
        apply_event(t.record, VerificationEvent(party=Party.SENDER, ts_ms=2))
    assert ei.value.details == {"id": "t1", "party": "sender"}


@pytest.mark.parametrize("party", [Party.SENDER, Party.RECIPIENT])
def test_completed_record_rejects_any_event(party: Party) -> None:
    done = _rec(sender_verified=True, recipient_verified=True, verification_timestamp=5)
    with pytest.raises(AlreadyCompleted):
        apply_event(done, VerificationEvent(party=party, ts_ms=10))
    assert done.verification_timestamp == 5


def test_party_accessors() -> None:
    r = _rec(recipient_verified=True)
    assert Party.SENDER.principal_of(r) == "alice"
    assert Party.RECIPIENT.principal_of(r) == "bob"
    assert Party.SENDER.flag_of(r) is False
    assert Party.RECIPIENT.flag_of(r) is True
    assert Party("recipient") is Party.RECIPIENT


def test_merge_with_nothing_returns_incoming() -> None:
    r = _rec()
    assert merge_records(None, r) is r


def test_merge_is_commutative_on_flags() -> None:
    a = _rec(sender_verified=True, verification_timestamp=300)
    b = _rec(recipient_verified=True, verification_timestamp=200)

    ab = merge_records(a, b)
    ba = merge_records(b, a)

    assert (ab.sender_verified, ab.recipient_verified) == (True, True)
    assert (ba.sender_verified, ba.recipient_verified) == (True, True)
    assert ab.verification_timestamp == ba.verification_timestamp == 200
    assert ab.status is VerificationStatus.COMPLETED


def test_merge_never_regresses_flags() -> None:
    verified = _rec(sender_verified=True, verification_timestamp=10)
    stale = _rec()
    merged = merge_records(verified, stale)
    assert merged.sender_verified is True
    assert merged.verification_timestamp == 10


def test_merge_keeps_existing_signed_fields() -> None:
    existing = _rec()
    forged = dataclasses.replace(_rec(), amount=Decimal("9999"), description="x", recipient_verified=True)
    merged = merge_records(existing, forged)
    assert merged.amount == Decimal("25.00")
    assert merged.description == "lunch"
    assert merged.recipient_verified is True


def test_merge_different_ids_is_a_programming_error() -> None:
    with pytest.raises(ValueError):
        merge_records(_rec(id="a"), _rec(id="b"))


def test_to_dict_omits_unset_optionals() -> None:
    d = _rec(description=None).to_dict()
    assert "description" not in d
    assert "verificationTimestamp" not in d
    assert d["senderVerified"] is False
    assert d["amount"] == Decimal("25.00")

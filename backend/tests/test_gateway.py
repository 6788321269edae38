import asyncio
import json
from decimal import Decimal

import pytest
from pydantic import ValidationError

from feedesk.core.exceptions import InvalidSignatureError, PaymentRecordingError
from feedesk.schemas.gateway import LinkGenerated, PaymentFailed, PaymentVerified
from feedesk.schemas.payments import PaymentMode
from feedesk.services.gateway_service import handle_event, parse_event, sign_body, verify_signature

from ledger_fixtures import (
    AS_OF,
    SCOPE,
    STUDENT_ID,
    TERM1,
    TRANSPORT,
    TUITION,
    FakeRepository,
    entry,
    recording_failure,
    snapshot,
)


async def _no_audit(*args, **kwargs):
    return None


def _repo(**kw):
    return FakeRepository(snapshot([entry(TUITION, TERM1, 5000), entry(TRANSPORT, TERM1, 1500)]), **kw)


def _verified(event_id="evt_1", fees=None, amount="6500"):
    return {
        "event": "payment.verified",
        "event_id": event_id,
        "branch_id": SCOPE.branch_id,
        "session_id": SCOPE.session_id,
        "student_id": STUDENT_ID,
        "order_id": "order_42",
        "gateway_payment_id": "pay_Nx81",
        "amount": amount,
        "fees": fees or [
            {"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": "5000"},
            {"fee_head_id": "h-transport", "fee_term_id": "t1", "amount": "1500"},
        ],
    }


def _handle(payload, repo):
    event = parse_event(json.dumps(payload).encode())
    return asyncio.run(handle_event(event, repo, as_of=AS_OF, audit=_no_audit))


def test_signature_roundtrip():
    body = b'{"event": "payment.failed"}'
    verify_signature(body, sign_body(body, "s3cret"), "s3cret")

    with pytest.raises(InvalidSignatureError):
        verify_signature(body, sign_body(body, "other"), "s3cret")
    with pytest.raises(InvalidSignatureError):
        verify_signature(body, None, "s3cret")


def test_events_parse_to_their_variant():
    link = parse_event(json.dumps({
        "event": "payment_link.generated", "event_id": "e1",
        "branch_id": "b", "session_id": "s", "student_id": STUDENT_ID,
        "order_id": "o1", "payment_url": "https://pay.example/o1", "amount": "6500",
    }).encode())
    failed = parse_event(json.dumps({
        "event": "payment.failed", "event_id": "e2",
        "branch_id": "b", "session_id": "s", "student_id": STUDENT_ID, "order_id": "o1",
    }).encode())

    assert isinstance(link, LinkGenerated)
    assert isinstance(failed, PaymentFailed)
    assert failed.reason == "unknown"
    assert isinstance(parse_event(json.dumps(_verified()).encode()), PaymentVerified)


def test_unknown_event_is_rejected():
    with pytest.raises(ValidationError):
        parse_event(b'{"event": "refund.created", "event_id": "e3"}')


def test_verified_payment_is_booked_as_online_manual_batch():
    repo = _repo()
    outcome = _handle(_verified(), repo)

    assert outcome == {"status": "processed", "receipt_number": "RCP-202504-A1B-0001"}
    [selection] = repo.recorded
    assert selection.mode == PaymentMode.online
    assert selection.transaction_reference == "pay_Nx81"
    assert [line.amount for line in selection.items] == [Decimal("5000.00"), Decimal("1500.00")]


def test_duplicate_event_is_ignored():
    repo = _repo()
    _handle(_verified(), repo)
    assert _handle(_verified(), repo) == {"status": "duplicate"}
    assert len(repo.recorded) == 1


def test_amount_mismatch_needs_review():
    repo = _repo()
    outcome = _handle(_verified(amount="7000"), repo)
    assert outcome["status"] == "needs_review"
    assert repo.recorded == []


def test_line_above_outstanding_needs_review():
    repo = _repo()
    payload = _verified(
        amount="2000",
        fees=[{"fee_head_id": "h-transport", "fee_term_id": "t1", "amount": "2000"}],
    )
    outcome = _handle(payload, repo)
    assert outcome["status"] == "needs_review"
    assert repo.recorded == []


def test_recording_failure_unsees_event_so_retry_is_accepted():
    failing = _repo(record_error=recording_failure())
    with pytest.raises(PaymentRecordingError):
        _handle(_verified(event_id="evt_retry"), failing)

    healthy = _repo()
    assert _handle(_verified(event_id="evt_retry"), healthy)["status"] == "processed"


def test_link_and_failure_events_are_noted_only():
    repo = _repo()
    failed = {
        "event": "payment.failed", "event_id": "evt_f",
        "branch_id": SCOPE.branch_id, "session_id": SCOPE.session_id,
        "student_id": STUDENT_ID, "order_id": "order_42", "reason": "card_declined",
    }
    assert _handle(failed, repo) == {"status": "failed_noted"}
    assert repo.recorded == []
    assert repo.loads == 0


def test_repeated_fee_lines_are_added_up_not_overwritten():
    repo = _repo()
    payload = _verified(
        amount="5000",
        fees=[
            {"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": "2500"},
            {"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": "2500"},
        ],
    )

    assert _handle(payload, repo)["status"] == "processed"
    [selection] = repo.recorded
    assert [(line.fee_item_id, line.amount) for line in selection.items] == [("t1:h-tuition", Decimal("5000.00"))]
    assert selection.total_amount == Decimal("5000.00")


def test_repeated_fee_lines_above_outstanding_need_review():
    repo = _repo()
    payload = _verified(
        amount="6000",
        fees=[
            {"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": "3000"},
            {"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": "3000"},
        ],
    )

    assert _handle(payload, repo)["status"] == "needs_review"
    assert repo.recorded == []


def test_unexpected_failure_unsees_event_so_retry_is_accepted():
    class BrokenRepository(FakeRepository):
        async def load_snapshot(self, scope, student_id):
            raise ValueError("'BOGUS' is not a valid ConcessionKind")

    broken = BrokenRepository(_repo().snapshot)
    with pytest.raises(ValueError):
        _handle(_verified(event_id="evt_broken"), broken)

    assert _handle(_verified(event_id="evt_broken"), _repo())["status"] == "processed"


def test_default_evaluation_date_is_school_local(monkeypatch):
    from feedesk.services import gateway_service

    monkeypatch.setattr(gateway_service, "local_today", lambda: AS_OF)
    repo = _repo()
    event = parse_event(json.dumps(_verified(event_id="evt_today")).encode())

    outcome = asyncio.run(handle_event(event, repo, audit=_no_audit))

    assert outcome["status"] == "processed"
    assert repo.recorded[0].payment_date == AS_OF
    assert repo.evaluated_on == [AS_OF]


def test_oversized_amount_is_rejected_at_parse():
    with pytest.raises(ValidationError):
        parse_event(json.dumps(_verified(amount="1e30")).encode())

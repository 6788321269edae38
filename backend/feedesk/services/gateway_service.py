# feedesk/services/gateway_service.py
#
# Gateway webhook intake. The gateway adapter has no user session,
# so the HMAC signature over the raw body is the only credential.
#
#   verify_signature() → raises InvalidSignatureError
#   parse_event()      → LinkGenerated | PaymentVerified | PaymentFailed
#   handle_event()     → {"status": ...}
#
# A verified payment is booked through the same allocation rules as the
# counter (manual mode, each line capped at its outstanding). If the
# ledger moved since the order was created, the event is parked as
# "needs_review" - nothing is reconciled automatically.

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Optional
import hashlib
import hmac
import logging

from feedesk.core.config import local_today, settings
from feedesk.core.exceptions import (
    InvalidSignatureError,
    PaymentRecordingError,
    SnapshotUnavailableError,
    StaleSnapshotError,
)
from feedesk.schemas.fees import LedgerScope, fee_item_id
from feedesk.schemas.gateway import (
    LinkGenerated,
    PaymentFailed,
    PaymentVerified,
    gateway_event_adapter,
)
from feedesk.schemas.payments import AdjustmentMode, PaymentMode
from feedesk.schemas.results import Err
from feedesk.services.activity_service import log_activity
from feedesk.services.allocation_service import allocate
from feedesk.services.fee_item_service import build_from_snapshot
from feedesk.utils.idempotency import (
    batch_key,
    batch_latch,
    forget_gateway_event,
    mark_gateway_event_seen,
)
from feedesk.utils.money import to_money

logger = logging.getLogger(__name__)


def sign_body(body: bytes, secret: Optional[str] = None) -> str:
    secret = settings.GATEWAY_WEBHOOK_SECRET if secret is None else secret
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    expected = sign_body(body, secret)
    if not signature or not hmac.compare_digest(expected, signature):
        raise InvalidSignatureError("Invalid signature")


def parse_event(body: bytes):
    """Raises pydantic.ValidationError for unknown or malformed events."""
    return gateway_event_adapter.validate_json(body)


async def handle_event(
    event,
    repo,
    *,
    as_of: Optional[date] = None,
    audit=log_activity,
    db_path: Optional[str] = None,
) -> dict:
    if mark_gateway_event_seen(event.event_id, db_path=db_path):
        return {"status": "duplicate"}

    scope = LedgerScope(branch_id=event.branch_id, session_id=event.session_id)
    as_of = as_of or local_today()

    if isinstance(event, LinkGenerated):
        await audit(
            "payment_link.generated",
            branch_id=scope.branch_id, session_id=scope.session_id,
            entity_type="gateway_order", entity_id=event.order_id,
            metadata={"student_id": event.student_id, "amount": str(event.amount),
                      "payment_url": event.payment_url},
        )
        return {"status": "link_noted"}

    if isinstance(event, PaymentFailed):
        logger.info(f"Gateway order {event.order_id} failed: {event.reason}")
        await audit(
            "payment.gateway_failed",
            branch_id=scope.branch_id, session_id=scope.session_id,
            entity_type="gateway_order", entity_id=event.order_id,
            metadata={"student_id": event.student_id, "reason": event.reason},
        )
        return {"status": "failed_noted"}

    # Anything that stops booking short of a verdict un-sees the event so
    # the gateway's retry is processed instead of answered "duplicate".
    try:
        return await _book_verified_payment(event, repo, scope, as_of, audit, db_path)
    except Exception:
        forget_gateway_event(event.event_id, db_path=db_path)
        raise


async def _needs_review(event: PaymentVerified, scope: LedgerScope, audit, reason: str) -> dict:
    logger.error(f"Gateway payment {event.gateway_payment_id} needs review: {reason}")
    await audit(
        "payment.gateway_needs_review",
        branch_id=scope.branch_id, session_id=scope.session_id,
        entity_type="gateway_order", entity_id=event.order_id,
        metadata={"student_id": event.student_id, "amount": str(event.amount), "reason": reason},
    )
    return {"status": "needs_review", "reason": reason}


def _amounts_by_item(event: PaymentVerified) -> Dict[str, Decimal]:
    """Gateway lines keyed by fee item; repeated (head, term) lines are added up."""
    amounts: Dict[str, Decimal] = defaultdict(Decimal)
    for line in event.fees:
        amounts[fee_item_id(line.fee_term_id, line.fee_head_id)] += line.amount
    return dict(amounts)


async def _book_verified_payment(
    event: PaymentVerified,
    repo,
    scope: LedgerScope,
    as_of: date,
    audit,
    db_path: Optional[str],
) -> dict:
    captured = to_money(event.amount)
    lines_total = to_money(sum(line.amount for line in event.fees))
    if lines_total != captured:
        return await _needs_review(
            event, scope, audit,
            f"fee lines total {lines_total} but gateway captured {captured}",
        )

    try:
        snapshot = await repo.load_snapshot(scope, event.student_id)
    except SnapshotUnavailableError as e:
        raise PaymentRecordingError(str(e)) from e

    items = build_from_snapshot(snapshot, as_of)
    custom = {item_id: str(amount) for item_id, amount in _amounts_by_item(event).items()}
    allocated = allocate(
        items, list(custom), AdjustmentMode.manual, custom,
        student_id=event.student_id,
        payment_mode=PaymentMode.online,
        payment_date=as_of,
        transaction_reference=event.gateway_payment_id,
        notes=f"Gateway order {event.order_id}",
    )
    if isinstance(allocated, Err):
        return await _needs_review(event, scope, audit, allocated.message)

    selection = allocated.value
    if to_money(selection.total_amount) != captured:
        return await _needs_review(
            event, scope, audit,
            f"batch totals {to_money(selection.total_amount)} but gateway captured {captured}",
        )

    with batch_latch(batch_key(scope, selection), db_path=db_path) as acquired:
        if not acquired:
            return {"status": "in_flight"}
        try:
            result = await repo.record_payment(scope, selection, as_of=as_of)
        except StaleSnapshotError as e:
            return await _needs_review(event, scope, audit, str(e))

    await audit(
        "payment.gateway_verified",
        branch_id=scope.branch_id, session_id=scope.session_id,
        entity_type="fee_collection", entity_id=result.receipt_number,
        metadata={"student_id": event.student_id, "order_id": event.order_id,
                  "amount": str(result.total_amount)},
    )
    return {"status": "processed", "receipt_number": result.receipt_number}

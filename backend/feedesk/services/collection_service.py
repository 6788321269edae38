# feedesk/services/collection_service.py
#
# The counter flow, end to end:
#
#   load snapshot → build FeeItems → allocate (validate)
#   → take the batch latch → record payment (once) → build receipt
#   → notify parent (best-effort) → audit → rebuild FeeItems
#
# The pure pieces (builder, allocation, receipt) never see I/O; this
# module awaits the collaborators around them and turns every outcome
# into Ok(...) or Err(...). Nothing is retried here.

from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Tuple, Union
import logging

from pydantic import BaseModel

from feedesk.core.exceptions import (
    PaymentRecordingError,
    SnapshotUnavailableError,
    StaleSnapshotError,
)
from feedesk.schemas.fees import (
    FeeItem,
    FeeLedgerResponse,
    LedgerScope,
    LedgerSnapshot,
)
from feedesk.schemas.payments import (
    ItemAllocation,
    PaymentBatchResult,
    PaymentSelection,
    SelectionRequest,
)
from feedesk.schemas.receipts import Receipt
from feedesk.schemas.results import Err, ErrorKind, Ok
from feedesk.services.activity_service import log_activity
from feedesk.services.allocation_service import allocate, distribute_payment
from feedesk.services.fee_item_service import (
    build_from_snapshot,
    group_by_term,
    summarize_fee_items,
)
from feedesk.services.receipt_service import build_receipt, recorded_total_mismatch
from feedesk.utils.idempotency import batch_key, batch_latch
from feedesk.utils.notifications import notify_receipt_to_n8n

logger = logging.getLogger(__name__)

Notifier = Callable[..., Awaitable[Optional[str]]]
Auditor = Callable[..., Awaitable[None]]


class CollectionOutcome(BaseModel):
    result: PaymentBatchResult
    receipt: Receipt
    ledger: Optional[FeeLedgerResponse] = None     # rebuilt after recording


def ledger_view(student_id: str, items: List[FeeItem], as_of: date) -> FeeLedgerResponse:
    return FeeLedgerResponse(
        student_id=student_id,
        as_of=as_of,
        items=items,
        summary=summarize_fee_items(items),
        terms=group_by_term(items),
    )


async def load_ledger(
    repo,
    scope: LedgerScope,
    student_id: str,
    as_of: date,
) -> Tuple[LedgerSnapshot, List[FeeItem]]:
    snapshot = await repo.load_snapshot(scope, student_id)
    return snapshot, build_from_snapshot(snapshot, as_of)


async def get_ledger(repo, scope: LedgerScope, student_id: str, as_of: date) -> Union[Ok[FeeLedgerResponse], Err]:
    try:
        _, items = await load_ledger(repo, scope, student_id, as_of)
    except SnapshotUnavailableError as e:
        return Err(kind=ErrorKind.snapshot_unavailable, message=str(e))
    return Ok[FeeLedgerResponse](value=ledger_view(student_id, items, as_of))


def _selection_from_request(
    items: List[FeeItem],
    student_id: str,
    body: SelectionRequest,
    as_of: date,
) -> Union[Ok[PaymentSelection], Err]:
    return allocate(
        items,
        body.selected_fee_ids,
        body.adjustment_mode,
        body.custom_amounts,
        student_id=student_id,
        payment_mode=body.payment_mode,
        payment_date=body.payment_date or as_of,
        transaction_reference=body.transaction_reference,
        notes=body.notes,
    )


async def preview_selection(
    repo,
    student_id: str,
    body: SelectionRequest,
    as_of: date,
) -> Union[Ok[PaymentSelection], Err]:
    """Dry run of /collect: validates against a fresh snapshot, records nothing."""
    scope = LedgerScope(branch_id=body.branch_id, session_id=body.session_id)
    try:
        _, items = await load_ledger(repo, scope, student_id, as_of)
    except SnapshotUnavailableError as e:
        return Err(kind=ErrorKind.snapshot_unavailable, message=str(e))
    return _selection_from_request(items, student_id, body, as_of)


async def suggest_distribution(
    repo,
    scope: LedgerScope,
    student_id: str,
    amount: Decimal,
    strategy,
    as_of: date,
) -> Union[Ok[List[ItemAllocation]], Err]:
    try:
        _, items = await load_ledger(repo, scope, student_id, as_of)
    except SnapshotUnavailableError as e:
        return Err(kind=ErrorKind.snapshot_unavailable, message=str(e))
    return Ok[List[ItemAllocation]](value=distribute_payment(amount, items, strategy))


async def collect_payment(
    repo,
    student_id: str,
    body: SelectionRequest,
    as_of: date,
    *,
    notifier: Notifier = notify_receipt_to_n8n,
    audit: Auditor = log_activity,
    user_id: Optional[str] = None,
    latch_db_path: Optional[str] = None,
) -> Union[Ok[CollectionOutcome], Err]:
    scope = LedgerScope(branch_id=body.branch_id, session_id=body.session_id)

    try:
        snapshot, items = await load_ledger(repo, scope, student_id, as_of)
    except SnapshotUnavailableError as e:
        return Err(kind=ErrorKind.snapshot_unavailable, message=str(e))

    allocated = _selection_from_request(items, student_id, body, as_of)
    if isinstance(allocated, Err):
        return allocated
    selection = allocated.value

    key = batch_key(scope, selection)
    with batch_latch(key, db_path=latch_db_path) as acquired:
        if not acquired:
            logger.warning(f"Duplicate submission blocked for batch {key}")
            return Err(
                kind=ErrorKind.in_flight,
                message="This payment is already being processed. Please wait.",
            )
        try:
            result = await repo.record_payment(scope, selection, as_of=as_of)
        except StaleSnapshotError as e:
            logger.info(f"Stale ledger for student {student_id}: {e}")
            return Err(kind=ErrorKind.stale_snapshot, message=str(e))
        except (PaymentRecordingError, SnapshotUnavailableError) as e:
            return Err(kind=ErrorKind.payment_failed, message=str(e))

    warnings: List[str] = []
    mismatch = recorded_total_mismatch(result, selection)
    if mismatch:
        logger.error(mismatch)
        warnings.append(mismatch)

    profile = snapshot.profile
    receipt = build_receipt(
        result, selection, items,
        student_name=profile.full_name if profile else "",
        admission_number=profile.admission_number if profile else "",
        class_name=profile.class_name if profile else "",
    )

    if body.send_receipt:
        warning = await notifier(
            scope, student_id, receipt,
            guardian_phone=profile.guardian_phone if profile else None,
        )
        if warning:
            warnings.append(warning)

    await audit(
        "payment.collected",
        branch_id=scope.branch_id,
        session_id=scope.session_id,
        user_id=user_id,
        entity_type="fee_collection",
        entity_id=result.receipt_number,
        metadata={
            "student_id": student_id,
            "amount": str(result.total_amount),
            "mode": selection.mode.value,
            "lines": len(selection.items),
        },
    )

    # Always rebuild from a fresh snapshot; one payment can change many lines.
    ledger = None
    try:
        _, rebuilt = await load_ledger(repo, scope, student_id, as_of)
        ledger = ledger_view(student_id, rebuilt, as_of)
    except SnapshotUnavailableError as e:
        logger.warning(f"Ledger refresh after {result.receipt_number} failed: {e}")
        warnings.append("Payment recorded, but the fee list could not be refreshed. Reload before collecting again.")

    return Ok[CollectionOutcome](
        value=CollectionOutcome(result=result, receipt=receipt, ledger=ledger),
        warnings=warnings,
    )

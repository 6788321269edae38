# ============================================================
# feedesk/api/v1/endpoints/fee_ledger.py
#
# The fee counter's HTTP surface. Every route takes branch_id and
# session_id explicitly and hands them down as a LedgerScope.
#
#   GET  /fee-ledger/{student_id}                → items + summary + terms
#   GET  /fee-ledger/{student_id}/reminders      → reminder notices
#   POST /fee-ledger/{student_id}/allocate       → dry-run validation
#   POST /fee-ledger/{student_id}/distribute     → split a lump sum
#   POST /fee-ledger/{student_id}/collect        → record + receipt
#   POST /fee-ledger/{student_id}/payment-link   → gateway link via n8n
#   POST /fee-ledger/receipts/preview            → totals + words
#   POST /fee-ledger/receipts/pdf                → A5 PDF
#   GET  /fee-ledger/amount-in-words             → words helper
#
# The services return Ok/Err values; this module is the only place
# they become HTTP status codes.
# ============================================================

from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse

from feedesk.core.config import local_today
from feedesk.schemas.common import APIResponse, ErrorResponse
from feedesk.schemas.fees import FeeLedgerResponse, FeeReminder, LedgerScope
from feedesk.schemas.gateway import PaymentLinkRequest
from feedesk.schemas.payments import (
    AdjustmentMode,
    DistributeRequest,
    ItemAllocation,
    PaymentMode,
    PaymentSelection,
    SelectionRequest,
)
from feedesk.schemas.receipts import Receipt, ReceiptPreviewRequest, ReceiptPreviewResponse
from feedesk.schemas.results import Err, ErrorKind
from feedesk.services.activity_service import log_activity
from feedesk.services.allocation_service import allocate
from feedesk.services.collection_service import (
    CollectionOutcome,
    collect_payment,
    get_ledger,
    load_ledger,
    preview_selection,
    suggest_distribution,
)
from feedesk.services.fee_item_service import fee_reminders
from feedesk.services.ledger_repository import LedgerRepository, get_ledger_repository
from feedesk.services.receipt_service import aggregate
from feedesk.core.exceptions import SnapshotUnavailableError
from feedesk.utils.idempotency import batch_key, get_link_replay, remember_link_replay
from feedesk.utils.money import MAX_AMOUNT, amount_in_words, format_inr, to_money, to_words
from feedesk.utils.notifications import notify_receipt_to_n8n, request_payment_link
from feedesk.utils.pdf_receipt import generate_receipt_pdf

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fee-ledger", tags=["Fee Ledger"])

_STATUS_BY_KIND = {
    ErrorKind.validation:           status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.in_flight:            status.HTTP_409_CONFLICT,
    ErrorKind.stale_snapshot:       status.HTTP_409_CONFLICT,
    ErrorKind.payment_failed:       status.HTTP_502_BAD_GATEWAY,
    ErrorKind.snapshot_unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def err_response(err: Err, data=None) -> JSONResponse:
    body = ErrorResponse(
        message=err.message,
        kind=err.kind.value,
        detail=[e.model_dump() for e in err.errors],
        data=data,
    )
    return JSONResponse(
        status_code=_STATUS_BY_KIND[err.kind],
        content=jsonable_encoder(body),
    )


# ═══════════════════════════════════════════════════════════
# STATELESS HELPERS: no snapshot needed
# ═══════════════════════════════════════════════════════════

@router.get("/amount-in-words")
async def get_amount_in_words(amount: Decimal = Query(..., ge=0, le=MAX_AMOUNT)):
    return APIResponse(data={
        "amount": str(to_money(amount)),
        "formatted": format_inr(amount),
        "words": to_words(amount),
        "amount_in_words": amount_in_words(amount),
    })


@router.post("/receipts/preview", response_model=APIResponse[ReceiptPreviewResponse])
async def preview_receipt(body: ReceiptPreviewRequest):
    """Totals for a receipt the frontend is about to print."""
    totals = aggregate(body.lines)
    return APIResponse(data=ReceiptPreviewResponse(
        totals=totals,
        amount_in_words=amount_in_words(totals.total_paid_amount),
    ))


@router.post("/receipts/pdf")
async def receipt_pdf(receipt: Receipt):
    buf = generate_receipt_pdf(receipt)
    return StreamingResponse(
        buf,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={receipt.receipt_number}.pdf"},
    )


# ═══════════════════════════════════════════════════════════
# LEDGER READS
# ═══════════════════════════════════════════════════════════

@router.get("/{student_id}", response_model=APIResponse[FeeLedgerResponse])
async def get_fee_ledger(
    student_id: str,
    branch_id: str = Query(...),
    session_id: str = Query(...),
    as_of: Optional[date] = Query(None),
    repo: LedgerRepository = Depends(get_ledger_repository),
):
    scope = LedgerScope(branch_id=branch_id, session_id=session_id)
    result = await get_ledger(repo, scope, student_id, as_of or local_today())
    if isinstance(result, Err):
        return err_response(result)
    return APIResponse(data=result.value)


@router.get("/{student_id}/reminders", response_model=APIResponse[List[FeeReminder]])
async def get_fee_reminders(
    student_id: str,
    branch_id: str = Query(...),
    session_id: str = Query(...),
    as_of: Optional[date] = Query(None),
    repo: LedgerRepository = Depends(get_ledger_repository),
):
    scope = LedgerScope(branch_id=branch_id, session_id=session_id)
    result = await get_ledger(repo, scope, student_id, as_of or local_today())
    if isinstance(result, Err):
        return err_response(result)
    return APIResponse(data=fee_reminders(result.value.items))


# ═══════════════════════════════════════════════════════════
# SELECTION & COLLECTION
# ═══════════════════════════════════════════════════════════

@router.post("/{student_id}/allocate", response_model=APIResponse[PaymentSelection])
async def allocate_selection(
    student_id: str,
    body: SelectionRequest,
    repo: LedgerRepository = Depends(get_ledger_repository),
):
    """Validates exactly as /collect would, without recording anything."""
    result = await preview_selection(repo, student_id, body, local_today())
    if isinstance(result, Err):
        return err_response(result)
    return APIResponse(data=result.value)


@router.post("/{student_id}/distribute", response_model=APIResponse[List[ItemAllocation]])
async def distribute(
    student_id: str,
    body: DistributeRequest,
    repo: LedgerRepository = Depends(get_ledger_repository),
):
    scope = LedgerScope(branch_id=body.branch_id, session_id=body.session_id)
    result = await suggest_distribution(repo, scope, student_id, body.amount, body.strategy, local_today())
    if isinstance(result, Err):
        return err_response(result)
    return APIResponse(data=result.value)


@router.post("/{student_id}/collect", response_model=APIResponse[CollectionOutcome])
async def collect(
    student_id: str,
    body: SelectionRequest,
    repo: LedgerRepository = Depends(get_ledger_repository),
):
    as_of = local_today()
    result = await collect_payment(
        repo, student_id, body, as_of,
        notifier=notify_receipt_to_n8n,
        audit=log_activity,
    )
    if isinstance(result, Err):
        if result.kind == ErrorKind.stale_snapshot:
            # Hand back the current ledger so the counter can reselect
            scope = LedgerScope(branch_id=body.branch_id, session_id=body.session_id)
            fresh = await get_ledger(repo, scope, student_id, as_of)
            return err_response(result, data=None if isinstance(fresh, Err) else fresh.value)
        return err_response(result)

    outcome = result.value
    return APIResponse(
        message=f"Payment recorded. Receipt {outcome.result.receipt_number}",
        data=outcome,
        warnings=result.warnings,
    )


@router.post("/{student_id}/payment-link")
async def create_payment_link(
    student_id: str,
    body: PaymentLinkRequest,
    repo: LedgerRepository = Depends(get_ledger_repository),
):
    """
    Asks n8n to create a gateway order for the selected lines (full
    outstanding each) and send it to the guardian. The same selection
    within IDEMPOTENCY_TTL_SECONDS returns the link already sent.
    """
    scope = LedgerScope(branch_id=body.branch_id, session_id=body.session_id)
    as_of = local_today()
    try:
        _, items = await load_ledger(repo, scope, student_id, as_of)
    except SnapshotUnavailableError as e:
        return err_response(Err(kind=ErrorKind.snapshot_unavailable, message=str(e)))

    allocated = allocate(
        items, body.selected_fee_ids, AdjustmentMode.auto,
        student_id=student_id,
        payment_mode=PaymentMode.online,
        payment_date=as_of,
    )
    if isinstance(allocated, Err):
        return err_response(allocated)
    selection = allocated.value

    cache_key = batch_key(scope, selection)
    cached = get_link_replay(cache_key)
    if cached:
        return APIResponse(message="Payment link already sent", data=cached)

    chosen = set(body.selected_fee_ids)
    link, warning = await request_payment_link(
        scope, student_id,
        [i for i in items if i.id in chosen],
        selection.total_amount,
        body.guardian_phone,
    )
    if warning:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=jsonable_encoder(ErrorResponse(message=warning, kind=ErrorKind.payment_failed.value)),
        )

    remember_link_replay(cache_key, link)
    return APIResponse(message="Payment link sent", data=link)

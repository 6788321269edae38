# ============================================================
# feedesk/api/v1/endpoints/gateway.py
#
# Payment-gateway webhook. The gateway adapter calls this, never
# the frontend; there is no user session. The HMAC-SHA256 of the
# raw body in x-gateway-signature is the only credential.
#
# Status codes tell the adapter whether to retry:
#   200 → handled (processed / duplicate / noted / needs_review)
#   400 → bad signature, do not retry
#   422 → unknown or malformed event, do not retry
#   502 → recording failed, retry later (the event is un-seen)
# ============================================================

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from feedesk.core.exceptions import InvalidSignatureError, PaymentRecordingError, SnapshotUnavailableError
from feedesk.services.activity_service import log_activity
from feedesk.services.gateway_service import handle_event, parse_event, verify_signature
from feedesk.services.ledger_repository import LedgerRepository, get_ledger_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gateway", tags=["Gateway"])


@router.post("/webhook")
async def gateway_webhook(
    request: Request,
    repo: LedgerRepository = Depends(get_ledger_repository),
):
    body_bytes = await request.body()

    try:
        verify_signature(body_bytes, request.headers.get("x-gateway-signature"))
    except InvalidSignatureError:
        logger.warning("Gateway webhook rejected: bad signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = parse_event(body_bytes)
    except ValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "message": "Unrecognised gateway event",
                "detail": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            },
        )

    try:
        return await handle_event(event, repo, audit=log_activity)
    except (PaymentRecordingError, SnapshotUnavailableError) as e:
        logger.error(f"Gateway event {event.event_id} could not be recorded: {e}")
        raise HTTPException(status_code=502, detail="Payment could not be recorded. Retry later.")

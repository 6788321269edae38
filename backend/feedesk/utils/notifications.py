# feedesk/utils/notifications.py
#
# FeeDesk does NOT send WhatsApp / SMS itself.
# It posts to n8n, which owns the templates and the provider calls.
#
# Both helpers are best-effort: a failed notification is returned as
# a warning string and never undoes a recorded payment.

from decimal import Decimal
from typing import List, Optional, Tuple
import logging

import httpx

from feedesk.core.config import settings
from feedesk.schemas.fees import FeeItem, LedgerScope
from feedesk.schemas.receipts import Receipt

logger = logging.getLogger(__name__)


def _webhook_url(name: str) -> str:
    return f"{settings.N8N_WEBHOOK_BASE_URL}/{name}"


async def notify_receipt_to_n8n(
    scope: LedgerScope,
    student_id: str,
    receipt: Receipt,
    guardian_phone: Optional[str] = None,
) -> Optional[str]:
    """
    Hands the receipt numbers to n8n, which renders the WhatsApp template
    and attaches the PDF. Returns None on success, else a warning.
    """
    payload = {
        "branch_id": scope.branch_id,
        "session_id": scope.session_id,
        "student_id": student_id,
        "guardian_phone": guardian_phone,
        "receipt": receipt.model_dump(mode="json"),
    }
    try:
        async with httpx.AsyncClient(timeout=settings.N8N_TIMEOUT_SECONDS) as client:
            response = await client.post(_webhook_url(settings.N8N_RECEIPT_WEBHOOK), json=payload)
        if response.status_code not in (200, 201, 202):
            logger.warning(
                f"n8n receipt webhook returned {response.status_code} "
                f"for receipt {receipt.receipt_number}"
            )
            return f"Receipt {receipt.receipt_number} was saved but could not be sent to the parent."
    except Exception as e:
        # Never raise - delivery is best-effort, the payment is authoritative
        logger.error(f"Failed to notify n8n for receipt {receipt.receipt_number}: {e}")
        return f"Receipt {receipt.receipt_number} was saved but could not be sent to the parent."
    return None


async def request_payment_link(
    scope: LedgerScope,
    student_id: str,
    items: List[FeeItem],
    amount: Decimal,
    guardian_phone: str,
) -> Tuple[Optional[dict], Optional[str]]:
    """
    Asks n8n to create a gateway order and send the link on WhatsApp.
    Returns (link_payload, None) or (None, warning).
    """
    payload = {
        "branch_id": scope.branch_id,
        "session_id": scope.session_id,
        "student_id": student_id,
        "guardian_phone": guardian_phone,
        "amount": str(amount),
        "currency": settings.CURRENCY,
        "fees": [
            {
                "fee_item_id": i.id,
                "fee_head_id": i.fee_head_id,
                "fee_head_name": i.fee_head_name,
                "fee_term_id": i.fee_term_id,
                "fee_term_name": i.fee_term_name,
                "amount": str(i.outstanding_amount),
            }
            for i in items
        ],
    }
    try:
        async with httpx.AsyncClient(timeout=settings.N8N_TIMEOUT_SECONDS) as client:
            response = await client.post(_webhook_url(settings.N8N_PAYMENT_LINK_WEBHOOK), json=payload)
        if response.status_code not in (200, 201):
            logger.warning(f"n8n payment-link webhook returned {response.status_code} for student {student_id}")
            return None, "Payment link could not be created. Try again or collect at the counter."
        return response.json(), None
    except Exception as e:
        logger.error(f"Failed to request payment link for student {student_id}: {e}")
        return None, "Payment link could not be created. Try again or collect at the counter."

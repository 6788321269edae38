# feedesk/utils/receipt.py
# Receipt numbers: RCP-202507-A1B-0042
#   prefix - year+month - last 3 chars of branch id - monthly sequence

from datetime import datetime
from typing import Optional
import logging

from feedesk.core.config import settings
from feedesk.core.database import BranchDB

logger = logging.getLogger(__name__)


def format_receipt_number(branch_id: str, sequence: int, when: datetime, prefix: Optional[str] = None) -> str:
    prefix = prefix or settings.RECEIPT_PREFIX
    return f"{prefix}-{when:%Y%m}-{branch_id[-3:].upper()}-{sequence:04d}"


def generate_receipt_number(db: BranchDB, when: datetime) -> str:
    """
    Asks Postgres for the next per-branch, per-month sequence value.
    Sequences are atomic, so two counters never hand out the same number.
    """
    try:
        result = db.rpc("next_receipt_sequence", {"p_period": f"{when:%Y%m}"})
        return format_receipt_number(db.scope.branch_id, int(result.data), when)
    except Exception as e:
        # Fallback: timestamp-based (not as clean but never collides within a branch)
        logger.warning(f"Receipt sequence RPC failed, using timestamp fallback: {e}")
        return (
            f"{settings.RECEIPT_PREFIX}-{when:%Y%m}-"
            f"{db.scope.branch_id[-3:].upper()}-{when:%d%H%M%S}"
        )

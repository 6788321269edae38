# feedesk/schemas/payments.py
#
# What the operator submits (selection), what the engine validates
# (PaymentSelection) and what the payment recorder returns.

from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Union
from datetime import date
from decimal import Decimal
from enum import Enum

from feedesk.utils.money import MAX_AMOUNT


class PaymentMode(str, Enum):
    cash          = "Cash"
    card          = "Card"
    online        = "Online"
    bank_transfer = "Bank Transfer"
    cheque        = "Cheque"
    dd            = "DD"


class AdjustmentMode(str, Enum):
    auto   = "auto"      # pay the full outstanding of every selected item
    manual = "manual"    # operator types a capped amount per item


class AllocationStrategy(str, Enum):
    oldest_first         = "oldest_first"
    highest_amount_first = "highest_amount_first"
    equal_distribution   = "equal_distribution"


# ── Validated batch ──────────────────────────────────────────
class SelectedFee(BaseModel):
    fee_item_id: str
    fee_head_id: str
    fee_term_id: str
    amount: Decimal
    original_amount: Decimal
    concession_amount: Decimal


class PaymentSelection(BaseModel):
    """
    A validated batch, ready for the payment recorder.
    Built only by allocation_service.allocate().
    """
    student_id: str
    items: List[SelectedFee]
    mode: PaymentMode
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    payment_date: date

    @property
    def total_amount(self) -> Decimal:
        return sum((i.amount for i in self.items), Decimal("0"))


class PaymentBatchResult(BaseModel):
    """Returned by the payment recorder after a successful write."""
    receipt_number: str
    total_amount: Decimal


class ItemAllocation(BaseModel):
    fee_item_id: str
    allocated_amount: Decimal
    remaining_outstanding: Decimal


# ── Requests ─────────────────────────────────────────────────
class SelectionRequest(BaseModel):
    """
    Body for /allocate and /collect.
    custom_amounts values are strings or numbers as typed by the operator;
    anything unparseable is treated as 0 and rejected in manual mode.
    """
    branch_id: str
    session_id: str
    selected_fee_ids: List[str] = Field(default_factory=list)
    adjustment_mode: AdjustmentMode = AdjustmentMode.auto
    custom_amounts: Dict[str, Union[str, float]] = Field(default_factory=dict)
    payment_mode: Optional[PaymentMode] = None
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    payment_date: Optional[date] = None
    send_receipt: bool = True


class DistributeRequest(BaseModel):
    branch_id: str
    session_id: str
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    strategy: AllocationStrategy = AllocationStrategy.oldest_first

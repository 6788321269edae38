# feedesk/schemas/receipts.py
#
# The numbers a receipt renderer needs. FeeDesk defines the numbers,
# not the markup: utils/pdf_receipt.py and any frontend print view
# consume exactly this payload.

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date
from decimal import Decimal

from feedesk.schemas.fees import AppliedConcession
from feedesk.utils.money import MAX_AMOUNT


class ReceiptLine(BaseModel):
    fee_head_name: str
    fee_term_name: str
    original_amount: Decimal = Field(ge=0, le=MAX_AMOUNT)
    concession_amount: Decimal = Field(ge=0, le=MAX_AMOUNT)
    final_amount: Decimal = Field(ge=0, le=MAX_AMOUNT)  # what was actually paid against this line
    applied_concessions: List[AppliedConcession] = Field(default_factory=list)


class ReceiptTotals(BaseModel):
    total_original_amount: Decimal
    total_concession_amount: Decimal
    total_net_amount: Decimal
    total_paid_amount: Decimal


class Receipt(BaseModel):
    receipt_number: str
    payment_date: date
    payment_mode: str
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    student_name: str = ""
    admission_number: str = ""
    class_name: str = ""
    branch_name: str = ""
    branch_address: str = ""
    session_name: str = ""
    lines: List[ReceiptLine]
    totals: ReceiptTotals
    amount_in_words: str


class ReceiptPreviewRequest(BaseModel):
    lines: List[ReceiptLine] = Field(min_length=1)


class ReceiptPreviewResponse(BaseModel):
    totals: ReceiptTotals
    amount_in_words: str

# feedesk/services/receipt_service.py
#
# Totals & Receipt Aggregator.
#
# A receipt is built from the validated batch plus the FeeItems it was
# validated against. Totals are plain sums at 2 dp:
#
#   total_original_amount   = Σ original_amount
#   total_concession_amount = Σ concession_amount
#   total_net_amount        = Σ (original - concession)
#   total_paid_amount       = Σ final_amount   (what this batch paid)

from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from feedesk.schemas.fees import FeeItem
from feedesk.schemas.payments import PaymentBatchResult, PaymentSelection
from feedesk.schemas.receipts import Receipt, ReceiptLine, ReceiptTotals
from feedesk.utils.money import ZERO, amount_in_words, to_money


def aggregate(lines: Sequence[ReceiptLine]) -> ReceiptTotals:
    original = sum((Decimal(line.original_amount) for line in lines), ZERO)
    concession = sum((Decimal(line.concession_amount) for line in lines), ZERO)
    paid = sum((Decimal(line.final_amount) for line in lines), ZERO)
    return ReceiptTotals(
        total_original_amount=to_money(original),
        total_concession_amount=to_money(concession),
        total_net_amount=to_money(original - concession),
        total_paid_amount=to_money(paid),
    )


def receipt_lines(selection: PaymentSelection, items: Sequence[FeeItem]) -> List[ReceiptLine]:
    """One line per selected fee, in batch order, with the concessions shown on the ledger."""
    by_id: Dict[str, FeeItem] = {i.id: i for i in items}
    lines = []
    for selected in selection.items:
        item = by_id.get(selected.fee_item_id)
        lines.append(ReceiptLine(
            fee_head_name=item.fee_head_name if item else selected.fee_head_id,
            fee_term_name=item.fee_term_name if item else selected.fee_term_id,
            original_amount=selected.original_amount,
            concession_amount=selected.concession_amount,
            final_amount=selected.amount,
            applied_concessions=list(item.applied_concessions) if item else [],
        ))
    return lines


def build_receipt(
    result: PaymentBatchResult,
    selection: PaymentSelection,
    items: Sequence[FeeItem],
    *,
    student_name: str = "",
    admission_number: str = "",
    class_name: str = "",
    branch_name: str = "",
    branch_address: str = "",
    session_name: str = "",
) -> Receipt:
    """
    `items` must be the snapshot the selection was validated against,
    not the rebuilt one - the receipt shows what was owed at collection.
    """
    lines = receipt_lines(selection, items)
    totals = aggregate(lines)
    return Receipt(
        receipt_number=result.receipt_number,
        payment_date=selection.payment_date,
        payment_mode=selection.mode.value,
        transaction_reference=selection.transaction_reference,
        notes=selection.notes,
        student_name=student_name,
        admission_number=admission_number,
        class_name=class_name,
        branch_name=branch_name,
        branch_address=branch_address,
        session_name=session_name,
        lines=lines,
        totals=totals,
        amount_in_words=amount_in_words(totals.total_paid_amount),
    )


def recorded_total_mismatch(result: PaymentBatchResult, selection: PaymentSelection) -> Optional[str]:
    """The recorder must book exactly what was validated; returns a warning when it did not."""
    recorded = to_money(result.total_amount)
    expected = to_money(selection.total_amount)
    if recorded == expected:
        return None
    return (
        f"Receipt {result.receipt_number} recorded {recorded} "
        f"but the validated batch totals {expected}"
    )

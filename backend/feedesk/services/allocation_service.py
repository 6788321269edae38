# feedesk/services/allocation_service.py
#
# Selection & Allocation Engine.
#
# FeeSelection   - operator selection state (per item, per term)
# allocate()     - selected ids + mode → Ok(PaymentSelection) | Err
# selection_total() - live total for the "Collect ₹..." button
# distribute_payment() - split one lump sum across outstanding lines
#
# Nothing here touches the network. A validated PaymentSelection is
# handed to the payment recorder by collection_service; the batch is
# all-or-nothing, so any invalid line rejects the whole selection.

from datetime import date
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from feedesk.schemas.fees import FeeItem
from feedesk.schemas.payments import (
    AdjustmentMode,
    AllocationStrategy,
    ItemAllocation,
    PaymentMode,
    PaymentSelection,
    SelectedFee,
)
from feedesk.schemas.results import Err, FieldError, Ok, validation_error
from feedesk.utils.money import CENT, ZERO, parse_amount, to_money


class FeeSelection:
    """
    Which fee lines the operator has ticked.

    Only selectable lines (outstanding > 0) can be ticked. Toggling a term
    ticks or clears every selectable line of that term at once; other
    terms are left alone.
    """

    def __init__(self, items: Sequence[FeeItem]):
        self._items: Dict[str, FeeItem] = {}
        self._selected: set = set()
        self.refresh(items)

    def refresh(self, items: Sequence[FeeItem]) -> None:
        """Swap in a rebuilt item list; ticks on lines that are now paid are dropped."""
        self._items = {i.id: i for i in items}
        self._order = [i.id for i in items]
        self._selected = {i for i in self._selected if self._is_selectable(i)}

    def _is_selectable(self, item_id: str) -> bool:
        item = self._items.get(item_id)
        return item is not None and item.is_selectable

    def toggle(self, item_id: str, checked: bool) -> bool:
        """Returns False (and changes nothing) for unknown or fully-paid lines."""
        if not self._is_selectable(item_id):
            return False
        if checked:
            self._selected.add(item_id)
        else:
            self._selected.discard(item_id)
        return True

    def term_item_ids(self, fee_term_id: str) -> List[str]:
        return [
            i for i in self._order
            if self._items[i].fee_term_id == fee_term_id and self._is_selectable(i)
        ]

    def toggle_term(self, fee_term_id: str, checked: bool) -> None:
        ids = self.term_item_ids(fee_term_id)
        if checked:
            self._selected.update(ids)
        else:
            self._selected.difference_update(ids)

    def is_term_selected(self, fee_term_id: str) -> bool:
        ids = self.term_item_ids(fee_term_id)
        return bool(ids) and all(i in self._selected for i in ids)

    def clear(self) -> None:
        self._selected.clear()

    @property
    def selected_ids(self) -> List[str]:
        return [i for i in self._order if i in self._selected]

    def __len__(self) -> int:
        return len(self._selected)


def _manual_amount(custom_amounts: Mapping[str, Union[str, Decimal, int, float]], item_id: str) -> Decimal:
    return parse_amount(custom_amounts.get(item_id))


def allocate(
    items: Sequence[FeeItem],
    selected_ids: Iterable[str],
    mode: AdjustmentMode,
    custom_amounts: Optional[Mapping[str, Union[str, Decimal, int, float]]] = None,
    *,
    student_id: str,
    payment_mode: Optional[PaymentMode],
    payment_date: date,
    transaction_reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Union[Ok[PaymentSelection], Err]:
    """
    Validate a selection into a payment batch.

    auto   - each line pays its full outstanding amount.
    manual - each line pays custom_amounts[id], which must be in
             (0, outstanding]; missing or unparseable counts as 0.

    Every problem is reported (one FieldError per offending field);
    if there is any, nothing is returned to submit.
    """
    custom_amounts = custom_amounts or {}
    by_id = {i.id: i for i in items}
    wanted = set(selected_ids)
    errors: List[FieldError] = []

    if not wanted:
        errors.append(FieldError(
            field="selected_fees",
            message="Please select at least one fee to collect payment.",
        ))
    if payment_mode is None:
        errors.append(FieldError(
            field="payment_mode",
            message="Please select a payment mode.",
        ))

    for item_id in sorted(wanted - set(by_id)):
        errors.append(FieldError(
            field=f"selected_fees.{item_id}",
            message=f"Fee {item_id} is not part of this student's ledger.",
            fee_item_id=item_id,
        ))

    lines: List[SelectedFee] = []
    for item in items:                      # ledger order, not click order
        if item.id not in wanted:
            continue
        if not item.is_selectable:
            errors.append(FieldError(
                field=f"selected_fees.{item.id}",
                message=f"{item.fee_head_name} ({item.fee_term_name}) has nothing outstanding.",
                fee_item_id=item.id,
            ))
            continue

        if mode == AdjustmentMode.manual:
            amount = _manual_amount(custom_amounts, item.id)
            if amount <= 0 or amount > item.outstanding_amount:
                errors.append(FieldError(
                    field=f"custom_amounts.{item.id}",
                    message=(
                        f"Amount for {item.fee_head_name} ({item.fee_term_name}) must be "
                        f"greater than 0 and at most {item.outstanding_amount}."
                    ),
                    fee_item_id=item.id,
                ))
                continue
        else:
            amount = item.outstanding_amount

        lines.append(SelectedFee(
            fee_item_id=item.id,
            fee_head_id=item.fee_head_id,
            fee_term_id=item.fee_term_id,
            amount=to_money(amount),
            original_amount=item.original_amount,
            concession_amount=item.concession_amount,
        ))

    if errors:
        return validation_error(errors)

    return Ok[PaymentSelection](value=PaymentSelection(
        student_id=student_id,
        items=lines,
        mode=payment_mode,
        transaction_reference=transaction_reference or None,
        notes=notes or None,
        payment_date=payment_date,
    ))


def selection_total(
    items: Sequence[FeeItem],
    selected_ids: Iterable[str],
    mode: AdjustmentMode,
    custom_amounts: Optional[Mapping[str, Union[str, Decimal, int, float]]] = None,
) -> Decimal:
    """Running total while the operator is still typing; manual amounts are capped."""
    custom_amounts = custom_amounts or {}
    wanted = set(selected_ids)
    total = ZERO
    for item in items:
        if item.id not in wanted or not item.is_selectable:
            continue
        if mode == AdjustmentMode.manual:
            amount = max(ZERO, _manual_amount(custom_amounts, item.id))
            total += min(amount, item.outstanding_amount)
        else:
            total += item.outstanding_amount
    return to_money(total)


def distribute_payment(
    amount: Decimal,
    items: Sequence[FeeItem],
    strategy: AllocationStrategy = AllocationStrategy.oldest_first,
) -> List[ItemAllocation]:
    """
    Split a lump sum across outstanding lines.

    oldest_first         - earliest due date first (undated lines last)
    highest_amount_first - largest outstanding first
    equal_distribution   - proportional to outstanding, leftover paise
                           swept in ledger order

    Never allocates more than a line's outstanding, nor more than
    `amount` in total. Lines that receive nothing are omitted.
    """
    remaining = to_money(amount)
    open_items = [i for i in items if i.is_selectable]
    if remaining <= 0 or not open_items:
        return []

    allocated: Dict[str, Decimal] = {i.id: ZERO for i in open_items}

    if strategy == AllocationStrategy.equal_distribution:
        total_outstanding = sum((i.outstanding_amount for i in open_items), ZERO)
        pot = min(remaining, total_outstanding)
        for item in open_items:
            share = (item.outstanding_amount / total_outstanding * pot).quantize(CENT, rounding=ROUND_DOWN)
            share = min(share, item.outstanding_amount, remaining)
            allocated[item.id] = share
            remaining -= share
        ordered = open_items
    elif strategy == AllocationStrategy.highest_amount_first:
        ordered = sorted(open_items, key=lambda i: -i.outstanding_amount)
    else:
        ordered = sorted(open_items, key=lambda i: (i.due_date is None, i.due_date or date.max))

    for item in ordered:
        if remaining <= 0:
            break
        headroom = item.outstanding_amount - allocated[item.id]
        extra = min(headroom, remaining)
        allocated[item.id] += extra
        remaining -= extra

    return [
        ItemAllocation(
            fee_item_id=item.id,
            allocated_amount=to_money(allocated[item.id]),
            remaining_outstanding=to_money(item.outstanding_amount - allocated[item.id]),
        )
        for item in ordered
        if allocated[item.id] > 0
    ]

# feedesk/services/fee_item_service.py
#
# Fee Item Builder.
#
# Turns one student's snapshot (structure entries, concessions, payment
# history) into ordered FeeItems. Items are never patched: after any
# payment is recorded the caller rebuilds from a fresh snapshot, because
# a single payment can move paid/outstanding/status on several lines.
#
# Ordering: term order (FeeTerm.order, then due date, then input
# position), then head order (input position of fee_heads). Lines from
# payment history with no structure entry ("orphans") come last in
# their term.

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from feedesk.core.config import settings
from feedesk.schemas.fees import (
    FeeHead,
    FeeItem,
    FeeReminder,
    FeeStatus,
    FeeStructureEntry,
    FeeSummary,
    FeeTerm,
    LedgerSnapshot,
    PaymentAllocation,
    ReminderLevel,
    TermGroup,
    fee_item_id,
)
from feedesk.services.concession_service import ConcessionPair, pair_concessions, resolve_all
from feedesk.utils.money import ZERO, format_inr, to_money

logger = logging.getLogger(__name__)

_UNKNOWN_POSITION = 10 ** 6


def derive_status(
    outstanding_amount: Decimal,
    paid_amount: Decimal,
    due_date: Optional[date],
    evaluation_date: date,
) -> FeeStatus:
    """Paid → Overdue → Partially Paid → Pending, in that priority."""
    if outstanding_amount <= 0:
        return FeeStatus.paid
    if due_date is not None and due_date < evaluation_date:
        return FeeStatus.overdue
    if paid_amount > 0:
        return FeeStatus.partially_paid
    return FeeStatus.pending


def overdue_days(due_date: Optional[date], evaluation_date: date) -> int:
    if due_date is None:
        return 0
    return max(0, (evaluation_date - due_date).days)


def _paid_by_pair(payments: Iterable[PaymentAllocation]) -> Dict[Tuple[str, str], Decimal]:
    paid: Dict[Tuple[str, str], Decimal] = defaultdict(lambda: ZERO)
    for p in payments:
        paid[(p.fee_head_id, p.fee_term_id)] += Decimal(p.amount)
    return paid


def _base_by_pair(structure: Iterable[FeeStructureEntry]) -> Dict[Tuple[str, str], Decimal]:
    base: Dict[Tuple[str, str], Decimal] = {}
    for entry in structure:
        key = (entry.fee_head_id, entry.fee_term_id)
        if key in base:
            logger.warning(
                f"Duplicate fee structure entry for head {key[0]} / term {key[1]}; "
                "amounts are added together"
            )
            base[key] += Decimal(entry.base_amount)
        else:
            base[key] = Decimal(entry.base_amount)
    return base


def build_fee_items(
    fee_heads: Sequence[FeeHead],
    fee_terms: Sequence[FeeTerm],
    structure: Sequence[FeeStructureEntry],
    concessions: Sequence[ConcessionPair],
    payments: Sequence[PaymentAllocation],
    evaluation_date: date,
) -> List[FeeItem]:
    heads = {h.id: h for h in fee_heads}
    terms = {t.id: t for t in fee_terms}
    head_pos = {h.id: i for i, h in enumerate(fee_heads)}
    term_pos = {t.id: i for i, t in enumerate(fee_terms)}

    def term_key(term_id: str):
        term = terms.get(term_id)
        if term is None:
            return (1, 0, date.max, _UNKNOWN_POSITION, term_id)
        return (0, term.order, term.due_date, term_pos[term_id], term_id)

    base_by_pair = _base_by_pair(structure)
    paid_by_pair = _paid_by_pair(payments)

    keyed: List[Tuple[tuple, FeeItem]] = []

    for (head_id, term_id), base in base_by_pair.items():
        head = heads.get(head_id)
        term = terms.get(term_id)
        original = to_money(base)
        concession, applied = resolve_all(
            concessions, head_id, term_id, original, evaluation_date,
        )
        total = original - concession
        paid = to_money(paid_by_pair.get((head_id, term_id), ZERO))
        outstanding = max(ZERO, total - paid)
        due = term.due_date if term else None

        item = FeeItem(
            id=fee_item_id(term_id, head_id),
            fee_head_id=head_id,
            fee_head_name=head.name if head else head_id,
            fee_term_id=term_id,
            fee_term_name=term.name if term else term_id,
            original_amount=original,
            concession_amount=concession,
            total_amount=to_money(total),
            paid_amount=paid,
            outstanding_amount=to_money(outstanding),
            due_date=due,
            overdue_days=overdue_days(due, evaluation_date),
            status=derive_status(outstanding, paid, due, evaluation_date),
            applied_concessions=applied,
        )
        sort_key = (term_key(term_id), 0, head_pos.get(head_id, _UNKNOWN_POSITION), head_id)
        keyed.append((sort_key, item))

    # Payments recorded against a pair that is no longer in the structure
    # (head removed, class changed...) are still shown, never dropped.
    for (head_id, term_id), paid in paid_by_pair.items():
        if (head_id, term_id) in base_by_pair:
            continue
        logger.warning(
            f"Payment history has {paid} against head {head_id} / term {term_id} "
            "which is not in the fee structure"
        )
        head = heads.get(head_id)
        term = terms.get(term_id)
        zero = to_money(ZERO)
        item = FeeItem(
            id=fee_item_id(term_id, head_id),
            fee_head_id=head_id,
            fee_head_name=head.name if head else head_id,
            fee_term_id=term_id,
            fee_term_name=term.name if term else term_id,
            original_amount=zero,
            concession_amount=zero,
            total_amount=zero,
            paid_amount=to_money(paid),
            outstanding_amount=zero,
            due_date=term.due_date if term else None,
            overdue_days=0,
            status=FeeStatus.paid,
            is_orphan=True,
        )
        sort_key = (term_key(term_id), 1, head_pos.get(head_id, _UNKNOWN_POSITION), head_id)
        keyed.append((sort_key, item))

    keyed.sort(key=lambda pair: pair[0])
    return [item for _, item in keyed]


def build_from_snapshot(snapshot: LedgerSnapshot, evaluation_date: date) -> List[FeeItem]:
    concessions = pair_concessions(
        snapshot.concession_types,
        snapshot.student_concessions,
        student_id=snapshot.student_id,
    )
    return build_fee_items(
        snapshot.fee_heads,
        snapshot.fee_terms,
        snapshot.structure,
        concessions,
        snapshot.payments,
        evaluation_date,
    )


# ── Views over built items ───────────────────────────────────

def summarize_fee_items(items: Sequence[FeeItem]) -> FeeSummary:
    counts = {s.value: 0 for s in FeeStatus}
    for item in items:
        counts[item.status.value] += 1
    return FeeSummary(
        total_original=to_money(sum((i.original_amount for i in items), ZERO)),
        total_concession=to_money(sum((i.concession_amount for i in items), ZERO)),
        total_net=to_money(sum((i.total_amount for i in items), ZERO)),
        total_paid=to_money(sum((i.paid_amount for i in items), ZERO)),
        total_outstanding=to_money(sum((i.outstanding_amount for i in items), ZERO)),
        status_counts=counts,
    )


def group_by_term(items: Sequence[FeeItem]) -> List[TermGroup]:
    """Groups in the order terms first appear (items are already term-ordered)."""
    groups: Dict[str, List[FeeItem]] = {}
    for item in items:
        groups.setdefault(item.fee_term_id, []).append(item)

    result = []
    for term_id, term_items in groups.items():
        outstanding = sum((i.outstanding_amount for i in term_items), ZERO)
        result.append(TermGroup(
            fee_term_id=term_id,
            fee_term_name=term_items[0].fee_term_name,
            due_date=term_items[0].due_date,
            items=term_items,
            total_outstanding=to_money(outstanding),
            has_outstanding=outstanding > 0,
        ))
    return result


def fee_reminders(
    items: Sequence[FeeItem],
    first_days: Optional[int] = None,
    second_days: Optional[int] = None,
    final_days: Optional[int] = None,
) -> List[FeeReminder]:
    """
    Reminder notices for overdue lines with money still owed.
    Items that are not yet overdue get nothing.
    """
    first_days = settings.REMINDER_FIRST_DAYS if first_days is None else first_days
    second_days = settings.REMINDER_SECOND_DAYS if second_days is None else second_days
    final_days = settings.REMINDER_FINAL_DAYS if final_days is None else final_days

    reminders = []
    for item in items:
        if item.outstanding_amount <= 0:
            continue
        amount = format_inr(item.outstanding_amount)
        label = f"{item.fee_head_name} ({item.fee_term_name})"
        days = item.overdue_days

        if days >= final_days:
            level = ReminderLevel.final
            message = (
                f"FINAL NOTICE: Your fee payment of {amount} for {label} is {days} days "
                "overdue. Please pay immediately to avoid further action."
            )
        elif days >= second_days:
            level = ReminderLevel.second
            message = (
                f"SECOND REMINDER: Your fee payment of {amount} for {label} is {days} days "
                "overdue. Please pay at the earliest."
            )
        elif days >= first_days:
            level = ReminderLevel.first
            message = (
                f"REMINDER: Your fee payment of {amount} for {label} is {days} days "
                "overdue. Please pay to avoid late fees."
            )
        elif item.status == FeeStatus.overdue:
            level = ReminderLevel.overdue
            message = (
                f"Your fee payment of {amount} for {label} is now overdue. "
                "Please pay to avoid late fees."
            )
        else:
            continue

        reminders.append(FeeReminder(
            fee_item_id=item.id,
            fee_head_name=item.fee_head_name,
            fee_term_name=item.fee_term_name,
            reminder_type=level,
            days_overdue=days,
            outstanding_amount=item.outstanding_amount,
            message=message,
        ))
    return reminders

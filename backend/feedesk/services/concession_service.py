# feedesk/services/concession_service.py
#
# Concession Resolver.
#
# Pure functions: given a concession type, a student's assignment of it
# and one (fee head, fee term) pair, how much comes off the base amount.
# No I/O, no clock - the evaluation date is always passed in.
#
# Clamp order for a single concession:
#   PERCENTAGE → base × value / 100 → max_value → base
#   FIXED      → term override or value → max_value → base
# Several concessions on one pair are summed, then the sum is clamped
# to the base amount (resolve_all).

from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from feedesk.schemas.fees import (
    AppliedConcession,
    ConcessionKind,
    ConcessionStatus,
    ConcessionType,
    StudentConcession,
)
from feedesk.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

ConcessionPair = Tuple[ConcessionType, StudentConcession]


def is_in_force(student_concession: StudentConcession, on: date) -> bool:
    """Approved and on: within [valid_from, valid_until]; no end date = open."""
    if student_concession.status != ConcessionStatus.approved:
        return False
    if on < student_concession.valid_from:
        return False
    if student_concession.valid_until is not None and on > student_concession.valid_until:
        return False
    return True


def applies_to(concession_type: ConcessionType, fee_head_id: str, fee_term_id: str) -> bool:
    return (
        concession_type.applied_fee_heads.includes(fee_head_id)
        and concession_type.applied_fee_terms.includes(fee_term_id)
    )


def effective_value(
    concession_type: ConcessionType,
    student_concession: StudentConcession,
    fee_term_id: str,
) -> Decimal:
    """
    The rate (PERCENTAGE) or amount (FIXED) used for this term.
    FIXED types may carry a per-term override that wins over everything;
    otherwise a student-level custom value wins over the type's value.
    """
    if concession_type.kind == ConcessionKind.fixed:
        override = concession_type.fee_term_amounts.get(fee_term_id)
        if override is not None:
            return Decimal(override)
    if student_concession.custom_value is not None:
        return Decimal(student_concession.custom_value)
    return Decimal(concession_type.value)


def resolve(
    concession_type: ConcessionType,
    student_concession: StudentConcession,
    fee_head_id: str,
    fee_term_id: str,
    base_amount: Decimal,
    evaluation_date: date,
) -> Decimal:
    """Monetary effect of one concession on one (head, term) pair. Never negative."""
    base_amount = to_money(base_amount)
    if base_amount <= 0 or not concession_type.is_active:
        return to_money(ZERO)
    if not is_in_force(student_concession, evaluation_date):
        return to_money(ZERO)
    if not applies_to(concession_type, fee_head_id, fee_term_id):
        return to_money(ZERO)

    value = effective_value(concession_type, student_concession, fee_term_id)
    if concession_type.kind == ConcessionKind.percentage:
        amount = base_amount * value / Decimal("100")
    else:
        amount = value

    if concession_type.max_value is not None:
        amount = min(amount, Decimal(concession_type.max_value))
    amount = min(amount, base_amount)
    return to_money(max(amount, ZERO))


def resolve_all(
    concessions: Sequence[ConcessionPair],
    fee_head_id: str,
    fee_term_id: str,
    base_amount: Decimal,
    evaluation_date: date,
) -> Tuple[Decimal, List[AppliedConcession]]:
    """
    Sum every concession that applies to the pair and clamp the sum to
    base_amount. When the clamp bites, contributions are trimmed in the
    order given so the applied amounts always add up to the total.
    """
    base_amount = to_money(base_amount)
    applied: List[AppliedConcession] = []
    for concession_type, student_concession in concessions:
        amount = resolve(
            concession_type, student_concession,
            fee_head_id, fee_term_id, base_amount, evaluation_date,
        )
        if amount <= 0:
            continue
        applied.append(AppliedConcession(
            student_concession_id=student_concession.id,
            name=concession_type.name,
            kind=concession_type.kind,
            value=effective_value(concession_type, student_concession, fee_term_id),
            amount=amount,
        ))

    total = sum((a.amount for a in applied), ZERO)
    if total <= base_amount:
        return to_money(total), applied

    remaining = base_amount
    trimmed: List[AppliedConcession] = []
    for a in applied:
        share = min(a.amount, remaining)
        remaining -= share
        trimmed.append(a.model_copy(update={"amount": to_money(share)}))
    return base_amount, trimmed


def pair_concessions(
    concession_types: Iterable[ConcessionType],
    student_concessions: Iterable[StudentConcession],
    student_id: Optional[str] = None,
) -> List[ConcessionPair]:
    """
    Join each student concession to its type, keeping the assignment order.
    Assignments whose type is missing are skipped with a warning;
    a broken reference must not take the whole ledger down.
    """
    by_id: Dict[str, ConcessionType] = {t.id: t for t in concession_types}
    pairs: List[ConcessionPair] = []
    for sc in student_concessions:
        if student_id is not None and sc.student_id != student_id:
            continue
        concession_type = by_id.get(sc.concession_type_id)
        if concession_type is None:
            logger.warning(
                f"Student concession {sc.id} references unknown type "
                f"{sc.concession_type_id}; ignoring it"
            )
            continue
        pairs.append((concession_type, sc))
    return pairs

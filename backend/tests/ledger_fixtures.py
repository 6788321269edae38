"""Small builders shared by the ledger tests, plus an in-memory repository."""

from datetime import date
from decimal import Decimal

from feedesk.core.exceptions import PaymentRecordingError, SnapshotUnavailableError, StaleSnapshotError
from feedesk.schemas.fees import (
    ConcessionKind,
    ConcessionType,
    FeeHead,
    FeeStructureEntry,
    FeeTerm,
    LedgerScope,
    LedgerSnapshot,
    PaymentAllocation,
    StudentConcession,
    StudentProfile,
)
from feedesk.schemas.payments import PaymentBatchResult
from feedesk.services.fee_item_service import build_from_snapshot

AS_OF = date(2025, 4, 1)
STUDENT_ID = "stu-001"
SCOPE = LedgerScope(branch_id="branch-a1b", session_id="2025-26")

TUITION = FeeHead(id="h-tuition", name="Tuition")
TRANSPORT = FeeHead(id="h-transport", name="Transport")
TERM1 = FeeTerm(id="t1", name="Term 1", due_date=date(2025, 4, 15), order=1)
TERM2 = FeeTerm(id="t2", name="Term 2", due_date=date(2025, 9, 15), order=2)


def entry(head, term, amount):
    return FeeStructureEntry(fee_head_id=head.id, fee_term_id=term.id, base_amount=Decimal(str(amount)))


def ctype(id="ct-1", kind=ConcessionKind.percentage, value="10", **kw):
    return ConcessionType(id=id, name=kw.pop("name", f"Concession {id}"), kind=kind, value=Decimal(value), **kw)


def assign(type_id="ct-1", id=None, valid_from=date(2025, 1, 1), **kw):
    return StudentConcession(
        id=id or f"sc-{type_id}",
        student_id=kw.pop("student_id", STUDENT_ID),
        concession_type_id=type_id,
        valid_from=valid_from,
        **kw,
    )


def paid(head, term, amount, receipt="RCP-202503-A1B-0001"):
    return PaymentAllocation(
        fee_head_id=head.id, fee_term_id=term.id, amount=Decimal(str(amount)), receipt_number=receipt,
    )


def snapshot(structure, types=(), assigned=(), payments=()):
    return LedgerSnapshot(
        student_id=STUDENT_ID,
        profile=StudentProfile(
            student_id=STUDENT_ID,
            full_name="Asha Verma",
            admission_number="ADM-0042",
            class_name="Grade 5 A",
            guardian_phone="+919800000000",
        ),
        fee_heads=[TUITION, TRANSPORT],
        fee_terms=[TERM1, TERM2],
        structure=list(structure),
        concession_types=list(types),
        student_concessions=list(assigned),
        payments=list(payments),
    )


class FakeRepository:
    """
    Same two coroutines as LedgerRepository, backed by one snapshot.
    Recording appends the batch to the payment history, so the next
    load sees it, and refuses lines above the current outstanding.
    """

    def __init__(self, snap, *, fail_load=False, record_error=None, fail_reload=False):
        self.snapshot = snap
        self.fail_load = fail_load
        self.fail_reload = fail_reload
        self.record_error = record_error
        self.loads = 0
        self.recorded = []
        self.evaluated_on = []

    async def load_snapshot(self, scope, student_id):
        self.loads += 1
        if self.fail_load or (self.fail_reload and self.recorded):
            raise SnapshotUnavailableError("Fee data is temporarily unavailable")
        return self.snapshot

    async def record_payment(self, scope, selection, *, as_of=None):
        if self.record_error is not None:
            raise self.record_error
        self.evaluated_on.append(as_of)
        outstanding = {
            i.id: i.outstanding_amount
            for i in build_from_snapshot(self.snapshot, as_of or selection.payment_date)
        }
        for line in selection.items:
            if line.amount > outstanding.get(line.fee_item_id, Decimal("0")):
                raise StaleSnapshotError("Outstanding amounts changed since this ledger was loaded.")

        self.recorded.append(selection)
        number = f"RCP-202504-A1B-{len(self.recorded):04d}"
        self.snapshot = self.snapshot.model_copy(update={
            "payments": self.snapshot.payments + [
                PaymentAllocation(
                    fee_head_id=line.fee_head_id,
                    fee_term_id=line.fee_term_id,
                    amount=line.amount,
                    receipt_number=number,
                )
                for line in selection.items
            ],
        })
        return PaymentBatchResult(receipt_number=number, total_amount=selection.total_amount)


def recording_failure():
    return PaymentRecordingError("Payment could not be saved: connection reset")

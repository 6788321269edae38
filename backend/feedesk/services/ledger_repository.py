# feedesk/services/ledger_repository.py
#
# The only place FeeDesk talks to the ERP's tables.
#
#   load_snapshot()  → LedgerSnapshot for one student (read-only)
#   record_payment() → writes one fee_collections row + its items,
#                      returns {receipt_number, total_amount}
#
# Everything is scoped by an explicit LedgerScope through BranchDB.
# The collection service only depends on these two coroutines, so
# tests swap in an in-memory store with the same shape.

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
import logging

from feedesk.core.database import BranchDB
from feedesk.core.exceptions import (
    PaymentRecordingError,
    SnapshotUnavailableError,
    StaleSnapshotError,
)
from feedesk.schemas.fees import (
    ConcessionKind,
    ConcessionStatus,
    ConcessionType,
    FeeHead,
    FeeStructureEntry,
    FeeTerm,
    LedgerScope,
    LedgerSnapshot,
    PaymentAllocation,
    StudentConcession,
    StudentProfile,
    applicability_from_ids,
)
from feedesk.schemas.payments import PaymentBatchResult, PaymentSelection
from feedesk.services.fee_item_service import build_from_snapshot
from feedesk.utils.money import to_money
from feedesk.utils.receipt import generate_receipt_number

logger = logging.getLogger(__name__)


def _decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


# ── Row → schema mapping ─────────────────────────────────────

def concession_type_from_row(row: dict) -> ConcessionType:
    return ConcessionType(
        id=row["id"],
        name=row["name"],
        kind=ConcessionKind(row["type"]),
        value=_decimal(row.get("value")) or Decimal("0"),
        max_value=_decimal(row.get("max_value")),
        applied_fee_heads=applicability_from_ids(row.get("applied_fee_heads")),
        applied_fee_terms=applicability_from_ids(row.get("applied_fee_terms")),
        fee_term_amounts={
            str(k): Decimal(str(v)) for k, v in (row.get("fee_term_amounts") or {}).items()
        },
        required_documents=row.get("required_documents") or [],
        is_active=row.get("is_active", True),
    )


def student_concession_from_row(row: dict) -> StudentConcession:
    return StudentConcession(
        id=row["id"],
        student_id=row["student_id"],
        concession_type_id=row["concession_type_id"],
        reason=row.get("reason") or "",
        valid_from=row["valid_from"],
        valid_until=row.get("valid_until"),
        notes=row.get("notes"),
        status=ConcessionStatus(row.get("status") or "APPROVED"),
        custom_value=_decimal(row.get("custom_value")),
    )


def profile_from_row(row: dict) -> StudentProfile:
    section = row.get("sections") or {}
    klass = section.get("classes") or {}
    class_name = " ".join(filter(None, [klass.get("name"), section.get("name")]))
    return StudentProfile(
        student_id=row["id"],
        full_name=f"{row.get('first_name', '')} {row.get('last_name', '')}".strip(),
        admission_number=row.get("admission_number") or "",
        class_name=class_name,
        section_id=row.get("section_id"),
        guardian_phone=row.get("guardian_phone"),
    )


class LedgerRepository:

    def __init__(self, db_factory=BranchDB):
        self._db_factory = db_factory

    async def load_snapshot(self, scope: LedgerScope, student_id: str) -> LedgerSnapshot:
        db = self._db_factory(scope)
        try:
            student = (
                db.select(
                    "students",
                    "id, first_name, last_name, admission_number, section_id, "
                    "guardian_phone, sections(name, classes(name))",
                    session_scoped=False,
                )
                .eq("id", student_id)
                .maybe_single()
                .execute()
            )
            if not student or not student.data:
                raise SnapshotUnavailableError(f"Student {student_id} not found in this branch")
            profile = profile_from_row(student.data)

            heads = db.select("fee_heads", "id, name, is_system_defined", session_scoped=False) \
                .order("name").execute()
            terms = db.select("fee_terms", "id, name, due_date, order_index") \
                .order("order_index").execute()
            structure = db.select("classwise_fees", "fee_head_id, fee_term_id, amount") \
                .eq("section_id", profile.section_id).execute()
            types = db.select("concession_types", "*").execute()
            assigned = db.select("student_concessions", "*").eq("student_id", student_id).execute()
            collections = (
                db.select(
                    "fee_collections",
                    "receipt_number, payment_date, "
                    "fee_collection_items(fee_head_id, fee_term_id, amount)",
                )
                .eq("student_id", student_id)
                .eq("is_voided", False)
                .execute()
            )
        except SnapshotUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Could not load fee snapshot for student {student_id}: {e}")
            raise SnapshotUnavailableError("Fee data is temporarily unavailable") from e

        try:
            return self._snapshot_from_rows(
                student_id, profile, heads, terms, structure, types, assigned, collections,
            )
        except Exception as e:
            # A malformed row is as unusable as a missing one
            logger.error(f"Fee data for student {student_id} could not be mapped: {e}")
            raise SnapshotUnavailableError("Fee data for this student is incomplete or invalid") from e

    @staticmethod
    def _snapshot_from_rows(
        student_id, profile, heads, terms, structure, types, assigned, collections,
    ) -> LedgerSnapshot:
        payments = []
        for c in (collections.data or []):
            for item in (c.get("fee_collection_items") or []):
                payments.append(PaymentAllocation(
                    fee_head_id=item["fee_head_id"],
                    fee_term_id=item["fee_term_id"],
                    amount=Decimal(str(item["amount"])),
                    receipt_number=c.get("receipt_number"),
                    paid_on=(c.get("payment_date") or "")[:10] or None,
                ))

        return LedgerSnapshot(
            student_id=student_id,
            profile=profile,
            fee_heads=[
                FeeHead(id=h["id"], name=h["name"], is_system_defined=h.get("is_system_defined", False))
                for h in (heads.data or [])
            ],
            fee_terms=[
                FeeTerm(id=t["id"], name=t["name"], due_date=t["due_date"], order=t.get("order_index") or 0)
                for t in (terms.data or [])
            ],
            structure=[
                FeeStructureEntry(
                    fee_head_id=s["fee_head_id"],
                    fee_term_id=s["fee_term_id"],
                    base_amount=Decimal(str(s["amount"])),
                )
                for s in (structure.data or [])
            ],
            concession_types=[concession_type_from_row(r) for r in (types.data or [])],
            student_concessions=[student_concession_from_row(r) for r in (assigned.data or [])],
            payments=payments,
        )

    async def record_payment(
        self,
        scope: LedgerScope,
        selection: PaymentSelection,
        *,
        as_of: Optional[date] = None,
    ) -> PaymentBatchResult:
        """
        Re-reads the ledger right before writing: if any selected line now has
        less outstanding than the batch wants to pay, someone else collected
        first and the batch is refused as stale. No reconciliation is attempted.

        as_of must be the date the batch was validated on; it defaults to
        the payment date.
        """
        fresh = await self.load_snapshot(scope, selection.student_id)
        evaluated_on = as_of or selection.payment_date
        outstanding = {i.id: i.outstanding_amount for i in build_from_snapshot(fresh, evaluated_on)}
        for line in selection.items:
            if line.amount > outstanding.get(line.fee_item_id, Decimal("0")):
                raise StaleSnapshotError(
                    "Outstanding amounts changed since this ledger was loaded. "
                    "Refresh the fee list and try again."
                )

        db = self._db_factory(scope)
        now = datetime.now(timezone.utc)
        receipt_number = generate_receipt_number(db, now)
        total = to_money(selection.total_amount)

        try:
            collection = db.insert("fee_collections", {
                "student_id":            selection.student_id,
                "receipt_number":        receipt_number,
                "total_amount":          float(total),
                "payment_mode":          selection.mode.value,
                "transaction_reference": selection.transaction_reference,
                "notes":                 selection.notes,
                "payment_date":          selection.payment_date.isoformat(),
                "is_voided":             False,
                "created_at":            now.isoformat(),
            })
            if not collection:
                raise PaymentRecordingError("Payment could not be saved. Please try again.")
            try:
                db.insert_many("fee_collection_items", [
                    {
                        "fee_collection_id": collection["id"],
                        "fee_head_id":       line.fee_head_id,
                        "fee_term_id":       line.fee_term_id,
                        "amount":            float(line.amount),
                        "original_amount":   float(line.original_amount),
                        "concession_amount": float(line.concession_amount),
                    }
                    for line in selection.items
                ])
            except Exception:
                # No half-written receipts: drop the header if its items failed
                db.delete("fee_collections", collection["id"])
                raise
        except PaymentRecordingError:
            raise
        except Exception as e:
            logger.error(f"Recording payment for student {selection.student_id} failed: {e}")
            raise PaymentRecordingError(f"Payment could not be saved: {e}") from e

        logger.info(
            f"Recorded {receipt_number} for student {selection.student_id}: "
            f"{total} across {len(selection.items)} fee line(s)"
        )
        return PaymentBatchResult(
            receipt_number=collection.get("receipt_number", receipt_number),
            total_amount=Decimal(str(collection.get("total_amount", total))),
        )


def get_ledger_repository() -> LedgerRepository:
    """FastAPI dependency - overridden in tests."""
    return LedgerRepository()

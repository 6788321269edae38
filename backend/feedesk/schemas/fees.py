# feedesk/schemas/fees.py
#
# Reference data (heads, terms, structure), concession definitions,
# payment history rows and the derived FeeItem.
# All money is Decimal; the services quantize to 0.01.

from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Dict, FrozenSet, Iterable, List, Literal, Optional, Union
from datetime import date
from decimal import Decimal
from enum import Enum


# ── Reference data ───────────────────────────────────────────
class FeeHead(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    is_system_defined: bool = False


class FeeTerm(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    due_date: date
    order: int = 0              # display order within the session


class FeeStructureEntry(BaseModel):
    """Base amount for one head × term, before any concession."""
    model_config = ConfigDict(frozen=True)

    fee_head_id: str
    fee_term_id: str
    base_amount: Decimal = Field(ge=0)


# ── Applicability ────────────────────────────────────────────
# Stored rows use "empty list = every head/term". Inside FeeDesk
# that convention is made explicit so an empty Only() really
# means "nothing".
class AllIds(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["all"] = "all"

    def includes(self, _id: str) -> bool:
        return True


class OnlyIds(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["only"] = "only"
    ids: FrozenSet[str] = frozenset()

    def includes(self, _id: str) -> bool:
        return _id in self.ids


Applicability = Annotated[Union[AllIds, OnlyIds], Field(discriminator="kind")]


def applicability_from_ids(ids: Optional[Iterable[str]]) -> Union[AllIds, OnlyIds]:
    """Read the stored list form: None or [] → All, anything else → Only."""
    ids = [str(i) for i in (ids or [])]
    if not ids:
        return AllIds()
    return OnlyIds(ids=frozenset(ids))


# ── Concessions ──────────────────────────────────────────────
class ConcessionKind(str, Enum):
    percentage = "PERCENTAGE"
    fixed      = "FIXED"


class ConcessionStatus(str, Enum):
    pending   = "PENDING"
    approved  = "APPROVED"
    rejected  = "REJECTED"
    suspended = "SUSPENDED"
    expired   = "EXPIRED"


class ConcessionType(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: ConcessionKind
    value: Decimal = Field(ge=0)             # percent points or currency units
    max_value: Optional[Decimal] = Field(default=None, ge=0)
    applied_fee_heads: Applicability = Field(default_factory=AllIds)
    applied_fee_terms: Applicability = Field(default_factory=AllIds)
    # FIXED only: per-term override amounts {term_id: amount}
    fee_term_amounts: Dict[str, Decimal] = Field(default_factory=dict)
    required_documents: List[str] = Field(default_factory=list)
    is_active: bool = True


class StudentConcession(BaseModel):
    """A student's assignment of a ConcessionType."""
    model_config = ConfigDict(frozen=True)

    id: str
    student_id: str
    concession_type_id: str
    reason: str = ""
    valid_from: date
    valid_until: Optional[date] = None
    notes: Optional[str] = None
    status: ConcessionStatus = ConcessionStatus.approved
    custom_value: Optional[Decimal] = Field(default=None, ge=0)


class AppliedConcession(BaseModel):
    student_concession_id: str
    name: str
    kind: ConcessionKind
    value: Decimal
    amount: Decimal


# ── Payment history ──────────────────────────────────────────
class PaymentAllocation(BaseModel):
    """One recorded allocation against a (head, term) pair."""
    model_config = ConfigDict(frozen=True)

    fee_head_id: str
    fee_term_id: str
    amount: Decimal
    receipt_number: Optional[str] = None
    paid_on: Optional[date] = None


# ── Derived fee line ─────────────────────────────────────────
class FeeStatus(str, Enum):
    paid           = "Paid"
    partially_paid = "Partially Paid"
    pending        = "Pending"
    overdue        = "Overdue"


class FeeItem(BaseModel):
    """
    One head × term line for a student, recomputed on every read.
    original = total + concession, outstanding = max(0, total - paid).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    fee_head_id: str
    fee_head_name: str
    fee_term_id: str
    fee_term_name: str
    original_amount: Decimal
    concession_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    due_date: Optional[date] = None
    overdue_days: int = 0
    status: FeeStatus
    applied_concessions: List[AppliedConcession] = Field(default_factory=list)
    is_orphan: bool = False     # payment recorded against a pair not in the structure

    @property
    def is_selectable(self) -> bool:
        return self.outstanding_amount > 0


def fee_item_id(fee_term_id: str, fee_head_id: str) -> str:
    return f"{fee_term_id}:{fee_head_id}"


# ── Summaries ────────────────────────────────────────────────
class FeeSummary(BaseModel):
    total_original: Decimal
    total_concession: Decimal
    total_net: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    status_counts: Dict[str, int]


class TermGroup(BaseModel):
    fee_term_id: str
    fee_term_name: str
    due_date: Optional[date] = None
    items: List[FeeItem]
    total_outstanding: Decimal
    has_outstanding: bool


class ReminderLevel(str, Enum):
    first   = "first"
    second  = "second"
    final   = "final"
    overdue = "overdue"


class FeeReminder(BaseModel):
    fee_item_id: str
    fee_head_name: str
    fee_term_name: str
    reminder_type: ReminderLevel
    days_overdue: int
    outstanding_amount: Decimal
    message: str


# ── Student snapshot (what the providers hand us) ────────────
class LedgerScope(BaseModel):
    """Branch + academic session, passed explicitly into every ledger call."""
    model_config = ConfigDict(frozen=True)

    branch_id: str
    session_id: str


class StudentProfile(BaseModel):
    """Labels for receipts and notifications; never used in the arithmetic."""
    student_id: str
    full_name: str = ""
    admission_number: str = ""
    class_name: str = ""
    section_id: Optional[str] = None
    guardian_phone: Optional[str] = None


class LedgerSnapshot(BaseModel):
    student_id: str
    profile: Optional[StudentProfile] = None
    fee_heads: List[FeeHead]
    fee_terms: List[FeeTerm]
    structure: List[FeeStructureEntry]
    concession_types: List[ConcessionType] = Field(default_factory=list)
    student_concessions: List[StudentConcession] = Field(default_factory=list)
    payments: List[PaymentAllocation] = Field(default_factory=list)


class FeeLedgerResponse(BaseModel):
    student_id: str
    as_of: date
    items: List[FeeItem]
    summary: FeeSummary
    terms: List[TermGroup]

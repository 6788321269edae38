import asyncio
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from feedesk.core.database import BranchDB
from feedesk.core.exceptions import PaymentRecordingError, SnapshotUnavailableError, StaleSnapshotError
from feedesk.schemas.fees import AllIds, ConcessionKind, OnlyIds
from feedesk.schemas.payments import PaymentMode, PaymentSelection, SelectedFee
from feedesk.services.ledger_repository import LedgerRepository
from feedesk.utils.receipt import format_receipt_number

from ledger_fixtures import SCOPE, STUDENT_ID


class FakeQuery:
    """Just enough of the postgrest builder for BranchDB: filters on keys a row actually has."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.filters = []
        self.single = False
        self.action = "select"
        self.payload = None

    def select(self, _columns):
        return self

    def eq(self, key, value):
        self.filters.append((key, value))
        return self

    def order(self, _key):
        return self

    def limit(self, _n):
        return self

    def maybe_single(self):
        self.single = True
        return self

    def insert(self, payload):
        self.action, self.payload = "insert", payload
        return self

    def delete(self):
        self.action = "delete"
        return self

    def execute(self):
        if self.action == "insert":
            if self.table in self.client.fail_inserts:
                raise RuntimeError(f"insert into {self.table} failed")
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            stored = [{"id": f"{self.table}-{len(self.client.inserted) + i + 1}", **r} for i, r in enumerate(rows)]
            self.client.inserted.extend((self.table, r) for r in stored)
            return SimpleNamespace(data=stored)
        if self.action == "delete":
            self.client.deleted.append((self.table, dict(self.filters)))
            return SimpleNamespace(data=[])

        rows = [
            r for r in self.client.rows.get(self.table, [])
            if all(r.get(k, v) == v for k, v in self.filters)
        ]
        if self.single:
            return SimpleNamespace(data=rows[0] if rows else None)
        return SimpleNamespace(data=rows)


class FakeClient:
    def __init__(self, rows, fail_inserts=()):
        self.rows = rows
        self.fail_inserts = set(fail_inserts)
        self.inserted = []
        self.deleted = []

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        assert name == "next_receipt_sequence"
        return SimpleNamespace(execute=lambda: SimpleNamespace(data=7))


def _rows():
    return {
        "students": [{
            "id": STUDENT_ID, "first_name": "Asha", "last_name": "Verma",
            "admission_number": "ADM-0042", "section_id": "sec-5a", "guardian_phone": "+919800000000",
            "sections": {"name": "A", "classes": {"name": "Grade 5"}},
        }],
        "fee_heads": [{"id": "h-tuition", "name": "Tuition", "is_system_defined": True}],
        "fee_terms": [{"id": "t1", "name": "Term 1", "due_date": "2025-04-15", "order_index": 1}],
        "classwise_fees": [
            {"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": 10000, "section_id": "sec-5a"},
            {"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": 99999, "section_id": "sec-9z"},
        ],
        "concession_types": [{
            "id": "ct-1", "name": "Sibling", "type": "PERCENTAGE", "value": "10",
            "applied_fee_heads": [], "applied_fee_terms": ["t1"], "is_active": True,
        }],
        "student_concessions": [{
            "id": "sc-1", "student_id": STUDENT_ID, "concession_type_id": "ct-1",
            "valid_from": "2025-01-01", "status": "APPROVED",
        }],
        "fee_collections": [
            {
                "student_id": STUDENT_ID, "receipt_number": "RCP-202503-A1B-0001",
                "payment_date": "2025-03-10T10:00:00+05:30", "is_voided": False,
                "fee_collection_items": [{"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": "2000"}],
            },
            {
                "student_id": STUDENT_ID, "receipt_number": "RCP-202503-A1B-0002",
                "payment_date": "2025-03-11", "is_voided": True,
                "fee_collection_items": [{"fee_head_id": "h-tuition", "fee_term_id": "t1", "amount": "5000"}],
            },
        ],
    }


def _repo(client):
    return LedgerRepository(db_factory=lambda scope: BranchDB(scope, client=client))


def _selection(amount, payment_date=date(2025, 4, 1)):
    return PaymentSelection(
        student_id=STUDENT_ID,
        items=[SelectedFee(
            fee_item_id="t1:h-tuition", fee_head_id="h-tuition", fee_term_id="t1",
            amount=Decimal(amount), original_amount=Decimal("10000"), concession_amount=Decimal("1000"),
        )],
        mode=PaymentMode.cash,
        payment_date=payment_date,
    )


def test_snapshot_maps_rows_and_skips_voided_collections():
    snap = asyncio.run(_repo(FakeClient(_rows())).load_snapshot(SCOPE, STUDENT_ID))

    assert snap.profile.full_name == "Asha Verma"
    assert snap.profile.class_name == "Grade 5 A"
    assert [e.base_amount for e in snap.structure] == [Decimal("10000")]
    [ctype] = snap.concession_types
    assert ctype.kind == ConcessionKind.percentage
    assert isinstance(ctype.applied_fee_heads, AllIds)
    assert ctype.applied_fee_terms == OnlyIds(ids=frozenset({"t1"}))
    assert [(p.amount, p.receipt_number) for p in snap.payments] == [(Decimal("2000"), "RCP-202503-A1B-0001")]
    assert snap.payments[0].paid_on == date(2025, 3, 10)


def test_unknown_student_is_unavailable():
    rows = _rows()
    rows["students"] = []
    with pytest.raises(SnapshotUnavailableError):
        asyncio.run(_repo(FakeClient(rows)).load_snapshot(SCOPE, STUDENT_ID))


def test_record_payment_writes_header_and_items():
    client = FakeClient(_rows())
    result = asyncio.run(_repo(client).record_payment(SCOPE, _selection("3000")))

    assert result.receipt_number.startswith("RCP-")
    assert result.receipt_number.endswith("-A1B-0007")
    assert result.total_amount == Decimal("3000.00")
    tables = [t for t, _ in client.inserted]
    assert tables == ["fee_collections", "fee_collection_items"]
    header = client.inserted[0][1]
    assert header["branch_id"] == SCOPE.branch_id
    assert header["session_id"] == SCOPE.session_id
    assert header["payment_mode"] == "Cash"


def test_record_payment_refuses_more_than_fresh_outstanding():
    client = FakeClient(_rows())
    with pytest.raises(StaleSnapshotError):
        asyncio.run(_repo(client).record_payment(SCOPE, _selection("7000.01")))
    assert client.inserted == []


def test_failed_items_insert_removes_header():
    client = FakeClient(_rows(), fail_inserts={"fee_collection_items"})
    with pytest.raises(PaymentRecordingError):
        asyncio.run(_repo(client).record_payment(SCOPE, _selection("1000")))
    assert client.deleted[0][0] == "fee_collections"


def test_receipt_number_format():
    from datetime import datetime

    assert format_receipt_number("branch-x9q", 42, datetime(2025, 7, 3)) == "RCP-202507-X9Q-0042"


def test_malformed_row_is_unavailable_not_a_crash():
    rows = _rows()
    rows["concession_types"][0]["type"] = "BOGUS"
    with pytest.raises(SnapshotUnavailableError):
        asyncio.run(_repo(FakeClient(rows)).load_snapshot(SCOPE, STUDENT_ID))


def test_stale_check_uses_the_validation_date_not_the_payment_date():
    # Before 2025-01-01 the sibling concession is not in force, so a
    # check on the backdated payment date would see 8000 outstanding.
    client = FakeClient(_rows())
    backdated = _selection("7500", payment_date=date(2024, 12, 1))

    with pytest.raises(StaleSnapshotError):
        asyncio.run(_repo(client).record_payment(SCOPE, backdated, as_of=date(2025, 4, 1)))
    assert client.inserted == []

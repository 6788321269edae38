from datetime import date
from decimal import Decimal

from feedesk.schemas.fees import ConcessionKind, FeeStatus, OnlyIds, ReminderLevel
from feedesk.services.concession_service import pair_concessions
from feedesk.services.fee_item_service import (
    build_fee_items,
    build_from_snapshot,
    derive_status,
    fee_reminders,
    group_by_term,
    summarize_fee_items,
)

from ledger_fixtures import (
    AS_OF,
    TERM1,
    TERM2,
    TRANSPORT,
    TUITION,
    assign,
    ctype,
    entry,
    paid,
    snapshot,
)


def _by_id(items):
    return {i.id: i for i in items}


def _assert_amounts_consistent(items):
    for item in items:
        assert item.original_amount == item.total_amount + item.concession_amount
        assert Decimal("0") <= item.concession_amount <= item.original_amount
        assert item.outstanding_amount == max(Decimal("0"), item.total_amount - item.paid_amount)


def test_percentage_concession_reduces_total():
    snap = snapshot([entry(TUITION, TERM1, 10000)], types=[ctype(value="10")], assigned=[assign()])
    [item] = build_from_snapshot(snap, AS_OF)

    assert item.id == "t1:h-tuition"
    assert item.concession_amount == Decimal("1000.00")
    assert item.total_amount == Decimal("9000.00")
    assert item.outstanding_amount == Decimal("9000.00")
    assert item.status == FeeStatus.pending
    assert [a.name for a in item.applied_concessions] == ["Concession ct-1"]
    _assert_amounts_consistent([item])


def test_fully_paid_item_is_not_selectable():
    snap = snapshot(
        [entry(TUITION, TERM1, 10000)],
        types=[ctype(value="10")],
        assigned=[assign()],
        payments=[paid(TUITION, TERM1, 9000)],
    )
    [item] = build_from_snapshot(snap, AS_OF)

    assert item.status == FeeStatus.paid
    assert item.outstanding_amount == Decimal("0.00")
    assert not item.is_selectable


def test_fixed_term_override_applies_only_to_its_term():
    concession = ctype(
        kind=ConcessionKind.fixed,
        value="100",
        applied_fee_terms=OnlyIds(ids=frozenset({"t1"})),
        fee_term_amounts={"t1": Decimal("500")},
    )
    snap = snapshot(
        [entry(TUITION, TERM1, 2000), entry(TUITION, TERM2, 2000)],
        types=[concession],
        assigned=[assign()],
    )
    items = _by_id(build_from_snapshot(snap, AS_OF))

    assert items["t1:h-tuition"].concession_amount == Decimal("500.00")
    assert items["t1:h-tuition"].total_amount == Decimal("1500.00")
    assert items["t2:h-tuition"].concession_amount == Decimal("0.00")
    assert items["t2:h-tuition"].total_amount == Decimal("2000.00")


def test_concessions_covering_whole_base_mark_item_paid_without_payment():
    snap = snapshot(
        [entry(TUITION, TERM1, 10000)],
        types=[ctype(id="ct-pct", value="10"), ctype(id="ct-fix", kind=ConcessionKind.fixed, value="9500")],
        assigned=[assign("ct-pct"), assign("ct-fix")],
    )
    [item] = build_from_snapshot(snap, AS_OF)

    assert item.concession_amount == Decimal("10000.00")
    assert item.total_amount == Decimal("0.00")
    assert item.paid_amount == Decimal("0.00")
    assert item.status == FeeStatus.paid
    _assert_amounts_consistent([item])


def test_status_priority():
    due = date(2025, 4, 15)
    assert derive_status(Decimal("0"), Decimal("0"), due, date(2025, 5, 1)) == FeeStatus.paid
    assert derive_status(Decimal("10"), Decimal("5"), due, date(2025, 5, 1)) == FeeStatus.overdue
    assert derive_status(Decimal("10"), Decimal("5"), due, date(2025, 4, 15)) == FeeStatus.partially_paid
    assert derive_status(Decimal("10"), Decimal("0"), due, date(2025, 4, 1)) == FeeStatus.pending


def test_overpayment_leaves_zero_outstanding():
    snap = snapshot([entry(TRANSPORT, TERM1, 1500)], payments=[paid(TRANSPORT, TERM1, 1600)])
    [item] = build_from_snapshot(snap, AS_OF)
    assert item.outstanding_amount == Decimal("0.00")
    assert item.status == FeeStatus.paid


def test_items_are_ordered_by_term_then_head():
    structure = [
        entry(TRANSPORT, TERM2, 800),
        entry(TUITION, TERM2, 5000),
        entry(TRANSPORT, TERM1, 800),
        entry(TUITION, TERM1, 5000),
    ]
    items = build_fee_items([TUITION, TRANSPORT], [TERM1, TERM2], structure, [], [], AS_OF)
    assert [i.id for i in items] == ["t1:h-tuition", "t1:h-transport", "t2:h-tuition", "t2:h-transport"]


def test_payment_against_unknown_pair_is_shown_as_orphan():
    snap = snapshot([entry(TUITION, TERM1, 5000)], payments=[paid(TRANSPORT, TERM1, 300)])
    items = build_from_snapshot(snap, AS_OF)

    assert [i.id for i in items] == ["t1:h-tuition", "t1:h-transport"]
    orphan = items[1]
    assert orphan.is_orphan
    assert orphan.paid_amount == Decimal("300.00")
    assert orphan.original_amount == Decimal("0.00")
    assert orphan.status == FeeStatus.paid
    assert not orphan.is_selectable


def test_duplicate_structure_entries_are_added():
    items = build_fee_items(
        [TUITION], [TERM1], [entry(TUITION, TERM1, 1000), entry(TUITION, TERM1, 250)], [], [], AS_OF,
    )
    assert [i.original_amount for i in items] == [Decimal("1250.00")]


def test_expired_concession_is_ignored_on_evaluation_date():
    concession = ctype(value="50")
    sc = assign(valid_until=date(2025, 3, 31))
    items = build_fee_items(
        [TUITION], [TERM1], [entry(TUITION, TERM1, 1000)],
        pair_concessions([concession], [sc]), [], AS_OF,
    )
    assert items[0].concession_amount == Decimal("0.00")


def test_summary_and_term_groups():
    snap = snapshot(
        [entry(TUITION, TERM1, 5000), entry(TRANSPORT, TERM1, 1000), entry(TUITION, TERM2, 5000)],
        payments=[paid(TUITION, TERM1, 5000)],
    )
    items = build_from_snapshot(snap, AS_OF)
    summary = summarize_fee_items(items)

    assert summary.total_original == Decimal("11000.00")
    assert summary.total_paid == Decimal("5000.00")
    assert summary.total_outstanding == Decimal("6000.00")
    assert summary.status_counts["Paid"] == 1
    assert summary.status_counts["Pending"] == 2

    groups = group_by_term(items)
    assert [g.fee_term_id for g in groups] == ["t1", "t2"]
    assert groups[0].total_outstanding == Decimal("1000.00")
    assert groups[1].has_outstanding


def test_reminder_levels_follow_days_overdue():
    snap = snapshot([entry(TUITION, TERM1, 5000), entry(TRANSPORT, TERM1, 1000)],
                    payments=[paid(TRANSPORT, TERM1, 1000)])

    def levels(on):
        return [r.reminder_type for r in fee_reminders(build_from_snapshot(snap, on))]

    assert levels(date(2025, 4, 10)) == []                      # not yet due
    assert levels(date(2025, 4, 18)) == [ReminderLevel.overdue]  # 3 days
    assert levels(date(2025, 4, 22)) == [ReminderLevel.first]    # 7 days
    assert levels(date(2025, 4, 30)) == [ReminderLevel.second]   # 15 days
    assert levels(date(2025, 5, 20)) == [ReminderLevel.final]    # 35 days


def test_reminder_message_uses_indian_grouping():
    snap = snapshot([entry(TUITION, TERM1, 125000)])
    [reminder] = fee_reminders(build_from_snapshot(snap, date(2025, 4, 25)))
    assert "₹1,25,000.00" in reminder.message
    assert reminder.days_overdue == 10

from datetime import datetime
from decimal import Decimal

import pytest
from conftest import make_expense

from splitledger.balances import (
    compute_balances,
    describe_position,
    expense_delta_for,
    member_summary,
    period_total,
    resolve_member_ref,
    to_decimal,
    to_display,
    total_owed_by_group,
    total_owed_to_group,
)
from splitledger.models import Member, ResolutionDiagnostics


def test_even_split_across_three(members):
    balances = compute_balances([make_expense(90, "a", ["a", "b", "c"])], members)

    assert balances == {"a": Decimal("60"), "b": Decimal("-30"), "c": Decimal("-30")}


def test_two_expenses_offset_each_other():
    members = [Member("a", "A"), Member("b", "B")]
    expenses = [
        make_expense(100, "a", ["a", "b"]),
        make_expense(40, "b", ["a", "b"], day=2),
    ]

    assert compute_balances(expenses, members) == {"a": Decimal("30"), "b": Decimal("-30")}


def test_member_without_activity_is_zero(members):
    balances = compute_balances([make_expense(20, "a", ["a", "b"])], members)

    assert balances["c"] == 0
    assert list(balances) == ["a", "b", "c"]


def test_empty_involved_credits_payer_only(members):
    balances = compute_balances([make_expense(50, "a", [])], members)

    assert balances == {"a": Decimal("50"), "b": Decimal("0"), "c": Decimal("0")}
    assert sum(balances.values()) == Decimal("50")


def test_payer_not_involved_is_fully_credited(members):
    balances = compute_balances([make_expense(30, "a", ["b", "c"])], members)

    assert balances == {"a": Decimal("30"), "b": Decimal("-15"), "c": Decimal("-15")}


def test_balances_sum_to_zero_when_everything_resolves(members):
    expenses = [
        make_expense("100", "a", ["a", "b", "c"]),
        make_expense("33.10", "b", ["a", "c"]),
        make_expense("7", "c", ["a", "b", "c"]),
        make_expense("12.34", "a", ["b"]),
    ]

    balances = compute_balances(expenses, members)

    assert to_display(sum(balances.values())) == 0


def test_display_names_resolve_for_legacy_records(members):
    diagnostics = ResolutionDiagnostics()
    balances = compute_balances([make_expense(60, "Alice", ["Bob", "c"])], members, diagnostics)

    assert balances == {"a": Decimal("60"), "b": Decimal("-30"), "c": Decimal("-30")}
    assert diagnostics.dropped == 0


def test_unresolved_references_are_dropped_and_counted(members, caplog):
    diagnostics = ResolutionDiagnostics()
    expenses = [make_expense(40, "a", ["a", "zed", "b"]), make_expense(10, "ghost", ["a"])]

    with caplog.at_level("WARNING", logger="splitledger.balances"):
        balances = compute_balances(expenses, members, diagnostics)

    assert balances == {"a": Decimal("10"), "b": Decimal("-20"), "c": Decimal("0")}
    assert diagnostics.dropped == 2
    assert diagnostics.refs == ["zed", "ghost"]
    assert "zed" in caplog.text


def test_all_involved_unresolved_means_no_debits(members):
    balances = compute_balances([make_expense(25, "b", ["x", "y"])], members)

    assert balances == {"a": Decimal("0"), "b": Decimal("25"), "c": Decimal("0")}


def test_float_amounts_do_not_drift(members):
    expenses = [make_expense(0.1, "a", ["a", "b"]) for _ in range(10)]

    balances = compute_balances(expenses, members)

    assert balances["a"] == Decimal("0.5")
    assert balances["b"] == Decimal("-0.5")


def test_compute_balances_is_idempotent(members):
    expenses = [make_expense(10, "a", ["a", "b", "c"]), make_expense(5, "c", ["b"])]

    assert compute_balances(expenses, members) == compute_balances(expenses, members)


def test_resolve_prefers_id_over_name():
    members = [Member("1", "2"), Member("2", "Bob")]

    assert resolve_member_ref("2", members) == "2"
    assert resolve_member_ref("Bob", members) == "2"
    assert resolve_member_ref("bob", members) is None
    assert resolve_member_ref("", members) is None
    assert resolve_member_ref(None, members) is None


def test_duplicate_display_name_resolves_to_first_member():
    members = [Member("1", "Sam"), Member("2", "Sam")]

    assert resolve_member_ref("Sam", members) == "1"


def test_expense_delta_matches_balance_contribution(members):
    expenses = [
        make_expense(90, "a", ["a", "b", "c"]),
        make_expense(30, "b", ["a", "c"]),
        make_expense(12, "Cara", []),
    ]
    balances = compute_balances(expenses, members)

    for member in members:
        total = sum((expense_delta_for(e, member.id, members) for e in expenses), Decimal("0"))
        assert total == balances[member.id]


def test_expense_delta_for_bystander_is_zero(members):
    assert expense_delta_for(make_expense(10, "a", ["a", "b"]), "c", members) == 0


def test_group_totals(members):
    balances = {"a": Decimal("60"), "b": Decimal("-45"), "c": Decimal("-15")}

    assert total_owed_by_group(balances) == Decimal("60")
    assert total_owed_to_group(balances) == Decimal("60")


def test_describe_position():
    assert describe_position(Decimal("1")) == "owed"
    assert describe_position(Decimal("-1")) == "owes"
    assert describe_position(Decimal("0")) == "settled"


def test_to_decimal_and_display():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(" 12.50 ") == Decimal("12.50")
    assert to_display(Decimal("100") / 3) == Decimal("33.33")
    assert to_display(Decimal("0.125")) == Decimal("0.13")


def test_to_display_handles_very_large_amounts():
    assert to_display(Decimal("1e30")) == Decimal("1000000000000000000000000000000.00")


def test_member_summary_splits_deltas_by_sign(members):
    expenses = [
        make_expense(90, "a", ["a", "b", "c"]),
        make_expense(30, "b", ["a", "c"]),
    ]

    summary = member_summary(expenses, "a", members)

    assert summary == {"owes": Decimal("15"), "owed": Decimal("60"), "net": Decimal("45")}
    assert summary["net"] == compute_balances(expenses, members)["a"]


def test_member_summary_outside_every_expense(members):
    summary = member_summary([make_expense(10, "a", ["a", "b"])], "c", members)

    assert summary == {"owes": Decimal("0"), "owed": Decimal("0"), "net": Decimal("0")}


def test_period_total_uses_monday_weeks_and_calendar_months():
    now = datetime(2024, 5, 15, 18, 0)  # a Wednesday
    expenses = [
        make_expense(10, "a", ["a"], at=datetime(2024, 5, 13, 0, 5)),  # Monday, same week
        make_expense(20, "a", ["a"], at=datetime(2024, 5, 12, 23, 0)),  # Sunday before
        make_expense(40, "a", ["a"], at=datetime(2024, 5, 1)),
        make_expense(80, "a", ["a"], at=datetime(2023, 5, 15)),
    ]

    assert period_total(expenses, "week", now) == Decimal("10")
    assert period_total(expenses, "month", now) == Decimal("70")


def test_period_total_rejects_unknown_period():
    with pytest.raises(ValueError):
        period_total([make_expense(10, "a", ["a"])], "year", datetime(2024, 1, 1))

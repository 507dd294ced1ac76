from dataclasses import dataclass
from datetime import date
from typing import Optional

from scopes import BatchScope, order_group, resolve_invoice_targets, resolve_targets


@dataclass
class Member:
    id: str
    installment_current: int
    purchase_date: date


@dataclass
class Billed:
    id: str
    card_id: Optional[str]
    paid: bool
    effective_month: int
    effective_year: int


def _group() -> list[Member]:
    return [Member(f"t{i}", i, date(2025, 1, 28)) for i in range(1, 6)]


def test_single_scope_only_target():
    assert resolve_targets(_group(), "t3", BatchScope.single) == {"t3"}


def test_all_scope_whole_group():
    assert resolve_targets(_group(), "t3", BatchScope.all) == {
        "t1",
        "t2",
        "t3",
        "t4",
        "t5",
    }


def test_future_and_past_include_target():
    group = _group()
    assert resolve_targets(group, "t3", BatchScope.future) == {"t3", "t4", "t5"}
    assert resolve_targets(group, "t3", BatchScope.past) == {"t1", "t2", "t3"}


def test_missing_target_resolves_to_nothing():
    assert resolve_targets(_group(), "nope", BatchScope.all) == set()


def test_order_group_sorts_by_installment():
    shuffled = list(reversed(_group()))
    assert [m.id for m in order_group(shuffled)] == ["t1", "t2", "t3", "t4", "t5"]


def test_order_group_breaks_installment_ties_by_purchase_date():
    tied = [
        Member("late", 2, date(2025, 2, 10)),
        Member("first", 1, date(2025, 1, 5)),
        Member("early", 2, date(2025, 1, 20)),
        Member("last", 3, date(2025, 1, 1)),
    ]

    assert [m.id for m in order_group(tied)] == ["first", "early", "late", "last"]
    assert resolve_targets(tied, "early", BatchScope.future) == {
        "early",
        "late",
        "last",
    }
    assert resolve_targets(tied, "late", BatchScope.past) == {
        "first",
        "early",
        "late",
    }


def test_invoice_targets_only_unpaid_on_card_in_period():
    entries = [
        Billed("a", "card-1", False, 3, 2025),
        Billed("b", "card-1", True, 3, 2025),
        Billed("c", "card-2", False, 3, 2025),
        Billed("d", "card-1", False, 4, 2025),
        Billed("e", None, False, 3, 2025),
    ]
    assert resolve_invoice_targets(entries, "card-1", 3, 2025, mark_paid=True) == {
        "a"
    }
    assert resolve_invoice_targets(entries, "card-1", 3, 2025, mark_paid=False) == {
        "b"
    }
    assert resolve_invoice_targets(entries, None, 3, 2025, mark_paid=True) == set()

"""In-memory ledger for one viewed month and the aggregations built on it.

The filtering, sorting and summary functions are pure and cheap enough to run
on every filter change. ``LedgerStore`` is the explicit holder of the loaded
month; it is replaced wholesale on navigation rather than patched from a
stream.
"""

from __future__ import annotations

import dataclasses
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from billing import effective_period
from models import PaymentMethod, TransactionType
from schemas import CardRef, TransactionDTO, TransactionPatch
from scopes import order_group

FALLBACK_CATEGORY_LABEL = "Outros"
FALLBACK_CATEGORY_COLOR = "#cbd5e1"
FALLBACK_OWNER_LABEL = "-"


class StatusFilter(str, Enum):
    all = "all"
    paid = "paid"
    pending = "pending"


class SortKey(str, Enum):
    date = "date"
    amount = "amount"
    description = "description"
    category = "category"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


class CategoryLike(Protocol):
    id: Optional[str]
    name: str
    color: Optional[str]


@dataclass
class LedgerEntry:
    id: str
    description: str
    amount_cents: int
    type: TransactionType
    purchase_date: date
    billing_date: Optional[date]
    effective_month: int
    effective_year: int
    paid: bool = False
    payment_method: Optional[PaymentMethod] = None
    group_id: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    card_id: Optional[str] = None
    card_name: Optional[str] = None
    card_closing_day: Optional[int] = None
    installment_current: int = 1
    installment_total: int = 1

    @classmethod
    def from_dto(cls, dto: TransactionDTO) -> "LedgerEntry":
        card = _card_for(dto.card_id, dto.card_closing_day)
        month, year = effective_period(dto.billing_date, dto.purchase_date, card)
        return cls(
            id=dto.id,
            description=dto.description,
            amount_cents=dto.amount_cents,
            type=dto.type,
            purchase_date=dto.purchase_date,
            billing_date=dto.billing_date,
            effective_month=month,
            effective_year=year,
            paid=dto.paid,
            payment_method=dto.payment_method,
            group_id=dto.group_id,
            category_id=dto.category_id,
            category_name=dto.category_name,
            category_color=dto.category_color,
            owner_id=dto.owner_id,
            owner_name=dto.owner_name,
            card_id=dto.card_id,
            card_name=dto.card_name,
            card_closing_day=dto.card_closing_day,
            installment_current=dto.installment_current or 1,
            installment_total=dto.installment_total or 1,
        )

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.expense

    def apply(self, changes: Mapping[str, Any]) -> None:
        for name, value in changes.items():
            if not hasattr(self, name):
                raise ValueError(f"Unknown transaction field: {name}")
            setattr(self, name, value)
        if {"billing_date", "purchase_date", "card_id"} & set(changes):
            self.effective_month, self.effective_year = effective_period(
                self.billing_date,
                self.purchase_date,
                _card_for(self.card_id, self.card_closing_day),
            )


def _card_for(
    card_id: Optional[str], closing_day: Optional[int]
) -> Optional[CardRef]:
    if not card_id or not closing_day:
        return None
    return CardRef(id=card_id, closing_day=closing_day)


@dataclass(frozen=True)
class LedgerFilters:
    month: int
    year: int
    day: Optional[int] = None
    owner_id: Optional[str] = None
    card_id: Optional[str] = None
    status: StatusFilter = StatusFilter.all
    query: str = ""
    sort_key: SortKey = SortKey.date
    sort_direction: SortDirection = SortDirection.desc

    def with_sort(self, key: SortKey) -> "LedgerFilters":
        if key == self.sort_key:
            flipped = (
                SortDirection.asc
                if self.sort_direction == SortDirection.desc
                else SortDirection.desc
            )
            return dataclasses.replace(self, sort_direction=flipped)
        direction = SortDirection.desc if key == SortKey.amount else SortDirection.asc
        return dataclasses.replace(self, sort_key=key, sort_direction=direction)


@dataclass(frozen=True)
class CategorySlice:
    category_id: Optional[str]
    label: str
    color: str
    amount_cents: int
    percent: float


@dataclass
class LedgerView:
    transactions: list[LedgerEntry]
    total_income_cents: int
    total_expense_cents: int
    balance_cents: int
    category_breakdown: list[CategorySlice] = field(default_factory=list)


@dataclass(frozen=True)
class DayMarker:
    day: int
    has_pending: bool


@dataclass(frozen=True)
class StatusTotals:
    pending_cents: int
    paid_cents: int


def lookup_category(
    categories: Iterable[CategoryLike], id_or_name: Optional[str]
) -> Optional[CategoryLike]:
    """Find a category by id, then by exact display name.

    The name pass only exists for records written by older clients that
    stored the category name in place of its id.
    """
    if not id_or_name:
        return None
    candidates = list(categories)
    for category in candidates:
        if category.id == id_or_name:
            return category
    for category in candidates:
        if category.name == id_or_name:
            return category
    return None


def category_label(entry: LedgerEntry, categories: Iterable[CategoryLike] = ()) -> str:
    found = lookup_category(categories, entry.category_id)
    if found is not None:
        return found.name
    return entry.category_name or FALLBACK_CATEGORY_LABEL


def owner_label(entry: LedgerEntry) -> str:
    return entry.owner_name or FALLBACK_OWNER_LABEL


def _text_key(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value.strip())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def _matches(
    entry: LedgerEntry,
    filters: LedgerFilters,
    query: str,
    categories: Sequence[CategoryLike],
) -> bool:
    if entry.effective_month != filters.month or entry.effective_year != filters.year:
        return False
    if filters.day and entry.purchase_date.day != filters.day:
        return False
    if filters.card_id and entry.card_id != filters.card_id:
        return False
    if filters.owner_id and entry.owner_id != filters.owner_id:
        return False
    if filters.status == StatusFilter.paid and not entry.paid:
        return False
    if filters.status == StatusFilter.pending and entry.paid:
        return False
    if query:
        haystacks = (
            entry.description,
            category_label(entry, categories),
            owner_label(entry),
        )
        if not any(query in text.lower() for text in haystacks):
            return False
    return True


def filter_entries(
    entries: Iterable[LedgerEntry],
    filters: LedgerFilters,
    categories: Sequence[CategoryLike] = (),
) -> list[LedgerEntry]:
    query = filters.query.strip().lower()
    return [e for e in entries if _matches(e, filters, query, categories)]


def sort_entries(
    entries: Iterable[LedgerEntry],
    key: SortKey,
    direction: SortDirection,
    categories: Sequence[CategoryLike] = (),
) -> list[LedgerEntry]:
    reverse = direction == SortDirection.desc
    if key == SortKey.description:
        return sorted(entries, key=lambda e: _text_key(e.description), reverse=reverse)
    if key == SortKey.category:
        return sorted(
            entries,
            key=lambda e: _text_key(category_label(e, categories)),
            reverse=reverse,
        )
    if key == SortKey.amount:
        return sorted(entries, key=lambda e: e.amount_cents, reverse=reverse)
    return sorted(entries, key=lambda e: e.purchase_date, reverse=reverse)


def category_breakdown(
    entries: Iterable[LedgerEntry], categories: Sequence[CategoryLike] = ()
) -> list[CategorySlice]:
    totals: dict[Optional[str], int] = {}
    samples: dict[Optional[str], LedgerEntry] = {}
    for entry in entries:
        if not entry.is_expense:
            continue
        key = entry.category_id or None
        totals[key] = totals.get(key, 0) + entry.amount_cents
        samples.setdefault(key, entry)

    grand_total = sum(totals.values())
    breakdown = []
    for key, amount in totals.items():
        category = lookup_category(categories, key)
        sample = samples[key]
        if category is not None:
            label = category.name
            color = category.color or FALLBACK_CATEGORY_COLOR
        else:
            label = sample.category_name or FALLBACK_CATEGORY_LABEL
            color = sample.category_color or FALLBACK_CATEGORY_COLOR
        percent = (amount / grand_total * 100) if grand_total else 0
        breakdown.append(CategorySlice(key, label, color, amount, percent))
    breakdown.sort(key=lambda s: s.amount_cents, reverse=True)
    return breakdown


def summarize(
    entries: Iterable[LedgerEntry],
    filters: LedgerFilters,
    categories: Sequence[CategoryLike] = (),
) -> LedgerView:
    categories = list(categories)
    filtered = filter_entries(entries, filters, categories)
    ordered = sort_entries(
        filtered, filters.sort_key, filters.sort_direction, categories
    )

    expense = sum(e.amount_cents for e in ordered if e.is_expense)
    # A card filter means "this invoice"; income has no place there.
    if filters.card_id:
        income = 0
        balance = 0
    else:
        income = sum(e.amount_cents for e in ordered if not e.is_expense)
        balance = income - expense
    return LedgerView(
        transactions=ordered,
        total_income_cents=income,
        total_expense_cents=expense,
        balance_cents=balance,
        category_breakdown=category_breakdown(ordered, categories),
    )


def day_markers(
    entries: Iterable[LedgerEntry], month: int, year: int
) -> list[DayMarker]:
    pending_by_day: dict[int, bool] = {}
    for entry in entries:
        if not entry.is_expense:
            continue
        when = entry.purchase_date
        if entry.card_id and entry.billing_date:
            when = entry.billing_date
        if when.month != month or when.year != year:
            continue
        pending_by_day[when.day] = pending_by_day.get(when.day, False) or not entry.paid
    return [DayMarker(day, pending) for day, pending in sorted(pending_by_day.items())]


def status_totals(entries: Iterable[LedgerEntry]) -> StatusTotals:
    pending = paid = 0
    for entry in entries:
        if not entry.is_expense:
            continue
        if entry.paid:
            paid += entry.amount_cents
        else:
            pending += entry.amount_cents
    return StatusTotals(pending_cents=pending, paid_cents=paid)


class LedgerStore:
    def __init__(self) -> None:
        self._entries: dict[str, LedgerEntry] = {}
        self.month: Optional[int] = None
        self.year: Optional[int] = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries.values())

    def load(self, dtos: Iterable[TransactionDTO], month: int, year: int) -> None:
        self.replace(LedgerEntry.from_dto(dto) for dto in dtos)
        self.month = month
        self.year = year

    def replace(self, entries: Iterable[LedgerEntry]) -> None:
        self._entries = {entry.id: entry for entry in entries}

    def get(self, transaction_id: str) -> Optional[LedgerEntry]:
        return self._entries.get(transaction_id)

    def group_members(self, group_id: str) -> list[LedgerEntry]:
        return order_group(e for e in self._entries.values() if e.group_id == group_id)

    def apply_local_patch(
        self, ids: Iterable[str], patch: TransactionPatch | Mapping[str, Any]
    ) -> dict[str, LedgerEntry]:
        """Apply ``patch`` to the listed entries and return their prior state."""
        if isinstance(patch, TransactionPatch):
            changes = patch.changes()
        else:
            changes = dict(patch)
        snapshot: dict[str, LedgerEntry] = {}
        for transaction_id in ids:
            entry = self._entries.get(transaction_id)
            if entry is None:
                continue
            snapshot[transaction_id] = dataclasses.replace(entry)
            entry.apply(changes)
        return snapshot

    def restore(self, snapshot: Mapping[str, LedgerEntry]) -> None:
        for transaction_id, entry in snapshot.items():
            self._entries[transaction_id] = entry

    def remove(self, ids: Iterable[str]) -> None:
        for transaction_id in ids:
            self._entries.pop(transaction_id, None)

    def clear(self) -> None:
        self._entries = {}
        self.month = None
        self.year = None

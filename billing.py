"""Billing-period resolution for card and non-card expenses.

Everything here is a pure function of its arguments. Nothing consults the
wall clock; callers that need "today" pass it in.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Protocol


class ClosingDaySource(Protocol):
    closing_day: int


class CardCycle(Protocol):
    closing_day: int
    due_day: int


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    total_months = month - 1 + count
    return year + total_months // 12, total_months % 12 + 1


def clamp_day(year: int, month: int, day: int) -> date:
    dim = days_in_month(year, month)
    return date(year, month, min(max(day, 1), dim))


def resolve_billing_period(
    purchase_day: int,
    purchase_month: int,
    purchase_year: int,
    card: Optional[ClosingDaySource],
) -> tuple[int, int]:
    """Return ``(billing_month, billing_year)`` for a purchase.

    Without a card the purchase period is the billing period. With a card, a
    purchase on or after the closing day belongs to the next invoice. The
    comparison is a plain integer one, so a closing day of 31 simply never
    triggers in shorter months.
    """
    if card is None:
        return purchase_month, purchase_year
    if purchase_day >= card.closing_day:
        year, month = add_months(purchase_year, purchase_month, 1)
        return month, year
    return purchase_month, purchase_year


def resolve_billing_date(
    purchase_date: date, card: Optional[ClosingDaySource]
) -> date:
    return installment_billing_date(purchase_date, card, 1)


def installment_billing_date(
    purchase_date: date, card: Optional[ClosingDaySource], installment_current: int
) -> date:
    """Billing date of the n-th installment of a purchase (1-based)."""
    month, year = resolve_billing_period(
        purchase_date.day, purchase_date.month, purchase_date.year, card
    )
    year, month = add_months(year, month, max(installment_current, 1) - 1)
    return clamp_day(year, month, purchase_date.day)


def effective_period(
    billing_date: Optional[date],
    purchase_date: date,
    card: Optional[ClosingDaySource] = None,
) -> tuple[int, int]:
    """Month and year a stored record is attributed to on load.

    A stored billing date wins. Records that arrive without one are resolved
    again from the purchase date and the card, if any.
    """
    if billing_date is not None:
        return billing_date.month, billing_date.year
    return resolve_billing_period(
        purchase_date.day, purchase_date.month, purchase_date.year, card
    )


@dataclass(frozen=True)
class InvoiceWindow:
    month: int
    year: int
    period_start: date
    period_end: date
    closing_date: date
    due_date: date
    status: str

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"


def invoice_window(
    card: CardCycle, month: int, year: int, today: date
) -> InvoiceWindow:
    """Purchase window covered by the invoice billed in ``month``/``year``.

    The cycle opens on the previous month's closing day and runs until the
    day before this month's closing day.
    """
    prev_year, prev_month = add_months(year, month, -1)
    period_start = clamp_day(prev_year, prev_month, card.closing_day)
    closing_date = clamp_day(year, month, card.closing_day)
    period_end = closing_date - timedelta(days=1)
    due_date = clamp_day(year, month, card.due_day)
    status = "closed" if today > period_end else "open"
    return InvoiceWindow(
        month=month,
        year=year,
        period_start=period_start,
        period_end=period_end,
        closing_date=closing_date,
        due_date=due_date,
        status=status,
    )

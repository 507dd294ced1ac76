from datetime import date
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence


class BatchScope(str, Enum):
    single = "single"
    all = "all"
    future = "future"
    past = "past"


class GroupMember(Protocol):
    id: str
    installment_current: int
    purchase_date: date


class BilledEntry(Protocol):
    id: str
    card_id: Optional[str]
    paid: bool
    effective_month: int
    effective_year: int


def order_group(members: Iterable[GroupMember]) -> list[GroupMember]:
    return sorted(
        members,
        key=lambda m: (m.installment_current or 0, m.purchase_date or date.min),
    )


def resolve_targets(
    group: Sequence[GroupMember], target_id: str, scope: BatchScope
) -> set[str]:
    """Ids of the group members an action on ``target_id`` applies to.

    ``group`` must already be ordered (see ``order_group``). Future and past
    both include the target itself. A target that is not in the group
    resolves to nothing and the caller treats that as a no-op.
    """
    ids = [member.id for member in group]
    try:
        index = ids.index(target_id)
    except ValueError:
        return set()

    if scope == BatchScope.single:
        return {target_id}
    if scope == BatchScope.all:
        return set(ids)
    if scope == BatchScope.future:
        return set(ids[index:])
    if scope == BatchScope.past:
        return set(ids[: index + 1])
    raise ValueError(f"Unsupported batch scope: {scope}")


def resolve_invoice_targets(
    entries: Iterable[BilledEntry],
    card_id: Optional[str],
    month: int,
    year: int,
    *,
    mark_paid: bool,
) -> set[str]:
    """Ids to flip when paying (or reopening) a whole card invoice.

    This is independent of installment groups: it covers every entry billed
    to the card in the given period whose paid flag is not already
    ``mark_paid``.
    """
    if not card_id:
        return set()
    return {
        entry.id
        for entry in entries
        if entry.card_id == card_id
        and entry.effective_month == month
        and entry.effective_year == year
        and entry.paid != mark_paid
    }

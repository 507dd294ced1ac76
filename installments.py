import re
import uuid
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from billing import (
    ClosingDaySource,
    add_months,
    clamp_day,
    installment_billing_date,
    resolve_billing_period,
)
from models import IMMEDIATE_PAYMENT_METHODS, PaymentMethod, TransactionType
from schemas import (
    PurchaseIn,
    TransactionCreatePayload,
    TransactionDTO,
    TransactionPatch,
)

BILLING_INPUTS = frozenset({"purchase_date", "billing_date", "card_id", "type"})
_SUFFIX_RE = re.compile(r"\s*\(\d+/\d+\)\s*$")


class RemainderPolicy(str, Enum):
    # The final installment carries whatever the even split could not place.
    absorb_last = "absorb_last"
    # Every installment gets the floored share; the leftover cents are lost.
    truncate = "truncate"


@dataclass(frozen=True)
class InstallmentRecord:
    id: str
    group_id: Optional[str]
    description: str
    amount_cents: int
    billing_date: date
    installment_current: int
    installment_total: int


def with_installment_suffix(base: str, current: int, total: int) -> str:
    if total <= 1:
        return base
    return f"{base} ({current}/{total})"


def strip_installment_suffix(description: str) -> str:
    return _SUFFIX_RE.sub("", description)


def split(
    total_cents: int,
    installment_count: int,
    start_month: int,
    start_year: int,
    anchor_day: int,
    *,
    description: str = "",
    policy: RemainderPolicy = RemainderPolicy.absorb_last,
) -> list[InstallmentRecord]:
    count = installment_count if installment_count > 0 else 1
    share, remainder = divmod(total_cents, count)
    group_id = str(uuid.uuid4()) if count > 1 else None

    records: list[InstallmentRecord] = []
    for i in range(count):
        year, month = add_months(start_year, start_month, i)
        amount = share
        if policy == RemainderPolicy.absorb_last and i == count - 1:
            amount += remainder
        records.append(
            InstallmentRecord(
                id=str(uuid.uuid4()),
                group_id=group_id,
                description=with_installment_suffix(description, i + 1, count),
                amount_cents=amount,
                billing_date=clamp_day(year, month, anchor_day),
                installment_current=i + 1,
                installment_total=count,
            )
        )
    return records


def default_payment_method(purchase: PurchaseIn) -> PaymentMethod:
    if purchase.type == TransactionType.expense and purchase.card_id:
        return PaymentMethod.credit_card
    return purchase.payment_method or PaymentMethod.pix


def paid_at_creation(kind: TransactionType, method: PaymentMethod) -> bool:
    if kind == TransactionType.income:
        return True
    return method in IMMEDIATE_PAYMENT_METHODS


def plan_purchase(
    purchase: PurchaseIn,
    card: Optional[ClosingDaySource] = None,
    *,
    policy: RemainderPolicy = RemainderPolicy.absorb_last,
) -> list[TransactionCreatePayload]:
    """Turn one purchase into the create payloads of its installments."""
    is_expense = purchase.type == TransactionType.expense
    card_id = purchase.card_id if is_expense else None
    billing_card = card if card_id else None
    count = purchase.installments if is_expense else 1
    method = default_payment_method(purchase)
    paid = paid_at_creation(purchase.type, method)

    day = purchase.purchase_date.day
    month, year = resolve_billing_period(
        day, purchase.purchase_date.month, purchase.purchase_date.year, billing_card
    )
    records = split(
        purchase.amount_cents,
        count,
        month,
        year,
        day,
        description=strip_installment_suffix(purchase.description),
        policy=policy,
    )
    return [
        TransactionCreatePayload(
            id=record.id,
            description=record.description,
            amount_cents=record.amount_cents,
            type=purchase.type,
            purchase_date=purchase.purchase_date,
            billing_date=record.billing_date,
            category_id=purchase.category_id,
            owner_id=purchase.owner_id,
            card_id=card_id,
            payment_method=method,
            group_id=record.group_id,
            paid=paid,
            installment_current=record.installment_current,
            installment_total=record.installment_total,
        )
        for record in records
    ]


def rebill_payload(
    payload: TransactionCreatePayload, card: Optional[ClosingDaySource]
) -> TransactionCreatePayload:
    """Replace any supplied billing date with the one the card cycle gives."""
    billing_card = card if payload.type == TransactionType.expense else None
    billing_date = installment_billing_date(
        payload.purchase_date, billing_card, payload.installment_current
    )
    return payload.model_copy(update={"billing_date": billing_date})


def rebill_patch(
    current: TransactionDTO,
    patch: TransactionPatch,
    card: Optional[ClosingDaySource],
) -> TransactionPatch:
    """Derive the billing date of ``current`` after ``patch`` is applied.

    ``card`` is the card the record ends up on, if any. Patches that touch
    none of the billing inputs are returned unchanged.
    """
    changes = patch.changes()
    if not BILLING_INPUTS & set(changes):
        return patch
    changes.pop("billing_date", None)
    purchase_date = changes.get("purchase_date") or current.purchase_date
    kind = changes.get("type") or current.type
    card_id = changes.get("card_id", current.card_id)
    billing_card = card if kind == TransactionType.expense and card_id else None
    changes["billing_date"] = installment_billing_date(
        purchase_date, billing_card, current.installment_current
    )
    return TransactionPatch(**changes)

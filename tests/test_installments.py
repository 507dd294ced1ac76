from datetime import date

from installments import (
    RemainderPolicy,
    plan_purchase,
    split,
    strip_installment_suffix,
    with_installment_suffix,
)
from models import PaymentMethod, TransactionType
from schemas import CardRef, PurchaseIn


def test_three_installments_on_card_after_closing():
    card = CardRef(id="card-1", closing_day=5)
    purchase = PurchaseIn(
        description="TV",
        amount_cents=30000,
        purchase_date=date(2025, 1, 28),
        card_id="card-1",
        installments=3,
    )

    payloads = plan_purchase(purchase, card)

    assert [p.billing_date for p in payloads] == [
        date(2025, 2, 28),
        date(2025, 3, 28),
        date(2025, 4, 28),
    ]
    assert [p.amount_cents for p in payloads] == [10000, 10000, 10000]
    assert [p.description for p in payloads] == ["TV (1/3)", "TV (2/3)", "TV (3/3)"]
    assert len({p.group_id for p in payloads}) == 1
    assert payloads[0].group_id is not None
    assert all(p.purchase_date == date(2025, 1, 28) for p in payloads)
    assert all(p.payment_method == PaymentMethod.credit_card for p in payloads)
    assert not any(p.paid for p in payloads)


def test_split_clamps_to_month_end():
    records = split(9000, 3, 1, 2024, 31, description="Rent")
    assert [r.billing_date for r in records] == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
    ]


def test_split_absorbs_remainder_in_last_installment():
    records = split(10000, 3, 5, 2025, 10)
    assert [r.amount_cents for r in records] == [3333, 3333, 3334]
    assert sum(r.amount_cents for r in records) == 10000


def test_split_truncate_policy_drops_remainder():
    records = split(10000, 3, 5, 2025, 10, policy=RemainderPolicy.truncate)
    assert [r.amount_cents for r in records] == [3333, 3333, 3333]


def test_split_repeats_everything_but_ids():
    def fields(records):
        return [
            (r.description, r.amount_cents, r.billing_date, r.installment_current)
            for r in records
        ]

    first = split(10000, 3, 11, 2024, 31, description="Desk")
    again = split(10000, 3, 11, 2024, 31, description="Desk")

    assert fields(first) == fields(again)
    assert first[0].group_id != again[0].group_id


def test_split_non_positive_count_is_single_record():
    for count in (0, -2):
        records = split(1234, count, 7, 2025, 3, description="Coffee")
        assert len(records) == 1
        assert records[0].group_id is None
        assert records[0].description == "Coffee"
        assert records[0].installment_total == 1


def test_split_crosses_year_boundary():
    records = split(400, 4, 11, 2025, 15)
    assert [(r.billing_date.month, r.billing_date.year) for r in records] == [
        (11, 2025),
        (12, 2025),
        (1, 2026),
        (2, 2026),
    ]


def test_suffix_helpers():
    assert with_installment_suffix("Sofa", 2, 10) == "Sofa (2/10)"
    assert with_installment_suffix("Sofa", 1, 1) == "Sofa"
    assert strip_installment_suffix("Sofa (2/10)") == "Sofa"
    assert strip_installment_suffix("Sofa") == "Sofa"


def test_income_is_never_split_and_starts_paid():
    purchase = PurchaseIn(
        description="Salary",
        amount_cents=500000,
        type="INCOME",
        purchase_date=date(2025, 3, 5),
        card_id="card-1",
        installments=4,
    )

    payloads = plan_purchase(purchase, CardRef(id="card-1", closing_day=1))

    assert len(payloads) == 1
    assert payloads[0].type == TransactionType.income
    assert payloads[0].card_id is None
    assert payloads[0].billing_date == date(2025, 3, 5)
    assert payloads[0].paid


def test_pix_expense_without_card_is_paid():
    purchase = PurchaseIn(
        description="Groceries",
        amount_cents=8750,
        purchase_date=date(2025, 3, 5),
        payment_method=PaymentMethod.pix,
    )
    (payload,) = plan_purchase(purchase)
    assert payload.paid
    assert payload.group_id is None
    assert payload.billing_date == date(2025, 3, 5)


def test_boleto_expense_starts_pending():
    purchase = PurchaseIn(
        description="Internet",
        amount_cents=9990,
        purchase_date=date(2025, 3, 5),
        payment_method=PaymentMethod.boleto,
    )
    (payload,) = plan_purchase(purchase)
    assert not payload.paid

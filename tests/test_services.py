from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from installments import plan_purchase
from models import PaymentMethod, TransactionType
from schemas import (
    CardIn,
    CategoryIn,
    OwnerIn,
    PurchaseIn,
    TransactionCreatePayload,
    TransactionPatch,
)
from services import (
    CardService,
    CategoryService,
    OwnerService,
    SQLLedgerGateway,
    TransactionService,
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _single(**overrides) -> TransactionCreatePayload:
    data = {
        "description": "Groceries",
        "amount_cents": 4590,
        "type": TransactionType.expense,
        "purchase_date": date(2025, 3, 10),
        "billing_date": date(2025, 3, 10),
    }
    data.update(overrides)
    return TransactionCreatePayload(**data)


def test_owner_names_are_unique():
    with _session() as session:
        service = OwnerService(session)
        service.create(OwnerIn(name="Ana"))
        with pytest.raises(ValueError):
            service.create(OwnerIn(name=" Ana "))


def test_card_requires_existing_owner():
    with _session() as session:
        with pytest.raises(ValueError, match="Owner not found"):
            CardService(session).create(
                CardIn(name="Nubank", closing_day=5, due_day=12, owner_id="ghost")
            )


def test_owner_with_cards_cannot_be_deleted():
    with _session() as session:
        owner = OwnerService(session).create(OwnerIn(name="Ana"))
        CardService(session).create(
            CardIn(name="Nubank", closing_day=5, due_day=12, owner_id=owner.id)
        )
        with pytest.raises(ValueError):
            OwnerService(session).delete(owner.id)


def test_for_month_uses_billing_date():
    with _session() as session:
        service = TransactionService(session)
        service.create(_single(description="March"))
        service.create(
            _single(description="April", purchase_date=date(2025, 4, 10))
        )

        march = service.for_month(3, 2025)
        assert [t.description for t in march] == ["March"]


def test_create_derives_card_billing_date_from_closing_day():
    with _session() as session:
        owner = OwnerService(session).create(OwnerIn(name="Ana"))
        card = CardService(session).create(
            CardIn(name="Nubank", closing_day=5, due_day=12, owner_id=owner.id)
        )
        service = TransactionService(session)

        txn = service.create(
            _single(
                card_id=card.id,
                purchase_date=date(2025, 1, 28),
                billing_date=date(2025, 1, 28),
            )
        )

        assert txn.billing_date == date(2025, 2, 28)
        assert [t.id for t in service.for_month(1, 2025)] == []
        assert [t.id for t in service.for_month(2, 2025)] == [txn.id]


def test_patch_ignores_supplied_billing_date():
    with _session() as session:
        owner = OwnerService(session).create(OwnerIn(name="Ana"))
        card = CardService(session).create(
            CardIn(name="Nubank", closing_day=5, due_day=12, owner_id=owner.id)
        )
        service = TransactionService(session)
        txn = service.create(_single(card_id=card.id))

        updated = service.patch(
            txn.id, TransactionPatch(billing_date=date(2025, 3, 10))
        )

        assert updated.billing_date == date(2025, 4, 10)


def test_create_rejects_group_mismatch():
    with _session() as session:
        service = TransactionService(session)
        with pytest.raises(ValueError):
            service.create(_single(group_id="g1"))
        with pytest.raises(ValueError):
            service.create(_single(installment_current=1, installment_total=3))


def test_create_planned_installments_share_group():
    with _session() as session:
        owner = OwnerService(session).create(OwnerIn(name="Ana"))
        card = CardService(session).create(
            CardIn(name="Nubank", closing_day=5, due_day=12, owner_id=owner.id)
        )
        purchase = PurchaseIn(
            description="TV",
            amount_cents=30000,
            purchase_date=date(2025, 1, 28),
            card_id=card.id,
            owner_id=owner.id,
            installments=3,
        )
        service = TransactionService(session)
        created = [service.create(p) for p in plan_purchase(purchase, card)]

        group = service.group(created[0].group_id)
        assert [t.installment_current for t in group] == [1, 2, 3]
        assert [t.billing_date for t in group] == [
            date(2025, 2, 28),
            date(2025, 3, 28),
            date(2025, 4, 28),
        ]
        assert all(t.card.name == "Nubank" for t in group)


def test_patch_only_touches_set_fields():
    with _session() as session:
        category = CategoryService(session).create(CategoryIn(name="Food"))
        service = TransactionService(session)
        txn = service.create(_single(category_id=category.id))

        updated = service.patch(txn.id, TransactionPatch(paid=True))

        assert updated.paid
        assert updated.category_id == category.id
        assert updated.description == "Groceries"


def test_patch_rejects_clearing_required_field():
    with _session() as session:
        service = TransactionService(session)
        txn = service.create(_single())
        with pytest.raises(ValueError):
            service.patch(txn.id, TransactionPatch(description=None))


def test_patch_to_income_drops_card():
    with _session() as session:
        owner = OwnerService(session).create(OwnerIn(name="Ana"))
        card = CardService(session).create(
            CardIn(name="Nubank", closing_day=5, due_day=12, owner_id=owner.id)
        )
        service = TransactionService(session)
        txn = service.create(
            _single(card_id=card.id, payment_method=PaymentMethod.credit_card)
        )

        updated = service.patch(txn.id, TransactionPatch(type="income"))

        assert updated.card_id is None
        assert updated.payment_method == PaymentMethod.pix
        assert updated.billing_date == date(2025, 3, 10)


def test_patch_purchase_date_recomputes_billing_date():
    with _session() as session:
        owner = OwnerService(session).create(OwnerIn(name="Ana"))
        card = CardService(session).create(
            CardIn(name="Nubank", closing_day=5, due_day=12, owner_id=owner.id)
        )
        service = TransactionService(session)
        txn = service.create(_single(card_id=card.id))

        updated = service.patch(
            txn.id, TransactionPatch(purchase_date=date(2025, 3, 2))
        )

        assert updated.billing_date == date(2025, 3, 2)


def test_gateway_returns_display_names():
    with _session() as session:
        category = CategoryService(session).create(
            CategoryIn(name="Food", color="#f97316")
        )
        gateway = SQLLedgerGateway(session)
        created = gateway.create_transaction(_single(category_id=category.id))

        (dto,) = gateway.fetch_transactions(3, 2025)
        assert dto.id == created.id
        assert dto.category_name == "Food"
        assert dto.category_color == "#f97316"
        assert gateway.fetch_transaction("missing") is None

        gateway.delete_transaction(created.id)
        assert gateway.fetch_transactions(3, 2025) == []

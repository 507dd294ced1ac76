from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from billing import installment_billing_date
from installments import BILLING_INPUTS
from models import (
    Category,
    CreditCard,
    Owner,
    PaymentMethod,
    Transaction,
    TransactionType,
)
from periods import month_period
from schemas import (
    CardIn,
    CategoryIn,
    OwnerIn,
    TransactionCreatePayload,
    TransactionDTO,
    TransactionPatch,
)
from scopes import order_group

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = {
    "description",
    "amount_cents",
    "type",
    "purchase_date",
    "billing_date",
    "paid",
    "payment_method",
}


class OwnerService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Owner]:
        stmt = select(Owner).order_by(Owner.name)
        return self.session.scalars(stmt).all()

    def get(self, owner_id: str) -> Owner:
        owner = self.session.get(Owner, owner_id)
        if not owner:
            raise ValueError("Owner not found")
        return owner

    def create(self, data: OwnerIn) -> Owner:
        name = data.name.strip()
        existing = self.session.scalar(select(Owner).where(Owner.name == name))
        if existing:
            raise ValueError("Owner with this name already exists")
        owner = Owner(name=name)
        self.session.add(owner)
        self.session.commit()
        self.session.refresh(owner)
        return owner

    def rename(self, owner_id: str, name: str) -> Owner:
        owner = self.get(owner_id)
        clean = name.strip()
        if not clean:
            raise ValueError("Owner name cannot be empty")
        owner.name = clean
        self.session.commit()
        return owner

    def delete(self, owner_id: str) -> None:
        owner = self.get(owner_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(Transaction.owner_id == owner.id)
        )
        if in_use or owner.cards:
            raise ValueError("Owner still has cards or transactions")
        self.session.delete(owner)
        self.session.commit()


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.name)
        return self.session.scalars(stmt).all()

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        existing = self.session.scalar(select(Category).where(Category.name == name))
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(name=name, color=data.color)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: str) -> None:
        category = self.get(category_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category.id
            )
        )
        if in_use:
            raise ValueError("Category is in use")
        self.session.delete(category)
        self.session.commit()


class CardService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, owner_id: Optional[str] = None) -> list[CreditCard]:
        stmt = select(CreditCard).order_by(CreditCard.name)
        if owner_id:
            stmt = stmt.where(CreditCard.owner_id == owner_id)
        return self.session.scalars(stmt).all()

    def get(self, card_id: str) -> CreditCard:
        card = self.session.get(CreditCard, card_id)
        if not card:
            raise ValueError("Card not found")
        return card

    def create(self, data: CardIn) -> CreditCard:
        if not self.session.get(Owner, data.owner_id):
            raise ValueError("Owner not found")
        card = CreditCard(
            name=data.name.strip(),
            closing_day=data.closing_day,
            due_day=data.due_day,
            color=data.color,
            owner_id=data.owner_id,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def update(self, card_id: str, data: CardIn) -> CreditCard:
        card = self.get(card_id)
        if not self.session.get(Owner, data.owner_id):
            raise ValueError("Owner not found")
        card.name = data.name.strip()
        card.closing_day = data.closing_day
        card.due_day = data.due_day
        card.color = data.color
        card.owner_id = data.owner_id
        self.session.commit()
        return card

    def delete(self, card_id: str) -> None:
        card = self.get(card_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(Transaction.card_id == card.id)
        )
        if in_use:
            raise ValueError("Card still has transactions")
        self.session.delete(card)
        self.session.commit()


def to_dto(txn: Transaction) -> TransactionDTO:
    return TransactionDTO(
        id=txn.id,
        group_id=txn.group_id,
        description=txn.description,
        amount_cents=txn.amount_cents,
        type=txn.type,
        purchase_date=txn.purchase_date,
        billing_date=txn.billing_date,
        paid=txn.paid,
        payment_method=txn.payment_method,
        category_id=txn.category_id,
        category_name=txn.category.name if txn.category else None,
        category_color=txn.category.color if txn.category else None,
        owner_id=txn.owner_id,
        owner_name=txn.owner.name if txn.owner else None,
        card_id=txn.card_id,
        card_name=txn.card.name if txn.card else None,
        card_closing_day=txn.card.closing_day if txn.card else None,
        installment_current=txn.installment_current,
        installment_total=txn.installment_total,
    )


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _base_query(self):
        return select(Transaction).options(
            joinedload(Transaction.category),
            joinedload(Transaction.owner),
            joinedload(Transaction.card),
        )

    def _check_references(
        self,
        category_id: Optional[str],
        owner_id: Optional[str],
        card_id: Optional[str],
    ) -> Optional[CreditCard]:
        if category_id and not self.session.get(Category, category_id):
            raise ValueError("Category not found")
        if owner_id and not self.session.get(Owner, owner_id):
            raise ValueError("Owner not found")
        if not card_id:
            return None
        card = self.session.get(CreditCard, card_id)
        if not card:
            raise ValueError("Card not found")
        return card

    def get(self, transaction_id: str) -> Transaction:
        stmt = self._base_query().where(Transaction.id == transaction_id)
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def for_month(self, month: int, year: int) -> list[Transaction]:
        period = month_period(month, year)
        stmt = (
            self._base_query()
            .where(Transaction.billing_date.between(period.start, period.end))
            .order_by(Transaction.purchase_date.desc(), Transaction.id)
        )
        return self.session.scalars(stmt).all()

    def group(self, group_id: str) -> list[Transaction]:
        stmt = self._base_query().where(Transaction.group_id == group_id)
        return order_group(self.session.scalars(stmt).all())

    def create(self, data: TransactionCreatePayload) -> Transaction:
        if (data.group_id is not None) != (data.installment_total > 1):
            raise ValueError("Group id must be set exactly for multi-installment rows")
        if data.installment_current > data.installment_total:
            raise ValueError("Installment position exceeds installment total")
        card_id = data.card_id if data.type == TransactionType.expense else None
        card = self._check_references(data.category_id, data.owner_id, card_id)
        # The billing date is always derived; a supplied one is ignored.
        billing_date = installment_billing_date(
            data.purchase_date, card, data.installment_current
        )

        txn = Transaction(
            description=data.description,
            amount_cents=data.amount_cents,
            type=data.type,
            purchase_date=data.purchase_date,
            billing_date=billing_date,
            paid=data.paid,
            payment_method=data.payment_method,
            category_id=data.category_id,
            owner_id=data.owner_id,
            card_id=card_id,
            group_id=data.group_id,
            installment_current=data.installment_current,
            installment_total=data.installment_total,
        )
        if data.id:
            txn.id = data.id
        self.session.add(txn)
        self.session.commit()
        logger.info(
            f"transaction_created: id={txn.id} group={txn.group_id} "
            f"installment={txn.installment_current}/{txn.installment_total}"
        )
        self.session.refresh(txn)
        return txn

    def patch(self, transaction_id: str, data: TransactionPatch) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.changes()
        for name in _REQUIRED_FIELDS & set(changes):
            if changes[name] is None:
                raise ValueError(f"Field {name} cannot be cleared")
        card = self._check_references(
            changes.get("category_id"),
            changes.get("owner_id"),
            changes.get("card_id", txn.card_id),
        )

        for name, value in changes.items():
            setattr(txn, name, value)
        if txn.type == TransactionType.income:
            txn.card_id = None
            card = None
        if txn.card_id is None and txn.payment_method == PaymentMethod.credit_card:
            txn.payment_method = PaymentMethod.pix

        if BILLING_INPUTS & set(changes):
            txn.billing_date = installment_billing_date(
                txn.purchase_date, card, txn.installment_current
            )

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        self.session.delete(txn)
        self.session.commit()


class SQLLedgerGateway:
    """Ledger gateway over the local database.

    A SQLAlchemy session is not safe to share between threads, so batch
    callers drive this gateway one call at a time.
    """

    supports_parallel = False

    def __init__(self, session: Session) -> None:
        self.transactions = TransactionService(session)

    def fetch_transactions(self, month: int, year: int) -> list[TransactionDTO]:
        return [to_dto(txn) for txn in self.transactions.for_month(month, year)]

    def fetch_transaction(self, transaction_id: str) -> Optional[TransactionDTO]:
        try:
            return to_dto(self.transactions.get(transaction_id))
        except ValueError:
            return None

    def fetch_group(self, group_id: str) -> list[TransactionDTO]:
        return [to_dto(txn) for txn in self.transactions.group(group_id)]

    def create_transaction(self, payload: TransactionCreatePayload) -> TransactionDTO:
        return to_dto(self.transactions.create(payload))

    def update_transaction(
        self, transaction_id: str, patch: TransactionPatch
    ) -> TransactionDTO:
        return to_dto(self.transactions.patch(transaction_id, patch))

    def delete_transaction(self, transaction_id: str) -> None:
        self.transactions.delete(transaction_id)

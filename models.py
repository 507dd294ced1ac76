import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"

    @property
    def wire(self) -> str:
        return self.value.upper()


class PaymentMethod(str, Enum):
    credit_card = "CREDIT_CARD"
    pix = "PIX"
    boleto = "BOLETO"
    cash = "CASH"
    debit_card = "DEBIT_CARD"


PAYMENT_METHOD_ENUM = SAEnum(
    PaymentMethod,
    name="paymentmethod",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

# Settled at the moment of purchase; card and boleto expenses start pending.
IMMEDIATE_PAYMENT_METHODS = frozenset(
    {PaymentMethod.pix, PaymentMethod.cash, PaymentMethod.debit_card}
)


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Owner(Base, TimestampMixin):
    __tablename__ = "owners"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    cards: Mapped[list["CreditCard"]] = relationship(
        "CreditCard", back_populates="owner"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[Optional[str]] = mapped_column(String(9))


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(9))
    owner_id: Mapped[str] = mapped_column(ForeignKey("owners.id"), nullable=False)

    owner: Mapped["Owner"] = relationship("Owner", back_populates="cards")

    __table_args__ = (
        CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_card_closing_day_range"
        ),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    group_id: Mapped[Optional[str]] = mapped_column(String(36))
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    billing_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        PAYMENT_METHOD_ENUM, nullable=False, default=PaymentMethod.pix
    )
    category_id: Mapped[Optional[str]] = mapped_column(ForeignKey("categories.id"))
    owner_id: Mapped[Optional[str]] = mapped_column(ForeignKey("owners.id"))
    card_id: Mapped[Optional[str]] = mapped_column(ForeignKey("credit_cards.id"))
    installment_current: Mapped[int] = mapped_column(
        Integer, default=1, nullable=False
    )
    installment_total: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    category: Mapped[Optional["Category"]] = relationship("Category")
    owner: Mapped[Optional["Owner"]] = relationship("Owner")
    card: Mapped[Optional["CreditCard"]] = relationship("CreditCard")

    __table_args__ = (
        Index("ix_transactions_billing_date", "billing_date"),
        Index("ix_transactions_group", "group_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "installment_current BETWEEN 1 AND installment_total",
            name="ck_transactions_installment_position",
        ),
    )

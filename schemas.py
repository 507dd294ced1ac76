from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import PaymentMethod, TransactionType
from scopes import BatchScope


def to_cents(value: Any) -> int:
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> float:
    return float(Decimal(cents) / Decimal(100))


def parse_wire_date(value: Any) -> Optional[date]:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp and keep the calendar day.

    The remote store stamps dates at noon UTC, so the date part is the
    intended day regardless of the local offset.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def billing_timestamp(day: date) -> str:
    return f"{day.isoformat()}T12:00:00Z"


def _parse_type(value: Any) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    return TransactionType(str(value).strip().lower())


class OwnerIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=9)


class CardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)
    color: Optional[str] = Field(None, max_length=9)
    owner_id: str


class CardRef(BaseModel):
    """Billing cycle of a card as far as the resolver needs it."""

    id: Optional[str] = None
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(1, ge=1, le=31)


class PurchaseIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    type: TransactionType = TransactionType.expense
    purchase_date: date
    category_id: Optional[str] = None
    owner_id: Optional[str] = None
    card_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    # Non-positive counts are accepted and treated as a single installment.
    installments: int = 1

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> TransactionType:
        return _parse_type(value)


class TransactionCreatePayload(BaseModel):
    # Locally generated id; the remote store assigns its own and never sees it.
    id: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    type: TransactionType
    purchase_date: date
    billing_date: date
    category_id: Optional[str] = None
    owner_id: Optional[str] = None
    card_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.pix
    group_id: Optional[str] = None
    paid: bool = False
    installment_current: int = Field(1, ge=1)
    installment_total: int = Field(1, ge=1)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> TransactionType:
        return _parse_type(value)

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "description": self.description,
            "amount": from_cents(self.amount_cents),
            "type": self.type.wire,
            "purchaseDate": billing_timestamp(self.purchase_date),
            "billingDate": billing_timestamp(self.billing_date),
            "categoryId": self.category_id,
            "ownerId": self.owner_id,
            "creditCardId": self.card_id,
            "paymentMethod": self.payment_method.value,
            "paid": self.paid,
            "installmentCurrent": self.installment_current,
            "installmentTotal": self.installment_total,
        }
        if self.group_id:
            payload["groupId"] = self.group_id
        return payload


_PATCH_WIRE_KEYS = {
    "description": "description",
    "amount_cents": "amount",
    "type": "type",
    "purchase_date": "purchaseDate",
    "billing_date": "billingDate",
    "paid": "paid",
    "payment_method": "paymentMethod",
    "category_id": "categoryId",
    "owner_id": "ownerId",
    "card_id": "creditCardId",
}


class TransactionPatch(BaseModel):
    """Partial update. Only fields that were explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(None, ge=0)
    type: Optional[TransactionType] = None
    purchase_date: Optional[date] = None
    billing_date: Optional[date] = None
    paid: Optional[bool] = None
    payment_method: Optional[PaymentMethod] = None
    category_id: Optional[str] = None
    owner_id: Optional[str] = None
    card_id: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Optional[TransactionType]:
        return None if value is None else _parse_type(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {}
        for field, value in self.changes().items():
            key = _PATCH_WIRE_KEYS[field]
            if field == "amount_cents" and value is not None:
                value = from_cents(value)
            elif field == "type" and value is not None:
                value = value.wire
            elif field in ("purchase_date", "billing_date") and value is not None:
                value = billing_timestamp(value)
            elif field == "payment_method" and value is not None:
                value = value.value
            wire[key] = value
        return wire


class TransactionDTO(BaseModel):
    """A stored transaction as handed to the ledger on load."""

    id: str
    group_id: Optional[str] = None
    description: str
    amount_cents: int
    type: TransactionType
    purchase_date: date
    billing_date: Optional[date] = None
    paid: bool = False
    payment_method: Optional[PaymentMethod] = None
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

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> TransactionType:
        return _parse_type(value)

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> "TransactionDTO":
        category = raw.get("category") or {}
        owner = raw.get("owner") or {}
        card = raw.get("creditCard") or raw.get("card") or {}
        purchase = raw.get("purchaseDate") or raw.get("billingDate")
        return cls(
            id=str(raw["id"]),
            group_id=raw.get("groupId") or None,
            description=raw.get("description") or "",
            amount_cents=to_cents(raw.get("amount", 0)),
            type=raw["type"],
            purchase_date=parse_wire_date(purchase),
            billing_date=parse_wire_date(raw.get("billingDate")),
            paid=bool(raw.get("paid", False)),
            payment_method=raw.get("paymentMethod") or None,
            category_id=category.get("id") or raw.get("categoryId"),
            category_name=category.get("name") or raw.get("categoryName"),
            category_color=category.get("color") or raw.get("categoryColor"),
            owner_id=owner.get("id") or raw.get("ownerId"),
            owner_name=owner.get("name") or raw.get("ownerName"),
            card_id=card.get("id") or raw.get("creditCardId") or raw.get("cardId"),
            card_name=card.get("name") or raw.get("cardName"),
            card_closing_day=card.get("closingDay"),
            installment_current=raw.get("installmentCurrent") or 1,
            installment_total=raw.get("installmentTotal") or 1,
        )


class BatchActionIn(BaseModel):
    action: Literal["edit", "delete", "pay"]
    scope: BatchScope = BatchScope.single
    patch: Optional[TransactionPatch] = None


class InvoicePaymentIn(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)
    paid: bool = True

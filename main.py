from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from actions import BatchOperationError, LedgerActions, LedgerGateway
from billing import invoice_window
from config import get_settings
from csrf import generate_csrf_token, require_csrf
from database import SessionLocal
from installments import BILLING_INPUTS, rebill_patch, rebill_payload
from ledger import (
    LedgerFilters,
    LedgerStore,
    SortDirection,
    SortKey,
    StatusFilter,
    day_markers,
    filter_entries,
    status_totals,
    summarize,
)
from models import Category, CreditCard, Owner
from periods import resolve_month
from remote_client import RemoteLedgerClient, TransportError
from scheduler import SchedulerManager
from schemas import (
    BatchActionIn,
    CardIn,
    CategoryIn,
    InvoicePaymentIn,
    OwnerIn,
    PurchaseIn,
    TransactionCreatePayload,
    TransactionPatch,
)
from services import CardService, CategoryService, OwnerService, SQLLedgerGateway

app = FastAPI(title="Installment Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_gateway(db: Session = Depends(get_db)) -> LedgerGateway:
    settings = get_settings()
    if settings.remote_url:
        return RemoteLedgerClient(settings.remote_url)
    return SQLLedgerGateway(db)


def get_actions(gateway: LedgerGateway = Depends(get_gateway)) -> LedgerActions:
    return LedgerActions(gateway, LedgerStore())


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(BatchOperationError)
def batch_error_handler(_request, exc: BatchOperationError):
    return JSONResponse(
        status_code=502,
        content={
            "detail": str(exc),
            "action": exc.result.action,
            "succeeded": exc.result.succeeded,
            "failed": exc.result.failed,
        },
    )


@app.exception_handler(TransportError)
def transport_error_handler(_request, exc: TransportError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def _client_error(exc: ValueError) -> HTTPException:
    message = str(exc)
    status = 404 if message.endswith("not found") else 400
    return HTTPException(status_code=status, detail=message)


def _month_or_400(month: Optional[str], year: Optional[str]) -> tuple[int, int]:
    try:
        period = resolve_month(month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return period.start.month, period.start.year


def owner_json(owner: Owner) -> dict[str, object]:
    return {"id": owner.id, "name": owner.name}


def category_json(category: Category) -> dict[str, object]:
    return {"id": category.id, "name": category.name, "color": category.color}


def card_json(card: CreditCard) -> dict[str, object]:
    return {
        "id": card.id,
        "name": card.name,
        "closing_day": card.closing_day,
        "due_day": card.due_day,
        "color": card.color,
        "owner_id": card.owner_id,
    }


@app.get("/api/csrf")
def api_csrf():
    return {"token": generate_csrf_token()}


@app.get("/api/owners")
def list_owners(db: Session = Depends(get_db)):
    return [owner_json(o) for o in OwnerService(db).list_all()]


@app.post("/api/owners", status_code=201, dependencies=[Depends(require_csrf)])
def create_owner(data: OwnerIn, db: Session = Depends(get_db)):
    try:
        owner = OwnerService(db).create(data)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return owner_json(owner)


@app.patch("/api/owners/{owner_id}", dependencies=[Depends(require_csrf)])
def rename_owner(owner_id: str, data: OwnerIn, db: Session = Depends(get_db)):
    try:
        owner = OwnerService(db).rename(owner_id, data.name)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return owner_json(owner)


@app.delete("/api/owners/{owner_id}", dependencies=[Depends(require_csrf)])
def delete_owner(owner_id: str, db: Session = Depends(get_db)):
    try:
        OwnerService(db).delete(owner_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_json(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201, dependencies=[Depends(require_csrf)])
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(data)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return category_json(category)


@app.delete("/api/categories/{category_id}", dependencies=[Depends(require_csrf)])
def delete_category(category_id: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/cards")
def list_cards(owner_id: Optional[str] = None, db: Session = Depends(get_db)):
    return [card_json(c) for c in CardService(db).list_all(owner_id)]


@app.post("/api/cards", status_code=201, dependencies=[Depends(require_csrf)])
def create_card(data: CardIn, db: Session = Depends(get_db)):
    try:
        card = CardService(db).create(data)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return card_json(card)


@app.put("/api/cards/{card_id}", dependencies=[Depends(require_csrf)])
def update_card(card_id: str, data: CardIn, db: Session = Depends(get_db)):
    try:
        card = CardService(db).update(card_id, data)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return card_json(card)


@app.delete("/api/cards/{card_id}", dependencies=[Depends(require_csrf)])
def delete_card(card_id: str, db: Session = Depends(get_db)):
    try:
        CardService(db).delete(card_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions")
def api_transactions(
    month: Optional[str] = None,
    year: Optional[str] = None,
    gateway: LedgerGateway = Depends(get_gateway),
):
    month_value, year_value = _month_or_400(month, year)
    return gateway.fetch_transactions(month_value, year_value)


@app.get("/api/transactions/group/{group_id}")
def api_transaction_group(
    group_id: str, gateway: LedgerGateway = Depends(get_gateway)
):
    members = gateway.fetch_group(group_id)
    if not members:
        raise HTTPException(status_code=404, detail="Group not found")
    return members


@app.post(
    "/api/transactions", status_code=201, dependencies=[Depends(require_csrf)]
)
def create_transaction(
    data: TransactionCreatePayload,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_gateway),
):
    try:
        card = CardService(db).get(data.card_id) if data.card_id else None
        return gateway.create_transaction(rebill_payload(data, card))
    except ValueError as exc:
        raise _client_error(exc) from exc


@app.patch(
    "/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)]
)
def patch_transaction(
    transaction_id: str,
    data: TransactionPatch,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_gateway),
):
    patch = data
    try:
        if BILLING_INPUTS & set(data.changes()):
            current = gateway.fetch_transaction(transaction_id)
            if current is None:
                raise ValueError("Transaction not found")
            card_id = data.changes().get("card_id", current.card_id)
            card = CardService(db).get(card_id) if card_id else None
            patch = rebill_patch(current, data, card)
        updated = gateway.update_transaction(transaction_id, patch)
    except ValueError as exc:
        raise _client_error(exc) from exc
    if updated is None:
        return Response(status_code=204)
    return updated


@app.delete(
    "/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)]
)
def delete_transaction(
    transaction_id: str, gateway: LedgerGateway = Depends(get_gateway)
):
    try:
        gateway.delete_transaction(transaction_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/purchases", status_code=201, dependencies=[Depends(require_csrf)])
def create_purchase(
    data: PurchaseIn,
    db: Session = Depends(get_db),
    actions: LedgerActions = Depends(get_actions),
):
    card = None
    try:
        if data.card_id:
            card = CardService(db).get(data.card_id)
        actions.load(data.purchase_date.month, data.purchase_date.year)
        return actions.create_purchase(data, card)
    except ValueError as exc:
        raise _client_error(exc) from exc


def _load_target_month(
    actions: LedgerActions,
    transaction_id: str,
    month: Optional[int],
    year: Optional[int],
) -> None:
    """Load the month holding ``transaction_id`` so the action can find it."""
    if month is not None and year is not None:
        actions.load(month, year)
        if actions.store.get(transaction_id) is not None:
            return
    target = actions.gateway.fetch_transaction(transaction_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    when = target.billing_date or target.purchase_date
    actions.load(when.month, when.year)


@app.post(
    "/api/transactions/{transaction_id}/batch",
    dependencies=[Depends(require_csrf)],
)
def batch_action(
    transaction_id: str,
    data: BatchActionIn,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    actions: LedgerActions = Depends(get_actions),
):
    _load_target_month(actions, transaction_id, month, year)
    try:
        if data.action == "delete":
            result = actions.delete(transaction_id, data.scope)
        elif data.action == "pay":
            result = actions.toggle_paid(transaction_id, data.scope)
        else:
            if data.patch is None:
                raise HTTPException(status_code=400, detail="Edit requires a patch")
            target = actions.store.get(transaction_id)
            card_id = data.patch.changes().get(
                "card_id", target.card_id if target else None
            )
            card = CardService(db).get(card_id) if card_id else None
            result = actions.edit(transaction_id, data.scope, data.patch, card)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return result


@app.post("/api/cards/{card_id}/invoice/pay", dependencies=[Depends(require_csrf)])
def pay_invoice(
    card_id: str,
    data: InvoicePaymentIn,
    db: Session = Depends(get_db),
    actions: LedgerActions = Depends(get_actions),
):
    try:
        CardService(db).get(card_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    actions.load(data.month, data.year)
    return actions.pay_invoice(
        card_id, month=data.month, year=data.year, mark_paid=data.paid
    )


@app.get("/api/ledger")
def api_ledger(
    month: Optional[str] = None,
    year: Optional[str] = None,
    day: Optional[int] = Query(None, ge=1, le=31),
    owner_id: Optional[str] = None,
    card_id: Optional[str] = None,
    status: StatusFilter = StatusFilter.all,
    q: str = "",
    sort: SortKey = SortKey.date,
    direction: SortDirection = SortDirection.desc,
    db: Session = Depends(get_db),
    actions: LedgerActions = Depends(get_actions),
):
    month_value, year_value = _month_or_400(month, year)
    actions.load(month_value, year_value)
    filters = LedgerFilters(
        month=month_value,
        year=year_value,
        day=day,
        owner_id=owner_id,
        card_id=card_id,
        status=status,
        query=q,
        sort_key=sort,
        sort_direction=direction,
    )
    categories = CategoryService(db).list_all()
    return summarize(actions.store.entries, filters, categories)


@app.get("/api/cards/{card_id}/invoice")
def api_invoice(
    card_id: str,
    month: Optional[str] = None,
    year: Optional[str] = None,
    db: Session = Depends(get_db),
    actions: LedgerActions = Depends(get_actions),
):
    try:
        card = CardService(db).get(card_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    month_value, year_value = _month_or_400(month, year)
    actions.load(month_value, year_value)
    view = summarize(
        actions.store.entries,
        LedgerFilters(month=month_value, year=year_value, card_id=card_id),
        CategoryService(db).list_all(),
    )
    window = invoice_window(card, month_value, year_value, date.today())
    return {
        "card": card_json(card),
        "window": window,
        "total_cents": view.total_expense_cents,
        "paid": bool(view.transactions) and all(e.paid for e in view.transactions),
        "transactions": view.transactions,
    }


@app.get("/api/calendar")
def api_calendar(
    month: Optional[str] = None,
    year: Optional[str] = None,
    owner_id: Optional[str] = None,
    card_id: Optional[str] = None,
    actions: LedgerActions = Depends(get_actions),
):
    month_value, year_value = _month_or_400(month, year)
    actions.load(month_value, year_value)
    entries = filter_entries(
        actions.store.entries,
        LedgerFilters(
            month=month_value, year=year_value, owner_id=owner_id, card_id=card_id
        ),
    )
    return {
        "month": month_value,
        "year": year_value,
        "days": day_markers(entries, month_value, year_value),
        "totals": status_totals(entries),
    }

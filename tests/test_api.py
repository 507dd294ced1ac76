from datetime import date

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db, get_gateway
from services import SQLLedgerGateway


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    def override_get_gateway(db: Session = Depends(get_db)):
        return SQLLedgerGateway(db)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = override_get_gateway
    try:
        test_client = TestClient(app)
        token = test_client.get("/api/csrf").json()["token"]
        test_client.headers.update({"X-CSRF-Token": token})
        yield test_client
    finally:
        app.dependency_overrides.clear()


def _card(client: TestClient) -> dict:
    owner = client.post("/api/owners", json={"name": "Ana"}).json()
    return client.post(
        "/api/cards",
        json={
            "name": "Nubank",
            "closing_day": 5,
            "due_day": 12,
            "owner_id": owner["id"],
        },
    ).json()


def _buy_tv(client: TestClient, card: dict) -> list[dict]:
    resp = client.post(
        "/api/purchases",
        json={
            "description": "TV",
            "amount_cents": 30000,
            "purchase_date": date(2025, 1, 28).isoformat(),
            "card_id": card["id"],
            "owner_id": card["owner_id"],
            "installments": 3,
        },
    )
    assert resp.status_code == 201
    return resp.json()


def test_mutations_require_csrf_token(client):
    resp = client.post(
        "/api/owners", json={"name": "Bia"}, headers={"X-CSRF-Token": "bogus"}
    )
    assert resp.status_code == 400


def test_purchase_is_split_into_billing_months(client):
    card = _card(client)
    created = _buy_tv(client, card)

    assert [row["billing_date"] for row in created] == [
        "2025-02-28",
        "2025-03-28",
        "2025-04-28",
    ]

    march = client.get("/api/transactions", params={"month": 3, "year": 2025}).json()
    assert [row["description"] for row in march] == ["TV (2/3)"]

    group = client.get(f"/api/transactions/group/{created[0]['group_id']}").json()
    assert [row["installment_current"] for row in group] == [1, 2, 3]


def test_ledger_view_for_card_invoice(client):
    card = _card(client)
    _buy_tv(client, card)
    client.post(
        "/api/purchases",
        json={
            "description": "Salary",
            "amount_cents": 500000,
            "type": "income",
            "purchase_date": "2025-03-05",
        },
    )

    full = client.get("/api/ledger", params={"month": 3, "year": 2025}).json()
    assert full["total_income_cents"] == 500000
    assert full["total_expense_cents"] == 10000
    assert full["balance_cents"] == 490000
    assert full["category_breakdown"][0]["label"] == "Outros"

    invoice = client.get(
        "/api/ledger", params={"month": 3, "year": 2025, "card_id": card["id"]}
    ).json()
    assert invoice["total_income_cents"] == 0
    assert invoice["balance_cents"] == 0


def test_batch_delete_future(client):
    card = _card(client)
    created = _buy_tv(client, card)

    resp = client.post(
        f"/api/transactions/{created[1]['id']}/batch",
        json={"action": "delete", "scope": "future"},
    )

    assert resp.status_code == 200
    assert sorted(resp.json()["succeeded"]) == sorted(r["id"] for r in created[1:])
    group = client.get(f"/api/transactions/group/{created[0]['group_id']}").json()
    assert [row["id"] for row in group] == [created[0]["id"]]


def test_batch_edit_requires_patch(client):
    card = _card(client)
    created = _buy_tv(client, card)

    resp = client.post(
        f"/api/transactions/{created[0]['id']}/batch",
        json={"action": "edit", "scope": "all"},
    )
    assert resp.status_code == 400


def test_batch_edit_all_keeps_installments_in_their_own_months(client):
    card = _card(client)
    created = _buy_tv(client, card)

    resp = client.post(
        f"/api/transactions/{created[1]['id']}/batch",
        json={
            "action": "edit",
            "scope": "all",
            "patch": {"description": "OLED TV", "purchase_date": "2025-03-01"},
        },
    )
    assert resp.status_code == 200

    group = client.get(f"/api/transactions/group/{created[0]['group_id']}").json()
    assert [row["description"] for row in group] == [
        "OLED TV (1/3)",
        "OLED TV (2/3)",
        "OLED TV (3/3)",
    ]
    assert {row["purchase_date"] for row in group} == {"2025-01-28"}
    assert [row["billing_date"] for row in group] == [
        "2025-02-28",
        "2025-03-28",
        "2025-04-28",
    ]


def test_batch_on_unknown_transaction_is_404(client):
    resp = client.post(
        "/api/transactions/missing/batch", json={"action": "pay", "scope": "single"}
    )
    assert resp.status_code == 404


def test_pay_invoice_marks_card_entries_paid(client):
    card = _card(client)
    _buy_tv(client, card)

    resp = client.post(
        f"/api/cards/{card['id']}/invoice/pay", json={"month": 3, "year": 2025}
    )
    assert resp.status_code == 200
    assert len(resp.json()["succeeded"]) == 1

    invoice = client.get(
        f"/api/cards/{card['id']}/invoice", params={"month": 3, "year": 2025}
    ).json()
    assert invoice["paid"] is True
    assert invoice["total_cents"] == 10000
    assert invoice["window"]["period_start"] == "2025-02-05"
    assert invoice["window"]["period_end"] == "2025-03-04"


def test_calendar_markers(client):
    card = _card(client)
    _buy_tv(client, card)

    data = client.get("/api/calendar", params={"month": 3, "year": 2025}).json()
    assert data["days"] == [{"day": 28, "has_pending": True}]
    assert data["totals"] == {"pending_cents": 10000, "paid_cents": 0}


def test_patch_and_delete_single_transaction(client):
    created = client.post(
        "/api/transactions",
        json={
            "description": "Coffee",
            "amount_cents": 450,
            "type": "expense",
            "purchase_date": "2025-03-04",
            "billing_date": "2025-03-04",
        },
    ).json()

    resp = client.patch(f"/api/transactions/{created['id']}", json={"paid": True})
    assert resp.json()["paid"] is True
    assert resp.json()["description"] == "Coffee"

    assert client.delete(f"/api/transactions/{created['id']}").status_code == 204
    assert client.patch(
        f"/api/transactions/{created['id']}", json={"paid": False}
    ).status_code == 404


def test_create_transaction_derives_card_billing_date(client):
    card = _card(client)

    resp = client.post(
        "/api/transactions",
        json={
            "description": "Shoes",
            "amount_cents": 12000,
            "type": "expense",
            "purchase_date": "2025-01-28",
            "billing_date": "2025-01-28",
            "card_id": card["id"],
            "payment_method": "CREDIT_CARD",
        },
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["billing_date"] == "2025-02-28"

    resp = client.patch(
        f"/api/transactions/{created['id']}", json={"billing_date": "2025-01-02"}
    )
    assert resp.json()["billing_date"] == "2025-02-28"

    resp = client.patch(
        f"/api/transactions/{created['id']}", json={"purchase_date": "2025-01-03"}
    )
    assert resp.json()["billing_date"] == "2025-01-03"


def test_invalid_month_is_rejected(client):
    resp = client.get("/api/ledger", params={"month": 13, "year": 2025})
    assert resp.status_code == 400

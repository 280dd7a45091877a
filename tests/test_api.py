from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from database import Base
from dates import add_months, local_today, month_end, month_start
from errors import PersistenceFailure
from services import TransactionService


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def _get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = _get_db
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


def _create_series(client, **overrides):
    payload = {
        "date": add_months(month_start(local_today()), -1).isoformat(),
        "type": "expense",
        "amount_cents": 6_000,
        "category": "Streaming",
        "is_recurring": True,
        "frequency": "monthly",
    }
    payload.update(overrides)
    response = client.post("/api/transactions", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_forecast_counts_recurring_master(client):
    _create_series(client, amount_cents=120_000, category="Rent")
    month = local_today().strftime("%Y-%m")
    response = client.get("/api/forecast", params={"month": month})
    assert response.status_code == 200
    data = response.json()
    assert data["month"] == month
    assert data["total_expense_cents"] == 120_000
    assert data["category_totals"] == {"Rent": 120_000}
    assert data["net_forecast_cents"] == -120_000


def test_forecast_rejects_bad_month(client):
    assert client.get("/api/forecast", params={"month": "soon"}).status_code == 400
    assert client.get("/api/forecast/year", params={"year": "99999"}).status_code == 400


def test_transactions_include_ghost_occurrences(client):
    master = _create_series(client)
    today = local_today()
    response = client.get(
        "/api/transactions",
        params={"start": month_start(today).isoformat(), "end": month_end(today).isoformat()},
    )
    assert response.status_code == 200
    items = response.json()["items"]
    assert [(i["date"], i["ghost"], i["recurring_series_id"]) for i in items] == [
        (month_start(today).isoformat(), True, master["id"])
    ]

    response = client.get(
        "/api/transactions",
        params={
            "start": month_start(today).isoformat(),
            "end": month_end(today).isoformat(),
            "ghosts": "0",
        },
    )
    assert response.json()["items"] == []


def test_series_edit_splits_via_api(client):
    master = _create_series(client)
    cutover = add_months(month_start(local_today()), 1)
    response = client.put(
        f"/api/series/{master['id']}/occurrences/{cutover.isoformat()}",
        json={"scope": "series", "amount_cents": 7_500},
    )
    assert response.status_code == 200, response.text
    created = response.json()
    assert created["date"] == cutover.isoformat()
    assert created["amount_cents"] == 7_500
    assert created["is_recurring"] is True

    series = client.get("/api/series").json()["items"]
    assert len(series) == 2
    closed = next(s for s in series if s["id"] == master["id"])
    assert closed["end_date"] == date.fromordinal(cutover.toordinal() - 1).isoformat()


def test_split_validation_errors_map_to_400(client):
    master = _create_series(client)
    response = client.post(
        f"/api/series/{master['id']}/split", json={"cutover": master["date"]}
    )
    assert response.status_code == 400
    assert client.post("/api/series/999/pause").status_code == 404


def test_overpayment_is_rejected_with_both_figures(client):
    response = client.post(
        "/api/debts",
        json={
            "name": "Visa",
            "limit_cents": 200_000,
            "balance_cents": 50_000,
            "interest_rate": "24",
            "min_payment_cents": 10_000,
            "due_date": "2024-03-15",
        },
    )
    assert response.status_code == 201, response.text
    account = response.json()

    response = client.post(
        f"/api/debts/{account['id']}/payments", json={"amount_cents": 60_000}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Payment $600.00 exceeds balance $500.00"

    response = client.post(
        f"/api/debts/{account['id']}/payments",
        json={"amount_cents": 60_000, "override": True, "date": "2024-03-01"},
    )
    assert response.status_code == 201
    assert response.json()["balance_cents"] == 0


def test_unknown_ids_return_404(client):
    assert client.delete("/api/transactions/999").status_code == 404
    assert client.delete("/api/debts/999").status_code == 404


def test_settings_and_reminders(client):
    settings = client.get("/api/settings").json()
    assert settings == {
        "currency": "USD",
        "bill_reminders": True,
        "loan_reminders": True,
        "autopay_alerts": False,
        "loan_notify_days": 3,
    }
    response = client.put("/api/settings", json={**settings, "currency": "eur"})
    assert response.json()["currency"] == "EUR"

    assert client.get("/api/reminders").json() == {"items": []}


def test_legacy_import_and_snapshot_export(client):
    payload = {
        "transactions": [
            {
                "id": "a",
                "amount": "12.50",
                "type": "expense",
                "category": "Fod",
                "date": "2024-01-05",
            }
        ],
        "settings": {"currency": "usd", "notifications": True},
    }
    response = client.post("/api/snapshot/legacy", json=payload)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["transactions"] == 1
    assert body["categories"] == 6
    assert body["warnings"] == ["category 'Fod' matched to 'Food'"]

    snapshot = client.get("/api/snapshot").json()
    assert snapshot["transactions"][0]["category"] == "Food"
    assert snapshot["transactions"][0]["amount_cents"] == 1_250


def test_storage_failure_maps_to_503(client, monkeypatch):
    def failing_create(self, data):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(TransactionService, "create", failing_create)
    response = client.post(
        "/api/transactions",
        json={
            "date": "2024-01-01",
            "type": "expense",
            "amount_cents": 100,
            "category": "Food",
        },
    )
    assert response.status_code == 503
    assert response.json() == {"detail": "Storage unavailable"}


def test_invalid_edits_are_client_errors(client):
    master = _create_series(client)
    on = add_months(month_start(local_today()), 1)
    response = client.put(
        f"/api/series/{master['id']}/occurrences/{on.isoformat()}",
        json={"amount_cents": None},
    )
    assert response.status_code == 400
    assert "amount_cents" in response.json()["detail"]

    response = client.post(
        "/api/transactions",
        json={
            "date": "2024-01-01",
            "type": "expense",
            "amount_cents": 100,
            "category": "   ",
        },
    )
    assert response.status_code == 422

from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import billing  # noqa: E402
import database as db  # noqa: E402
from api import app  # noqa: E402
from plans import build_registry  # noqa: E402
from pricing_defaults import build_default_pricing  # noqa: E402

UTC = datetime.timezone.utc
T0 = datetime.datetime(2025, 6, 2, 2, 0, tzinfo=UTC)


def _at(minutes: int) -> str:
    return (T0 + datetime.timedelta(minutes=minutes)).isoformat()


@pytest.fixture()
def client(monkeypatch):
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", sessionmaker(bind=engine, expire_on_commit=False, future=True))
    monkeypatch.setattr(billing, "_REGISTRY", build_registry(build_default_pricing()))
    with TestClient(app) as test_client:
        yield test_client
    engine.dispose()


def _create_table(client, name: str, area: str = "") -> int:
    response = client.post("/api/v1/tables", json={"name": name, "area": area})
    assert response.status_code == 200
    return response.json()["id"]


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_room_quote_then_checkout(client) -> None:
    table_id = _create_table(client, "森林包廂")
    entered = client.post(f"/api/v1/tables/{table_id}/enter", json={"count": 3, "at": _at(0)})
    assert entered.status_code == 200
    assert [t["label"] for t in entered.json()["tickets"]] == ["A", "B", "C"]

    quote = client.get(f"/api/v1/tables/{table_id}/quote", params={"at": _at(95)})
    assert quote.status_code == 200
    assert quote.json()["total_cents"] == 120000

    checkout = client.post(f"/api/v1/tables/{table_id}/checkout", params={"at": _at(95)})
    assert checkout.status_code == 200
    body = checkout.json()
    assert [charge["price_cents"] for charge in body["charges"]] == [40000, 40000, 40000]
    assert body["session"]["closed_at"] is not None

    again = client.post(f"/api/v1/tables/{table_id}/checkout", params={"at": _at(100)})
    assert again.status_code == 400


def test_teaching_checkout(client) -> None:
    table_id = _create_table(client, "B區包廂", "B區")
    client.post(f"/api/v1/tables/{table_id}/enter", json={"count": 3, "at": _at(0)})
    response = client.post(
        f"/api/v1/tables/{table_id}/checkout",
        params={"teaching": "true", "at": _at(120)},
    )
    body = response.json()
    assert body["mode"] == "teaching"
    assert body["billed_people"] == 7
    assert body["total_cents"] == 7 * 350_00


def test_leave_and_undo(client) -> None:
    table_id = _create_table(client, "A1", "A區")
    entered = client.post(f"/api/v1/tables/{table_id}/enter", json={"count": 2, "at": _at(0)}).json()
    ticket_id = entered["tickets"][1]["id"]

    left = client.post(f"/api/v1/tickets/{ticket_id}/leave", params={"at": _at(61)})
    assert left.json()["price_cents"] == 180_00

    undone = client.post(f"/api/v1/tickets/{ticket_id}/undo")
    assert undone.json()["price_cents"] is None

    oldest = client.post(f"/api/v1/tables/{table_id}/leave-oldest", params={"at": _at(30)})
    assert oldest.json()["label"] == "A"
    assert oldest.json()["auto_ended"] is True


def test_unknown_ticket_is_404(client) -> None:
    assert client.post("/api/v1/tickets/404/leave").status_code == 404


def test_bad_timestamp_is_400(client) -> None:
    table_id = _create_table(client, "A2", "A區")
    response = client.post(f"/api/v1/tables/{table_id}/enter", json={"count": 1, "at": "yesterday"})
    assert response.status_code == 400


def test_missing_plan_is_reported(client, monkeypatch) -> None:
    payload = build_default_pricing()
    payload["bindings"] = []
    monkeypatch.setattr(billing, "_REGISTRY", build_registry(payload))
    table_id = _create_table(client, "A3", "A區")
    client.post(f"/api/v1/tables/{table_id}/enter", json={"count": 1, "at": _at(0)})
    response = client.post(f"/api/v1/tables/{table_id}/checkout", params={"at": _at(30)})
    assert response.status_code == 500
    assert "Pricing configuration error" in response.json()["detail"]

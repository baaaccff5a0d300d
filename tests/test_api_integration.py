"""
Integration tests for the Private Lending API
Tests end-to-end loan workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from private_lending.api import app
from private_lending.api.system import LendingSystem, get_lending_system
from private_lending.config import LendingConfig


LENDER = {"X-User-Email": "lender@example.com"}
BORROWER = {"X-User-Email": "Borrower@Example.com"}
OUTSIDER = {"X-User-Email": "someone@example.com"}


@pytest.fixture
def client():
    """Test client over an in-memory lending system, offline rates and template contracts"""
    system = LendingSystem(LendingConfig(database_url="memory://", exchange_rate_url=""))
    app.dependency_overrides[get_lending_system] = lambda: system

    yield TestClient(app)

    app.dependency_overrides.clear()
    system.close()


def loan_payload(**overrides):
    payload = {
        "lender": {"name": "Christian Kamdem", "email": "lender@example.com", "civility": "M.",
                   "birth_date": "1985-04-12", "birth_place": "Douala"},
        "borrower": {"name": "Marie Dupont", "email": "borrower@example.com", "civility": "Mme"},
        "amount": "1000",
        "currency": "EUR",
        "loan_date": "2026-01-15",
        "repayment_date": "2026-03-17",
        "late_interest_rate": "12",
        "city": "Paris"
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def loan_id(client):
    r = client.post("/loans", json=loan_payload(), headers=LENDER)
    assert r.status_code == 201
    return r.json()["loan"]["id"]


@pytest.fixture
def active_loan_id(client, loan_id):
    r = client.post(f"/loans/{loan_id}/sign", json={"signature": "sig-b"}, headers=BORROWER)
    assert r.status_code == 200
    return loan_id


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_identity_required(self, client):
        assert client.get("/loans").status_code == 401


class TestLoanFlow:
    """End-to-end loan lifecycle"""

    def test_create_loan(self, client):
        r = client.post("/loans", json=loan_payload(), headers=LENDER)

        assert r.status_code == 201
        data = r.json()
        assert data["loan"]["status"] == "pending_borrower"
        assert data["loan"]["has_contract"] is False
        assert data["loan"]["amount"] == "1000"

    def test_typed_amount(self, client):
        r = client.post("/loans", json=loan_payload(amount="1 000,50"), headers=LENDER)

        assert r.status_code == 201
        assert r.json()["loan"]["amount"] == "1000.50"

    def test_only_lender_can_record(self, client):
        r = client.post("/loans", json=loan_payload(), headers=BORROWER)
        assert r.status_code == 403

    def test_provided_contract_is_kept(self, client):
        r = client.post("/loans", json=loan_payload(contract_text="Contrat signé sur papier"),
                        headers=LENDER)

        assert r.json()["loan"]["has_contract"] is True
        r = client.get(f"/loans/{r.json()['loan']['id']}/contract", headers=LENDER)
        assert r.json()["contract_text"] == "Contrat signé sur papier"

    def test_invalid_amount(self, client):
        r = client.post("/loans", json=loan_payload(amount="-3"), headers=LENDER)
        assert r.status_code == 422

    def test_malformed_body(self, client):
        r = client.post("/loans", json={"amount": "10"}, headers=LENDER)
        assert r.status_code == 422

    def test_no_contract_before_signature(self, client, loan_id):
        r = client.get(f"/loans/{loan_id}/contract", headers=BORROWER)

        assert r.status_code == 200
        assert r.json()["contract_text"] is None

    def test_contract_drafted_at_signature(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/sign", headers=BORROWER, json={
            "signature": "sig-b", "city": "Lyon", "country": "France",
            "birth_date": "1990-05-20", "birth_place": "Marseille", "address": "3 place Bellecour, Lyon"
        })
        assert r.status_code == 200
        assert r.json()["has_contract"] is True

        r = client.get(f"/loans/{loan_id}/contract", headers=BORROWER)
        text = r.json()["contract_text"]
        assert text.startswith("RECONNAISSANCE DE DETTE")
        assert "Fait à Lyon, le " in text
        assert "Mme Marie Dupont, né(e) le 20/05/1990 à Marseille" in text
        assert r.json()["city"] == "Lyon"

    def test_invalid_civility_at_signature(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/sign", json={"signature": "sig-b", "civility": "Dr"},
                        headers=BORROWER)

        assert r.status_code == 422
        assert client.get(f"/loans/{loan_id}", headers=LENDER).json()["status"] == "pending_borrower"

    def test_access_control(self, client, loan_id):
        assert client.get(f"/loans/{loan_id}", headers=OUTSIDER).status_code == 403
        assert client.get("/loans/missing", headers=LENDER).status_code == 404

    def test_sign_by_borrower(self, client, active_loan_id):
        r = client.get(f"/loans/{active_loan_id}", headers=LENDER)

        assert r.json()["status"] == "active"
        assert r.json()["signed_date"] is not None

    def test_lender_cannot_sign(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/sign", json={"signature": "x"}, headers=LENDER)
        assert r.status_code == 409

    def test_amount_due(self, client, active_loan_id):
        r = client.get(f"/loans/{active_loan_id}/due", params={"as_of": "2026-03-27"}, headers=BORROWER)

        data = r.json()
        assert data["currency"] == "EUR"
        assert data["days_late"] == 10
        assert data["is_overdue"] is True
        assert data["total_due"] == "1003.29"
        assert data["daily_cost"] == "0.33"

    def test_repayment_cycle(self, client, active_loan_id):
        r = client.post(f"/loans/{active_loan_id}/claim-repayment", headers=BORROWER)
        assert r.json()["status"] == "repayment_pending"

        r = client.post(f"/loans/{active_loan_id}/mark-paid", headers=BORROWER)
        assert r.status_code == 409

        r = client.post(f"/loans/{active_loan_id}/reject-repayment", json={"reason": "Non reçu"},
                        headers=LENDER)
        assert r.json()["status"] == "active"

        r = client.post(f"/loans/{active_loan_id}/mark-paid", headers=LENDER)
        assert r.json()["status"] == "paid"

    def test_history(self, client, active_loan_id):
        r = client.get(f"/loans/{active_loan_id}/history", headers=BORROWER)

        assert r.status_code == 200
        assert [e["event_type"] for e in r.json()["events"]] == [
            "loan_created", "loan_signed", "contract_generated"
        ]
        assert r.json()["events"][1]["user_id"] == "borrower@example.com"
        assert client.get(f"/loans/{active_loan_id}/history", headers=OUTSIDER).status_code == 403

    def test_history_without_audit(self):
        system = LendingSystem(LendingConfig(database_url="memory://", exchange_rate_url="",
                                             enable_audit_logging=False))
        app.dependency_overrides[get_lending_system] = lambda: system
        try:
            client = TestClient(app)
            loan_id = client.post("/loans", json=loan_payload(), headers=LENDER).json()["loan"]["id"]

            assert client.get(f"/loans/{loan_id}/history", headers=LENDER).json()["events"] == []
        finally:
            app.dependency_overrides.clear()
            system.close()

    def test_list_loans(self, client, loan_id):
        assert [loan["id"] for loan in client.get("/loans", headers=LENDER).json()["loans"]] == [loan_id]
        assert [loan["id"] for loan in client.get("/loans", headers=BORROWER).json()["loans"]] == [loan_id]
        assert client.get("/loans", headers=OUTSIDER).json()["loans"] == []


class TestNotificationFlow:

    def test_reminders_at_session_start(self, client, active_loan_id):
        r = client.post("/notifications/evaluate", params={"as_of": "2026-03-10"}, headers=BORROWER)
        created = r.json()["created"]
        assert [n["title"] for n in created] == ["Rappel J-7"]

        r = client.post("/notifications/evaluate", params={"as_of": "2026-03-10"}, headers=BORROWER)
        assert r.json()["created"] == []

        r = client.get("/notifications", headers=BORROWER)
        assert r.json()["unread"] == 1
        assert client.get("/notifications/unread-count", headers=BORROWER).json() == {"unread": 1}

        notification_id = created[0]["id"]
        assert client.post(f"/notifications/{notification_id}/read", headers=LENDER).status_code == 404

        r = client.post(f"/notifications/{notification_id}/read", headers=BORROWER)
        assert r.json()["read"] is True
        assert client.get("/notifications", headers=BORROWER).json()["unread"] == 0
        assert client.get("/notifications/unread-count", headers=BORROWER).json() == {"unread": 0}

    def test_lender_gets_no_reminders(self, client, active_loan_id):
        r = client.post("/notifications/evaluate", params={"as_of": "2026-03-10"}, headers=LENDER)
        assert r.json()["created"] == []


class TestDashboard:

    def test_summary(self, client, active_loan_id):
        client.post("/loans", json=loan_payload(amount="500", currency="USD",
                                                borrower_signature="sig-b"), headers=LENDER)

        data = client.get("/dashboard/summary", headers=LENDER).json()

        assert data["currency"] == "EUR"
        assert data["outstanding"] == "1460.00"
        assert data["recovered"] == "0.00"
        assert data["estimated"] is True
        assert data["estimated_currencies"] == ["USD"]
        assert data["loan_count"] == 2

    def test_pending_loans_are_not_counted(self, client, loan_id):
        data = client.get("/dashboard/summary", headers=LENDER).json()

        assert data["outstanding"] == "0.00"
        assert data["estimated"] is False

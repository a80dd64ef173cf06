"""
Integration tests for the Microfinance Loan API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from microfinance.api import create_app
from microfinance.api.system import MicrofinanceSystem, set_system
from microfinance.config import MicrofinanceConfig


@pytest.fixture
def system():
    """In-memory loan engine installed as the process-wide system"""
    test_system = MicrofinanceSystem(config=MicrofinanceConfig(storage_backend="memory"))
    set_system(test_system)
    yield test_system
    set_system(None)


@pytest.fixture
def client(system):
    return TestClient(create_app())


def create_loan(client, **overrides):
    payload = {
        "client_id": "CLIENT001",
        "amount": "1000",
        "term_months": 12,
        "loan_type": "business",
        "disbursement_date": "2024-01-15"
    }
    payload.update(overrides)
    r = client.post("/loans", json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def active_loan(client, **overrides):
    loan_id = create_loan(client, **overrides)["loan"]["id"]
    assert client.post(f"/loans/{loan_id}/approve").status_code == 200
    assert client.post(f"/loans/{loan_id}/disburse").status_code == 200
    assert client.post(f"/loans/{loan_id}/activate").status_code == 200
    return loan_id


class TestHealthEndpoints:
    """Test basic health and reference endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["service"] == "microfinance_loan_api"

    def test_loan_types(self, client):
        r = client.get("/loan-types")
        assert r.status_code == 200
        types = {t["name"]: t for t in r.json()["loan_types"]}
        assert set(types) == {"personal", "excess", "business", "emergency", "micro"}
        assert types["emergency"]["interest_rate"] == "16"


class TestScheduleCalculation:
    """Test the schedule preview endpoint"""

    def test_declining_balance_preview(self, client):
        r = client.post("/loans/calculate-schedule", json={
            "principal": "1000",
            "interest_rate": "12",
            "term_months": 12,
            "start_date": "2024-01-15"
        })
        assert r.status_code == 200
        data = r.json()
        assert data["monthly_payment"] == "88.85"
        assert data["interest_method"] == "declining_balance"
        assert len(data["schedule"]) == 12
        assert data["schedule"][0]["interest_amount"] == "10.00"
        assert data["schedule"][0]["due_date"] == "2024-02-15"
        assert data["schedule"][-1]["outstanding_balance"] == "0.00"

    def test_flat_preview(self, client):
        r = client.post("/loans/calculate-schedule", json={
            "principal": "1000",
            "interest_rate": "10",
            "term_months": 10,
            "interest_method": "flat"
        })
        assert r.status_code == 200
        assert r.json()["total_interest"] == "100.00"
        assert r.json()["monthly_payment"] == "110.00"

    def test_preview_persists_nothing(self, client, system):
        client.post("/loans/calculate-schedule", json={
            "principal": "1000", "interest_rate": "12", "term_months": 12
        })
        assert system.storage.count("loans") == 0

    def test_invalid_principal(self, client):
        r = client.post("/loans/calculate-schedule", json={
            "principal": "0", "interest_rate": "12", "term_months": 12
        })
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_loan_parameters"

    def test_missing_field(self, client):
        r = client.post("/loans/calculate-schedule", json={"principal": "1000"})
        assert r.status_code == 422


class TestLoanOrigination:
    """Test loan creation and retrieval"""

    def test_create_business_loan(self, client):
        data = create_loan(client, loan_purpose="Market stall stock")

        loan = data["loan"]
        assert loan["loan_number"] == "LN000001"
        assert loan["status"] == "pending"
        assert loan["upfront_amount"] == "100.00"
        assert loan["principal_amount"] == "900.00"
        assert loan["currency"] == "USD"
        assert loan["loan_purpose"] == "Market stall stock"
        assert "repayment_schedule" not in loan

        assert len(data["repayment_schedule"]) == 12
        assert data["repayment_schedule"][0]["interest_amount"] == "3.75"
        assert data["degraded"] is False
        assert data["warnings"] == []

    def test_create_prepaid_personal_loan(self, client):
        data = create_loan(client, loan_type="personal")

        assert data["schedule_summary"]["total_interest"] == "100.00"
        assert data["schedule_summary"]["monthly_payment"] == "75.00"
        assert data["repayment_schedule"][0]["interest_amount"] == "0.00"

    def test_loan_numbers_increase(self, client):
        create_loan(client)
        assert create_loan(client)["loan"]["loan_number"] == "LN000002"

    def test_invalid_currency(self, client):
        r = client.post("/loans", json={
            "client_id": "CLIENT001", "amount": "1000", "term_months": 12, "currency": "EUR"
        })
        assert r.status_code == 400

    def test_invalid_disbursement_date(self, client):
        r = client.post("/loans", json={
            "client_id": "CLIENT001", "amount": "1000", "term_months": 12,
            "disbursement_date": "15/01/2024"
        })
        assert r.status_code == 400

    def test_upfront_consumes_amount(self, client):
        r = client.post("/loans", json={
            "client_id": "CLIENT001", "amount": "1000", "term_months": 12,
            "upfront_percentage": "100"
        })
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_loan_parameters"

    def test_huge_amount_rejected(self, client):
        r = client.post("/loans", json={"client_id": "CLIENT001", "amount": "1e30", "term_months": 12})
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_loan_parameters"

    def test_amount_with_trailing_text_rejected(self, client, system):
        r = client.post("/loans", json={"client_id": "CLIENT001", "amount": "12abc", "term_months": 12})
        assert r.status_code == 400
        assert system.storage.count("loans") == 0

    def test_get_loan(self, client):
        loan_id = create_loan(client)["loan"]["id"]

        r = client.get(f"/loans/{loan_id}")
        assert r.status_code == 200
        assert r.json()["id"] == loan_id

    def test_get_unknown_loan(self, client):
        r = client.get("/loans/missing")
        assert r.status_code == 404
        assert r.json()["error"] == "loan_not_found"

    def test_get_schedule(self, client):
        loan_id = create_loan(client)["loan"]["id"]

        r = client.get(f"/loans/{loan_id}/schedule")
        assert r.status_code == 200
        data = r.json()
        assert data["loan"]["loan_number"] == "LN000001"
        assert data["schedule"][0]["status"] == "pending"
        assert data["schedule"][0]["paid_amount"] == "0.00"
        assert data["schedule"][0]["payment_date"] is None

    def test_client_loans(self, client):
        create_loan(client)
        create_loan(client, client_id="CLIENT002")

        r = client.get("/clients/CLIENT001/loans")
        assert r.status_code == 200
        assert [loan["client_id"] for loan in r.json()["loans"]] == ["CLIENT001"]


class TestLoanListing:
    """Test GET /loans"""

    def test_list_with_pagination(self, client):
        for _ in range(3):
            create_loan(client)

        r = client.get("/loans", params={"page": 1, "limit": 2})
        assert r.status_code == 200
        data = r.json()
        assert [loan["loan_number"] for loan in data["loans"]] == ["LN000003", "LN000002"]
        assert data["pagination"] == {"total": 3, "page": 1, "limit": 2, "pages": 2}
        assert "repayment_schedule" not in data["loans"][0]

        second_page = client.get("/loans", params={"page": 2, "limit": 2}).json()
        assert [loan["loan_number"] for loan in second_page["loans"]] == ["LN000001"]

    def test_filters(self, client):
        create_loan(client)
        create_loan(client, client_id="CLIENT002", loan_type="emergency")
        active_loan(client, client_id="CLIENT002")

        def numbers(**params):
            return [loan["loan_number"] for loan in client.get("/loans", params=params).json()["loans"]]

        assert numbers(status="active") == ["LN000003"]
        assert numbers(loan_type="emergency") == ["LN000002"]
        assert numbers(client_id="CLIENT002") == ["LN000003", "LN000002"]
        assert numbers(search="0001") == ["LN000001"]

    def test_empty_list(self, client):
        data = client.get("/loans").json()
        assert data["loans"] == []
        assert data["pagination"]["pages"] == 0

    def test_unknown_status(self, client):
        r = client.get("/loans", params={"status": "sleeping"})
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_loan_parameters"

    def test_invalid_page(self, client):
        assert client.get("/loans", params={"page": 0}).status_code == 422


class TestLoanUpdate:
    """Test PUT /loans/{id}"""

    def test_update_terms(self, client):
        loan_id = create_loan(client)["loan"]["id"]

        r = client.put(f"/loans/{loan_id}", json={"amount": "2000", "term_months": 6})
        assert r.status_code == 200, r.text
        data = r.json()
        assert data["loan"]["amount"] == "2000.00"
        assert data["loan"]["principal_amount"] == "1800.00"
        assert data["loan"]["term_months"] == 6
        assert len(data["repayment_schedule"]) == 6
        assert data["repayment_schedule"][0]["interest_amount"] == "7.50"

        schedule = client.get(f"/loans/{loan_id}/schedule").json()
        assert len(schedule["schedule"]) == 6
        assert schedule["loan"]["monthly_payment"] == data["loan"]["monthly_payment"]

    def test_active_loan_cannot_change(self, client):
        loan_id = active_loan(client)

        r = client.put(f"/loans/{loan_id}", json={"amount": "2000"})
        assert r.status_code == 400
        assert r.json()["error"] == "loan_not_editable"

    def test_empty_update(self, client):
        loan_id = create_loan(client)["loan"]["id"]
        assert client.put(f"/loans/{loan_id}", json={}).status_code == 400

    def test_unknown_loan(self, client):
        assert client.put("/loans/missing", json={"amount": "2000"}).status_code == 404


class TestReceipts:
    """Test GET /receipts/repayment/{id}"""

    def test_repayment_receipt(self, client, system):
        system.repository.save_client("CLIENT001", "Jane", "Doe")
        loan_id = active_loan(client)
        paid = client.post(f"/loans/{loan_id}/repay", json={
            "amount": "100", "payment_method": "mobile_money", "payment_date": "2024-02-10"
        }).json()

        r = client.get(f"/receipts/repayment/{paid['repayment']['id']}")
        assert r.status_code == 200
        receipt = r.json()["receipt"]
        assert receipt == paid["receipt"]
        assert receipt["transaction_number"] == paid["transaction"]["transaction_number"]
        assert receipt["client_name"] == "Jane Doe"
        assert receipt["date"] == "2024-02-10"

    def test_unpaid_repayment(self, client, system):
        loan_id = active_loan(client)
        unpaid = system.repository.find_loan_repayments(loan_id)[0]

        r = client.get(f"/receipts/repayment/{unpaid.id}")
        assert r.status_code == 404
        assert r.json()["error"] == "repayment_not_found"

    def test_unknown_repayment(self, client):
        assert client.get("/receipts/repayment/missing").status_code == 404


class TestLoanLifecycle:
    """Test status transitions"""

    def test_approve_disburse_activate(self, client):
        loan_id = create_loan(client)["loan"]["id"]

        assert client.post(f"/loans/{loan_id}/approve").json()["loan"]["status"] == "approved"
        r = client.post(f"/loans/{loan_id}/disburse", json={"disbursement_date": "2024-01-20"})
        assert r.json()["loan"]["status"] == "disbursed"
        assert r.json()["loan"]["disbursement_date"] == "2024-01-20"
        assert client.post(f"/loans/{loan_id}/activate").json()["loan"]["status"] == "active"

    def test_cancel_pending_loan(self, client):
        loan_id = create_loan(client)["loan"]["id"]

        r = client.post(f"/loans/{loan_id}/cancel", json={"reason": "Client withdrew"})
        assert r.status_code == 200
        assert r.json()["loan"]["status"] == "cancelled"

    def test_invalid_transition(self, client):
        loan_id = active_loan(client)

        r = client.post(f"/loans/{loan_id}/cancel")
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_status_transition"


class TestRepayments:
    """Test the repayment endpoint"""

    def test_repayment(self, client, system):
        system.repository.save_client("CLIENT001", "Jane", "Doe")
        assert client.post("/savings", json={"client_id": "CLIENT001"}).status_code == 201
        assert client.post("/savings", json={"client_id": "CLIENT002"}).status_code == 201
        loan_id = active_loan(client)

        r = client.post(f"/loans/{loan_id}/repay", json={
            "amount": "100",
            "payment_method": "mobile_money",
            "payment_date": "2024-02-10"
        })
        assert r.status_code == 200, r.text
        data = r.json()

        assert data["receipt"]["interest"] == "3.75"
        assert data["receipt"]["principal"] == "96.25"
        assert data["receipt"]["client_name"] == "Jane Doe"
        assert data["receipt"]["payment_method"] == "mobile_money"
        assert data["transaction"]["transaction_type"] == "loan_payment"
        assert data["transaction"]["amount"] == "100.00"
        assert data["repayment"]["status"] == "completed"
        assert data["loan"]["status"] == "active"
        assert data["warnings"] == []

        # Personal credit to the payer plus a general share to each account
        interest_types = [t["transaction_type"] for t in data["interest_transactions"]]
        assert interest_types == ["personal_interest_payment", "general_interest", "general_interest"]

        schedule = client.get(f"/loans/{loan_id}/schedule").json()["schedule"]
        assert schedule[0]["status"] == "completed"
        assert schedule[0]["paid_amount"] == "100.00"
        assert schedule[0]["payment_date"] == "2024-02-10"

    def test_repayment_updates_savings(self, client):
        account = client.post("/savings", json={"client_id": "CLIENT001"}).json()
        loan_id = active_loan(client)

        client.post(f"/loans/{loan_id}/repay", json={"amount": "100"})

        r = client.get(f"/savings/{account['id']}")
        assert r.status_code == 200
        # 3.75 personal credit plus the whole 3.75 general share
        assert r.json()["balance"] == "7.50"

    def test_pending_loan_not_payable(self, client):
        loan_id = create_loan(client)["loan"]["id"]

        r = client.post(f"/loans/{loan_id}/repay", json={"amount": "50"})
        assert r.status_code == 400
        assert r.json()["error"] == "loan_not_payable"
        assert r.json()["detail"] == "Loan is not active for repayment"

    def test_overpayment(self, client):
        loan_id = active_loan(client)

        r = client.post(f"/loans/{loan_id}/repay", json={"amount": "1000000"})
        assert r.status_code == 400
        assert r.json()["error"] == "payment_exceeds_balance"

    def test_invalid_amount(self, client):
        loan_id = active_loan(client)

        r = client.post(f"/loans/{loan_id}/repay", json={"amount": "abc"})
        assert r.status_code == 400
        assert r.json()["detail"] == "Valid payment amount is required"

    def test_amount_with_trailing_text(self, client, system):
        loan_id = active_loan(client)

        for amount in ("12abc", "5 dollars or 7"):
            r = client.post(f"/loans/{loan_id}/repay", json={"amount": amount})
            assert r.status_code == 400
            assert r.json()["error"] == "invalid_payment_amount"
        assert system.storage.count("transactions") == 0

    def test_huge_amount_exceeds_balance(self, client):
        loan_id = active_loan(client)

        r = client.post(f"/loans/{loan_id}/repay", json={"amount": "1e30"})
        assert r.status_code == 400
        assert r.json()["error"] == "payment_exceeds_balance"

    def test_invalid_payment_method(self, client):
        loan_id = active_loan(client)

        r = client.post(f"/loans/{loan_id}/repay", json={"amount": "50", "payment_method": "barter"})
        assert r.status_code == 400

    def test_unknown_loan(self, client):
        r = client.post("/loans/missing/repay", json={"amount": "50"})
        assert r.status_code == 404

    def test_missing_amount(self, client):
        loan_id = active_loan(client)
        assert client.post(f"/loans/{loan_id}/repay", json={}).status_code == 422


class TestSavingsAndClients:

    def test_open_savings_account(self, client):
        r = client.post("/savings", json={"client_id": "CLIENT001", "opening_balance": "25"})
        assert r.status_code == 201
        data = r.json()
        assert data["account_number"] == "SAV000001"
        assert data["balance"] == "25.00"
        assert data["status"] == "active"

    def test_invalid_savings_currency(self, client):
        r = client.post("/savings", json={"client_id": "CLIENT001", "currency": "EUR"})
        assert r.status_code == 400

    def test_unknown_savings_account(self, client):
        assert client.get("/savings/missing").status_code == 404

    def test_create_client(self, client, system):
        r = client.post("/clients", json={
            "client_id": "CLIENT001", "first_name": "Jane", "last_name": "Doe", "user_id": "USER1"
        })
        assert r.status_code == 201
        assert system.repository.find_client("CLIENT001")["user_id"] == "USER1"


class TestErrorHandling:

    def test_unexpected_error_is_hidden(self, system):
        def broken(loan_id):
            raise RuntimeError("database exploded")

        system.loan_manager.get_loan = broken
        client = TestClient(create_app(), raise_server_exceptions=False)

        r = client.get("/loans/any")
        assert r.status_code == 500
        assert r.json() == {"detail": "Internal server error"}

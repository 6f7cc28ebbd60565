"""
Tests de cajas diarias y cajas por vendedor
"""
from decimal import Decimal
from uuid import uuid4

from settlement.modules.cash.models import CashMovement
from settlement.modules.payments.models import PaymentStatus


def _movement(client, box_id, headers, type_, amount, method="cash"):
    return client.post(
        f"/api/v1/cash-boxes/{box_id}/movements",
        json={"type": type_, "amount": amount, "payment_method": method},
        headers=headers,
    )


class TestCashBox:

    def test_open_cash_box(self, client, auth_headers):
        response = client.post("/api/v1/cash-boxes", json={"opening_balance": "100"}, headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["cash_box"]["status"] == "open"
        assert Decimal(body["cash_box"]["opening_balance"]) == Decimal("100")
        assert body["associated_movements"] == 0

        current = client.get("/api/v1/cash-boxes/current", headers=auth_headers)
        assert current.json()["id"] == body["cash_box"]["id"]

    def test_second_open_same_day_conflicts(self, client, auth_headers):
        client.post("/api/v1/cash-boxes", json={}, headers=auth_headers)
        response = client.post("/api/v1/cash-boxes", json={}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "CASH_BOX_ALREADY_OPEN"

    def test_no_current_box(self, client, auth_headers):
        response = client.get("/api/v1/cash-boxes/current", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "CASH_BOX_NOT_OPEN"

    def test_opening_attaches_confirmed_payments(self, client, auth_headers, sale, make_payment, db_session):
        payment = make_payment(sale, amount="300", status=PaymentStatus.CONFIRMED)
        assert client.get("/api/v1/cash-boxes/pending-payments", headers=auth_headers).json()["pending_count"] == 1

        response = client.post("/api/v1/cash-boxes", json={}, headers=auth_headers)

        assert response.json()["associated_movements"] == 1
        assert client.get("/api/v1/cash-boxes/pending-payments", headers=auth_headers).json()["pending_count"] == 0
        movement = db_session.query(CashMovement).filter(CashMovement.payment_id == payment.id).one()
        assert movement.reference == f"Venta #{str(sale.id)[:8]}"

    def test_close_computes_difference(self, client, auth_headers):
        box_id = client.post("/api/v1/cash-boxes", json={"opening_balance": "100"},
                             headers=auth_headers).json()["cash_box"]["id"]
        _movement(client, box_id, auth_headers, "income", "500")
        _movement(client, box_id, auth_headers, "income", "200", method="card")
        _movement(client, box_id, auth_headers, "expense", "50")

        detail = client.get(f"/api/v1/cash-boxes/{box_id}", headers=auth_headers).json()
        assert Decimal(detail["totals"]["expected_balance"]) == Decimal("750")
        assert len(detail["movements"]) == 3

        response = client.post(f"/api/v1/cash-boxes/{box_id}/close", json={"closing_balance": "740"},
                               headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["cash_box"]["status"] == "closed"
        assert Decimal(body["closure"]["expected_amount"]) == Decimal("750")
        assert Decimal(body["closure"]["difference"]) == Decimal("-10")
        assert Decimal(body["closure"]["total_cash"]) == Decimal("500")
        assert Decimal(body["closure"]["total_card"]) == Decimal("200")
        assert Decimal(body["closure"]["total_expense"]) == Decimal("50")

    def test_closed_box_rejects_changes(self, client, auth_headers):
        box_id = client.post("/api/v1/cash-boxes", json={}, headers=auth_headers).json()["cash_box"]["id"]
        client.post(f"/api/v1/cash-boxes/{box_id}/close", json={"closing_balance": "0"}, headers=auth_headers)

        again = client.post(f"/api/v1/cash-boxes/{box_id}/close", json={"closing_balance": "0"}, headers=auth_headers)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "CASH_BOX_ALREADY_CLOSED"

        movement = _movement(client, box_id, auth_headers, "income", "10")
        assert movement.status_code == 409
        assert movement.json()["detail"]["code"] == "CASH_PERIOD_CLOSED"

    def test_reopen_after_close(self, client, auth_headers):
        box_id = client.post("/api/v1/cash-boxes", json={}, headers=auth_headers).json()["cash_box"]["id"]
        client.post(f"/api/v1/cash-boxes/{box_id}/close", json={"closing_balance": "0"}, headers=auth_headers)

        response = client.post("/api/v1/cash-boxes", json={}, headers=auth_headers)
        assert response.status_code == 201
        assert response.json()["cash_box"]["id"] != box_id

    def test_negative_opening_balance_rejected(self, client, auth_headers):
        response = client.post("/api/v1/cash-boxes", json={"opening_balance": "-1"}, headers=auth_headers)
        assert response.status_code == 422


class TestCashRegister:

    def test_open_register(self, client, auth_headers, seller):
        response = client.post("/api/v1/cash-registers/open", json={"seller_id": str(seller.id), "opening_amount": "50"},
                               headers=auth_headers)
        assert response.status_code == 201
        assert response.json()["cash_register"]["seller_id"] == str(seller.id)

        again = client.post("/api/v1/cash-registers/open", json={"seller_id": str(seller.id)}, headers=auth_headers)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "CASH_REGISTER_ALREADY_OPEN"

    def test_unknown_seller(self, client, auth_headers):
        response = client.post("/api/v1/cash-registers/open", json={"seller_id": str(uuid4())}, headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "SELLER_NOT_FOUND"

    def test_seller_payment_goes_to_register(self, client, auth_headers, seller, sale):
        register_id = client.post(
            "/api/v1/cash-registers/open", json={"seller_id": str(seller.id), "opening_amount": "50"},
            headers=auth_headers,
        ).json()["cash_register"]["id"]

        payment = client.post(
            f"/api/v1/sales/{sale.id}/payments",
            json={"amount": "300", "method": "cash", "seller_id": str(seller.id)},
            headers=auth_headers,
        )
        assert payment.status_code == 201

        detail = client.get(f"/api/v1/cash-registers/{register_id}", headers=auth_headers).json()
        assert len(detail["movements"]) == 1
        assert detail["movements"][0]["payment_id"] == payment.json()["payment"]["id"]
        assert Decimal(detail["totals"]["expected_balance"]) == Decimal("350")

        closed = client.post(f"/api/v1/cash-registers/{register_id}/close", json={"closing_amount": "350"},
                             headers=auth_headers)
        assert closed.status_code == 200
        assert Decimal(closed.json()["closure"]["difference"]) == Decimal("0")
        assert closed.json()["cash_register"]["status"] == "closed"

    def test_seller_without_register(self, client, auth_headers, seller, sale, open_box):
        response = client.post(
            f"/api/v1/sales/{sale.id}/payments",
            json={"amount": "300", "method": "cash", "seller_id": str(seller.id)},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "CASH_REGISTER_NOT_OPEN"

    def test_double_close(self, client, auth_headers, seller):
        register_id = client.post("/api/v1/cash-registers/open", json={"seller_id": str(seller.id)},
                                  headers=auth_headers).json()["cash_register"]["id"]
        client.post(f"/api/v1/cash-registers/{register_id}/close", json={"closing_amount": "0"}, headers=auth_headers)
        again = client.post(f"/api/v1/cash-registers/{register_id}/close", json={"closing_amount": "0"},
                            headers=auth_headers)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "CASH_REGISTER_ALREADY_CLOSED"

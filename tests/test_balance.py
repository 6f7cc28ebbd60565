"""
Tests del recálculo de saldo de ventas
"""
from decimal import Decimal

from settlement.core.config import settings
from settlement.modules.payments.models import PaymentStatus
from settlement.modules.sales.balance import SaleBalanceService
from settlement.modules.sales.models import SaleStatus


class TestSaleBalance:

    def test_confirmed_payments_mark_sale_paid(self, db_session, sale, make_payment):
        make_payment(sale, amount="600", status=PaymentStatus.CONFIRMED)
        make_payment(sale, amount="400", status=PaymentStatus.CONFIRMED)

        result = SaleBalanceService(db_session).recalc_sale_balance(sale.id)

        assert result.paid_amount == Decimal("1000.00")
        assert result.balance_amount == Decimal("0.00")
        assert result.is_paid
        assert result.status == SaleStatus.PAID
        db_session.refresh(sale)
        assert sale.payment_completed_at is not None

    def test_only_confirmed_payments_count(self, db_session, sale, make_payment):
        make_payment(sale, amount="300", status=PaymentStatus.CONFIRMED)
        make_payment(sale, amount="200", status=PaymentStatus.PENDING)
        make_payment(sale, amount="100", status=PaymentStatus.FAILED)
        make_payment(sale, amount="50", status=PaymentStatus.REFUNDED)

        result = SaleBalanceService(db_session).recalc_sale_balance(sale.id)

        assert result.paid_amount == Decimal("300.00")
        assert result.paid_amount + result.balance_amount == result.total_amount
        assert result.status == SaleStatus.CONFIRMED

    def test_recalculation_is_idempotent(self, db_session, sale, make_payment):
        make_payment(sale, amount="250", status=PaymentStatus.CONFIRMED)
        service = SaleBalanceService(db_session)

        first = service.recalc_sale_balance(sale.id)
        second = service.recalc_sale_balance(sale.id)

        assert first.updated is True
        assert second.updated is False
        assert first.model_dump(exclude={"updated"}) == second.model_dump(exclude={"updated"})

    def test_paid_sale_stays_paid_after_refund(self, db_session, sale, make_payment):
        refunded = make_payment(sale, amount="600", status=PaymentStatus.CONFIRMED)
        make_payment(sale, amount="400", status=PaymentStatus.CONFIRMED)
        service = SaleBalanceService(db_session)
        service.recalc_sale_balance(sale.id)

        refunded.status = PaymentStatus.REFUNDED
        db_session.commit()
        result = service.recalc_sale_balance(sale.id)

        assert result.paid_amount == Decimal("400.00")
        assert result.balance_amount == Decimal("600.00")
        assert result.status == SaleStatus.PAID

    def test_paid_sale_reopens_when_enabled(self, db_session, sale, make_payment, monkeypatch):
        monkeypatch.setattr(settings, "REOPEN_SALE_ON_UNDERPAYMENT", True)
        payment = make_payment(sale, amount="1000", status=PaymentStatus.CONFIRMED)
        service = SaleBalanceService(db_session)
        service.recalc_sale_balance(sale.id)

        payment.status = PaymentStatus.REFUNDED
        db_session.commit()
        result = service.recalc_sale_balance(sale.id)

        assert result.status == SaleStatus.CONFIRMED
        db_session.refresh(sale)
        assert sale.payment_completed_at is None


class TestBalanceEndpoints:

    def test_get_balance(self, client, auth_headers, sale):
        response = client.get(f"/api/v1/sales/{sale.id}/balance", headers=auth_headers)
        assert response.status_code == 200
        assert Decimal(response.json()["balance_amount"]) == Decimal("1000")

    def test_recalculate_endpoint(self, client, auth_headers, sale, make_payment):
        make_payment(sale, amount="1000", status=PaymentStatus.CONFIRMED)
        first = client.post(f"/api/v1/sales/{sale.id}/recalculate", headers=auth_headers)
        second = client.post(f"/api/v1/sales/{sale.id}/recalculate", headers=auth_headers)

        assert first.json()["updated"] is True
        assert first.json()["status"] == "paid"
        assert second.json()["updated"] is False

    def test_unknown_sale(self, client, auth_headers):
        response = client.get("/api/v1/sales/00000000-0000-0000-0000-000000000000/balance", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "SALE_NOT_FOUND"

"""
Tests de conciliación de webhooks
"""
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement.modules.cash.models import CashMovement
from settlement.modules.cash.service import PaymentCashLinker
from settlement.modules.payments.models import (
    Payment, PaymentEvent, PaymentEventAction, PaymentMethodType, PaymentProvider, PaymentStatus
)
from settlement.modules.sales.balance import SaleBalanceService
from settlement.modules.webhooks.service import PAYMENT_NOT_FOUND_MESSAGE


def _webhook_url(tenant_id, provider="mercadopago"):
    return f"/api/v1/webhooks/{provider}?tenant_id={tenant_id}"


def _approved(payment_id="999", external_reference="pref-1", status="approved"):
    return {
        "type": "payment",
        "data": {"id": payment_id, "status": status, "external_reference": external_reference},
    }


@pytest.fixture
def mp_config(make_gateway_config):
    return make_gateway_config("mercadopago", credentials={"access_token": "TEST-TOKEN"})


@pytest.fixture
def mp_payment(sale, make_payment):
    return make_payment(
        sale, amount="1000", provider=PaymentProvider.MERCADOPAGO,
        method=PaymentMethodType.MERCADOPAGO, external_reference="pref-1",
    )


class TestWebhookReconciliation:

    def test_approved_webhook_confirms_payment(self, client, tenant_id, mp_config, mp_payment, db_session):
        response = client.post(_webhook_url(tenant_id), json=_approved())

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] is True
        assert body["previous_status"] == "pending"
        assert body["status"] == "confirmed"
        assert body["balance"]["is_paid"] is True

        db_session.refresh(mp_payment)
        assert mp_payment.status == PaymentStatus.CONFIRMED
        assert mp_payment.gateway_metadata["gateway_payment_id"] == "999"
        assert mp_payment.gateway_metadata["last_webhook"]["status"] == "confirmed"
        assert len(mp_payment.gateway_metadata["webhook_history"]) == 1

    def test_repeated_webhook_produces_single_transition(self, client, tenant_id, mp_config, mp_payment, db_session):
        responses = [client.post(_webhook_url(tenant_id), json=_approved()) for _ in range(3)]

        assert all(r.status_code == 200 for r in responses)
        assert [r.json()["processed"] for r in responses] == [True, False, False]
        events = db_session.query(PaymentEvent).filter(
            PaymentEvent.payment_id == mp_payment.id,
            PaymentEvent.action == PaymentEventAction.STATUS_CHANGED
        ).all()
        assert len(events) == 1
        assert events[0].actor_type.value == "gateway"
        assert events[0].actor_label == "mercadopago"

    def test_sale_id_as_external_reference(self, client, tenant_id, mp_config, mp_payment, sale):
        response = client.post(_webhook_url(tenant_id), json=_approved(payment_id="123", external_reference=str(sale.id)))
        assert response.json()["payment_id"] == str(mp_payment.id)
        assert response.json()["processed"] is True

    def test_unknown_payment_is_acknowledged(self, client, tenant_id, mp_config):
        response = client.post(_webhook_url(tenant_id), json=_approved(payment_id="1", external_reference="nope"))
        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert response.json()["message"] == PAYMENT_NOT_FOUND_MESSAGE

    def test_out_of_order_webhook_is_ignored(self, client, tenant_id, mp_config, sale, make_payment, db_session):
        payment = make_payment(
            sale, status=PaymentStatus.CONFIRMED, provider=PaymentProvider.MERCADOPAGO,
            method=PaymentMethodType.MERCADOPAGO, external_reference="pref-1",
        )
        response = client.post(_webhook_url(tenant_id), json=_approved(status="rejected"))

        assert response.status_code == 200
        assert response.json()["processed"] is False
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.CONFIRMED

    def test_refund_webhook_recalculates_balance(self, client, tenant_id, mp_config, sale, make_payment):
        make_payment(
            sale, amount="1000", status=PaymentStatus.CONFIRMED, provider=PaymentProvider.MERCADOPAGO,
            method=PaymentMethodType.MERCADOPAGO, external_reference="pref-1",
        )
        response = client.post(_webhook_url(tenant_id), json=_approved(status="refunded"))
        body = response.json()
        assert body["status"] == "refunded"
        assert Decimal(body["balance"]["paid_amount"]) == Decimal("0")

    def test_missing_credentials_is_server_error(self, client, tenant_id, mp_payment):
        response = client.post(_webhook_url(tenant_id), json=_approved())
        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "GATEWAY_NOT_CONFIGURED"

    def test_invalid_json_is_rejected(self, client, tenant_id, mp_config):
        response = client.post(
            _webhook_url(tenant_id), content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_WEBHOOK_PAYLOAD"

    def test_payload_without_identifiers_is_rejected(self, client, tenant_id, mp_config):
        response = client.post(_webhook_url(tenant_id), json={"type": "payment", "data": {"status": "approved"}})
        assert response.status_code == 400

    def test_unregistered_provider(self, client, tenant_id):
        response = client.post(_webhook_url(tenant_id, provider="stripe"), json={"id": 1})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "GATEWAY_NOT_REGISTERED"

    def test_gateway_id_found_when_reference_is_unknown_sale(self, client, tenant_id, mp_config, mp_payment):
        response = client.post(_webhook_url(tenant_id), json=_approved(payment_id="pref-1", external_reference=str(uuid4())))

        assert response.status_code == 200
        assert response.json()["processed"] is True
        assert response.json()["payment_id"] == str(mp_payment.id)


class TestWebhookSideEffects:

    def test_repeated_webhook_recalculates_once(self, client, tenant_id, mp_config, mp_payment, monkeypatch):
        original_recalc = SaleBalanceService.recalc_sale_balance
        recalculated = []

        def counting_recalc(self, sale_id, **kwargs):
            recalculated.append(sale_id)
            return original_recalc(self, sale_id, **kwargs)

        monkeypatch.setattr(SaleBalanceService, "recalc_sale_balance", counting_recalc)
        for _ in range(4):
            client.post(_webhook_url(tenant_id), json=_approved())

        assert recalculated == [mp_payment.sale_id]

    def test_failed_recalculation_keeps_confirmation(self, client, tenant_id, mp_config, mp_payment, db_session,
                                                     monkeypatch):
        def broken_recalc(self, sale_id, **kwargs):
            raise RuntimeError("base de datos no disponible")

        monkeypatch.setattr(SaleBalanceService, "recalc_sale_balance", broken_recalc)
        response = client.post(_webhook_url(tenant_id), json=_approved())

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] is True
        assert body["status"] == "confirmed"
        assert body["balance"] is None

        db_session.expire_all()
        payment = db_session.query(Payment).filter(Payment.id == mp_payment.id).one()
        assert payment.status == PaymentStatus.CONFIRMED
        events = db_session.query(PaymentEvent).filter(PaymentEvent.payment_id == mp_payment.id).all()
        assert PaymentStatus.CONFIRMED in [e.new_state for e in events]

    def test_failed_cash_movement_keeps_confirmation(self, client, tenant_id, mp_config, mp_payment, open_box,
                                                     db_session, monkeypatch):
        def broken_movement(self, payment, period=None):
            raise RuntimeError("caja bloqueada")

        monkeypatch.setattr(PaymentCashLinker, "create_movement_for_payment", broken_movement)
        response = client.post(_webhook_url(tenant_id), json=_approved())

        assert response.status_code == 200
        assert response.json()["balance"]["is_paid"] is True
        assert db_session.query(CashMovement).count() == 0
        db_session.expire_all()
        assert db_session.query(Payment).filter(Payment.id == mp_payment.id).one().status == PaymentStatus.CONFIRMED

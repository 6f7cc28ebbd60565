"""
Tests de gateways: registro, adaptador de Mercado Pago y QR genérico
"""
from decimal import Decimal

import pytest
import requests

from settlement.modules.gateways import mercadopago
from settlement.modules.gateways.base import (
    CreatePaymentInput, GatewayProvider, RefundInput, WebhookEventType, WebhookParseError
)
from settlement.modules.gateways.generic_qr import GENERIC_QR_PROVIDER, GenericQRGateway
from settlement.modules.gateways.mercadopago import (
    MercadoPagoGateway, WebhookShape, classify_webhook_payload, map_mp_status, parse_mercadopago_webhook
)
from settlement.modules.gateways.registry import GatewayNotRegisteredError, build_gateway_registry
from settlement.modules.payments.models import PaymentStatus
from settlement.modules.qr.emvco import verify_crc

CBU = "0000003100010000000001"


class FakeResponse:

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body or {}
        self.text = str(body)

    def json(self):
        return self._body


# ===== REGISTRO =====

class TestRegistry:

    def test_registered_providers(self):
        registry = build_gateway_registry()
        assert set(registry.providers) == {GatewayProvider.MERCADOPAGO, GatewayProvider.QR}
        assert registry.is_registered("mercadopago")
        assert not registry.is_registered("stripe")
        assert not registry.is_registered("unknown")

    def test_create_returns_configured_instance(self):
        gateway = build_gateway_registry().create("mercadopago", {"access_token": "TEST-1"}, {"sandbox": True})
        assert isinstance(gateway, MercadoPagoGateway)
        assert gateway.access_token == "TEST-1"
        assert gateway.config["sandbox"] is True

    @pytest.mark.parametrize("provider", ["stripe", "nope"])
    def test_unregistered_provider(self, provider):
        with pytest.raises(GatewayNotRegisteredError) as exc:
            build_gateway_registry().create(provider)
        assert exc.value.status_code == 400


# ===== PARSER DE WEBHOOKS =====

class TestMercadoPagoWebhookParser:

    def test_notification_shape(self):
        payload = {"type": "payment", "data": {"id": "123", "status": "approved", "transaction_amount": 1500}}
        event = parse_mercadopago_webhook(payload, {"x-request-id": "abc"})
        assert classify_webhook_payload(payload) == WebhookShape.NOTIFICATION
        assert event.payment_id == "123"
        assert event.status == PaymentStatus.CONFIRMED
        assert event.type == WebhookEventType.PAYMENT_APPROVED
        assert event.amount == Decimal("1500")
        assert event.metadata["headers"] == {"x-request-id": "abc"}

    def test_action_shape_with_nested_payment(self):
        payload = {
            "action": "payment.updated",
            "data": {"payment": {"id": 77, "status": "rejected", "external_reference": "ref-1"}},
        }
        event = parse_mercadopago_webhook(payload)
        assert classify_webhook_payload(payload) == WebhookShape.ACTION
        assert event.payment_id == "77"
        assert event.external_reference == "ref-1"
        assert event.status == PaymentStatus.FAILED

    def test_direct_shape(self):
        payload = {"id": 9, "status": "refunded", "external_reference": "ref-9"}
        event = parse_mercadopago_webhook(payload)
        assert classify_webhook_payload(payload) == WebhookShape.DIRECT
        assert event.status == PaymentStatus.REFUNDED
        assert event.type == WebhookEventType.PAYMENT_REFUNDED

    def test_preference_id_fallback(self):
        event = parse_mercadopago_webhook({"type": "payment", "data": {"preference_id": "pref-1"}})
        assert event.external_reference == "pref-1"
        assert event.payment_id is None

    def test_unknown_status_maps_to_pending(self):
        event = parse_mercadopago_webhook({"id": "1", "status": "weird"})
        assert event.status == PaymentStatus.PENDING
        assert event.status_known is False

    @pytest.mark.parametrize("payload", [{}, [], "texto", {"type": "payment", "data": {"status": "approved"}}])
    def test_unparseable(self, payload):
        with pytest.raises(WebhookParseError):
            parse_mercadopago_webhook(payload)

    @pytest.mark.parametrize("raw,expected", [
        ("approved", PaymentStatus.CONFIRMED),
        ("cancelled", PaymentStatus.FAILED),
        ("charged_back", PaymentStatus.REFUNDED),
        ("in_process", PaymentStatus.PROCESSING),
        ("authorized", PaymentStatus.PROCESSING),
        (None, PaymentStatus.PENDING),
    ])
    def test_status_map(self, raw, expected):
        assert map_mp_status(raw) == expected


# ===== ADAPTADOR HTTP =====

class TestMercadoPagoGateway:

    def _gateway(self, **config):
        return MercadoPagoGateway({"access_token": "TEST-TOKEN"}, config)

    def test_create_payment_success(self, monkeypatch):
        calls = {}

        def fake_post(url, headers=None, json=None, timeout=None):
            calls.update(url=url, headers=headers, json=json)
            return FakeResponse(201, {"id": "pref-1", "init_point": "https://mp/checkout", "sandbox_init_point": "https://sb"})

        monkeypatch.setattr(mercadopago.requests, "post", fake_post)
        result = self._gateway(return_url="https://front/sales/1").create_payment(CreatePaymentInput(
            sale_id="sale-1", amount=Decimal("1500"), metadata={"idempotency_key": "k1"}
        ))

        assert result.success
        assert result.payment_id == "pref-1"
        assert result.checkout_url == "https://mp/checkout"
        assert calls["url"].endswith("/checkout/preferences")
        assert calls["headers"]["Authorization"] == "Bearer TEST-TOKEN"
        assert calls["headers"]["X-Idempotency-Key"] == "k1"
        assert calls["json"]["external_reference"] == "sale-1"
        assert calls["json"]["items"][0]["unit_price"] == 1500.0
        assert calls["json"]["auto_return"] == "approved"

    def test_sandbox_uses_sandbox_init_point(self, monkeypatch):
        monkeypatch.setattr(
            mercadopago.requests, "post",
            lambda *a, **k: FakeResponse(201, {"id": "p", "init_point": "prod", "sandbox_init_point": "sb"}),
        )
        result = self._gateway(sandbox=True).create_payment(CreatePaymentInput(sale_id="s", amount=Decimal("10")))
        assert result.checkout_url == "sb"

    def test_invalid_token(self, monkeypatch):
        monkeypatch.setattr(mercadopago.requests, "post", lambda *a, **k: FakeResponse(401, {"message": "unauthorized"}))
        result = self._gateway().create_payment(CreatePaymentInput(sale_id="s", amount=Decimal("10")))
        assert not result.success
        assert result.error.code == "INVALID_ACCESS_TOKEN"

    def test_missing_init_point(self, monkeypatch):
        monkeypatch.setattr(mercadopago.requests, "post", lambda *a, **k: FakeResponse(201, {"id": "p"}))
        result = self._gateway().create_payment(CreatePaymentInput(sale_id="s", amount=Decimal("10")))
        assert result.error.code == "PREFERENCE_CREATION_FAILED"

    def test_timeout(self, monkeypatch):
        def fake_post(*args, **kwargs):
            raise requests.exceptions.Timeout()

        monkeypatch.setattr(mercadopago.requests, "post", fake_post)
        result = self._gateway().create_payment(CreatePaymentInput(sale_id="s", amount=Decimal("10")))
        assert result.error.code == "GATEWAY_UNREACHABLE"

    def test_refund(self, monkeypatch):
        calls = {}

        def fake_post(url, headers=None, json=None, timeout=None):
            calls.update(url=url, json=json)
            return FakeResponse(201, {"id": 555})

        monkeypatch.setattr(mercadopago.requests, "post", fake_post)
        result = self._gateway().refund(RefundInput(payment_id="123"))
        assert result.success
        assert result.refund_id == "555"
        assert calls["url"].endswith("/v1/payments/123/refunds")
        assert calls["json"] == {}

    def test_get_payment_status(self, monkeypatch):
        monkeypatch.setattr(
            mercadopago.requests, "get",
            lambda *a, **k: FakeResponse(200, {"status": "approved", "external_reference": "x", "transaction_amount": 10}),
        )
        status = self._gateway().get_payment_status("123")
        assert status.status == PaymentStatus.CONFIRMED
        assert status.external_reference == "x"

    def test_validate_credentials(self, monkeypatch):
        monkeypatch.setattr(mercadopago.requests, "get", lambda *a, **k: FakeResponse(200, {"id": 1}))
        gateway = self._gateway()
        assert gateway.validate_credentials({"access_token": "ok"})
        assert not gateway.validate_credentials({})


# ===== QR GENÉRICO =====

class TestGenericQRGateway:

    def test_create_payment_builds_payload(self):
        gateway = GenericQRGateway({"cbu": CBU}, {"merchant_name": "Kiosco", "merchant_city": "Cordoba"})
        result = gateway.create_payment(CreatePaymentInput(
            sale_id="sale-1", amount=Decimal("250"), external_reference="SALE-ABCDEF12",
        ))
        assert result.success
        assert result.status == PaymentStatus.PENDING
        assert result.qr_code.startswith("data:image/png;base64,")
        assert result.metadata["provider"] == GENERIC_QR_PROVIDER
        assert result.metadata["reference"] == "SALE-ABCDEF12"
        assert result.metadata["amount_mode"] == "fixed"
        assert verify_crc(result.metadata["qr_payload"])

    def test_invalid_cbu_is_reported_not_raised(self):
        result = GenericQRGateway({"cbu": "12"}).create_payment(CreatePaymentInput(sale_id="s", amount=Decimal("1")))
        assert not result.success
        assert result.error.code == "INVALID_CBU"

    def test_refund_not_supported(self):
        result = GenericQRGateway({"cbu": CBU}).refund(RefundInput(payment_id="SALE-1"))
        assert not result.success
        assert result.error.code == "REFUND_NOT_SUPPORTED"

    def test_webhooks_not_supported(self):
        with pytest.raises(WebhookParseError):
            GenericQRGateway().parse_webhook({"id": 1})

    def test_validate_credentials(self):
        assert GenericQRGateway().validate_credentials({"cbu": CBU})
        assert not GenericQRGateway().validate_credentials({"cbu": "1"})

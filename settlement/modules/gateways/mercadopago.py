"""
Gateway de Mercado Pago (Checkout Pro).

- create_payment crea una preference y devuelve el init_point para redirigir
- parse_webhook normaliza los tres formatos de notificación conocidos
- refund / get_payment_status / validate_credentials usan la API REST v1
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional
import enum
import logging

import requests

from settlement.core.config import settings
from settlement.core.exceptions import GatewayError
from settlement.modules.gateways.base import (
    CreatePaymentInput, GatewayErrorInfo, GatewayPaymentResult, GatewayPaymentStatus,
    GatewayProvider, PaymentGateway, RefundInput, RefundResult, WebhookEvent,
    WebhookParseError, event_type_for
)
from settlement.modules.payments.models import PaymentStatus

logger = logging.getLogger(__name__)


# Estado de Mercado Pago → estado interno
MP_STATUS_MAP = {
    "approved": PaymentStatus.CONFIRMED,
    "rejected": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
    "pending": PaymentStatus.PROCESSING,
    "in_process": PaymentStatus.PROCESSING,
    "authorized": PaymentStatus.PROCESSING,
}


def map_mp_status(raw_status: Optional[str]) -> PaymentStatus:
    return MP_STATUS_MAP.get((raw_status or "").lower(), PaymentStatus.PENDING)


# ===== PARSER DE WEBHOOKS =====

class WebhookShape(str, enum.Enum):
    """Formatos de notificación que envía Mercado Pago"""
    NOTIFICATION = "notification"  # {"type": "payment", "data": {...}}
    ACTION = "action"              # {"action": "payment.updated", "data": {...}}
    DIRECT = "direct"              # {"id": ..., "status": ..., ...}


def classify_webhook_payload(payload: Any) -> WebhookShape:
    if not isinstance(payload, dict) or not payload:
        raise WebhookParseError("El payload del webhook debe ser un objeto JSON")
    if isinstance(payload.get("data"), dict):
        if "type" in payload:
            return WebhookShape.NOTIFICATION
        if "action" in payload:
            return WebhookShape.ACTION
    return WebhookShape.DIRECT


def _extraction_sources(payload: Dict[str, Any], shape: WebhookShape) -> List[Dict[str, Any]]:
    """Orden de búsqueda: data, data.payment, payload"""
    data = payload["data"] if shape is not WebhookShape.DIRECT else payload
    nested = data.get("payment") if isinstance(data.get("payment"), dict) else {}
    return [data, nested, payload]


def _first_present(sources: List[Dict[str, Any]], key: str) -> Optional[Any]:
    for source in sources:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value is not None else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def parse_mercadopago_webhook(payload: Any, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
    shape = classify_webhook_payload(payload)
    sources = _extraction_sources(payload, shape)

    payment_id = _first_present(sources, "id")
    external_reference = _first_present(sources, "external_reference")
    if external_reference is None:
        external_reference = sources[0].get("preference_id")

    if payment_id is None and external_reference is None:
        raise WebhookParseError(
            "Webhook sin payment id ni external_reference",
            details={"shape": shape.value},
        )

    raw_status = _first_present(sources, "status")
    status = map_mp_status(raw_status)

    return WebhookEvent(
        type=event_type_for(status),
        payment_id=str(payment_id) if payment_id is not None else None,
        external_reference=str(external_reference) if external_reference is not None else None,
        status=status,
        status_known=(raw_status or "").lower() in MP_STATUS_MAP,
        amount=_to_decimal(_first_present(sources, "transaction_amount")),
        metadata={
            "shape": shape.value,
            "notification_type": payload.get("type") or payload.get("action"),
            "mp_status": raw_status,
            "raw_payload": payload,
            "headers": dict(headers or {}),
        },
    )


# ===== GATEWAY =====

class MercadoPagoGateway(PaymentGateway):
    provider = GatewayProvider.MERCADOPAGO

    def __init__(self, credentials: Optional[Mapping[str, Any]] = None,
                 config: Optional[Mapping[str, Any]] = None):
        super().__init__(credentials, config)
        self.api_base = self.config.get("api_base") or settings.MERCADOPAGO_API_BASE
        self.timeout = self.config.get("timeout") or settings.MERCADOPAGO_TIMEOUT

    @property
    def access_token(self) -> Optional[str]:
        return self.credentials.get("access_token")

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    @staticmethod
    def _error_from_response(response: requests.Response, default_code: str) -> GatewayErrorInfo:
        if response.status_code in (401, 403):
            return GatewayErrorInfo(
                code="INVALID_ACCESS_TOKEN",
                message="Access token de Mercado Pago inválido o expirado. Verifica las credenciales del gateway.",
                details={"status_code": response.status_code},
            )
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}
        return GatewayErrorInfo(
            code=str(body.get("error") or default_code).upper(),
            message=body.get("message") or f"Mercado Pago respondió {response.status_code}",
            details=body,
        )

    def create_payment(self, payment_input: CreatePaymentInput) -> GatewayPaymentResult:
        if not self.access_token:
            return GatewayPaymentResult(
                success=False,
                status=PaymentStatus.FAILED,
                error=GatewayErrorInfo(code="INVALID_ACCESS_TOKEN", message="Falta el access token de Mercado Pago"),
            )

        back_urls = {
            "success": self.config.get("return_url"),
            "failure": self.config.get("cancel_url") or self.config.get("return_url"),
            "pending": self.config.get("return_url"),
        }
        preference = {
            "items": [{
                "id": payment_input.sale_id,
                "title": payment_input.description or f"Venta {payment_input.sale_id}",
                "quantity": 1,
                "unit_price": float(payment_input.amount),
                "currency_id": payment_input.currency,
            }],
            "external_reference": payment_input.external_reference or payment_input.sale_id,
            "notification_url": self.config.get("notification_url") or self.config.get("webhook_url"),
            "metadata": {"sale_id": payment_input.sale_id, **payment_input.metadata},
        }
        if any(back_urls.values()):
            preference["back_urls"] = back_urls
            if self.config.get("auto_return", True) and back_urls["success"]:
                preference["auto_return"] = "approved"

        logger.info(
            "[MercadoPago] Creando preference",
            extra={"sale_id": payment_input.sale_id, "amount": str(payment_input.amount)},
        )
        try:
            response = requests.post(
                f"{self.api_base}/checkout/preferences",
                headers=self._headers(payment_input.metadata.get("idempotency_key")),
                json=preference,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.warning("[MercadoPago] Timeout creando preference después de %ss", self.timeout)
            return self._unreachable("Mercado Pago no respondió a tiempo")
        except requests.exceptions.RequestException as exc:
            logger.warning("[MercadoPago] Error de red creando preference: %s", exc)
            return self._unreachable(str(exc))

        if response.status_code >= 400:
            error = self._error_from_response(response, "PREFERENCE_CREATION_FAILED")
            logger.warning(f"[MercadoPago] Preference rechazada: {error.code} - {error.message}")
            return GatewayPaymentResult(success=False, status=PaymentStatus.FAILED, error=error)

        data = response.json()
        checkout_url = data.get("sandbox_init_point") if self.config.get("sandbox") else data.get("init_point")
        if not data.get("id") or not checkout_url:
            return GatewayPaymentResult(
                success=False,
                status=PaymentStatus.FAILED,
                error=GatewayErrorInfo(
                    code="PREFERENCE_CREATION_FAILED",
                    message="No se pudo crear la preference en Mercado Pago",
                    details=data,
                ),
            )

        return GatewayPaymentResult(
            success=True,
            payment_id=str(data["id"]),
            checkout_url=checkout_url,
            status=PaymentStatus.PENDING,
            metadata={
                "preference_id": str(data["id"]),
                "init_point": data.get("init_point"),
                "sandbox_init_point": data.get("sandbox_init_point"),
                "collector_id": data.get("collector_id"),
            },
        )

    @staticmethod
    def _unreachable(message: str) -> GatewayPaymentResult:
        return GatewayPaymentResult(
            success=False,
            status=PaymentStatus.FAILED,
            error=GatewayErrorInfo(code="GATEWAY_UNREACHABLE", message=message),
        )

    def refund(self, refund_input: RefundInput) -> RefundResult:
        body = {"amount": float(refund_input.amount)} if refund_input.amount is not None else {}
        try:
            response = requests.post(
                f"{self.api_base}/v1/payments/{refund_input.payment_id}/refunds",
                headers=self._headers(),
                json=body,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("[MercadoPago] Error de red en refund: %s", exc)
            return RefundResult(
                success=False,
                error=GatewayErrorInfo(code="GATEWAY_UNREACHABLE", message=str(exc)),
            )

        if response.status_code >= 400:
            return RefundResult(success=False, error=self._error_from_response(response, "REFUND_FAILED"))

        data = response.json()
        return RefundResult(success=True, refund_id=str(data.get("id")) if data.get("id") else None)

    def parse_webhook(self, payload: Any, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
        return parse_mercadopago_webhook(payload, headers)

    def get_payment_status(self, external_payment_id: str) -> GatewayPaymentStatus:
        try:
            response = requests.get(
                f"{self.api_base}/v1/payments/{external_payment_id}",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise GatewayError("Mercado Pago no respondió", code="GATEWAY_UNREACHABLE", details=str(exc))

        if response.status_code >= 400:
            error = self._error_from_response(response, "PAYMENT_LOOKUP_FAILED")
            raise GatewayError(error.message, code=error.code, details=error.details)

        data = response.json()
        return GatewayPaymentStatus(
            status=map_mp_status(data.get("status")),
            external_reference=data.get("external_reference"),
            amount=_to_decimal(data.get("transaction_amount")),
            metadata={"mp_status": data.get("status"), "status_detail": data.get("status_detail")},
        )

    def validate_credentials(self, credentials: Mapping[str, Any]) -> bool:
        token = credentials.get("access_token")
        if not token:
            return False
        try:
            response = requests.get(
                f"{self.api_base}/users/me",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("[MercadoPago] No se pudieron validar credenciales: %s", exc)
            return False
        return response.status_code == 200

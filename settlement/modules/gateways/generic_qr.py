"""
Gateway QR interoperable genérico.

No existe un procesador detrás: el QR apunta al CBU/CVU del comercio y la
acreditación se concilia luego contra las transferencias entrantes.
"""
from datetime import timedelta
from typing import Any, Mapping, Optional
import logging

from settlement.common.mixins import utc_now
from settlement.core.config import settings
from settlement.core.exceptions import ValidationError
from settlement.modules.gateways.base import (
    CreatePaymentInput, GatewayErrorInfo, GatewayPaymentResult, GatewayPaymentStatus,
    GatewayProvider, PaymentGateway, RefundInput, RefundResult, WebhookEvent,
    WebhookParseError
)
from settlement.modules.payments.models import PaymentStatus
from settlement.modules.qr.emvco import build_emvco_payload, normalize_cbu
from settlement.modules.qr.images import render_qr_data_uri

logger = logging.getLogger(__name__)

GENERIC_QR_PROVIDER = "generic_qr"


class GenericQRGateway(PaymentGateway):
    provider = GatewayProvider.QR

    def _setting(self, key: str, default):
        return self.config.get(key) or default

    def create_payment(self, payment_input: CreatePaymentInput) -> GatewayPaymentResult:
        """
        Genera el payload EMVCo y la imagen del QR.

        metadata.amount_mode = "open" omite el monto del payload.
        """
        cbu = self.credentials.get("cbu") or settings.QR_MERCHANT_CBU
        reference = payment_input.external_reference or payment_input.sale_id[:25]
        amount_mode = payment_input.metadata.get("amount_mode", "fixed")

        try:
            payload = build_emvco_payload(
                cbu=cbu or "",
                reference=reference,
                merchant_name=self._setting("merchant_name", settings.QR_MERCHANT_NAME),
                merchant_city=self._setting("merchant_city", settings.QR_MERCHANT_CITY),
                amount=payment_input.amount if amount_mode == "fixed" else None,
                merchant_category_code=self._setting("merchant_category_code", settings.QR_MERCHANT_CATEGORY_CODE),
            )
        except ValidationError as exc:
            return GatewayPaymentResult(
                success=False,
                status=PaymentStatus.FAILED,
                error=GatewayErrorInfo(code=exc.code, message=exc.message, details=exc.details),
            )

        expires_minutes = int(self._setting("expiration_minutes", settings.QR_EXPIRATION_MINUTES))
        expires_at = utc_now() + timedelta(minutes=expires_minutes)
        logger.debug(f"[GenericQR] Payload generado para venta {payment_input.sale_id}: {payload}")

        return GatewayPaymentResult(
            success=True,
            payment_id=reference,
            qr_code=render_qr_data_uri(payload),
            status=PaymentStatus.PENDING,
            metadata={
                "qr_payload": payload,
                "reference": reference,
                "provider": GENERIC_QR_PROVIDER,
                "amount_mode": amount_mode,
                "expires_at": expires_at.isoformat(),
            },
        )

    def refund(self, refund_input: RefundInput) -> RefundResult:
        return RefundResult(
            success=False,
            error=GatewayErrorInfo(
                code="REFUND_NOT_SUPPORTED",
                message="Los pagos por QR interoperable se reembolsan por transferencia manual",
            ),
        )

    def parse_webhook(self, payload: Any, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
        raise WebhookParseError("El QR genérico no emite webhooks", code="WEBHOOK_NOT_SUPPORTED")

    def get_payment_status(self, external_payment_id: str) -> GatewayPaymentStatus:
        # Sin procesador: el estado solo cambia por conciliación de transferencias
        return GatewayPaymentStatus(status=PaymentStatus.PENDING, external_reference=external_payment_id)

    def validate_credentials(self, credentials: Mapping[str, Any]) -> bool:
        try:
            normalize_cbu(credentials.get("cbu") or "")
        except ValidationError:
            return False
        return True

"""
Contrato común de gateways de pago.

Cada proveedor implementa PaymentGateway y normaliza sus respuestas y webhooks
a los modelos de este módulo, de modo que el ledger nunca dependa de la forma
particular de un proveedor.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
import enum

from pydantic import BaseModel, Field

from settlement.common.mixins import utc_now
from settlement.core.exceptions import ValidationError
from settlement.modules.payments.models import PaymentStatus


class GatewayProvider(str, enum.Enum):
    MERCADOPAGO = "mercadopago"
    QR = "qr"
    POS = "pos"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    OTHER = "other"


class WebhookEventType(str, enum.Enum):
    PAYMENT_CREATED = "payment.created"
    PAYMENT_APPROVED = "payment.approved"
    PAYMENT_REJECTED = "payment.rejected"
    PAYMENT_REFUNDED = "payment.refunded"


class WebhookParseError(ValidationError):
    code_default = "INVALID_WEBHOOK_PAYLOAD"


# ===== ENTRADAS / SALIDAS =====

class CreatePaymentInput(BaseModel):
    sale_id: str
    amount: Decimal = Field(..., gt=0)
    currency: str = "ARS"
    description: Optional[str] = None
    external_reference: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GatewayErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class GatewayPaymentResult(BaseModel):
    success: bool
    payment_id: Optional[str] = None
    checkout_url: Optional[str] = None
    qr_code: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[GatewayErrorInfo] = None


class RefundInput(BaseModel):
    payment_id: str  # ID del pago en el gateway
    amount: Optional[Decimal] = Field(None, gt=0)  # None = reembolso total
    reason: Optional[str] = None


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    status: PaymentStatus = PaymentStatus.REFUNDED
    error: Optional[GatewayErrorInfo] = None


class GatewayPaymentStatus(BaseModel):
    status: PaymentStatus
    external_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    """Evento canónico resultante de parsear un webhook"""
    type: WebhookEventType
    payment_id: Optional[str] = None
    external_reference: Optional[str] = None
    status: PaymentStatus
    status_known: bool = True
    amount: Decimal = Decimal("0")
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


EVENT_TYPE_BY_STATUS = {
    PaymentStatus.CONFIRMED: WebhookEventType.PAYMENT_APPROVED,
    PaymentStatus.FAILED: WebhookEventType.PAYMENT_REJECTED,
    PaymentStatus.REFUNDED: WebhookEventType.PAYMENT_REFUNDED,
}


def event_type_for(status: PaymentStatus) -> WebhookEventType:
    return EVENT_TYPE_BY_STATUS.get(status, WebhookEventType.PAYMENT_CREATED)


# ===== CONTRATO =====

class PaymentGateway(ABC):
    """Contrato que deben implementar todos los gateways de pago"""

    provider: GatewayProvider

    def __init__(self, credentials: Optional[Mapping[str, Any]] = None,
                 config: Optional[Mapping[str, Any]] = None):
        self.credentials = dict(credentials or {})
        self.config = dict(config or {})

    @abstractmethod
    def create_payment(self, payment_input: CreatePaymentInput) -> GatewayPaymentResult:
        """Crea el pago en el proveedor"""

    @abstractmethod
    def refund(self, refund_input: RefundInput) -> RefundResult:
        """Reembolsa un pago (total o parcial)"""

    @abstractmethod
    def parse_webhook(self, payload: Any, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
        """Convierte un webhook del proveedor en un WebhookEvent"""

    @abstractmethod
    def get_payment_status(self, external_payment_id: str) -> GatewayPaymentStatus:
        """Consulta el estado actual del pago en el proveedor"""

    @abstractmethod
    def validate_credentials(self, credentials: Mapping[str, Any]) -> bool:
        """Valida credenciales sin efectos secundarios"""

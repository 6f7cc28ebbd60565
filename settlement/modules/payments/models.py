"""
Modelos SQLAlchemy para el ciclo de vida de pagos

- PaymentMethod: métodos de cobro configurados por tenant (manual/gateway/external)
- PaymentGatewayConfig: credenciales y configuración por tenant y proveedor
- Payment: pago asociado a una venta, con clave de idempotencia única
- PaymentEvent: auditoría append-only de cada cambio de estado
- PaymentConfirmation: cómo llegó un pago a "confirmed" (manual, auto, asistido)
"""
from decimal import Decimal

from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text, JSON,
    UniqueConstraint, CheckConstraint, event
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, validates
from uuid import uuid4
import enum

from settlement.database.database import Base
from settlement.common.actors import ActorType
from settlement.common.mixins import TenantMixin, TimestampMixin, utc_now
from settlement.core.exceptions import ConflictError


# ===== ENUMS =====

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentCategory(str, enum.Enum):
    """Categoría que define el estado inicial del pago"""
    MANUAL = "manual"       # Cargado por personal, confiable
    GATEWAY = "gateway"     # QR / POS, espera confirmación
    EXTERNAL = "external"   # Redirect a procesador externo


class PaymentMethodType(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    QR = "qr"
    CARD = "card"
    GATEWAY = "gateway"
    MERCADOPAGO = "mercadopago"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    OTHER = "other"


class PaymentProvider(str, enum.Enum):
    """Canal que originó el pago"""
    MANUAL = "manual"
    QR = "qr"
    MERCADOPAGO = "mercadopago"


class PaymentEventAction(str, enum.Enum):
    CREATED = "created"
    DELETED = "deleted"
    STATUS_CHANGED = "status_changed"
    CONFIRMED = "confirmed"
    REFUNDED = "refunded"


class ConfirmationType(str, enum.Enum):
    MANUAL = "manual"
    AUTO = "auto"
    ASSISTED = "assisted"


class MatchResult(str, enum.Enum):
    MATCHED_AUTO = "matched_auto"
    MATCHED_SUGGESTED = "matched_suggested"
    NO_MATCH = "no_match"


class ProofType(str, enum.Enum):
    """Evidencia presentada para un pago manual"""
    QR_CODE = "qr_code"
    RECEIPT = "receipt"
    TRANSFER_SCREENSHOT = "transfer_screenshot"
    POS_TICKET = "pos_ticket"
    OTHER = "other"


IMMUTABLE_PAYMENT_STATUSES = (PaymentStatus.CONFIRMED, PaymentStatus.REFUNDED)


# ===== MODELOS =====

class PaymentMethod(Base, TenantMixin, TimestampMixin):
    """Método de pago configurado por el tenant"""
    __tablename__ = "payment_methods"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(100), nullable=False)
    label = Column(String(255), nullable=False)
    type = Column(Enum(PaymentMethodType), nullable=False)
    payment_category = Column(Enum(PaymentCategory), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    method_metadata = Column("metadata", JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_payment_methods_tenant_code"),
    )


class PaymentGatewayConfig(Base, TenantMixin, TimestampMixin):
    """Credenciales y configuración de un proveedor para un tenant"""
    __tablename__ = "payment_gateways"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    provider = Column(String(30), nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    credentials = Column(JSON, nullable=True)
    config = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", name="uq_payment_gateways_tenant_provider"),
    )


class Payment(Base, TenantMixin, TimestampMixin):
    """
    Pago de una venta.

    Los pagos confirmados o reembolsados son inmutables: no admiten cambios
    de monto ni eliminación.
    """
    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    payment_method_id = Column(UUID(as_uuid=True), ForeignKey("payment_methods.id"), nullable=True, index=True)
    seller_id = Column(UUID(as_uuid=True), ForeignKey("sellers.id"), nullable=True, index=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True, index=True)

    amount = Column(Numeric(15, 2), nullable=False)
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    provider = Column(Enum(PaymentProvider), nullable=False, default=PaymentProvider.MANUAL)
    method = Column(Enum(PaymentMethodType), nullable=False, default=PaymentMethodType.CASH)

    reference = Column(String(255), nullable=True)
    external_reference = Column(String(255), nullable=True, index=True)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    gateway_metadata = Column(JSON, nullable=True)

    # Evidencia del cobro (comprobante, ticket del posnet)
    proof_type = Column(Enum(ProofType), nullable=True)
    proof_reference = Column(String(255), nullable=True)
    terminal_id = Column(String(100), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by = Column(UUID(as_uuid=True), nullable=True)
    created_by_type = Column(Enum(ActorType), nullable=False, default=ActorType.HUMAN)
    created_by_id = Column(UUID(as_uuid=True), nullable=True)

    # Resultado del motor de matching
    match_confidence = Column(Numeric(5, 4), nullable=True)
    match_result = Column(Enum(MatchResult), nullable=True)
    matched_transfer_id = Column(UUID(as_uuid=True), nullable=True)

    sale = relationship("Sale", back_populates="payments")
    payment_method = relationship("PaymentMethod")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    @validates("amount")
    def validate_amount(self, key, value):
        if self.status in IMMUTABLE_PAYMENT_STATUSES and self.amount is not None \
                and Decimal(value) != Decimal(self.amount):
            raise ConflictError(
                "No se puede modificar el monto de un pago confirmado o reembolsado",
                code="PAYMENT_IMMUTABLE",
            )
        return value

    @property
    def qr_reference(self):
        return (self.gateway_metadata or {}).get("reference")


class PaymentEvent(Base, TenantMixin):
    """
    Auditoría append-only de pagos.

    payment_id no es FK: el evento "deleted" sobrevive al pago eliminado.
    """
    __tablename__ = "payment_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    payment_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    sale_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    action = Column(Enum(PaymentEventAction), nullable=False)
    previous_state = Column(Enum(PaymentStatus), nullable=True)
    new_state = Column(Enum(PaymentStatus), nullable=True)

    actor_type = Column(Enum(ActorType), nullable=False)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    actor_label = Column(String(100), nullable=True)

    reason = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


@event.listens_for(PaymentEvent, "before_update")
def _reject_event_update(mapper, connection, target):
    raise ConflictError("Los eventos de pago son inmutables", code="PAYMENT_EVENT_IMMUTABLE")


@event.listens_for(PaymentEvent, "before_delete")
def _reject_event_delete(mapper, connection, target):
    raise ConflictError("Los eventos de pago son inmutables", code="PAYMENT_EVENT_IMMUTABLE")


class PaymentConfirmation(Base, TenantMixin):
    """Registro de cómo se confirmó un pago. Un pago tiene a lo sumo una."""
    __tablename__ = "payment_confirmations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id"), nullable=False, unique=True)
    transfer_id = Column(UUID(as_uuid=True), ForeignKey("incoming_transfers.id"), nullable=True)
    confirmation_type = Column(Enum(ConfirmationType), nullable=False)
    confidence_score = Column(Numeric(5, 4), nullable=True)

    actor_type = Column(Enum(ActorType), nullable=False)
    confirmed_by = Column(UUID(as_uuid=True), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

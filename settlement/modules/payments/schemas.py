"""
Esquemas Pydantic para pagos, métodos de pago y configuración de gateways.
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from enum import Enum
import re

from settlement.common.actors import ActorType
from settlement.modules.gateways.base import GatewayProvider
from settlement.modules.payments.models import (
    PaymentStatus, PaymentCategory, PaymentMethodType, PaymentProvider,
    PaymentEventAction, MatchResult, ProofType
)
from settlement.modules.sales.balance import BalanceResult


class QRAmountMode(str, Enum):
    FIXED = "fixed"   # El monto viaja en el QR
    OPEN = "open"     # El cliente ingresa el monto en su billetera


# ===== CREACIÓN DE PAGOS =====

class ManualPaymentCreate(BaseModel):
    """Pago cargado por personal (efectivo, transferencia, tarjeta)"""
    amount: Decimal = Field(..., gt=0, description="Monto del pago")
    payment_method_id: Optional[UUID] = Field(None, description="Método de pago configurado (preferido)")
    method: Optional[PaymentMethodType] = Field(None, description="Tipo de método si no se envía payment_method_id")
    status: Optional[PaymentStatus] = Field(
        None, description="Opcional; se respeta si es compatible con la categoría del método"
    )
    reference: Optional[str] = Field(None, max_length=255, description="Referencia del comprobante")
    seller_id: Optional[UUID] = Field(None, description="Vendedor que cobra (usa su caja)")
    proof_type: Optional[ProofType] = Field(None, description="Tipo de evidencia del cobro")
    proof_reference: Optional[str] = Field(None, max_length=255, description="Nro. de comprobante u operación")
    terminal_id: Optional[str] = Field(None, max_length=100, description="Terminal del posnet")

    @model_validator(mode="after")
    def require_method(self):
        if not self.payment_method_id and not self.method:
            raise ValueError("Debe proporcionar payment_method_id o method")
        return self


class QRPaymentCreate(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Monto; por defecto el saldo de la venta")
    amount_mode: QRAmountMode = Field(default=QRAmountMode.FIXED, description="fixed u open")
    seller_id: Optional[UUID] = None


class ExternalPaymentCreate(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Monto; por defecto el saldo de la venta")
    description: Optional[str] = Field(None, max_length=255, description="Título del ítem en el checkout")
    seller_id: Optional[UUID] = None


class PaymentConfirmRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class PaymentRefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AssistedConfirmRequest(BaseModel):
    transfer_id: UUID = Field(..., description="Transferencia sugerida por el matching")


# ===== SALIDAS =====

class PaymentOut(BaseModel):
    id: UUID
    sale_id: UUID
    tenant_id: UUID
    amount: Decimal
    status: PaymentStatus
    provider: PaymentProvider
    method: PaymentMethodType
    payment_method_id: Optional[UUID] = None
    seller_id: Optional[UUID] = None
    reference: Optional[str] = None
    external_reference: Optional[str] = None
    idempotency_key: str
    gateway_metadata: Optional[Dict[str, Any]] = None
    proof_type: Optional[ProofType] = None
    proof_reference: Optional[str] = None
    terminal_id: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[UUID] = None
    match_confidence: Optional[Decimal] = None
    match_result: Optional[MatchResult] = None
    matched_transfer_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentCreatedResponse(BaseModel):
    payment: PaymentOut
    deduplicated: bool = Field(False, description="True si se devolvió un pago existente")
    checkout_url: Optional[str] = None
    qr_code: Optional[str] = None
    qr_payload: Optional[str] = None
    balance: Optional[BalanceResult] = None


class PaymentStatusChangeResponse(BaseModel):
    payment: PaymentOut
    balance: Optional[BalanceResult] = None


class PaymentEventOut(BaseModel):
    id: UUID
    payment_id: UUID
    action: PaymentEventAction
    previous_state: Optional[PaymentStatus] = None
    new_state: Optional[PaymentStatus] = None
    actor_type: ActorType
    actor_id: Optional[UUID] = None
    actor_label: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ===== MÉTODOS DE PAGO =====

class PaymentMethodCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=100)
    label: str = Field(..., min_length=1, max_length=255)
    type: PaymentMethodType
    payment_category: Optional[PaymentCategory] = Field(None, description="Si no se envía se infiere del tipo")
    is_active: bool = True
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        if not re.fullmatch(r"[a-z0-9_]+", v):
            raise ValueError('El código debe contener solo letras minúsculas, números y guiones bajos')
        return v


class PaymentMethodUpdate(BaseModel):
    """Actualización parcial; solo se aplican los campos enviados"""
    code: Optional[str] = Field(None, min_length=1, max_length=100)
    label: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[PaymentMethodType] = None
    payment_category: Optional[PaymentCategory] = None
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not re.fullmatch(r"[a-z0-9_]+", v):
            raise ValueError('El código debe contener solo letras minúsculas, números y guiones bajos')
        return v


class PaymentMethodOut(BaseModel):
    id: UUID
    code: str
    label: str
    type: PaymentMethodType
    payment_category: PaymentCategory
    is_active: bool
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="method_metadata")

    model_config = {"from_attributes": True, "populate_by_name": True}


# ===== GATEWAYS =====

class PaymentGatewayCreate(BaseModel):
    provider: GatewayProvider
    enabled: bool = False
    credentials: Optional[Dict[str, Any]] = None
    config: Optional[Dict[str, Any]] = None


class PaymentGatewayUpdate(BaseModel):
    enabled: Optional[bool] = None
    credentials: Optional[Dict[str, Any]] = None
    config: Optional[Dict[str, Any]] = None


class PaymentGatewayOut(BaseModel):
    """Las credenciales nunca se devuelven"""
    id: UUID
    provider: str
    enabled: bool
    config: Optional[Dict[str, Any]] = None
    has_credentials: bool = False

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, gateway) -> "PaymentGatewayOut":
        return cls(
            id=gateway.id,
            provider=gateway.provider,
            enabled=gateway.enabled,
            config=gateway.config,
            has_credentials=bool(gateway.credentials),
        )


class PaymentList(BaseModel):
    payments: List[PaymentOut]
    total: int

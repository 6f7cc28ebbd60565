"""
Esquemas Pydantic para cajas diarias y cajas por vendedor.
"""
from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID
from datetime import date, datetime

from settlement.modules.cash.models import CashPeriodStatus, MovementType, MovementPaymentMethod


# ===== MOVIMIENTOS =====

class CashMovementCreate(BaseModel):
    """Movimiento manual de caja"""
    type: MovementType = Field(..., description="income o expense")
    amount: Decimal = Field(..., gt=0, description="Monto (siempre positivo)")
    payment_method: MovementPaymentMethod = Field(default=MovementPaymentMethod.CASH, description="Medio del movimiento")
    reference: Optional[str] = Field(None, max_length=255, description="Referencia libre")
    purchase_id: Optional[UUID] = Field(None, description="Compra asociada (egresos)")

    @field_validator('reference')
    @classmethod
    def clean_reference(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


class CashMovementOut(BaseModel):
    id: UUID
    type: MovementType
    payment_method: MovementPaymentMethod
    amount: Decimal
    reference: Optional[str] = None
    payment_id: Optional[UUID] = None
    purchase_id: Optional[UUID] = None
    cash_box_id: Optional[UUID] = None
    cash_register_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CashTotals(BaseModel):
    income_by_method: Dict[str, Decimal]
    expense_by_method: Dict[str, Decimal]
    total_income: Decimal
    total_expense: Decimal
    opening_balance: Decimal
    expected_balance: Decimal


# ===== CAJA DIARIA =====

class CashBoxOpen(BaseModel):
    opening_balance: Decimal = Field(default=Decimal("0"), ge=0, description="Saldo inicial")
    business_date: Optional[date] = Field(None, description="Fecha de la caja (hoy por defecto)")
    notes: Optional[str] = Field(None, max_length=500)


class CashClose(BaseModel):
    closing_balance: Decimal = Field(..., ge=0, description="Monto contado al cierre")
    notes: Optional[str] = Field(None, max_length=500)


class CashBoxOut(BaseModel):
    id: UUID
    tenant_id: UUID
    business_date: date
    status: CashPeriodStatus
    opening_balance: Decimal
    closing_balance: Optional[Decimal] = None
    expected_balance: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CashBoxOpenResponse(BaseModel):
    cash_box: CashBoxOut
    associated_movements: int = Field(..., description="Pagos confirmados asociados al abrir")


class CashBoxDetail(BaseModel):
    cash_box: CashBoxOut
    movements: List[CashMovementOut]
    totals: CashTotals


class PendingPaymentsResponse(BaseModel):
    pending_count: int


# ===== CAJA POR VENDEDOR =====

class CashRegisterOpen(BaseModel):
    seller_id: UUID = Field(..., description="Vendedor responsable")
    opening_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Fondo inicial")
    notes: Optional[str] = Field(None, max_length=500)


class CashRegisterClose(BaseModel):
    closing_amount: Decimal = Field(..., ge=0, description="Monto contado al cierre")
    notes: Optional[str] = Field(None, max_length=500)


class CashRegisterOut(BaseModel):
    id: UUID
    tenant_id: UUID
    seller_id: UUID
    status: CashPeriodStatus
    opening_amount: Decimal
    closing_amount: Optional[Decimal] = None
    expected_amount: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CashRegisterOpenResponse(BaseModel):
    cash_register: CashRegisterOut
    associated_movements: int


class CashClosureOut(BaseModel):
    id: UUID
    total_cash: Decimal
    total_transfer: Decimal
    total_card: Decimal
    total_other: Decimal
    total_income: Decimal
    total_expense: Decimal
    expected_amount: Decimal
    declared_amount: Decimal
    difference: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class CashBoxCloseResponse(BaseModel):
    cash_box: CashBoxOut
    closure: CashClosureOut
    movements: List[CashMovementOut]


class CashRegisterCloseResponse(BaseModel):
    cash_register: CashRegisterOut
    closure: CashClosureOut


class CashRegisterDetail(BaseModel):
    cash_register: CashRegisterOut
    movements: List[CashMovementOut]
    totals: CashTotals

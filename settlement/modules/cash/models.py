"""
Modelos SQLAlchemy para cajas

Este módulo maneja los períodos de caja:
- CashBox: caja diaria del tenant (un período abierto por tenant y fecha)
- CashRegister: caja por vendedor (un período abierto por tenant y vendedor)
- CashMovement: ingresos/egresos de un período, opcionalmente ligados a un pago
- CashClosure: resumen inmutable del arqueo al cerrar
- Seller: vendedores que operan cajas

Un período cerrado es terminal: no acepta movimientos ni un segundo cierre.
"""
from sqlalchemy import (
    Column, String, Boolean, Date, DateTime, ForeignKey, Numeric, Enum, Text, JSON,
    Index, CheckConstraint, text
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from settlement.database.database import Base
from settlement.common.mixins import TenantMixin, TimestampMixin, utc_now


# ===== ENUMS =====

class CashPeriodStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class MovementType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"


class MovementPaymentMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    CARD = "card"
    OTHER = "other"


OPEN_PERIOD_CLAUSE = text("status = 'OPEN'")


# ===== MODELOS =====

class Seller(Base, TenantMixin, TimestampMixin):
    __tablename__ = "sellers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class CashBox(Base, TenantMixin, TimestampMixin):
    """Caja diaria del tenant"""
    __tablename__ = "cash_boxes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    business_date = Column(Date, nullable=False)
    status = Column(Enum(CashPeriodStatus), nullable=False, default=CashPeriodStatus.OPEN, index=True)

    opening_balance = Column(Numeric(15, 2), nullable=False, default=0)
    closing_balance = Column(Numeric(15, 2), nullable=True)   # Declarado al cerrar
    expected_balance = Column(Numeric(15, 2), nullable=True)  # Calculado al cerrar
    difference = Column(Numeric(15, 2), nullable=True)        # declarado - calculado

    opened_by = Column(UUID(as_uuid=True), nullable=True)
    closed_by = Column(UUID(as_uuid=True), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    movements = relationship("CashMovement", back_populates="cash_box", order_by="CashMovement.created_at")

    __table_args__ = (
        Index(
            "uq_cash_boxes_open_per_day", "tenant_id", "business_date",
            unique=True,
            postgresql_where=OPEN_PERIOD_CLAUSE,
            sqlite_where=OPEN_PERIOD_CLAUSE,
        ),
    )


class CashRegister(Base, TenantMixin, TimestampMixin):
    """Caja por vendedor"""
    __tablename__ = "cash_registers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    seller_id = Column(UUID(as_uuid=True), ForeignKey("sellers.id"), nullable=False, index=True)
    status = Column(Enum(CashPeriodStatus), nullable=False, default=CashPeriodStatus.OPEN, index=True)

    opening_amount = Column(Numeric(15, 2), nullable=False, default=0)
    closing_amount = Column(Numeric(15, 2), nullable=True)
    expected_amount = Column(Numeric(15, 2), nullable=True)
    difference = Column(Numeric(15, 2), nullable=True)

    opened_by = Column(UUID(as_uuid=True), nullable=True)
    closed_by = Column(UUID(as_uuid=True), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    seller = relationship("Seller")
    movements = relationship("CashMovement", back_populates="cash_register", order_by="CashMovement.created_at")

    __table_args__ = (
        Index(
            "uq_cash_registers_open_per_seller", "tenant_id", "seller_id",
            unique=True,
            postgresql_where=OPEN_PERIOD_CLAUSE,
            sqlite_where=OPEN_PERIOD_CLAUSE,
        ),
    )


class CashMovement(Base, TenantMixin, TimestampMixin):
    """Movimiento de un período de caja. Un pago genera a lo sumo un movimiento."""
    __tablename__ = "cash_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    cash_box_id = Column(UUID(as_uuid=True), ForeignKey("cash_boxes.id"), nullable=True, index=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True, index=True)
    type = Column(Enum(MovementType), nullable=False)
    payment_method = Column(Enum(MovementPaymentMethod), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    reference = Column(String(255), nullable=True)

    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id"), nullable=True, unique=True)
    purchase_id = Column(UUID(as_uuid=True), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)

    cash_box = relationship("CashBox", back_populates="movements")
    cash_register = relationship("CashRegister", back_populates="movements")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_cash_movements_amount_positive"),
        CheckConstraint(
            "(cash_box_id IS NULL) <> (cash_register_id IS NULL)",
            name="ck_cash_movements_single_period",
        ),
    )


class CashClosure(Base, TenantMixin):
    """Arqueo de cierre. Se escribe una vez y no se modifica."""
    __tablename__ = "cash_closures"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    cash_box_id = Column(UUID(as_uuid=True), ForeignKey("cash_boxes.id"), nullable=True, unique=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True, unique=True)

    total_cash = Column(Numeric(15, 2), nullable=False, default=0)
    total_transfer = Column(Numeric(15, 2), nullable=False, default=0)
    total_card = Column(Numeric(15, 2), nullable=False, default=0)
    total_other = Column(Numeric(15, 2), nullable=False, default=0)
    total_income = Column(Numeric(15, 2), nullable=False, default=0)
    total_expense = Column(Numeric(15, 2), nullable=False, default=0)
    expected_amount = Column(Numeric(15, 2), nullable=False)
    declared_amount = Column(Numeric(15, 2), nullable=False)
    difference = Column(Numeric(15, 2), nullable=False)
    breakdown = Column(JSON, nullable=False, default=dict)

    closed_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

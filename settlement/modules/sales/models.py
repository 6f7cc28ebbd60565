"""
Modelo de venta consumido por el módulo de cobros.

La creación, confirmación y cancelación de ventas pertenecen al servicio de
ventas. Aquí solo se leen total/estado y se administra la transición a "paid"
a través del recálculo de saldo.
"""
from decimal import Decimal

from sqlalchemy import Column, DateTime, Enum, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, validates
from uuid import uuid4
import enum

from settlement.database.database import Base
from settlement.common.mixins import TenantMixin, TimestampMixin
from settlement.core.exceptions import ConflictError


class SaleStatus(str, enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"


LOCKED_TOTAL_STATUSES = (SaleStatus.CONFIRMED, SaleStatus.PAID)


class Sale(Base, TenantMixin, TimestampMixin):
    __tablename__ = "sales"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    status = Column(Enum(SaleStatus), nullable=False, default=SaleStatus.DRAFT, index=True)

    total_amount = Column(Numeric(15, 2), nullable=False)
    paid_amount = Column(Numeric(15, 2), nullable=False, default=0)
    balance_amount = Column(Numeric(15, 2), nullable=False)
    payment_completed_at = Column(DateTime(timezone=True), nullable=True)

    payments = relationship("Payment", back_populates="sale")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.paid_amount is None:
            self.paid_amount = Decimal("0")
        if self.balance_amount is None and self.total_amount is not None:
            self.balance_amount = Decimal(self.total_amount) - Decimal(self.paid_amount)

    @validates("total_amount")
    def validate_total_amount(self, key, value):
        if self.status in LOCKED_TOTAL_STATUSES and self.total_amount is not None \
                and Decimal(value) != Decimal(self.total_amount):
            raise ConflictError(
                "El total de una venta confirmada no puede modificarse",
                code="SALE_TOTAL_LOCKED",
            )
        return value

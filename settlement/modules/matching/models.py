"""
Modelos para conciliación de transferencias bancarias entrantes.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Enum, Text, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from settlement.database.database import Base
from settlement.common.mixins import TenantMixin, TimestampMixin
from settlement.modules.payments.models import MatchResult


class TransferSource(str, enum.Enum):
    MANUAL = "manual"
    IMPORT = "import"


class IncomingTransfer(Base, TenantMixin, TimestampMixin):
    """Transferencia bancaria recibida (cargada a mano o importada del extracto)"""
    __tablename__ = "incoming_transfers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    amount = Column(Numeric(15, 2), nullable=False)
    reference = Column(String(255), nullable=True)
    origin_label = Column(String(255), nullable=True)
    raw_description = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, index=True)
    source = Column(Enum(TransferSource), nullable=False, default=TransferSource.MANUAL)
    matched_payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id"), nullable=True)

    matches = relationship("PaymentMatch", back_populates="transfer", cascade="all, delete-orphan")


class PaymentMatch(Base, TenantMixin, TimestampMixin):
    """Candidato evaluado por el motor de matching, incluidos los no_match"""
    __tablename__ = "payment_matches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    transfer_id = Column(UUID(as_uuid=True), ForeignKey("incoming_transfers.id"), nullable=False, index=True)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id"), nullable=False, index=True)
    confidence = Column(Numeric(5, 4), nullable=False)
    result = Column(Enum(MatchResult), nullable=False)
    reasons = Column(JSON, nullable=False, default=list)

    transfer = relationship("IncomingTransfer", back_populates="matches")

    __table_args__ = (
        UniqueConstraint("transfer_id", "payment_id", name="uq_payment_matches_transfer_payment"),
    )

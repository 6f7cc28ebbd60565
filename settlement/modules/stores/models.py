from sqlalchemy import Column, String, DateTime
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4

from settlement.database.database import Base
from settlement.common.mixins import TimestampMixin


class Store(Base, TimestampMixin):
    """Tienda (tenant). El slug 'store-default' se usa cuando no llega tenant."""
    __tablename__ = "stores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

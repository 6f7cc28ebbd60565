"""
Lectura de ventas para el módulo de cobros.
"""
from typing import Union
from uuid import UUID

from sqlalchemy.orm import Session

from settlement.core.exceptions import ConflictError, NotFoundError, ValidationError
from settlement.modules.sales.models import Sale, SaleStatus


class SaleReader:
    """Acceso de solo lectura a ventas del tenant"""

    def __init__(self, db: Session):
        self.db = db

    def get_sale(self, sale_id: Union[UUID, str], tenant_id: UUID) -> Sale:
        sale = self.db.query(Sale).filter(
            Sale.id == sale_id,
            Sale.tenant_id == tenant_id
        ).first()
        if not sale:
            raise NotFoundError("Venta no encontrada", code="SALE_NOT_FOUND")
        return sale

    def get_payable_sale(self, sale_id: Union[UUID, str], tenant_id: UUID) -> Sale:
        """Venta que acepta pagos: confirmada y con saldo"""
        sale = self.get_sale(sale_id, tenant_id)
        if sale.status == SaleStatus.DRAFT:
            raise ValidationError(
                "No se pueden agregar pagos a una venta en borrador. Confirma la venta primero.",
                code="SALE_NOT_CONFIRMED",
            )
        if sale.status == SaleStatus.CANCELLED:
            raise ConflictError("No se pueden agregar pagos a una venta cancelada", code="SALE_CANCELLED")
        if sale.status == SaleStatus.PAID:
            raise ConflictError("La venta ya está completamente pagada", code="SALE_ALREADY_PAID")
        return sale

"""
Recálculo de saldo de ventas.

paid_amount se deriva siempre desde la tabla de pagos (solo confirmados) y
balance_amount = total - paid. Nunca se incrementa un acumulado.
"""
from decimal import Decimal
from typing import Union
from uuid import UUID
import logging

from pydantic import BaseModel
from sqlalchemy.orm import Session

from settlement.common.mixins import utc_now
from settlement.core.config import settings
from settlement.core.exceptions import NotFoundError
from settlement.modules.payments.models import Payment, PaymentStatus
from settlement.modules.sales.models import Sale, SaleStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class BalanceResult(BaseModel):
    sale_id: UUID
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    is_paid: bool
    status: SaleStatus
    updated: bool


class SaleBalanceService:
    """Servicio de recálculo de saldos"""

    def __init__(self, db: Session):
        self.db = db

    def confirmed_total(self, sale_id: Union[UUID, str]) -> Decimal:
        amounts = self.db.query(Payment.amount).filter(
            Payment.sale_id == sale_id,
            Payment.status == PaymentStatus.CONFIRMED
        ).all()
        return sum((Decimal(row.amount) for row in amounts), Decimal("0")).quantize(CENT)

    def recalc_sale_balance(self, sale_id: Union[UUID, str], commit: bool = True) -> BalanceResult:
        """
        Recalcular paid/balance de una venta.

        - balance <= 0 con venta confirmada → "paid" y se sella payment_completed_at
        - una venta ya pagada conserva su estado y fecha, salvo que
          REOPEN_SALE_ON_UNDERPAYMENT esté activo y el saldo vuelva a ser positivo
        - solo escribe si algún valor cambió; dos llamadas seguidas dan el mismo resultado
        """
        sale = self.db.query(Sale).filter(Sale.id == sale_id).with_for_update().first()
        if not sale:
            raise NotFoundError("Venta no encontrada", code="SALE_NOT_FOUND")

        paid = self.confirmed_total(sale.id)
        total = Decimal(sale.total_amount).quantize(CENT)
        balance = total - paid
        is_paid = balance <= 0
        updated = False

        if Decimal(sale.paid_amount) != paid or Decimal(sale.balance_amount) != balance:
            sale.paid_amount = paid
            sale.balance_amount = balance
            updated = True

        if is_paid and sale.status == SaleStatus.CONFIRMED:
            sale.status = SaleStatus.PAID
            sale.payment_completed_at = utc_now()
            updated = True
        elif not is_paid and sale.status == SaleStatus.PAID and settings.REOPEN_SALE_ON_UNDERPAYMENT:
            sale.status = SaleStatus.CONFIRMED
            sale.payment_completed_at = None
            updated = True

        if updated:
            logger.info(
                f"Saldo recalculado para venta {sale.id}: pagado={paid} saldo={balance} estado={sale.status.value}"
            )
            if commit:
                self.db.commit()
                self.db.refresh(sale)
            else:
                self.db.flush()

        return BalanceResult(
            sale_id=sale.id,
            total_amount=total,
            paid_amount=paid,
            balance_amount=balance,
            is_paid=is_paid,
            status=sale.status,
            updated=updated,
        )

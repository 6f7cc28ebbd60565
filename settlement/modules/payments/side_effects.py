"""
Efectos secundarios de un cambio de estado de pago.

Se ejecutan después de confirmar el cambio primario. Un fallo se registra y
se encola para reintento, pero nunca revierte el cambio ni falla el request.
"""
from typing import Optional
import logging

from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.modules.cash.models import CashMovement
from settlement.modules.cash.service import PaymentCashLinker
from settlement.modules.payments.models import Payment, PaymentStatus
from settlement.modules.payments.state_machine import BALANCE_AFFECTING
from settlement.modules.payments.tasks import create_cash_movement_task, recalculate_sale_balance_task
from settlement.modules.sales.balance import BalanceResult, SaleBalanceService

logger = logging.getLogger(__name__)


def _enqueue(task, entity_id) -> None:
    if not settings.SECONDARY_EFFECT_RETRY_ENABLED:
        return
    try:
        task.delay(str(entity_id))
    except Exception:
        logger.exception(f"No se pudo encolar el reintento {task.name} para {entity_id}")


class PaymentSideEffects:

    def __init__(self, db: Session):
        self.db = db

    def after_status_change(self, payment: Payment, new_status: PaymentStatus) -> Optional[BalanceResult]:
        balance = None
        if new_status in BALANCE_AFFECTING:
            balance = self.recalculate_balance(payment)
        if new_status == PaymentStatus.CONFIRMED:
            self.register_cash_movement(payment)
        return balance

    def recalculate_balance(self, payment: Payment) -> Optional[BalanceResult]:
        sale_id, payment_id = payment.sale_id, payment.id
        try:
            return SaleBalanceService(self.db).recalc_sale_balance(sale_id)
        except Exception:
            self.db.rollback()
            logger.exception(
                "Error recalculando saldo después de cambio de estado",
                extra={"sale_id": str(sale_id), "payment_id": str(payment_id)},
            )
            _enqueue(recalculate_sale_balance_task, sale_id)
            return None

    def register_cash_movement(self, payment: Payment) -> Optional[CashMovement]:
        payment_id = payment.id
        try:
            movement = PaymentCashLinker(self.db).create_movement_for_payment(payment)
            self.db.commit()
            return movement
        except Exception:
            self.db.rollback()
            logger.exception(
                "Error creando movimiento de caja para pago confirmado",
                extra={"payment_id": str(payment_id)},
            )
            _enqueue(create_cash_movement_task, payment_id)
            return None

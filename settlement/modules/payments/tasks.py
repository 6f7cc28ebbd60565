"""
Tareas de Celery para reintentar efectos secundarios de pagos.

Cuando el recálculo de saldo o la creación del movimiento de caja fallan
después de un cambio de estado ya confirmado, se encolan aquí. El cambio
primario nunca se revierte.
"""
import logging
from uuid import UUID

from settlement.core.celery import celery_app
from settlement.database.database import SessionLocal
from settlement.modules.cash.service import PaymentCashLinker
from settlement.modules.payments.models import Payment
from settlement.modules.sales.balance import SaleBalanceService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def recalculate_sale_balance_task(self, sale_id: str):
    """
    Reintento del recálculo de saldo de una venta.
    """
    db = SessionLocal()
    try:
        result = SaleBalanceService(db).recalc_sale_balance(UUID(sale_id))
        logger.info(f"Saldo recalculado en segundo plano para venta {sale_id}")
        return {"status": "success", "sale_id": sale_id, "balance": str(result.balance_amount)}
    except Exception as exc:
        db.rollback()
        logger.error(f"Recalculo de saldo falló para venta {sale_id}: {str(exc)}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=30 * (2 ** self.request.retries))
        return {"status": "failed", "sale_id": sale_id, "error": str(exc)}
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def create_cash_movement_task(self, payment_id: str):
    """
    Reintento de la asociación pago → movimiento de caja.
    """
    db = SessionLocal()
    try:
        payment = db.query(Payment).filter(Payment.id == UUID(payment_id)).first()
        if payment is None:
            return {"status": "skipped", "payment_id": payment_id}
        movement = PaymentCashLinker(db).create_movement_for_payment(payment)
        db.commit()
        return {"status": "success", "payment_id": payment_id, "movement_id": str(movement.id) if movement else None}
    except Exception as exc:
        db.rollback()
        logger.error(f"Movimiento de caja falló para pago {payment_id}: {str(exc)}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=30 * (2 ** self.request.retries))
        return {"status": "failed", "payment_id": payment_id, "error": str(exc)}
    finally:
        db.close()

"""
Confirmación de pagos pendientes (manual, automática por matching o asistida).

Cada confirmación deja un PaymentConfirmation único por pago y un evento de
auditoría. Los efectos secundarios corren después del commit.
"""
from decimal import Decimal
from typing import Optional, Tuple
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.common.actors import Actor
from settlement.core.exceptions import ConflictError
from settlement.modules.matching.models import IncomingTransfer
from settlement.modules.payments.models import (
    Payment, PaymentConfirmation, PaymentStatus, PaymentEventAction, ConfirmationType
)
from settlement.modules.payments.side_effects import PaymentSideEffects
from settlement.modules.payments.state_machine import MANUALLY_CONFIRMABLE
from settlement.modules.sales.balance import BalanceResult

logger = logging.getLogger(__name__)


def auto_confirmation_reason(confidence: Decimal, reasons) -> str:
    return f"Auto-confirmado por matching con confidence {confidence}. Razones: {', '.join(reasons)}"


def assisted_confirmation_reason(confidence: Decimal) -> str:
    return f"Confirmado por usuario después de sugerencia (confidence: {confidence})"


class PaymentConfirmationService:

    def __init__(self, db: Session, ledger):
        self.db = db
        self.ledger = ledger
        self.effects = PaymentSideEffects(db)

    def confirm(self, payment: Payment, actor: Actor, confirmation_type: ConfirmationType,
                reason: Optional[str] = None, transfer: Optional[IncomingTransfer] = None,
                confidence: Optional[Decimal] = None) -> Tuple[Payment, Optional[BalanceResult]]:
        if payment.status not in MANUALLY_CONFIRMABLE:
            raise ConflictError(
                f"El pago no se puede confirmar (estado actual: {payment.status.value})",
                code="PAYMENT_NOT_CONFIRMABLE",
            )

        self.ledger.apply_transition(
            payment,
            PaymentStatus.CONFIRMED,
            actor,
            action=PaymentEventAction.CONFIRMED,
            reason=reason,
            payload={
                "confirmation_type": confirmation_type.value,
                "transfer_id": str(transfer.id) if transfer else None,
                "confidence": str(confidence) if confidence is not None else None,
            },
        )
        self.db.add(PaymentConfirmation(
            tenant_id=payment.tenant_id,
            payment_id=payment.id,
            transfer_id=transfer.id if transfer else None,
            confirmation_type=confirmation_type,
            confidence_score=confidence,
            actor_type=actor.type,
            confirmed_by=actor.user_id,
            reason=reason,
        ))
        if transfer is not None:
            transfer.matched_payment_id = payment.id
            payment.matched_transfer_id = transfer.id

        payment_id = payment.id
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("El pago ya fue confirmado", code="PAYMENT_ALREADY_CONFIRMED")

        self.db.refresh(payment)
        logger.info(f"Pago {payment_id} confirmado ({confirmation_type.value}) por {actor.type.value}")
        balance = self.effects.after_status_change(payment, PaymentStatus.CONFIRMED)
        return payment, balance

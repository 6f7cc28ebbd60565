"""
Conciliación de transferencias entrantes con pagos pendientes.

- Carga manual: solo calcula y guarda candidatos; la confirmación la decide
  una persona (confirmación asistida)
- Importación: además confirma automáticamente el mejor candidato matched_auto
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from settlement.common.actors import Actor
from settlement.core.config import settings
from settlement.core.exceptions import ConflictError, NotFoundError
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.matching.engine import classify, score_candidate
from settlement.modules.matching.models import IncomingTransfer, PaymentMatch, TransferSource
from settlement.modules.matching.schemas import (
    IncomingTransferCreate, IncomingTransferOut, MatchOut, MatchingStatusResponse,
    SuggestedTransfer, TransferImportResponse, TransferMatchingResult
)
from settlement.modules.payments.confirmation import (
    PaymentConfirmationService, assisted_confirmation_reason, auto_confirmation_reason
)
from settlement.modules.payments.models import ConfirmationType, MatchResult, Payment, PaymentStatus
from settlement.modules.payments.schemas import PaymentOut
from settlement.modules.payments.service import PaymentLedgerService
from settlement.modules.sales.balance import BalanceResult

logger = logging.getLogger(__name__)

ACCEPTABLE_RESULTS = (MatchResult.MATCHED_AUTO, MatchResult.MATCHED_SUGGESTED)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MatchingService:
    """Servicio de matching de transferencias"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = PaymentLedgerService(db)
        self.confirmations = PaymentConfirmationService(db, ledger=self.ledger)

    def create_transfer(self, tenant_id: UUID, data: IncomingTransferCreate,
                        source: TransferSource) -> IncomingTransfer:
        transfer = IncomingTransfer(
            tenant_id=tenant_id,
            amount=data.amount,
            reference=data.reference,
            origin_label=data.origin_label,
            raw_description=data.raw_description,
            received_at=_as_utc(data.received_at),
            source=source,
        )
        self.db.add(transfer)
        self.db.flush()
        return transfer

    def candidates(self, transfer: IncomingTransfer) -> List[Payment]:
        """Pagos pendientes del tenant creados dentro de la ventana de tiempo"""
        window = timedelta(hours=settings.MATCHING_WINDOW_HOURS)
        received_at = _as_utc(transfer.received_at)
        return self.db.query(Payment).filter(
            Payment.tenant_id == transfer.tenant_id,
            Payment.status == PaymentStatus.PENDING,
            Payment.created_at >= received_at - window,
            Payment.created_at <= received_at + window
        ).order_by(Payment.created_at).all()

    def run_matching(self, transfer: IncomingTransfer) -> List[PaymentMatch]:
        """Puntúa cada candidato, guarda todos los PaymentMatch y actualiza el mejor puntaje de cada pago"""
        matches = []
        for payment in self.candidates(transfer):
            confidence, reasons = score_candidate(transfer, payment)
            result = classify(confidence)
            match = PaymentMatch(
                tenant_id=transfer.tenant_id,
                transfer_id=transfer.id,
                payment_id=payment.id,
                confidence=confidence,
                result=result,
                reasons=reasons,
            )
            self.db.add(match)
            matches.append(match)

            if payment.match_confidence is None or confidence > payment.match_confidence:
                payment.match_confidence = confidence
                payment.match_result = result
                payment.matched_transfer_id = transfer.id if result != MatchResult.NO_MATCH else None

            logger.info(
                f"Matching transferencia {transfer.id} / pago {payment.id}: {confidence} ({result.value})",
                extra={"transfer_id": str(transfer.id), "payment_id": str(payment.id)},
            )

        self.db.flush()
        return matches

    def _result(self, transfer: IncomingTransfer, matches: List[PaymentMatch],
                auto_confirmed: Optional[UUID] = None) -> TransferMatchingResult:
        return TransferMatchingResult(
            transfer=IncomingTransferOut.model_validate(transfer),
            matches=[MatchOut.model_validate(m) for m in matches],
            auto_confirmed_payment_id=auto_confirmed,
        )

    def register_manual_transfer(self, tenant_id: UUID, data: IncomingTransferCreate) -> TransferMatchingResult:
        transfer = self.create_transfer(tenant_id, data, TransferSource.MANUAL)
        matches = self.run_matching(transfer)
        self.db.commit()
        self.db.refresh(transfer)
        return self._result(transfer, matches)

    def import_transfers(self, tenant_id: UUID, transfers: List[IncomingTransferCreate]) -> TransferImportResponse:
        results = []
        for data in transfers:
            transfer = self.create_transfer(tenant_id, data, TransferSource.IMPORT)
            matches = self.run_matching(transfer)
            self.db.commit()

            best = max(
                (m for m in matches if m.result == MatchResult.MATCHED_AUTO),
                key=lambda m: m.confidence,
                default=None,
            )
            auto_confirmed = None
            if best is not None:
                auto_confirmed = self._auto_confirm(transfer, best)

            self.db.refresh(transfer)
            results.append(self._result(transfer, matches, auto_confirmed))

        logger.info(f"{len(results)} transferencias importadas para tenant {tenant_id}")
        return TransferImportResponse(imported=len(results), results=results)

    def _auto_confirm(self, transfer: IncomingTransfer, match: PaymentMatch) -> Optional[UUID]:
        payment = self.ledger.get_payment(match.payment_id, transfer.tenant_id, for_update=True)
        if payment.status != PaymentStatus.PENDING:
            self.db.rollback()
            return None
        try:
            self.confirmations.confirm(
                payment,
                Actor.system("matching"),
                ConfirmationType.AUTO,
                reason=auto_confirmation_reason(match.confidence, match.reasons),
                transfer=transfer,
                confidence=match.confidence,
            )
        except ConflictError:
            logger.warning(
                f"No se pudo auto-confirmar el pago {match.payment_id}",
                extra={"transfer_id": str(transfer.id), "payment_id": str(match.payment_id)},
            )
            return None
        return payment.id

    def assisted_confirm(self, payment_id: UUID, transfer_id: UUID,
                         ctx: AuthContext) -> Tuple[Payment, Optional[BalanceResult]]:
        """Confirmación por usuario de una sugerencia del matching"""
        payment = self.ledger.get_payment(payment_id, ctx.tenant_id, for_update=True)
        match = self.db.query(PaymentMatch).filter(
            PaymentMatch.payment_id == payment.id,
            PaymentMatch.transfer_id == transfer_id,
            PaymentMatch.tenant_id == ctx.tenant_id
        ).first()
        if not match:
            raise NotFoundError("No existe sugerencia para esta transferencia", code="MATCH_NOT_FOUND")
        if match.result not in ACCEPTABLE_RESULTS:
            raise ConflictError(
                "La transferencia no es compatible con el pago",
                code="MATCH_NOT_SUGGESTED",
                details={"confidence": str(match.confidence)},
            )
        if match.transfer.matched_payment_id and match.transfer.matched_payment_id != payment.id:
            raise ConflictError("La transferencia ya fue asignada a otro pago", code="TRANSFER_ALREADY_MATCHED")

        return self.confirmations.confirm(
            payment,
            ctx.actor,
            ConfirmationType.ASSISTED,
            reason=assisted_confirmation_reason(match.confidence),
            transfer=match.transfer,
            confidence=match.confidence,
        )

    def matching_status(self, payment_id: UUID, tenant_id: UUID) -> MatchingStatusResponse:
        payment = self.ledger.get_payment(payment_id, tenant_id)
        matches = self.db.query(PaymentMatch).filter(
            PaymentMatch.payment_id == payment.id
        ).order_by(PaymentMatch.confidence.desc()).all()

        match_result = payment.match_result or MatchResult.NO_MATCH
        if payment.status == PaymentStatus.CONFIRMED:
            action, message = "confirmed", "Pago confirmado"
        elif match_result in ACCEPTABLE_RESULTS:
            action, message = "suggest", "Detectamos una transferencia compatible. ¿Confirmar?"
        else:
            action, message = "waiting", "Esperando transferencia"

        suggested = None
        if payment.matched_transfer_id:
            transfer = self.db.query(IncomingTransfer).filter(
                IncomingTransfer.id == payment.matched_transfer_id
            ).first()
            if transfer:
                suggested = SuggestedTransfer(
                    id=transfer.id,
                    amount=transfer.amount,
                    origin=transfer.origin_label or "Desconocido",
                    received_at=transfer.received_at,
                    raw_description=transfer.raw_description,
                )

        return MatchingStatusResponse(
            status=payment.status,
            confidence=payment.match_confidence or 0,
            match_result=match_result,
            action=action,
            message=message,
            suggested_transfer=suggested,
            matches=[MatchOut.model_validate(m) for m in matches],
            payment=PaymentOut.model_validate(payment),
        )

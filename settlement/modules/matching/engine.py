"""
Puntaje de coincidencia entre una transferencia entrante y un pago pendiente.

    +0.5  monto exacto (diferencia < 0.01)
    +0.3  referencia del pago dentro de la descripción
    +0.3  referencia del QR dentro de la descripción
    +0.4  referencia de la transferencia igual a la del pago o del QR
    -x    diferencia de monto relativa, tope 0.3

El resultado se acota a [0, 1].
"""
from decimal import Decimal
from typing import List, Tuple

from settlement.modules.matching.models import IncomingTransfer
from settlement.modules.payments.models import MatchResult, Payment

AMOUNT_TOLERANCE = Decimal("0.01")
AUTO_THRESHOLD = Decimal("0.9")
SUGGEST_THRESHOLD = Decimal("0.6")
MAX_AMOUNT_PENALTY = Decimal("0.3")
CONFIDENCE_QUANTUM = Decimal("0.0001")


def classify(confidence: Decimal) -> MatchResult:
    if confidence >= AUTO_THRESHOLD:
        return MatchResult.MATCHED_AUTO
    if confidence >= SUGGEST_THRESHOLD:
        return MatchResult.MATCHED_SUGGESTED
    return MatchResult.NO_MATCH


def score_candidate(transfer: IncomingTransfer, payment: Payment) -> Tuple[Decimal, List[str]]:
    transfer_amount = Decimal(transfer.amount)
    payment_amount = Decimal(payment.amount)
    transfer_reference = transfer.reference or ""
    description = transfer.raw_description or ""
    payment_reference = payment.reference or ""
    qr_reference = payment.qr_reference or ""

    confidence = Decimal("0")
    reasons: List[str] = []

    difference = abs(payment_amount - transfer_amount)
    if difference < AMOUNT_TOLERANCE:
        confidence += Decimal("0.5")
        reasons.append("Monto exacto")

    if payment_reference and payment_reference in description:
        confidence += Decimal("0.3")
        reasons.append("Reference encontrado en descripción")

    if qr_reference and qr_reference in description:
        confidence += Decimal("0.3")
        reasons.append("QR reference encontrado")

    if transfer_reference and transfer_reference in (payment_reference, qr_reference):
        confidence += Decimal("0.4")
        reasons.append("Reference exacto")

    if difference >= AMOUNT_TOLERANCE:
        penalty = min(difference / payment_amount, MAX_AMOUNT_PENALTY)
        confidence -= penalty
        reasons.append(f"Penalización por diferencia de monto: {difference.quantize(Decimal('0.01'))}")

    confidence = max(Decimal("0"), min(Decimal("1"), confidence))
    return confidence.quantize(CONFIDENCE_QUANTUM), reasons

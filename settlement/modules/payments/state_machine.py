"""
Máquina de estados de pagos.

    pending    -> confirmed | failed | refunded
    processing -> confirmed | failed | refunded
    confirmed  -> refunded
    failed     -> (terminal)
    refunded   -> (terminal)
"""
from typing import Dict, FrozenSet

from settlement.core.exceptions import ConflictError
from settlement.modules.payments.models import PaymentStatus


ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.CONFIRMED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.CONFIRMED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}),
    PaymentStatus.CONFIRMED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

MANUALLY_CONFIRMABLE = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})
DELETABLE = frozenset({PaymentStatus.PENDING})
BALANCE_AFFECTING = frozenset({PaymentStatus.CONFIRMED, PaymentStatus.REFUNDED})


class InvalidTransitionError(ConflictError):
    code_default = "INVALID_STATUS_TRANSITION"


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return PaymentStatus(target) in ALLOWED_TRANSITIONS[PaymentStatus(current)]


def ensure_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Transición inválida: {PaymentStatus(current).value} -> {PaymentStatus(target).value}",
            details={"from": PaymentStatus(current).value, "to": PaymentStatus(target).value},
        )

"""
Políticas de creación de pagos: clave de idempotencia, categoría del método
y estado inicial.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union
from uuid import UUID
import hashlib

from settlement.modules.payments.models import PaymentCategory, PaymentMethodType, PaymentStatus


CATEGORY_BY_METHOD_TYPE = {
    PaymentMethodType.CASH: PaymentCategory.MANUAL,
    PaymentMethodType.TRANSFER: PaymentCategory.MANUAL,
    PaymentMethodType.CARD: PaymentCategory.MANUAL,
    PaymentMethodType.OTHER: PaymentCategory.MANUAL,
    PaymentMethodType.QR: PaymentCategory.GATEWAY,
    PaymentMethodType.GATEWAY: PaymentCategory.GATEWAY,
    PaymentMethodType.MERCADOPAGO: PaymentCategory.EXTERNAL,
    PaymentMethodType.STRIPE: PaymentCategory.EXTERNAL,
    PaymentMethodType.PAYPAL: PaymentCategory.EXTERNAL,
}


def infer_payment_category(method_type: Union[PaymentMethodType, str]) -> PaymentCategory:
    return CATEGORY_BY_METHOD_TYPE[PaymentMethodType(method_type)]


def get_initial_payment_status(category: Union[PaymentCategory, str]) -> PaymentStatus:
    """Manual → confirmed (cargado por personal). Gateway/external → pending."""
    if PaymentCategory(category) is PaymentCategory.MANUAL:
        return PaymentStatus.CONFIRMED
    return PaymentStatus.PENDING


def resolve_initial_status(category: Union[PaymentCategory, str],
                           requested: Optional[PaymentStatus] = None) -> PaymentStatus:
    """
    Estado con el que nace el pago.

    Sin estado explícito decide la categoría. Un estado explícito se respeta
    salvo que sea incompatible: un pago que no es manual no puede nacer
    confirmado y ninguno puede nacer reembolsado.
    """
    if requested is None:
        return get_initial_payment_status(category)
    requested = PaymentStatus(requested)
    if requested is PaymentStatus.REFUNDED:
        raise ValueError("Un pago no puede crearse como reembolsado")
    if requested is PaymentStatus.CONFIRMED and PaymentCategory(category) is not PaymentCategory.MANUAL:
        raise ValueError("Un pago de gateway no puede crearse como confirmado")
    return requested


def _normalize_amount(amount) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def generate_idempotency_key(
    sale_id: Union[UUID, str],
    amount,
    provider: str,
    qr_type: Optional[str],
    payment_method_id: Optional[Union[UUID, str]],
    *,
    external_reference: Optional[str] = None,
) -> str:
    """
    Huella determinística de los campos que definen un pago.

    El monto se normaliza a 2 decimales para que 1000 y 1000.00 coincidan.
    external_reference solo se agrega cuando viene, para distinguir cobros
    manuales legítimamente repetidos (p. ej. dos transferencias del mismo monto).
    """
    parts = [
        str(sale_id),
        _normalize_amount(amount),
        getattr(provider, "value", provider) or "",
        qr_type or "",
        str(payment_method_id) if payment_method_id else "",
    ]
    if external_reference:
        parts.append(external_reference)
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

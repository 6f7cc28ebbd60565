"""
Servicios de negocio para cajas

Implementa:
- PaymentCashLinker: asocia pagos confirmados a un movimiento de caja (una vez)
- CashBoxService: apertura/cierre de la caja diaria del tenant
- CashRegisterService: apertura/cierre de cajas por vendedor

Reglas:
- Un solo período abierto por (tenant, fecha) o (tenant, vendedor); lo
  garantiza un índice único parcial, la consulta previa solo da un mejor mensaje
- Un período cerrado no acepta movimientos ni otro cierre
- Cerrar suma movimientos por (tipo, medio), compara contra lo declarado y
  registra la diferencia firmada
"""
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.common.mixins import utc_now
from settlement.core.config import settings
from settlement.core.exceptions import ConflictError, NotFoundError
from settlement.modules.cash.models import (
    CashBox, CashRegister, CashMovement, CashClosure, Seller,
    CashPeriodStatus, MovementType, MovementPaymentMethod
)
from settlement.modules.cash.schemas import (
    CashBoxOpen, CashClose, CashMovementCreate, CashRegisterOpen, CashRegisterClose, CashTotals
)
from settlement.modules.payments.models import Payment, PaymentMethodType, PaymentStatus

logger = logging.getLogger(__name__)

CashPeriod = Union[CashBox, CashRegister]

MOVEMENT_METHOD_BY_PAYMENT_TYPE = {
    PaymentMethodType.CASH: MovementPaymentMethod.CASH,
    PaymentMethodType.TRANSFER: MovementPaymentMethod.TRANSFER,
    PaymentMethodType.QR: MovementPaymentMethod.TRANSFER,
    PaymentMethodType.GATEWAY: MovementPaymentMethod.TRANSFER,
    PaymentMethodType.MERCADOPAGO: MovementPaymentMethod.TRANSFER,
    PaymentMethodType.STRIPE: MovementPaymentMethod.TRANSFER,
    PaymentMethodType.PAYPAL: MovementPaymentMethod.TRANSFER,
    PaymentMethodType.CARD: MovementPaymentMethod.CARD,
    PaymentMethodType.OTHER: MovementPaymentMethod.OTHER,
}


def current_business_date() -> date:
    return utc_now().date()


def movement_reference_for(payment: Payment) -> str:
    return f"Venta #{str(payment.sale_id)[:8]}"


def summarize_movements(movements: Iterable[CashMovement], opening) -> CashTotals:
    """Totales agrupados por (tipo, medio) y saldo esperado"""
    grouped: Dict[MovementType, Dict[str, Decimal]] = {
        MovementType.INCOME: defaultdict(lambda: Decimal("0")),
        MovementType.EXPENSE: defaultdict(lambda: Decimal("0")),
    }
    for movement in movements:
        grouped[movement.type][movement.payment_method.value] += Decimal(movement.amount)

    income = {m.value: grouped[MovementType.INCOME][m.value] for m in MovementPaymentMethod}
    expense = {m.value: grouped[MovementType.EXPENSE][m.value] for m in MovementPaymentMethod}
    total_income = sum(income.values(), Decimal("0"))
    total_expense = sum(expense.values(), Decimal("0"))
    opening = Decimal(opening or 0)

    return CashTotals(
        income_by_method=income,
        expense_by_method=expense,
        total_income=total_income,
        total_expense=total_expense,
        opening_balance=opening,
        expected_balance=opening + total_income - total_expense,
    )


def ensure_period_open(period: CashPeriod) -> None:
    if period.status != CashPeriodStatus.OPEN:
        raise ConflictError("La caja está cerrada y no admite cambios", code="CASH_PERIOD_CLOSED")


def build_closure(period: CashPeriod, totals: CashTotals, declared, user_id: Optional[UUID]) -> CashClosure:
    declared = Decimal(declared)
    closure = CashClosure(
        tenant_id=period.tenant_id,
        total_cash=totals.income_by_method[MovementPaymentMethod.CASH.value],
        total_transfer=totals.income_by_method[MovementPaymentMethod.TRANSFER.value],
        total_card=totals.income_by_method[MovementPaymentMethod.CARD.value],
        total_other=totals.income_by_method[MovementPaymentMethod.OTHER.value],
        total_income=totals.total_income,
        total_expense=totals.total_expense,
        expected_amount=totals.expected_balance,
        declared_amount=declared,
        difference=declared - totals.expected_balance,
        breakdown={
            "income": {k: str(v) for k, v in totals.income_by_method.items()},
            "expense": {k: str(v) for k, v in totals.expense_by_method.items()},
        },
        closed_by=user_id,
    )
    if isinstance(period, CashBox):
        closure.cash_box_id = period.id
    else:
        closure.cash_register_id = period.id
    return closure


# ===== PAGOS → MOVIMIENTOS =====

class PaymentCashLinker:
    """Asociación de pagos confirmados con movimientos de caja"""

    def __init__(self, db: Session):
        self.db = db

    def has_movement(self, payment_id: UUID) -> bool:
        return self.db.query(CashMovement.id).filter(CashMovement.payment_id == payment_id).first() is not None

    def open_box(self, tenant_id: UUID, business_date: Optional[date] = None) -> Optional[CashBox]:
        return self.db.query(CashBox).filter(
            CashBox.tenant_id == tenant_id,
            CashBox.business_date == (business_date or current_business_date()),
            CashBox.status == CashPeriodStatus.OPEN
        ).first()

    def open_register_for_seller(self, tenant_id: UUID, seller_id: UUID) -> Optional[CashRegister]:
        return self.db.query(CashRegister).filter(
            CashRegister.tenant_id == tenant_id,
            CashRegister.seller_id == seller_id,
            CashRegister.status == CashPeriodStatus.OPEN
        ).first()

    def require_open_period(self, tenant_id: UUID, seller_id: Optional[UUID] = None) -> Optional[CashPeriod]:
        """Período abierto en el que caerá el pago; falla si no hay ninguno"""
        if seller_id:
            register = self.open_register_for_seller(tenant_id, seller_id)
            if register is None and settings.REQUIRE_OPEN_CASH_PERIOD:
                raise ConflictError("No hay caja abierta para este vendedor", code="CASH_REGISTER_NOT_OPEN")
            return register

        box = self.open_box(tenant_id)
        if box is None and settings.REQUIRE_OPEN_CASH_PERIOD:
            raise ConflictError(
                "No hay caja abierta para hoy. Abre la caja antes de registrar pagos",
                code="CASH_BOX_NOT_OPEN",
            )
        return box

    def period_for_payment(self, payment: Payment) -> Optional[CashPeriod]:
        if payment.seller_id:
            return self.open_register_for_seller(payment.tenant_id, payment.seller_id)
        return self.open_box(payment.tenant_id)

    def create_movement_for_payment(self, payment: Payment,
                                    period: Optional[CashPeriod] = None) -> Optional[CashMovement]:
        """
        Crear el movimiento de ingreso de un pago confirmado.

        Devuelve None si el pago no está confirmado, ya tiene movimiento o no
        hay período abierto (se asociará cuando se abra uno).
        """
        if payment.status != PaymentStatus.CONFIRMED or self.has_movement(payment.id):
            return None

        period = period or self.period_for_payment(payment)
        if period is None:
            logger.info(f"Pago {payment.id} confirmado sin caja abierta; se asociará al abrir")
            return None
        ensure_period_open(period)

        movement = CashMovement(
            tenant_id=payment.tenant_id,
            type=MovementType.INCOME,
            payment_method=MOVEMENT_METHOD_BY_PAYMENT_TYPE.get(payment.method, MovementPaymentMethod.OTHER),
            amount=payment.amount,
            reference=movement_reference_for(payment),
            payment_id=payment.id,
            created_by=payment.confirmed_by or payment.created_by_id,
        )
        if isinstance(period, CashBox):
            movement.cash_box_id = period.id
        else:
            movement.cash_register_id = period.id

        self.db.add(movement)
        self.db.flush()
        return movement

    def attach_unlinked_payments(self, period: CashPeriod) -> int:
        """Asociar pagos confirmados que quedaron sin movimiento"""
        query = self.db.query(Payment).outerjoin(
            CashMovement, CashMovement.payment_id == Payment.id
        ).filter(
            Payment.tenant_id == period.tenant_id,
            Payment.status == PaymentStatus.CONFIRMED,
            CashMovement.id.is_(None)
        )
        if isinstance(period, CashRegister):
            query = query.filter(Payment.seller_id == period.seller_id)
        else:
            query = query.filter(Payment.seller_id.is_(None))

        associated = 0
        for payment in query.order_by(Payment.confirmed_at).all():
            if self.create_movement_for_payment(payment, period) is not None:
                associated += 1
        return associated

    def add_manual_movement(self, period: CashPeriod, data: CashMovementCreate,
                            user_id: Optional[UUID]) -> CashMovement:
        ensure_period_open(period)
        movement = CashMovement(
            tenant_id=period.tenant_id,
            type=data.type,
            payment_method=data.payment_method,
            amount=data.amount,
            reference=data.reference,
            purchase_id=data.purchase_id,
            created_by=user_id,
        )
        if isinstance(period, CashBox):
            movement.cash_box_id = period.id
        else:
            movement.cash_register_id = period.id
        self.db.add(movement)
        return movement


# ===== CAJA DIARIA =====

class CashBoxService:
    """Servicio para la caja diaria del tenant"""

    def __init__(self, db: Session):
        self.db = db
        self.linker = PaymentCashLinker(db)

    def get_cash_box(self, box_id: UUID, tenant_id: UUID) -> CashBox:
        box = self.db.query(CashBox).filter(
            CashBox.id == box_id,
            CashBox.tenant_id == tenant_id
        ).first()
        if not box:
            raise NotFoundError("Caja no encontrada", code="CASH_BOX_NOT_FOUND")
        return box

    def get_current_cash_box(self, tenant_id: UUID) -> Optional[CashBox]:
        return self.linker.open_box(tenant_id)

    def open_cash_box(self, tenant_id: UUID, data: CashBoxOpen, user_id: UUID) -> Tuple[CashBox, int]:
        """Abrir la caja del día y asociar pagos confirmados pendientes"""
        business_date = data.business_date or current_business_date()
        if self.linker.open_box(tenant_id, business_date):
            raise ConflictError(
                f"Ya existe una caja abierta para la fecha {business_date.isoformat()}",
                code="CASH_BOX_ALREADY_OPEN",
            )

        box = CashBox(
            tenant_id=tenant_id,
            business_date=business_date,
            status=CashPeriodStatus.OPEN,
            opening_balance=data.opening_balance,
            opened_by=user_id,
            opened_at=utc_now(),
            notes=data.notes,
        )
        try:
            self.db.add(box)
            self.db.flush()
            associated = self.linker.attach_unlinked_payments(box)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                f"Ya existe una caja abierta para la fecha {business_date.isoformat()}",
                code="CASH_BOX_ALREADY_OPEN",
            )

        self.db.refresh(box)
        logger.info(f"Caja {box.id} abierta para {business_date}; pagos asociados: {associated}")
        return box, associated

    def add_movement(self, box_id: UUID, tenant_id: UUID, data: CashMovementCreate,
                     user_id: UUID) -> CashMovement:
        box = self.get_cash_box(box_id, tenant_id)
        movement = self.linker.add_manual_movement(box, data, user_id)
        self.db.commit()
        self.db.refresh(movement)
        return movement

    def get_totals(self, box: CashBox) -> CashTotals:
        return summarize_movements(box.movements, box.opening_balance)

    def close_cash_box(self, box_id: UUID, tenant_id: UUID, data: CashClose,
                       user_id: UUID) -> Tuple[CashBox, CashClosure]:
        """Cerrar caja con arqueo. El cierre es irreversible."""
        box = self.db.query(CashBox).filter(
            CashBox.id == box_id,
            CashBox.tenant_id == tenant_id
        ).with_for_update().first()
        if not box:
            raise NotFoundError("Caja no encontrada", code="CASH_BOX_NOT_FOUND")
        if box.status == CashPeriodStatus.CLOSED:
            raise ConflictError("La caja ya está cerrada", code="CASH_BOX_ALREADY_CLOSED")

        totals = self.get_totals(box)
        closure = build_closure(box, totals, data.closing_balance, user_id)

        box.status = CashPeriodStatus.CLOSED
        box.closing_balance = data.closing_balance
        box.expected_balance = totals.expected_balance
        box.difference = closure.difference
        box.closed_by = user_id
        box.closed_at = utc_now()
        if data.notes:
            box.notes = data.notes

        self.db.add(closure)
        self.db.commit()
        self.db.refresh(box)
        self.db.refresh(closure)
        logger.info(f"Caja {box.id} cerrada; diferencia {closure.difference}")
        return box, closure

    def pending_payments_count(self, tenant_id: UUID) -> int:
        """Pagos confirmados sin movimiento de caja"""
        return self.db.query(Payment).outerjoin(
            CashMovement, CashMovement.payment_id == Payment.id
        ).filter(
            Payment.tenant_id == tenant_id,
            Payment.status == PaymentStatus.CONFIRMED,
            Payment.seller_id.is_(None),
            CashMovement.id.is_(None)
        ).count()


# ===== CAJA POR VENDEDOR =====

class CashRegisterService:
    """Servicio para cajas por vendedor"""

    def __init__(self, db: Session):
        self.db = db
        self.linker = PaymentCashLinker(db)

    def get_cash_register(self, register_id: UUID, tenant_id: UUID) -> CashRegister:
        register = self.db.query(CashRegister).filter(
            CashRegister.id == register_id,
            CashRegister.tenant_id == tenant_id
        ).first()
        if not register:
            raise NotFoundError("Caja registradora no encontrada", code="CASH_REGISTER_NOT_FOUND")
        return register

    def open_cash_register(self, tenant_id: UUID, data: CashRegisterOpen,
                           user_id: UUID) -> Tuple[CashRegister, int]:
        seller = self.db.query(Seller).filter(
            Seller.id == data.seller_id,
            Seller.tenant_id == tenant_id,
            Seller.is_active.is_(True)
        ).first()
        if not seller:
            raise NotFoundError("Vendedor no encontrado o inactivo", code="SELLER_NOT_FOUND")

        if self.linker.open_register_for_seller(tenant_id, seller.id):
            raise ConflictError(
                f"El vendedor '{seller.name}' ya tiene una caja abierta",
                code="CASH_REGISTER_ALREADY_OPEN",
            )

        register = CashRegister(
            tenant_id=tenant_id,
            seller_id=seller.id,
            status=CashPeriodStatus.OPEN,
            opening_amount=data.opening_amount,
            opened_by=user_id,
            opened_at=utc_now(),
            notes=data.notes,
        )
        try:
            self.db.add(register)
            self.db.flush()
            associated = self.linker.attach_unlinked_payments(register)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                f"El vendedor '{seller.name}' ya tiene una caja abierta",
                code="CASH_REGISTER_ALREADY_OPEN",
            )

        self.db.refresh(register)
        return register, associated

    def close_cash_register(self, register_id: UUID, tenant_id: UUID, data: CashRegisterClose,
                            user_id: UUID) -> Tuple[CashRegister, CashClosure]:
        register = self.db.query(CashRegister).filter(
            CashRegister.id == register_id,
            CashRegister.tenant_id == tenant_id
        ).with_for_update().first()
        if not register:
            raise NotFoundError("Caja registradora no encontrada", code="CASH_REGISTER_NOT_FOUND")
        if register.status == CashPeriodStatus.CLOSED:
            raise ConflictError("La caja ya está cerrada", code="CASH_REGISTER_ALREADY_CLOSED")

        totals = summarize_movements(register.movements, register.opening_amount)
        closure = build_closure(register, totals, data.closing_amount, user_id)

        register.status = CashPeriodStatus.CLOSED
        register.closing_amount = data.closing_amount
        register.expected_amount = totals.expected_balance
        register.difference = closure.difference
        register.closed_by = user_id
        register.closed_at = utc_now()
        if data.notes:
            register.notes = data.notes

        self.db.add(closure)
        self.db.commit()
        self.db.refresh(register)
        self.db.refresh(closure)
        return register, closure

    def list_movements(self, register: CashRegister) -> List[CashMovement]:
        return list(register.movements)

"""
Servicios de negocio para pagos

Implementa:
- PaymentLedgerService: creación idempotente de pagos (manual, QR, Mercado Pago),
  transiciones de estado auditadas, confirmación manual, reembolso y eliminación
- PaymentMethodService / PaymentGatewayConfigService: configuración por tenant

Todo cambio de estado pasa por apply_transition, que valida contra la tabla
de la máquina de estados y agrega un PaymentEvent inmutable. El recálculo de
saldo y el movimiento de caja corren después del commit como efectos
secundarios que no pueden revertir el cambio primario.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.common.actors import Actor
from settlement.common.mixins import utc_now
from settlement.core.config import settings
from settlement.core.exceptions import ConflictError, GatewayError, NotFoundError, ValidationError
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.cash.service import PaymentCashLinker
from settlement.modules.gateways.base import CreatePaymentInput, GatewayProvider, RefundInput
from settlement.modules.gateways.generic_qr import GENERIC_QR_PROVIDER
from settlement.modules.gateways.registry import GatewayRegistry
from settlement.modules.matching.models import PaymentMatch
from settlement.modules.payments.models import (
    Payment, PaymentEvent, PaymentMethod, PaymentGatewayConfig, PaymentConfirmation,
    PaymentStatus, PaymentCategory, PaymentMethodType, PaymentProvider,
    PaymentEventAction, ConfirmationType
)
from settlement.modules.payments.policies import (
    generate_idempotency_key, get_initial_payment_status, infer_payment_category, resolve_initial_status
)
from settlement.modules.payments.schemas import (
    ManualPaymentCreate, QRPaymentCreate, ExternalPaymentCreate,
    PaymentMethodCreate, PaymentMethodUpdate, PaymentGatewayCreate, PaymentGatewayUpdate
)
from settlement.modules.payments.confirmation import PaymentConfirmationService
from settlement.modules.payments.side_effects import PaymentSideEffects
from settlement.modules.payments.state_machine import (
    DELETABLE, MANUALLY_CONFIRMABLE, ensure_transition
)
from settlement.modules.sales.balance import BalanceResult
from settlement.modules.sales.models import Sale
from settlement.modules.sales.service import SaleReader

logger = logging.getLogger(__name__)

QR_METHOD_CODE = "qr_generic"
MERCADOPAGO_METHOD_CODE = "mercadopago_default"


def sale_reference(sale_id: UUID) -> str:
    return f"SALE-{sale_id.hex[:8].upper()}"


class PaymentCreation:
    """Resultado de crear (o deduplicar) un pago"""

    def __init__(self, payment: Payment, created: bool, checkout_url: Optional[str] = None,
                 balance: Optional[BalanceResult] = None):
        self.payment = payment
        self.created = created
        self.checkout_url = checkout_url
        self.balance = balance


class PaymentLedgerService:
    """Servicio central del ciclo de vida de pagos"""

    def __init__(self, db: Session, registry: Optional[GatewayRegistry] = None):
        self.db = db
        self.registry = registry
        self.sales = SaleReader(db)
        self.cash = PaymentCashLinker(db)
        self.effects = PaymentSideEffects(db)

    # ===== CONSULTAS =====

    def get_payment(self, payment_id: UUID, tenant_id: UUID, for_update: bool = False) -> Payment:
        query = self.db.query(Payment).filter(
            Payment.id == payment_id,
            Payment.tenant_id == tenant_id
        )
        if for_update:
            query = query.with_for_update()
        payment = query.first()
        if not payment:
            raise NotFoundError("Pago no encontrado", code="PAYMENT_NOT_FOUND")
        return payment

    def list_sale_payments(self, sale_id: UUID, tenant_id: UUID) -> List[Payment]:
        self.sales.get_sale(sale_id, tenant_id)
        return self.db.query(Payment).filter(
            Payment.sale_id == sale_id,
            Payment.tenant_id == tenant_id
        ).order_by(Payment.created_at).all()

    def list_events(self, payment_id: UUID, tenant_id: UUID) -> List[PaymentEvent]:
        return self.db.query(PaymentEvent).filter(
            PaymentEvent.payment_id == payment_id,
            PaymentEvent.tenant_id == tenant_id
        ).order_by(PaymentEvent.created_at).all()

    def find_by_idempotency_key(self, key: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.idempotency_key == key).first()

    # ===== AUDITORÍA Y TRANSICIONES =====

    def record_event(self, payment: Payment, action: PaymentEventAction, actor: Actor,
                     previous: Optional[PaymentStatus], new: Optional[PaymentStatus],
                     reason: Optional[str] = None, payload: Optional[Dict[str, Any]] = None) -> PaymentEvent:
        event = PaymentEvent(
            tenant_id=payment.tenant_id,
            payment_id=payment.id,
            sale_id=payment.sale_id,
            action=action,
            previous_state=previous,
            new_state=new,
            actor_type=actor.type,
            actor_id=actor.user_id,
            actor_label=actor.label,
            reason=reason,
            payload=payload,
        )
        self.db.add(event)
        return event

    def apply_transition(self, payment: Payment, target: PaymentStatus, actor: Actor,
                         action: PaymentEventAction = PaymentEventAction.STATUS_CHANGED,
                         reason: Optional[str] = None,
                         payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Aplica target al pago si la tabla lo permite.

        Devuelve False si el pago ya está en ese estado. Lanza
        InvalidTransitionError si la transición no está en la tabla. No hace commit.
        """
        current = payment.status
        if current == target:
            return False
        ensure_transition(current, target)

        payment.status = target
        if target == PaymentStatus.CONFIRMED:
            payment.confirmed_at = utc_now()
            payment.confirmed_by = actor.user_id
        self.record_event(payment, action, actor, current, target, reason=reason, payload=payload)
        return True

    def _insert_payment(self, payment: Payment, actor: Actor) -> Tuple[Payment, bool]:
        """Inserta el pago; si otra request ganó la carrera por la clave devuelve la existente"""
        try:
            self.db.add(payment)
            self.db.flush()
            self.record_event(
                payment, PaymentEventAction.CREATED, actor, None, payment.status,
                payload={"amount": str(payment.amount), "provider": payment.provider.value},
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_by_idempotency_key(payment.idempotency_key)
            if existing is None:
                raise ConflictError("Error de integridad al crear el pago", code="PAYMENT_CONFLICT")
            logger.info(f"Pago duplicado detectado por constraint, se devuelve {existing.id}")
            return existing, False

        self.db.refresh(payment)
        logger.info(
            f"Pago {payment.id} creado para venta {payment.sale_id}: "
            f"{payment.amount} {payment.provider.value} ({payment.status.value})"
        )
        return payment, True

    def _ensure_amount_within_balance(self, sale: Sale, amount: Decimal) -> None:
        if Decimal(amount) > Decimal(sale.balance_amount):
            raise ValidationError(
                "El monto excede el saldo pendiente de la venta",
                code="AMOUNT_EXCEEDS_BALANCE",
                details={"amount": str(amount), "balance": str(sale.balance_amount)},
            )

    def _resolve_gateway_config(self, tenant_id: UUID, provider: GatewayProvider,
                                required: bool) -> Optional[PaymentGatewayConfig]:
        gateway = self.db.query(PaymentGatewayConfig).filter(
            PaymentGatewayConfig.tenant_id == tenant_id,
            PaymentGatewayConfig.provider == provider.value,
            PaymentGatewayConfig.enabled.is_(True)
        ).first()
        if gateway is None and required:
            raise ValidationError(
                f"El gateway {provider.value} no está configurado o habilitado para este tenant",
                code="GATEWAY_NOT_CONFIGURED",
            )
        return gateway

    def _gateway(self, provider: GatewayProvider, config: Optional[PaymentGatewayConfig],
                 overrides: Optional[Dict[str, Any]] = None):
        if self.registry is None:
            raise ValidationError("No hay registro de gateways disponible", code="GATEWAY_NOT_REGISTERED")
        gateway_config = dict((config.config if config else None) or {})
        gateway_config.update(overrides or {})
        return self.registry.create(provider, (config.credentials if config else None) or {}, gateway_config)

    def _ensure_method(self, tenant_id: UUID, code: str, label: str, method_type: PaymentMethodType,
                       category: PaymentCategory, metadata: Dict[str, Any]) -> PaymentMethod:
        method = self.db.query(PaymentMethod).filter(
            PaymentMethod.tenant_id == tenant_id,
            PaymentMethod.code == code
        ).first()
        if method:
            return method

        method = PaymentMethod(
            tenant_id=tenant_id,
            code=code,
            label=label,
            type=method_type,
            payment_category=category,
            is_active=True,
            method_metadata=metadata,
        )
        try:
            self.db.add(method)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self.db.query(PaymentMethod).filter(
                PaymentMethod.tenant_id == tenant_id,
                PaymentMethod.code == code
            ).one()
        self.db.refresh(method)
        logger.info(f"Método de pago '{code}' creado automáticamente para tenant {tenant_id}")
        return method

    # ===== CREACIÓN =====

    def create_manual_payment(self, sale_id: UUID, data: ManualPaymentCreate,
                              ctx: AuthContext) -> PaymentCreation:
        """Crear pago manual. Los de categoría manual nacen confirmados salvo estado explícito."""
        sale = self.sales.get_sale(sale_id, ctx.tenant_id)

        method_type = data.method
        category = None
        if data.payment_method_id:
            method = self.db.query(PaymentMethod).filter(
                PaymentMethod.id == data.payment_method_id,
                PaymentMethod.tenant_id == ctx.tenant_id,
                PaymentMethod.is_active.is_(True)
            ).first()
            if not method:
                raise NotFoundError("Método de pago no encontrado o inactivo", code="PAYMENT_METHOD_NOT_FOUND")
            method_type = method.type
            category = method.payment_category
        category = category or infer_payment_category(method_type)

        try:
            status = resolve_initial_status(category, data.status)
        except ValueError as e:
            raise ValidationError(str(e), code="INVALID_INITIAL_STATUS")

        key = generate_idempotency_key(
            sale.id, data.amount, PaymentProvider.MANUAL, None, data.payment_method_id,
            external_reference=data.reference,
        )
        existing = self.find_by_idempotency_key(key)
        if existing:
            return PaymentCreation(existing, created=False)

        self.sales.get_payable_sale(sale.id, ctx.tenant_id)
        self._ensure_amount_within_balance(sale, data.amount)
        period = self.cash.require_open_period(ctx.tenant_id, data.seller_id)

        payment = Payment(
            tenant_id=ctx.tenant_id,
            sale_id=sale.id,
            payment_method_id=data.payment_method_id,
            seller_id=data.seller_id,
            cash_register_id=period.id if data.seller_id and period is not None else None,
            status=status,
            amount=data.amount,
            provider=PaymentProvider.MANUAL,
            method=method_type,
            reference=data.reference,
            proof_type=data.proof_type,
            proof_reference=data.proof_reference,
            terminal_id=data.terminal_id,
            idempotency_key=key,
            created_by_type=ctx.actor.type,
            created_by_id=ctx.user_id,
        )
        if status == PaymentStatus.CONFIRMED:
            payment.confirmed_at = utc_now()
            payment.confirmed_by = ctx.user_id

        payment, created = self._insert_payment(payment, ctx.actor)
        balance = None
        if created and payment.status == PaymentStatus.CONFIRMED:
            balance = self.effects.after_status_change(payment, PaymentStatus.CONFIRMED)
        return PaymentCreation(payment, created=created, balance=balance)

    def create_qr_payment(self, sale_id: UUID, data: QRPaymentCreate, ctx: AuthContext) -> PaymentCreation:
        """Crear pago QR interoperable. Nace pending hasta conciliar la transferencia."""
        sale = self.sales.get_sale(sale_id, ctx.tenant_id)
        amount = data.amount or Decimal(sale.balance_amount)
        if amount <= 0:
            raise ValidationError("La venta no tiene saldo pendiente", code="NO_BALANCE")

        method = self._ensure_method(
            ctx.tenant_id, QR_METHOD_CODE, "QR interoperable", PaymentMethodType.QR,
            PaymentCategory.GATEWAY, {"provider": GENERIC_QR_PROVIDER},
        )
        key = generate_idempotency_key(
            sale.id, amount, PaymentProvider.QR, data.amount_mode.value, method.id
        )
        existing = self.find_by_idempotency_key(key)
        if existing:
            return PaymentCreation(existing, created=False)

        self.sales.get_payable_sale(sale.id, ctx.tenant_id)
        self._ensure_amount_within_balance(sale, amount)
        period = self.cash.require_open_period(ctx.tenant_id, data.seller_id)

        config = self._resolve_gateway_config(ctx.tenant_id, GatewayProvider.QR, required=False)
        gateway = self._gateway(GatewayProvider.QR, config)
        reference = sale_reference(sale.id)
        result = gateway.create_payment(CreatePaymentInput(
            sale_id=str(sale.id),
            amount=amount,
            external_reference=reference,
            metadata={"amount_mode": data.amount_mode.value},
        ))
        if not result.success:
            raise ValidationError(
                result.error.message if result.error else "No se pudo generar el QR",
                code=result.error.code if result.error else "QR_GENERATION_FAILED",
                details=result.error.details if result.error else None,
            )

        payment = Payment(
            tenant_id=ctx.tenant_id,
            sale_id=sale.id,
            payment_method_id=method.id,
            seller_id=data.seller_id,
            cash_register_id=period.id if data.seller_id and period is not None else None,
            status=get_initial_payment_status(PaymentCategory.GATEWAY),
            amount=amount,
            provider=PaymentProvider.QR,
            method=PaymentMethodType.QR,
            reference=reference,
            external_reference=reference,
            idempotency_key=key,
            gateway_metadata={"qr_code": result.qr_code, **result.metadata},
            created_by_type=ctx.actor.type,
            created_by_id=ctx.user_id,
        )
        payment, created = self._insert_payment(payment, ctx.actor)
        return PaymentCreation(payment, created=created)

    def create_external_payment(self, sale_id: UUID, data: ExternalPaymentCreate,
                                ctx: AuthContext) -> PaymentCreation:
        """Crear preference de Mercado Pago y el pago pending que la representa"""
        sale = self.sales.get_sale(sale_id, ctx.tenant_id)
        amount = data.amount or Decimal(sale.balance_amount)
        if amount <= 0:
            raise ValidationError("La venta no tiene saldo pendiente", code="NO_BALANCE")

        config = self._resolve_gateway_config(ctx.tenant_id, GatewayProvider.MERCADOPAGO, required=True)
        method = self._ensure_method(
            ctx.tenant_id, MERCADOPAGO_METHOD_CODE, "Mercado Pago", PaymentMethodType.MERCADOPAGO,
            PaymentCategory.EXTERNAL, {"provider": GatewayProvider.MERCADOPAGO.value},
        )
        key = generate_idempotency_key(sale.id, amount, PaymentProvider.MERCADOPAGO, None, method.id)
        existing = self.find_by_idempotency_key(key)
        if existing:
            return PaymentCreation(
                existing, created=False,
                checkout_url=(existing.gateway_metadata or {}).get("checkout_url"),
            )

        self.sales.get_payable_sale(sale.id, ctx.tenant_id)
        self._ensure_amount_within_balance(sale, amount)
        period = self.cash.require_open_period(ctx.tenant_id, data.seller_id)

        gateway = self._gateway(GatewayProvider.MERCADOPAGO, config, overrides={
            "notification_url": (config.config or {}).get("notification_url")
            or f"{settings.PUBLIC_BASE_URL}/api/v1/webhooks/mercadopago?tenant_id={ctx.tenant_id}",
            "return_url": (config.config or {}).get("return_url")
            or f"{settings.FRONTEND_URL}/sales/{sale.id}",
        })
        result = gateway.create_payment(CreatePaymentInput(
            sale_id=str(sale.id),
            amount=amount,
            description=data.description or f"Venta #{str(sale.id)[:8]}",
            metadata={"idempotency_key": key, "tenant_id": str(ctx.tenant_id)},
        ))
        if not result.success:
            error = result.error
            logger.warning(f"Mercado Pago rechazó la preference para venta {sale.id}: {error.code if error else '-'}")
            raise GatewayError(
                error.message if error else "Error al crear preference en Mercado Pago",
                code=error.code if error else "PREFERENCE_CREATION_FAILED",
                details=error.details if error else None,
            )

        payment = Payment(
            tenant_id=ctx.tenant_id,
            sale_id=sale.id,
            payment_method_id=method.id,
            seller_id=data.seller_id,
            cash_register_id=period.id if data.seller_id and period is not None else None,
            status=get_initial_payment_status(PaymentCategory.EXTERNAL),
            amount=amount,
            provider=PaymentProvider.MERCADOPAGO,
            method=PaymentMethodType.MERCADOPAGO,
            external_reference=result.payment_id,
            idempotency_key=key,
            gateway_metadata={
                **result.metadata,
                "provider": GatewayProvider.MERCADOPAGO.value,
                "checkout_url": result.checkout_url,
            },
            created_by_type=ctx.actor.type,
            created_by_id=ctx.user_id,
        )
        payment, created = self._insert_payment(payment, ctx.actor)
        return PaymentCreation(payment, created=created, checkout_url=result.checkout_url)

    # ===== CAMBIOS DE ESTADO =====

    def confirm_payment(self, payment_id: UUID, ctx: AuthContext,
                        notes: Optional[str] = None) -> Tuple[Payment, Optional[BalanceResult]]:
        """Confirmación manual; solo desde pending o processing"""
        payment = self.get_payment(payment_id, ctx.tenant_id, for_update=True)
        return PaymentConfirmationService(self.db, ledger=self).confirm(
            payment,
            ctx.actor,
            ConfirmationType.MANUAL,
            reason=notes or "Confirmado manualmente",
        )

    def refund_payment(self, payment_id: UUID, ctx: AuthContext,
                       reason: Optional[str] = None) -> Tuple[Payment, Optional[BalanceResult]]:
        """
        Reembolso total de un pago confirmado.

        Para pagos de Mercado Pago se pide el reembolso al gateway antes de
        cambiar el estado; si el gateway lo rechaza el pago queda igual.
        """
        payment = self.get_payment(payment_id, ctx.tenant_id, for_update=True)
        if payment.status != PaymentStatus.CONFIRMED:
            raise ConflictError(
                f"Solo se pueden reembolsar pagos confirmados (estado actual: {payment.status.value})",
                code="PAYMENT_NOT_REFUNDABLE",
            )

        if payment.provider != PaymentProvider.MANUAL:
            provider = GatewayProvider(payment.provider.value)
            gateway_payment_id = (payment.gateway_metadata or {}).get("gateway_payment_id")
            if provider == GatewayProvider.QR:
                gateway_payment_id = gateway_payment_id or payment.external_reference
            if not gateway_payment_id:
                raise ConflictError(
                    "El pago no tiene id del gateway asociado; no se puede reembolsar",
                    code="GATEWAY_PAYMENT_ID_MISSING",
                )
            config = self._resolve_gateway_config(
                ctx.tenant_id, provider, required=provider == GatewayProvider.MERCADOPAGO
            )
            result = self._gateway(provider, config).refund(
                RefundInput(payment_id=gateway_payment_id, reason=reason)
            )
            if not result.success:
                raise GatewayError(
                    result.error.message if result.error else "El gateway rechazó el reembolso",
                    code=result.error.code if result.error else "REFUND_FAILED",
                    details=result.error.details if result.error else None,
                )

        self.apply_transition(
            payment, PaymentStatus.REFUNDED, ctx.actor,
            action=PaymentEventAction.REFUNDED, reason=reason or "Reembolso",
        )
        self.db.commit()
        self.db.refresh(payment)
        balance = self.effects.after_status_change(payment, PaymentStatus.REFUNDED)
        return payment, balance

    def delete_payment(self, payment_id: UUID, ctx: AuthContext) -> None:
        """Eliminar un pago; solo permitido mientras está pending"""
        payment = self.get_payment(payment_id, ctx.tenant_id, for_update=True)
        if payment.status not in DELETABLE:
            raise ConflictError(
                f"Solo se pueden eliminar pagos pendientes (estado actual: {payment.status.value})",
                code="PAYMENT_NOT_DELETABLE",
            )
        exists_confirmation = self.db.query(PaymentConfirmation.id).filter(
            PaymentConfirmation.payment_id == payment.id
        ).first()
        if exists_confirmation:
            raise ConflictError("El pago tiene una confirmación registrada", code="PAYMENT_NOT_DELETABLE")

        self.db.query(PaymentMatch).filter(PaymentMatch.payment_id == payment.id).delete(synchronize_session=False)
        self.record_event(
            payment, PaymentEventAction.DELETED, ctx.actor, payment.status, None,
            payload={"amount": str(payment.amount), "external_reference": payment.external_reference},
        )
        self.db.delete(payment)
        self.db.commit()
        logger.info(f"Pago {payment_id} eliminado por {ctx.user_id}")


class PaymentMethodService:
    """Métodos de pago por tenant"""

    def __init__(self, db: Session):
        self.db = db

    def list_methods(self, tenant_id: UUID, active_only: bool = False) -> List[PaymentMethod]:
        query = self.db.query(PaymentMethod).filter(PaymentMethod.tenant_id == tenant_id)
        if active_only:
            query = query.filter(PaymentMethod.is_active.is_(True))
        return query.order_by(PaymentMethod.code).all()

    def create_method(self, tenant_id: UUID, data: PaymentMethodCreate) -> PaymentMethod:
        method = PaymentMethod(
            tenant_id=tenant_id,
            code=data.code,
            label=data.label,
            type=data.type,
            payment_category=data.payment_category or infer_payment_category(data.type),
            is_active=data.is_active,
            method_metadata=data.metadata,
        )
        try:
            self.db.add(method)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Ya existe un método de pago con código '{data.code}'", code="DUPLICATE_CODE")
        self.db.refresh(method)
        return method

    def get_method(self, method_id: UUID, tenant_id: UUID) -> PaymentMethod:
        method = self.db.query(PaymentMethod).filter(
            PaymentMethod.id == method_id,
            PaymentMethod.tenant_id == tenant_id
        ).first()
        if not method:
            raise NotFoundError("Método de pago no encontrado", code="PAYMENT_METHOD_NOT_FOUND")
        return method

    def update_method(self, method_id: UUID, tenant_id: UUID, data: PaymentMethodUpdate) -> PaymentMethod:
        """
        Actualización parcial. Si cambia el tipo y no se envía categoría, la
        categoría se vuelve a inferir.
        """
        method = self.get_method(method_id, tenant_id)
        changes = data.model_dump(exclude_unset=True)

        if "metadata" in changes:
            method.method_metadata = changes.pop("metadata")
        if "type" in changes and "payment_category" not in changes:
            changes["payment_category"] = infer_payment_category(changes["type"])
        for field, value in changes.items():
            if value is not None:
                setattr(method, field, value)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Ya existe un método de pago con código '{data.code}'", code="DUPLICATE_CODE")
        self.db.refresh(method)
        return method

    def deactivate_method(self, method_id: UUID, tenant_id: UUID) -> PaymentMethod:
        """Baja lógica: los pagos existentes siguen apuntando al método"""
        method = self.get_method(method_id, tenant_id)
        method.is_active = False
        self.db.commit()
        self.db.refresh(method)
        logger.info(f"Método de pago '{method.code}' desactivado para tenant {tenant_id}")
        return method


class PaymentGatewayConfigService:
    """Credenciales y configuración de gateways por tenant"""

    def __init__(self, db: Session, registry: GatewayRegistry):
        self.db = db
        self.registry = registry

    def list_gateways(self, tenant_id: UUID) -> List[PaymentGatewayConfig]:
        return self.db.query(PaymentGatewayConfig).filter(
            PaymentGatewayConfig.tenant_id == tenant_id
        ).order_by(PaymentGatewayConfig.provider).all()

    def _validate(self, provider: str, enabled: bool, credentials: Optional[Dict[str, Any]],
                  config: Optional[Dict[str, Any]]) -> None:
        if not enabled:
            return
        gateway = self.registry.create(provider, credentials or {}, config or {})
        if not gateway.validate_credentials(credentials or {}):
            raise ValidationError(
                f"Las credenciales de {provider} no son válidas",
                code="INVALID_CREDENTIALS",
            )

    def create_gateway(self, tenant_id: UUID, data: PaymentGatewayCreate) -> PaymentGatewayConfig:
        self._validate(data.provider.value, data.enabled, data.credentials, data.config)
        gateway = PaymentGatewayConfig(
            tenant_id=tenant_id,
            provider=data.provider.value,
            enabled=data.enabled,
            credentials=data.credentials,
            config=data.config,
        )
        try:
            self.db.add(gateway)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                f"Ya existe configuración para el gateway {data.provider.value}",
                code="GATEWAY_ALREADY_CONFIGURED",
            )
        self.db.refresh(gateway)
        return gateway

    def update_gateway(self, gateway_id: UUID, tenant_id: UUID,
                       data: PaymentGatewayUpdate) -> PaymentGatewayConfig:
        gateway = self.db.query(PaymentGatewayConfig).filter(
            PaymentGatewayConfig.id == gateway_id,
            PaymentGatewayConfig.tenant_id == tenant_id
        ).first()
        if not gateway:
            raise NotFoundError("Gateway no encontrado", code="GATEWAY_NOT_FOUND")

        enabled = gateway.enabled if data.enabled is None else data.enabled
        credentials = gateway.credentials if data.credentials is None else data.credentials
        config = gateway.config if data.config is None else data.config
        self._validate(gateway.provider, enabled, credentials, config)

        gateway.enabled = enabled
        gateway.credentials = credentials
        gateway.config = config
        self.db.commit()
        self.db.refresh(gateway)
        return gateway

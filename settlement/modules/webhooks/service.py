"""
Conciliación de webhooks de gateways contra el ledger de pagos.

Los webhooks llegan duplicados, fuera de orden o para pagos que no existen.
Ninguno de esos casos es un error para el proveedor: se responde 200 y se
registra la anomalía. Solo un payload ilegible (400) o la falta de
credenciales (500) devuelven error.
"""
from typing import Any, Dict, Mapping, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from settlement.common.actors import Actor
from settlement.core.config import settings
from settlement.core.exceptions import GatewayNotConfiguredError, ValidationError
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.gateways.base import GatewayProvider, WebhookEvent, event_type_for
from settlement.modules.gateways.registry import GatewayNotRegisteredError, GatewayRegistry
from settlement.modules.payments.models import Payment, PaymentGatewayConfig, PaymentProvider
from settlement.modules.payments.service import PaymentLedgerService
from settlement.modules.payments.side_effects import PaymentSideEffects
from settlement.modules.payments.state_machine import InvalidTransitionError
from settlement.modules.webhooks.schemas import WebhookAck

logger = logging.getLogger(__name__)

PAYMENT_NOT_FOUND_MESSAGE = "Pago no encontrado en el sistema"


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class WebhookReconciliationService:
    """Aplica eventos de gateways (webhook o sincronización) a los pagos"""

    def __init__(self, db: Session, registry: GatewayRegistry):
        self.db = db
        self.registry = registry
        self.ledger = PaymentLedgerService(db, registry)
        self.effects = PaymentSideEffects(db)

    def _credentials(self, provider: GatewayProvider, tenant_id: Optional[UUID]) -> Dict[str, Any]:
        if tenant_id is not None:
            config = self.db.query(PaymentGatewayConfig).filter(
                PaymentGatewayConfig.tenant_id == tenant_id,
                PaymentGatewayConfig.provider == provider.value
            ).first()
            if config and config.credentials:
                return dict(config.credentials)

        if provider == GatewayProvider.MERCADOPAGO and settings.MERCADOPAGO_ACCESS_TOKEN:
            return {"access_token": settings.MERCADOPAGO_ACCESS_TOKEN}
        if provider == GatewayProvider.QR:
            # El QR genérico toma el CBU de la configuración global
            return {}

        raise GatewayNotConfiguredError(
            f"No hay credenciales configuradas para el gateway {provider.value}",
            hint="Configura el gateway del tenant o la variable de entorno correspondiente",
        )

    def resolve_payment(self, provider: PaymentProvider, event: WebhookEvent,
                        tenant_id: Optional[UUID] = None) -> Optional[Payment]:
        """
        Busca el pago del evento y bloquea la fila.

        Si la referencia externa es un UUID se interpreta primero como id de
        venta y se toma el pago más reciente de esa venta para el proveedor.
        Si no hay ninguno se buscan las referencias del evento en
        external_reference.
        """
        query = self.db.query(Payment)
        if tenant_id is not None:
            query = query.filter(Payment.tenant_id == tenant_id)

        sale_id = _parse_uuid(event.external_reference)
        if sale_id is not None:
            payment = query.filter(
                Payment.sale_id == sale_id,
                Payment.provider == provider
            ).order_by(Payment.created_at.desc()).with_for_update().first()
            if payment is not None:
                return payment

        references = [r for r in (event.external_reference, event.payment_id) if r]
        if not references:
            return None
        return query.filter(
            Payment.external_reference.in_(references)
        ).order_by(Payment.created_at.desc()).with_for_update().first()

    def process(self, provider: str, payload: Any, headers: Optional[Mapping[str, str]] = None,
                tenant_id: Optional[UUID] = None) -> WebhookAck:
        headers = {str(k).lower(): v for k, v in (headers or {}).items()}
        try:
            gateway_provider = GatewayProvider(provider)
        except ValueError:
            raise GatewayNotRegisteredError(f"Gateway provider '{provider}' no está registrado")
        if not self.registry.is_registered(gateway_provider):
            raise GatewayNotRegisteredError(f"Gateway provider '{provider}' no está registrado")

        credentials = self._credentials(gateway_provider, tenant_id)
        gateway = self.registry.create(gateway_provider, credentials, {})
        event = gateway.parse_webhook(payload, headers)

        logger.info(
            "Webhook recibido",
            extra={
                "provider": provider,
                "event_type": event.type.value,
                "gateway_payment_id": event.payment_id,
                "external_reference": event.external_reference,
            },
        )
        if not event.status_known:
            logger.warning(
                f"Estado desconocido en webhook de {provider}: {event.metadata.get('mp_status')}",
                extra={"provider": provider, "gateway_payment_id": event.payment_id},
            )

        try:
            payment_provider = PaymentProvider(gateway_provider.value)
        except ValueError:
            raise ValidationError(f"El proveedor {provider} no origina pagos", code="INVALID_PROVIDER")

        payment = self.resolve_payment(payment_provider, event, tenant_id)
        if payment is None:
            self.db.rollback()
            logger.warning(
                "Webhook para pago inexistente",
                extra={
                    "provider": provider,
                    "gateway_payment_id": event.payment_id,
                    "external_reference": event.external_reference,
                },
            )
            return WebhookAck(message=PAYMENT_NOT_FOUND_MESSAGE)

        return self.reconcile(payment, event, Actor.gateway(gateway_provider.value))

    def reconcile(self, payment: Payment, event: WebhookEvent, actor: Actor) -> WebhookAck:
        """Aplica el estado del evento al pago ya bloqueado"""
        previous = payment.status
        if previous == event.status:
            self.db.rollback()
            return WebhookAck(
                message="El pago ya se encuentra en ese estado",
                payment_id=payment.id,
                previous_status=previous,
                status=previous,
            )

        try:
            self.ledger.apply_transition(
                payment, event.status, actor,
                reason=f"Webhook {event.type.value}",
                payload={"gateway_payment_id": event.payment_id, "amount": str(event.amount)},
            )
        except InvalidTransitionError:
            self.db.rollback()
            logger.warning(
                f"Transición rechazada desde webhook: {previous.value} -> {event.status.value}",
                extra={"payment_id": str(payment.id), "actor": actor.label},
            )
            return WebhookAck(
                message="Transición de estado no permitida; evento ignorado",
                payment_id=payment.id,
                previous_status=previous,
                status=previous,
            )

        entry = {
            "type": event.type.value,
            "status": event.status.value,
            "timestamp": event.timestamp.isoformat(),
            "raw_payload": event.metadata.get("raw_payload"),
        }
        metadata = dict(payment.gateway_metadata or {})
        metadata["last_webhook"] = entry
        metadata["webhook_history"] = list(metadata.get("webhook_history") or []) + [entry]
        if event.payment_id and event.payment_id != payment.external_reference:
            metadata["gateway_payment_id"] = event.payment_id
        payment.gateway_metadata = metadata

        payment_id = payment.id
        self.db.commit()
        self.db.refresh(payment)
        logger.info(
            f"Pago {payment_id} conciliado: {previous.value} -> {payment.status.value}",
            extra={"payment_id": str(payment_id), "actor": actor.label},
        )

        balance = self.effects.after_status_change(payment, payment.status)
        return WebhookAck(
            processed=True,
            message="Estado del pago actualizado",
            payment_id=payment_id,
            previous_status=previous,
            status=payment.status,
            balance=balance,
        )

    def sync_payment(self, payment_id: UUID, ctx: AuthContext) -> WebhookAck:
        """Consulta el estado en el gateway y lo aplica por la misma vía que un webhook"""
        payment = self.ledger.get_payment(payment_id, ctx.tenant_id, for_update=True)
        if payment.provider == PaymentProvider.MANUAL:
            raise ValidationError("Los pagos manuales no se sincronizan con un gateway", code="SYNC_NOT_SUPPORTED")

        provider = GatewayProvider(payment.provider.value)
        gateway_payment_id = (payment.gateway_metadata or {}).get("gateway_payment_id") or payment.external_reference
        if not gateway_payment_id:
            raise ValidationError("El pago no tiene id en el gateway", code="GATEWAY_PAYMENT_ID_MISSING")

        gateway = self.registry.create(provider, self._credentials(provider, ctx.tenant_id), {})
        remote = gateway.get_payment_status(gateway_payment_id)
        event = WebhookEvent(
            type=event_type_for(remote.status),
            payment_id=gateway_payment_id,
            external_reference=remote.external_reference,
            status=remote.status,
            amount=remote.amount or 0,
            metadata={"raw_payload": remote.metadata, "source": "sync"},
        )
        return self.reconcile(payment, event, Actor.gateway(provider.value))

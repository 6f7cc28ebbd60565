"""
Routers FastAPI para el módulo de pagos

Define los endpoints REST para:
- Pagos de una venta: manual, QR interoperable y Mercado Pago
- Pagos: consulta, auditoría, confirmación, reembolso, sincronización y eliminación
- Métodos de pago y configuración de gateways del tenant

Los endpoints de creación responden 201 al crear y 200 cuando la misma
operación ya existía (idempotencia). Los endpoints que llaman a un gateway
externo son `def` y corren en el threadpool.
"""
from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from settlement.database.database import get_db
from settlement.dependencies.gatewayDependencies import get_gateway_registry
from settlement.modules.auth.dependencies import AuthDependencies
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.gateways.registry import GatewayRegistry
from settlement.modules.payments.schemas import (
    ManualPaymentCreate, QRPaymentCreate, ExternalPaymentCreate,
    PaymentConfirmRequest, PaymentRefundRequest,
    PaymentOut, PaymentCreatedResponse, PaymentStatusChangeResponse, PaymentEventOut, PaymentList,
    PaymentMethodCreate, PaymentMethodUpdate, PaymentMethodOut,
    PaymentGatewayCreate, PaymentGatewayUpdate, PaymentGatewayOut
)
from settlement.modules.payments.service import (
    PaymentCreation, PaymentLedgerService, PaymentMethodService, PaymentGatewayConfigService
)
from settlement.modules.webhooks.schemas import WebhookAck
from settlement.modules.webhooks.service import WebhookReconciliationService


def _creation_response(creation: PaymentCreation, response: Response) -> PaymentCreatedResponse:
    if not creation.created:
        response.status_code = status.HTTP_200_OK
    metadata = creation.payment.gateway_metadata or {}
    return PaymentCreatedResponse(
        payment=PaymentOut.model_validate(creation.payment),
        deduplicated=not creation.created,
        checkout_url=creation.checkout_url or metadata.get("checkout_url"),
        qr_code=metadata.get("qr_code"),
        qr_payload=metadata.get("qr_payload"),
        balance=creation.balance,
    )


# ===== PAGOS DE VENTAS =====

sales_payments_router = APIRouter(prefix="/sales", tags=["Payments"])


@sales_payments_router.post(
    "/{sale_id}/payments",
    response_model=PaymentCreatedResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_manual_payment(
    response: Response,
    payment_data: ManualPaymentCreate,
    sale_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Registrar un pago manual (efectivo, transferencia, tarjeta).

    - **amount**: Monto (> 0, no mayor al saldo)
    - **payment_method_id** o **method**: Método de pago
    - **reference**: Referencia del comprobante (opcional)
    - **seller_id**: Vendedor que cobra; usa su caja registradora
    - **status**: Opcional; pending, processing o failed se respetan
    - **proof_type** / **proof_reference** / **terminal_id**: Evidencia del cobro

    Sin status explícito los pagos manuales nacen confirmados y recalculan el
    saldo de la venta.
    Requiere caja abierta.
    """
    service = PaymentLedgerService(db)
    creation = service.create_manual_payment(sale_id, payment_data, auth_context)
    return _creation_response(creation, response)


@sales_payments_router.post(
    "/{sale_id}/payments/qr",
    response_model=PaymentCreatedResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_qr_payment(
    response: Response,
    payment_data: QRPaymentCreate,
    sale_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    """
    Generar QR interoperable (EMVCo) para cobrar por transferencia.

    - **amount**: Monto; por defecto el saldo pendiente
    - **amount_mode**: `fixed` incluye el monto en el QR, `open` no

    El pago queda pending hasta que el matching concilia la transferencia.
    """
    service = PaymentLedgerService(db, registry)
    creation = service.create_qr_payment(sale_id, payment_data, auth_context)
    return _creation_response(creation, response)


@sales_payments_router.post(
    "/{sale_id}/payments/mercadopago",
    response_model=PaymentCreatedResponse,
    status_code=status.HTTP_201_CREATED
)
def create_mercadopago_payment(
    response: Response,
    payment_data: ExternalPaymentCreate,
    sale_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    """
    Crear checkout de Mercado Pago y devolver la URL de pago.

    Requiere el gateway `mercadopago` habilitado para el tenant.
    """
    service = PaymentLedgerService(db, registry)
    creation = service.create_external_payment(sale_id, payment_data, auth_context)
    return _creation_response(creation, response)


@sales_payments_router.get("/{sale_id}/payments", response_model=PaymentList)
async def list_sale_payments(
    sale_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """Listar pagos de una venta"""
    payments = PaymentLedgerService(db).list_sale_payments(sale_id, auth_context.tenant_id)
    return PaymentList(payments=[PaymentOut.model_validate(p) for p in payments], total=len(payments))


# ===== PAGOS =====

payments_router = APIRouter(prefix="/payments", tags=["Payments"])


@payments_router.get("/{payment_id}", response_model=PaymentOut)
async def get_payment(
    payment_id: UUID = Path(..., description="ID del pago"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    return PaymentLedgerService(db).get_payment(payment_id, auth_context.tenant_id)


@payments_router.get("/{payment_id}/events", response_model=List[PaymentEventOut])
async def list_payment_events(
    payment_id: UUID = Path(..., description="ID del pago"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Auditoría del pago en orden cronológico.

    Incluye el evento `deleted` aunque el pago ya no exista.
    """
    return PaymentLedgerService(db).list_events(payment_id, auth_context.tenant_id)


@payments_router.patch("/{payment_id}/confirm", response_model=PaymentStatusChangeResponse)
async def confirm_payment(
    payment_id: UUID = Path(..., description="ID del pago"),
    confirm_data: PaymentConfirmRequest = PaymentConfirmRequest(),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Confirmar manualmente un pago pending o processing.

    Un pago confirmado, fallido o reembolsado devuelve 409.
    """
    payment, balance = PaymentLedgerService(db).confirm_payment(
        payment_id, auth_context, notes=confirm_data.notes
    )
    return PaymentStatusChangeResponse(payment=PaymentOut.model_validate(payment), balance=balance)


@payments_router.post("/{payment_id}/refund", response_model=PaymentStatusChangeResponse)
def refund_payment(
    payment_id: UUID = Path(..., description="ID del pago"),
    refund_data: PaymentRefundRequest = PaymentRefundRequest(),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    """
    Reembolsar un pago confirmado.

    Para pagos de gateway el reembolso se solicita primero al proveedor;
    si lo rechaza responde 502 y el pago no cambia.
    """
    payment, balance = PaymentLedgerService(db, registry).refund_payment(
        payment_id, auth_context, reason=refund_data.reason
    )
    return PaymentStatusChangeResponse(payment=PaymentOut.model_validate(payment), balance=balance)


@payments_router.post("/{payment_id}/sync", response_model=WebhookAck)
def sync_payment_status(
    payment_id: UUID = Path(..., description="ID del pago"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    """Consultar el estado en el gateway y aplicarlo como si fuera un webhook"""
    return WebhookReconciliationService(db, registry).sync_payment(payment_id, auth_context)


@payments_router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment(
    payment_id: UUID = Path(..., description="ID del pago"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Eliminar un pago pendiente.

    Pagos confirmados, fallidos o reembolsados no se pueden eliminar (409).
    """
    PaymentLedgerService(db).delete_payment(payment_id, auth_context)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== MÉTODOS DE PAGO =====

payment_methods_router = APIRouter(prefix="/payment-methods", tags=["Payment Methods"])


@payment_methods_router.get("", response_model=List[PaymentMethodOut])
async def list_payment_methods(
    active_only: bool = Query(False, description="Solo métodos activos"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    return PaymentMethodService(db).list_methods(auth_context.tenant_id, active_only=active_only)


@payment_methods_router.post("", response_model=PaymentMethodOut, status_code=status.HTTP_201_CREATED)
async def create_payment_method(
    method_data: PaymentMethodCreate,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Crear método de pago.

    - **code**: Identificador único por tenant (minúsculas, números y _)
    - **type**: cash, transfer, qr, card, mercadopago, ...
    - **payment_category**: Si se omite se infiere del tipo
    """
    return PaymentMethodService(db).create_method(auth_context.tenant_id, method_data)


@payment_methods_router.put("/{method_id}", response_model=PaymentMethodOut)
async def update_payment_method(
    method_id: UUID = Path(..., description="ID del método de pago"),
    method_data: PaymentMethodUpdate = ...,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Actualizar método de pago. Solo se modifican los campos enviados.

    Un **code** ya usado por otro método del tenant devuelve 409.
    """
    return PaymentMethodService(db).update_method(method_id, auth_context.tenant_id, method_data)


@payment_methods_router.delete("/{method_id}", response_model=PaymentMethodOut)
async def deactivate_payment_method(
    method_id: UUID = Path(..., description="ID del método de pago"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """Desactivar método de pago. No se borra porque hay pagos que lo referencian."""
    return PaymentMethodService(db).deactivate_method(method_id, auth_context.tenant_id)


# ===== GATEWAYS =====

payment_gateways_router = APIRouter(prefix="/payment-gateways", tags=["Payment Gateways"])


@payment_gateways_router.get("", response_model=List[PaymentGatewayOut])
async def list_payment_gateways(
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    """Gateways configurados. Las credenciales nunca se devuelven."""
    gateways = PaymentGatewayConfigService(db, registry).list_gateways(auth_context.tenant_id)
    return [PaymentGatewayOut.from_model(g) for g in gateways]


@payment_gateways_router.post("", response_model=PaymentGatewayOut, status_code=status.HTTP_201_CREATED)
def create_payment_gateway(
    gateway_data: PaymentGatewayCreate,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    """
    Configurar un gateway para el tenant.

    Si **enabled** es true las credenciales se validan contra el proveedor.
    """
    gateway = PaymentGatewayConfigService(db, registry).create_gateway(auth_context.tenant_id, gateway_data)
    return PaymentGatewayOut.from_model(gateway)


@payment_gateways_router.patch("/{gateway_id}", response_model=PaymentGatewayOut)
def update_payment_gateway(
    gateway_id: UUID = Path(..., description="ID de la configuración"),
    gateway_data: PaymentGatewayUpdate = ...,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    gateway = PaymentGatewayConfigService(db, registry).update_gateway(
        gateway_id, auth_context.tenant_id, gateway_data
    )
    return PaymentGatewayOut.from_model(gateway)

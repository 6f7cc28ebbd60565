"""
Endpoint público de webhooks de gateways de pago.

No requiere autenticación: el proveedor identifica el tenant con el query
param tenant_id que se configuró en la notification_url.
"""
import json
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from settlement.core.exceptions import ValidationError
from settlement.database.database import get_db
from settlement.dependencies.gatewayDependencies import get_gateway_registry
from settlement.modules.gateways.registry import GatewayRegistry
from settlement.modules.webhooks.schemas import WebhookAck
from settlement.modules.webhooks.service import WebhookReconciliationService

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/{provider}", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    provider: str = Path(..., description="Proveedor del webhook (ej: mercadopago)"),
    tenant_id: Optional[UUID] = Query(None, description="Tenant dueño de la notificación"),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    db: Session = Depends(get_db)
):
    """
    Recibir notificación de un gateway.

    - Webhooks duplicados o fuera de orden responden 200 sin cambios
    - Pagos desconocidos responden 200 con `message`
    - Payload ilegible → 400; gateway sin credenciales → 500
    """
    body = await request.body()
    try:
        payload = json.loads(body or b"null")
    except ValueError:
        raise ValidationError("El cuerpo del webhook no es JSON válido", code="INVALID_WEBHOOK_PAYLOAD")

    service = WebhookReconciliationService(db, registry)
    # process puede consultar el gateway con requests (bloqueante)
    return await run_in_threadpool(
        service.process, provider, payload, dict(request.headers), tenant_id=tenant_id
    )

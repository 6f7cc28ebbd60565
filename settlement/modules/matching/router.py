"""
Routers de conciliación de transferencias.

- /transfers: carga manual e importación de transferencias entrantes
- /payments/{id}/assisted-confirm y /matching-status: señales para el frontend
"""
from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.orm import Session
from uuid import UUID

from settlement.database.database import get_db
from settlement.modules.auth.dependencies import AuthDependencies
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.matching.schemas import (
    IncomingTransferCreate, TransferImportRequest, TransferImportResponse,
    TransferMatchingResult, MatchingStatusResponse
)
from settlement.modules.matching.service import MatchingService
from settlement.modules.payments.schemas import (
    AssistedConfirmRequest, PaymentOut, PaymentStatusChangeResponse
)

transfers_router = APIRouter(prefix="/transfers", tags=["Matching"])


@transfers_router.post("/manual", response_model=TransferMatchingResult, status_code=status.HTTP_201_CREATED)
async def register_manual_transfer(
    transfer_data: IncomingTransferCreate,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Cargar una transferencia recibida y calcular candidatos.

    No confirma pagos: las coincidencias quedan como sugerencias.
    """
    return MatchingService(db).register_manual_transfer(auth_context.tenant_id, transfer_data)


@transfers_router.post("/import", response_model=TransferImportResponse, status_code=status.HTTP_201_CREATED)
async def import_transfers(
    import_data: TransferImportRequest,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Importar transferencias del extracto bancario.

    - **transfers**: Lista de transferencias (mínimo 1)

    El mejor candidato con confidence >= 0.9 se confirma automáticamente.
    """
    return MatchingService(db).import_transfers(auth_context.tenant_id, import_data.transfers)


payment_matching_router = APIRouter(prefix="/payments", tags=["Matching"])


@payment_matching_router.post("/{payment_id}/assisted-confirm", response_model=PaymentStatusChangeResponse)
async def assisted_confirm_payment(
    confirm_data: AssistedConfirmRequest,
    payment_id: UUID = Path(..., description="ID del pago"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """Aceptar la transferencia sugerida por el matching"""
    payment, balance = MatchingService(db).assisted_confirm(payment_id, confirm_data.transfer_id, auth_context)
    return PaymentStatusChangeResponse(payment=PaymentOut.model_validate(payment), balance=balance)


@payment_matching_router.get("/{payment_id}/matching-status", response_model=MatchingStatusResponse)
async def get_matching_status(
    payment_id: UUID = Path(..., description="ID del pago"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    return MatchingService(db).matching_status(payment_id, auth_context.tenant_id)

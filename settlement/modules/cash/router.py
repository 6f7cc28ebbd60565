"""
Routers FastAPI para cajas

- CashBoxes: caja diaria del tenant (apertura, movimientos, arqueo y cierre)
- CashRegisters: caja por vendedor
"""
from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.orm import Session
from uuid import UUID

from settlement.core.exceptions import NotFoundError
from settlement.database.database import get_db
from settlement.modules.auth.dependencies import AuthDependencies
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.cash.schemas import (
    CashBoxOpen, CashClose, CashBoxOut, CashBoxOpenResponse, CashBoxDetail, CashBoxCloseResponse,
    CashMovementCreate, CashMovementOut, PendingPaymentsResponse,
    CashRegisterOpen, CashRegisterClose, CashRegisterOut, CashRegisterOpenResponse,
    CashRegisterDetail, CashRegisterCloseResponse, CashClosureOut
)
from settlement.modules.cash.service import CashBoxService, CashRegisterService, summarize_movements


# ===== CAJA DIARIA =====

cash_boxes_router = APIRouter(prefix="/cash-boxes", tags=["Cash"])


@cash_boxes_router.post("", response_model=CashBoxOpenResponse, status_code=status.HTTP_201_CREATED)
async def open_cash_box(
    box_data: CashBoxOpen,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Abrir la caja del día.

    - **opening_balance**: Saldo inicial
    - **business_date**: Fecha (hoy por defecto)

    Validaciones:
    - Solo una caja abierta por fecha y tenant
    - Los pagos confirmados sin movimiento se asocian a la caja al abrir
    """
    service = CashBoxService(db)
    box, associated = service.open_cash_box(auth_context.tenant_id, box_data, auth_context.user_id)
    return CashBoxOpenResponse(cash_box=CashBoxOut.model_validate(box), associated_movements=associated)


@cash_boxes_router.get("/current", response_model=CashBoxOut)
async def get_current_cash_box(
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Caja abierta del día.

    - 404 si no hay caja abierta
    """
    box = CashBoxService(db).get_current_cash_box(auth_context.tenant_id)
    if not box:
        raise NotFoundError("No hay caja abierta para hoy", code="CASH_BOX_NOT_OPEN")
    return box


@cash_boxes_router.get("/pending-payments", response_model=PendingPaymentsResponse)
async def get_pending_payments(
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """Pagos confirmados que todavía no tienen movimiento de caja"""
    count = CashBoxService(db).pending_payments_count(auth_context.tenant_id)
    return PendingPaymentsResponse(pending_count=count)


@cash_boxes_router.get("/{box_id}", response_model=CashBoxDetail)
async def get_cash_box(
    box_id: UUID = Path(..., description="ID de la caja"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """Detalle de la caja con movimientos y totales por medio de pago"""
    service = CashBoxService(db)
    box = service.get_cash_box(box_id, auth_context.tenant_id)
    return CashBoxDetail(
        cash_box=CashBoxOut.model_validate(box),
        movements=[CashMovementOut.model_validate(m) for m in box.movements],
        totals=service.get_totals(box),
    )


@cash_boxes_router.post("/{box_id}/movements", response_model=CashMovementOut, status_code=status.HTTP_201_CREATED)
async def create_cash_movement(
    movement_data: CashMovementCreate,
    box_id: UUID = Path(..., description="ID de la caja"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Registrar ingreso o egreso manual.

    - **type**: income o expense
    - **amount**: Monto positivo
    - **payment_method**: cash, transfer, card u other

    Una caja cerrada devuelve 409.
    """
    return CashBoxService(db).add_movement(box_id, auth_context.tenant_id, movement_data, auth_context.user_id)


@cash_boxes_router.post("/{box_id}/close", response_model=CashBoxCloseResponse)
async def close_cash_box(
    close_data: CashClose,
    box_id: UUID = Path(..., description="ID de la caja"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Cerrar caja con arqueo.

    - **closing_balance**: Monto contado

    Calcula esperado = inicial + ingresos - egresos y la diferencia con lo
    contado. El cierre es irreversible.
    """
    box, closure = CashBoxService(db).close_cash_box(
        box_id, auth_context.tenant_id, close_data, auth_context.user_id
    )
    return CashBoxCloseResponse(
        cash_box=CashBoxOut.model_validate(box),
        closure=CashClosureOut.model_validate(closure),
        movements=[CashMovementOut.model_validate(m) for m in box.movements],
    )


# ===== CAJA POR VENDEDOR =====

cash_registers_router = APIRouter(prefix="/cash-registers", tags=["Cash"])


@cash_registers_router.post("/open", response_model=CashRegisterOpenResponse, status_code=status.HTTP_201_CREATED)
async def open_cash_register(
    register_data: CashRegisterOpen,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Abrir caja para un vendedor.

    - **seller_id**: Vendedor responsable (debe existir y estar activo)
    - **opening_amount**: Fondo inicial

    Un vendedor no puede tener dos cajas abiertas.
    """
    service = CashRegisterService(db)
    register, associated = service.open_cash_register(auth_context.tenant_id, register_data, auth_context.user_id)
    return CashRegisterOpenResponse(
        cash_register=CashRegisterOut.model_validate(register),
        associated_movements=associated,
    )


@cash_registers_router.get("/{register_id}", response_model=CashRegisterDetail)
async def get_cash_register(
    register_id: UUID = Path(..., description="ID de la caja registradora"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    service = CashRegisterService(db)
    register = service.get_cash_register(register_id, auth_context.tenant_id)
    movements = service.list_movements(register)
    return CashRegisterDetail(
        cash_register=CashRegisterOut.model_validate(register),
        movements=[CashMovementOut.model_validate(m) for m in movements],
        totals=summarize_movements(movements, register.opening_amount),
    )


@cash_registers_router.post("/{register_id}/close", response_model=CashRegisterCloseResponse)
async def close_cash_register(
    close_data: CashRegisterClose,
    register_id: UUID = Path(..., description="ID de la caja registradora"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """Cerrar caja del vendedor con arqueo"""
    register, closure = CashRegisterService(db).close_cash_register(
        register_id, auth_context.tenant_id, close_data, auth_context.user_id
    )
    return CashRegisterCloseResponse(
        cash_register=CashRegisterOut.model_validate(register),
        closure=CashClosureOut.model_validate(closure),
    )

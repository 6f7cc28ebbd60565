from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session
from uuid import UUID

from settlement.database.database import get_db
from settlement.modules.auth.dependencies import AuthDependencies
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.sales.balance import BalanceResult, SaleBalanceService
from settlement.modules.sales.service import SaleReader

router = APIRouter(prefix="/sales", tags=["Sales"])


@router.get("/{sale_id}/balance", response_model=BalanceResult)
async def get_sale_balance(
    sale_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Saldo actual de la venta tal como está persistido.
    """
    sale = SaleReader(db).get_sale(sale_id, auth_context.tenant_id)
    return BalanceResult(
        sale_id=sale.id,
        total_amount=sale.total_amount,
        paid_amount=sale.paid_amount,
        balance_amount=sale.balance_amount,
        is_paid=sale.balance_amount <= 0,
        status=sale.status,
        updated=False,
    )


@router.post("/{sale_id}/recalculate", response_model=BalanceResult)
async def recalculate_sale_balance(
    sale_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Recalcular pagado y saldo desde los pagos confirmados.

    Es idempotente: una segunda llamada devuelve `updated: false`.
    """
    SaleReader(db).get_sale(sale_id, auth_context.tenant_id)
    return SaleBalanceService(db).recalc_sale_balance(sale_id)

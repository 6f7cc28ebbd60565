from pydantic import BaseModel
from typing import Optional
from uuid import UUID

from settlement.modules.payments.models import PaymentStatus
from settlement.modules.sales.balance import BalanceResult


class WebhookAck(BaseModel):
    """Respuesta a un webhook; siempre 200 salvo payload o configuración inválidos"""
    received: bool = True
    processed: bool = False
    message: str
    payment_id: Optional[UUID] = None
    previous_status: Optional[PaymentStatus] = None
    status: Optional[PaymentStatus] = None
    balance: Optional[BalanceResult] = None

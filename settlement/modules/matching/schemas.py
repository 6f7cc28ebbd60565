"""
Esquemas para carga de transferencias y resultados de matching.
"""
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from settlement.modules.matching.models import TransferSource
from settlement.modules.payments.models import MatchResult, PaymentStatus
from settlement.modules.payments.schemas import PaymentOut


class IncomingTransferCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Monto recibido")
    reference: Optional[str] = Field(None, max_length=255)
    origin_label: Optional[str] = Field(None, max_length=255, description="Titular u origen informado por el banco")
    raw_description: Optional[str] = Field(None, description="Descripción tal como figura en el extracto")
    received_at: datetime


class TransferImportRequest(BaseModel):
    transfers: List[IncomingTransferCreate] = Field(..., min_length=1)


class IncomingTransferOut(BaseModel):
    id: UUID
    amount: Decimal
    reference: Optional[str] = None
    origin_label: Optional[str] = None
    raw_description: Optional[str] = None
    received_at: datetime
    source: TransferSource
    matched_payment_id: Optional[UUID] = None

    model_config = {"from_attributes": True}


class MatchOut(BaseModel):
    transfer_id: UUID
    payment_id: UUID
    confidence: Decimal
    result: MatchResult
    reasons: List[str] = []

    model_config = {"from_attributes": True}


class TransferMatchingResult(BaseModel):
    transfer: IncomingTransferOut
    matches: List[MatchOut]
    auto_confirmed_payment_id: Optional[UUID] = None


class TransferImportResponse(BaseModel):
    imported: int
    results: List[TransferMatchingResult]


class SuggestedTransfer(BaseModel):
    id: UUID
    amount: Decimal
    origin: str
    received_at: datetime
    raw_description: Optional[str] = None


class MatchingStatusResponse(BaseModel):
    status: PaymentStatus
    confidence: Decimal
    match_result: MatchResult
    action: str = Field(..., description="confirmed, suggest o waiting")
    message: str
    suggested_transfer: Optional[SuggestedTransfer] = None
    matches: List[MatchOut] = []
    payment: PaymentOut

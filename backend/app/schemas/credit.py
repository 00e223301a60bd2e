from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.credit import CreditReferenceType, CreditRequestStatus, CreditTransactionType


class CreditBalanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: UUID
    balance: Decimal
    total_received: Decimal
    total_spent: Decimal


class CreditTransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_type: CreditTransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_id: UUID | None = None
    reference_type: CreditReferenceType | None = None
    description: str | None = None
    created_by: UUID | None = None
    created_at: datetime


class CreditTransactionList(BaseModel):
    items: list[CreditTransactionRead]
    total: int
    page: int
    limit: int


class CreditRequestCreate(BaseModel):
    requested_amount: Decimal
    justification: str | None = Field(default=None, max_length=2000)


class CreditRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    requested_by: UUID
    requested_amount: Decimal
    justification: str | None = None
    status: CreditRequestStatus
    processed_by: UUID | None = None
    processed_at: datetime | None = None
    rejection_reason: str | None = None
    requested_at: datetime


class CreditRequestList(BaseModel):
    items: list[CreditRequestRead]
    total: int
    page: int
    limit: int


class CreditRequestReject(BaseModel):
    rejection_reason: str | None = Field(default=None, max_length=500)


class CreditApprovalResponse(BaseModel):
    request: CreditRequestRead
    balance: CreditBalanceRead

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import (
    Principal,
    Role,
    get_current_principal,
    require_super_admin,
    require_tenant,
    require_tenant_admin,
)
from app.db.session import get_session
from app.models.credit import CreditRequestStatus, CreditTransactionType
from app.schemas.credit import (
    CreditApprovalResponse,
    CreditBalanceRead,
    CreditRequestCreate,
    CreditRequestList,
    CreditRequestRead,
    CreditRequestReject,
    CreditTransactionList,
    CreditTransactionRead,
)
from app.services import credit_ledger, credit_requests

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=CreditBalanceRead)
async def get_balance(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant),
) -> CreditBalanceRead:
    snapshot = await credit_ledger.get_balance(session, tenant_id=principal.tenant_id)
    return CreditBalanceRead.model_validate(snapshot, from_attributes=True)


@router.get("/transactions", response_model=CreditTransactionList)
async def list_transactions(
    transaction_type: CreditTransactionType | None = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant),
) -> CreditTransactionList:
    rows, total = await credit_ledger.list_transactions(
        session, tenant_id=principal.tenant_id, transaction_type=transaction_type, page=page, limit=limit
    )
    return CreditTransactionList(
        items=[CreditTransactionRead.model_validate(r, from_attributes=True) for r in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/request", response_model=CreditRequestRead, status_code=status.HTTP_201_CREATED)
async def request_credits(
    payload: CreditRequestCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> CreditRequestRead:
    row = await credit_requests.request_credits(
        session,
        tenant_id=principal.tenant_id,
        requested_by=principal.user_id,
        amount=payload.requested_amount,
        justification=payload.justification,
    )
    return CreditRequestRead.model_validate(row, from_attributes=True)


@router.get("/requests", response_model=CreditRequestList)
async def list_requests(
    status_filter: CreditRequestStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> CreditRequestList:
    tenant_scope = None if principal.role == Role.super_admin else principal.tenant_id
    if tenant_scope is None and principal.role != Role.super_admin:
        return CreditRequestList(items=[], total=0, page=page, limit=limit)
    rows, total = await credit_requests.list_requests(
        session, tenant_id=tenant_scope, status=status_filter, page=page, limit=limit
    )
    return CreditRequestList(
        items=[CreditRequestRead.model_validate(r, from_attributes=True) for r in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/requests/{request_id}/approve", response_model=CreditApprovalResponse)
async def approve_request(
    request_id: UUID,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_super_admin),
) -> CreditApprovalResponse:
    row, balance = await credit_requests.approve_request(session, request_id=request_id, approver_id=principal.user_id)
    return CreditApprovalResponse(
        request=CreditRequestRead.model_validate(row, from_attributes=True),
        balance=CreditBalanceRead.model_validate(balance, from_attributes=True),
    )


@router.post("/requests/{request_id}/reject", response_model=CreditRequestRead)
async def reject_request(
    request_id: UUID,
    payload: CreditRequestReject,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_super_admin),
) -> CreditRequestRead:
    row = await credit_requests.reject_request(
        session, request_id=request_id, approver_id=principal.user_id, reason=payload.rejection_reason
    )
    return CreditRequestRead.model_validate(row, from_attributes=True)

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.credit import CreditReferenceType, CreditRequest, CreditRequestStatus
from app.services import credit_ledger
from app.services.coupon_lifecycle import now_utc

logger = logging.getLogger(__name__)


async def request_credits(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    requested_by: UUID,
    amount: Decimal,
    justification: str | None = None,
) -> CreditRequest:
    minimum = Decimal(settings.credit_request_min_amount)
    if amount is None or Decimal(amount) < minimum:
        raise ValidationError(f"Minimum credit request is {minimum}")
    pending = (
        await session.execute(
            select(func.count())
            .select_from(CreditRequest)
            .where(CreditRequest.tenant_id == tenant_id, CreditRequest.status == CreditRequestStatus.pending)
        )
    ).scalar_one()
    if int(pending):
        raise ConflictError("You already have a pending credit request")
    row = CreditRequest(
        tenant_id=tenant_id,
        requested_by=requested_by,
        requested_amount=Decimal(amount),
        justification=justification,
        status=CreditRequestStatus.pending,
        requested_at=now_utc(),
    )
    session.add(row)
    await session.commit()
    await session.refresh(row)
    logger.info("credit_requested", extra={"tenant_id": str(tenant_id), "amount": str(row.requested_amount)})
    return row


async def _pending_request(session: AsyncSession, request_id: UUID) -> CreditRequest:
    row = (
        await session.execute(
            select(CreditRequest)
            .where(CreditRequest.id == request_id, CreditRequest.status == CreditRequestStatus.pending)
            .with_for_update()
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Credit request not found or already processed")
    return row


async def approve_request(
    session: AsyncSession, *, request_id: UUID, approver_id: UUID
) -> tuple[CreditRequest, credit_ledger.BalanceSnapshot]:
    """Credit the requesting tenant and close the request in one unit of work."""
    try:
        row = await _pending_request(session, request_id)
        await credit_ledger.credit(
            session,
            tenant_id=row.tenant_id,
            amount=Decimal(row.requested_amount),
            reference_id=row.id,
            reference_type=CreditReferenceType.credit_approval,
            description=f"Credit approval for request #{row.id}",
            created_by=row.requested_by,
        )
        row.status = CreditRequestStatus.approved
        row.processed_by = approver_id
        row.processed_at = now_utc()
        session.add(row)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(row)
    balance = await credit_ledger.get_balance(session, tenant_id=row.tenant_id)
    logger.info(
        "credit_request_approved",
        extra={"tenant_id": str(row.tenant_id), "request_id": str(row.id), "amount": str(row.requested_amount)},
    )
    return row, balance


async def reject_request(
    session: AsyncSession, *, request_id: UUID, approver_id: UUID, reason: str | None
) -> CreditRequest:
    if not (reason or "").strip():
        raise ValidationError("Rejection reason is required")
    try:
        row = await _pending_request(session, request_id)
        row.status = CreditRequestStatus.rejected
        row.rejection_reason = reason.strip()
        row.processed_by = approver_id
        row.processed_at = now_utc()
        session.add(row)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(row)
    logger.info("credit_request_rejected", extra={"tenant_id": str(row.tenant_id), "request_id": str(row.id)})
    return row


async def list_requests(
    session: AsyncSession,
    *,
    tenant_id: UUID | None,
    status: CreditRequestStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[CreditRequest], int]:
    """Requests newest first; ``tenant_id=None`` lists every tenant (super admin view)."""
    filters = []
    if tenant_id is not None:
        filters.append(CreditRequest.tenant_id == tenant_id)
    if status is not None:
        filters.append(CreditRequest.status == status)
    total = int((await session.execute(select(func.count()).select_from(CreditRequest).where(*filters))).scalar_one())
    rows = (
        await session.execute(
            select(CreditRequest)
            .where(*filters)
            .order_by(CreditRequest.requested_at.desc(), CreditRequest.id.desc())
            .offset(max(0, page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    return list(rows), total

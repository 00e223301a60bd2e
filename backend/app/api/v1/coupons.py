from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import Principal, require_tenant, require_tenant_admin
from app.db.session import get_session
from app.models.coupon import Coupon, CouponStatus
from app.schemas.coupon import (
    BatchActivateRequest,
    BatchDeactivateRequest,
    BatchNoteRequest,
    BatchOperationResponse,
    BatchStats,
    BulkActivateRequest,
    BulkActivateResponse,
    BulkPrintResponse,
    CouponCreate,
    CouponCreateResponse,
    CouponDetailRead,
    CouponIdsRequest,
    CouponListResponse,
    CouponPrintResponse,
    CouponRead,
    CouponStatusResponse,
    CouponStatusUpdate,
    MultiBatchCreate,
    MultiBatchResponse,
    RangeActivateRequest,
    RangeActivateResponse,
    RangeDeactivateRequest,
    RangeDeactivateResponse,
)
from app.services import coupon_bulk, coupon_lifecycle, coupon_queries
from app.services.coupon_batches import CouponDraft, create_coupons, create_multi_batch

router = APIRouter(prefix="/coupons", tags=["coupons"])


def _to_read(coupon: Coupon) -> CouponRead:
    base = CouponRead.model_validate(coupon, from_attributes=True)
    return base.model_copy(update={"effective_status": coupon_lifecycle.effective_status(coupon)})


@router.post("", response_model=CouponCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> CouponCreateResponse:
    is_batch = payload.quantity is not None
    result = await create_coupons(
        session,
        tenant_id=principal.tenant_id,
        verification_app_id=payload.verification_app_id,
        draft=CouponDraft(
            discount_value=payload.discount_value,
            expiry_date=payload.expiry_date,
            quantity=payload.quantity if is_batch else 1,
            description=payload.description,
            total_usage_limit=payload.total_usage_limit,
            max_scans_per_code=payload.max_scans_per_code,
        ),
        is_batch=is_batch,
        actor_id=principal.user_id,
        batch_name=payload.batch_name,
    )
    coupons = [_to_read(c) for c in result.coupons]
    return CouponCreateResponse(
        coupon=None if is_batch else coupons[0],
        coupons=coupons if is_batch else [],
        batch_id=result.batch_id,
        credit_cost=result.credit_cost,
        new_balance=result.new_balance,
    )


@router.post("/multi-batch", response_model=MultiBatchResponse, status_code=status.HTTP_201_CREATED)
async def create_coupons_multi_batch(
    payload: MultiBatchCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> MultiBatchResponse:
    result = await create_multi_batch(
        session,
        tenant_id=principal.tenant_id,
        verification_app_id=payload.verification_app_id,
        drafts=[
            CouponDraft(
                discount_value=item.discount_amount,
                expiry_date=item.expiry_date,
                quantity=item.quantity,
                description=item.description,
            )
            for item in payload.batches
        ],
        actor_id=principal.user_id,
    )
    return MultiBatchResponse(
        coupons=[_to_read(c) for c in result.coupons],
        batch_ids=[b.id for b in result.batches],
        total_coupons=len(result.coupons),
        credit_cost=result.credit_cost,
        new_balance=result.new_balance,
    )


@router.get("", response_model=CouponListResponse)
async def list_coupons(
    status_filter: CouponStatus | None = Query(default=None, alias="status"),
    verification_app_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant),
) -> CouponListResponse:
    rows, total = await coupon_queries.list_coupons(
        session,
        tenant_id=principal.tenant_id,
        status=status_filter,
        verification_app_id=verification_app_id,
        search=search,
        page=page,
        limit=limit,
    )
    return CouponListResponse(items=[_to_read(c) for c in rows], total=total, page=page, limit=limit)


@router.post("/activate-range", response_model=RangeActivateResponse)
async def activate_range(
    payload: RangeActivateRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> RangeActivateResponse:
    result = await coupon_bulk.activate_range(
        session,
        tenant_id=principal.tenant_id,
        from_reference=payload.from_reference,
        to_reference=payload.to_reference,
        status_filter=payload.status_filter,
        note=payload.activation_note,
    )
    return RangeActivateResponse(
        activated_count=result.changed_count,
        skipped_count=result.skipped_count,
        excluded_count=result.excluded_count,
        activated_references=result.references,
        activated_codes=result.codes,
        message=f"{result.changed_count} coupons activated",
    )


@router.post("/deactivate-range", response_model=RangeDeactivateResponse)
async def deactivate_range(
    payload: RangeDeactivateRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> RangeDeactivateResponse:
    result = await coupon_bulk.deactivate_range(
        session,
        tenant_id=principal.tenant_id,
        from_reference=payload.from_reference,
        to_reference=payload.to_reference,
        reason=payload.deactivation_reason,
        actor_id=principal.user_id,
    )
    return RangeDeactivateResponse(
        deactivated_count=result.changed_count,
        skipped_count=result.skipped_count,
        refunded_credits=result.refunded_credits,
        deactivated_references=result.references,
        deactivated_codes=result.codes,
        message=f"{result.changed_count} coupons deactivated",
    )


@router.post("/bulk-print", response_model=BulkPrintResponse)
async def bulk_print(
    payload: CouponIdsRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> BulkPrintResponse:
    result = await coupon_bulk.bulk_print(session, tenant_id=principal.tenant_id, coupon_ids=payload.coupon_ids)
    return BulkPrintResponse(
        printed_count=result.changed_count,
        skipped_count=result.skipped_count,
        coupons=[_to_read(c) for c in result.changed],
    )


@router.post("/bulk-activate", response_model=BulkActivateResponse)
async def bulk_activate(
    payload: BulkActivateRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> BulkActivateResponse:
    result = await coupon_bulk.bulk_activate(
        session,
        tenant_id=principal.tenant_id,
        coupon_ids=payload.coupon_ids,
        note=payload.activation_note,
    )
    return BulkActivateResponse(
        activated_count=result.changed_count,
        skipped_count=result.skipped_count,
        requested_count=len(payload.coupon_ids),
        activated_coupons=[_to_read(c) for c in result.changed],
    )


def _batch_response(batch_id: UUID, result: coupon_bulk.BulkResult, verb: str) -> BatchOperationResponse:
    return BatchOperationResponse(
        batch_id=batch_id,
        changed_count=result.changed_count,
        skipped_count=result.skipped_count,
        refunded_credits=result.refunded_credits,
        codes=result.codes,
        message=f"{result.changed_count} coupons {verb} in batch",
    )


@router.post("/activate-batch", response_model=BatchOperationResponse)
async def activate_batch(
    payload: BatchActivateRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> BatchOperationResponse:
    result = await coupon_bulk.activate_batch(
        session, tenant_id=principal.tenant_id, batch_id=payload.batch_id, note=payload.activation_note
    )
    return _batch_response(payload.batch_id, result, "activated")


@router.post("/batches/{batch_id}/print", response_model=BatchOperationResponse)
async def print_batch(
    batch_id: UUID,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> BatchOperationResponse:
    result = await coupon_bulk.print_batch(session, tenant_id=principal.tenant_id, batch_id=batch_id)
    return _batch_response(batch_id, result, "printed")


@router.post("/batches/{batch_id}/activate", response_model=BatchOperationResponse)
async def activate_printed_batch(
    batch_id: UUID,
    payload: BatchNoteRequest | None = None,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> BatchOperationResponse:
    result = await coupon_bulk.activate_batch(
        session,
        tenant_id=principal.tenant_id,
        batch_id=batch_id,
        note=payload.activation_note if payload else None,
        require_printed=True,
    )
    return _batch_response(batch_id, result, "activated")


@router.post("/batches/{batch_id}/deactivate", response_model=BatchOperationResponse)
async def deactivate_batch(
    batch_id: UUID,
    payload: BatchDeactivateRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> BatchOperationResponse:
    result = await coupon_bulk.deactivate_batch(
        session,
        tenant_id=principal.tenant_id,
        batch_id=batch_id,
        reason=payload.deactivation_reason,
        actor_id=principal.user_id,
    )
    return _batch_response(batch_id, result, "deactivated")


@router.get("/batches/{batch_id}/stats", response_model=BatchStats)
async def batch_stats(
    batch_id: UUID,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant),
) -> BatchStats:
    batch, counts = await coupon_bulk.batch_stats(session, tenant_id=principal.tenant_id, batch_id=batch_id)
    return BatchStats(
        batch_id=batch.id,
        batch_name=batch.batch_name,
        batch_status=batch.batch_status,
        total_coupons=batch.total_coupons,
        status_counts=counts,
    )


@router.get("/{coupon_id}", response_model=CouponDetailRead)
async def get_coupon(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant),
) -> CouponDetailRead:
    detail = await coupon_queries.coupon_detail(session, tenant_id=principal.tenant_id, coupon_id=coupon_id)
    return CouponDetailRead(
        **_to_read(detail.coupon).model_dump(),
        total_scans=detail.total_scans,
        successful_scans=detail.successful_scans,
    )


@router.patch("/{coupon_id}/status", response_model=CouponStatusResponse)
async def update_coupon_status(
    coupon_id: UUID,
    payload: CouponStatusUpdate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> CouponStatusResponse:
    note = payload.activation_note if payload.status == CouponStatus.active else payload.deactivation_reason
    change = await coupon_lifecycle.update_status(
        session,
        tenant_id=principal.tenant_id,
        coupon_id=coupon_id,
        target=payload.status,
        actor_id=principal.user_id,
        note=note,
        expected_status=payload.expected_status,
    )
    return CouponStatusResponse(
        coupon=_to_read(change.coupon),
        previous_status=change.previous_status,
        refunded_credits=change.refunded_credits,
    )


@router.patch("/{coupon_id}/print", response_model=CouponPrintResponse)
async def mark_coupon_printed(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant_admin),
) -> CouponPrintResponse:
    coupon = await coupon_lifecycle.mark_printed(session, tenant_id=principal.tenant_id, coupon_id=coupon_id)
    return CouponPrintResponse(coupon=_to_read(coupon))

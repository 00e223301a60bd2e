from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import Principal, client_ip, require_tenant
from app.db.session import get_session
from app.models.scan import ScanStatus
from app.schemas.scan import ScanCouponSummary, ScanHistoryResponse, ScanRead, ScanVerifyRequest, ScanVerifyResponse
from app.services import scan_verifier

router = APIRouter(prefix="/scans", tags=["scans"])


@router.post("/verify", response_model=ScanVerifyResponse)
async def verify_scan(
    payload: ScanVerifyRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ScanVerifyResponse:
    outcome = await scan_verifier.verify(
        session,
        coupon_code=payload.coupon_code,
        location_lat=payload.location.lat if payload.location else None,
        location_lng=payload.location.lng if payload.location else None,
        device_info=payload.device_info or request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    outcome.raise_for_rejection()
    coupon = outcome.coupon
    return ScanVerifyResponse(
        success=True,
        message=outcome.message,
        scan_status=outcome.scan_status,
        coupon=ScanCouponSummary(
            code=coupon.coupon_code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
        ),
    )


@router.get("/history", response_model=ScanHistoryResponse)
async def scan_history(
    status_filter: ScanStatus | None = Query(default=None, alias="status"),
    coupon_id: UUID | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_tenant),
) -> ScanHistoryResponse:
    rows, total = await scan_verifier.list_scans(
        session,
        tenant_id=principal.tenant_id,
        scan_status=status_filter,
        coupon_id=coupon_id,
        page=page,
        limit=limit,
    )
    items = [
        ScanRead.model_validate(scan, from_attributes=True).model_copy(update={"coupon_code": code})
        for scan, code in rows
    ]
    return ScanHistoryResponse(items=items, total=total, page=page, limit=limit)

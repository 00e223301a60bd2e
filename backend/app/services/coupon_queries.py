from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.coupon import Coupon, CouponStatus
from app.models.scan import Scan, ScanStatus
from app.services.coupon_lifecycle import get_coupon


@dataclass(frozen=True)
class CouponDetail:
    coupon: Coupon
    total_scans: int
    successful_scans: int


async def list_coupons(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    status: CouponStatus | None = None,
    verification_app_id: UUID | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Coupon], int]:
    filters = [Coupon.tenant_id == tenant_id]
    if status is not None:
        filters.append(Coupon.status == status)
    if verification_app_id is not None:
        filters.append(Coupon.verification_app_id == verification_app_id)
    if search:
        needle = f"%{search.strip().upper()}%"
        filters.append(
            or_(
                func.upper(Coupon.coupon_code).like(needle),
                func.upper(Coupon.coupon_reference).like(needle),
                func.upper(func.coalesce(Coupon.description, "")).like(needle),
            )
        )
    total = int((await session.execute(select(func.count()).select_from(Coupon).where(*filters))).scalar_one())
    rows = (
        await session.execute(
            select(Coupon)
            .where(*filters)
            .order_by(Coupon.reference_number.desc())
            .offset(max(0, page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    return list(rows), total


async def coupon_detail(session: AsyncSession, *, tenant_id: UUID, coupon_id: UUID) -> CouponDetail:
    coupon = await get_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id)
    total, successful = (
        await session.execute(
            select(
                func.count(Scan.id),
                func.coalesce(func.sum(case((Scan.scan_status == ScanStatus.success, 1), else_=0)), 0),
            ).where(Scan.coupon_id == coupon.id)
        )
    ).one()
    return CouponDetail(coupon=coupon, total_scans=int(total), successful_scans=int(successful))

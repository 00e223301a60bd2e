from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import metrics
from app.core.config import settings
from app.core.errors import ScanRejected
from app.models.coupon import Coupon, CouponStatus
from app.models.scan import Scan, ScanStatus
from app.services.coupon_codes import normalize_code
from app.services.coupon_lifecycle import is_past_expiry, now_utc

logger = logging.getLogger(__name__)

STATUS_REJECTIONS: dict[CouponStatus, tuple[ScanStatus, str]] = {
    CouponStatus.draft: (ScanStatus.not_active, "Coupon has not been activated"),
    CouponStatus.printed: (ScanStatus.not_printed, "Coupon has not been activated"),
    CouponStatus.used: (ScanStatus.used, "Coupon has already been used"),
    CouponStatus.inactive: (ScanStatus.inactive, "Coupon has been deactivated"),
    CouponStatus.expired: (ScanStatus.expired, "Coupon has expired"),
    CouponStatus.exhausted: (ScanStatus.exhausted, "Coupon limit reached"),
}

INVALID_MESSAGE = "This coupon code is not valid."


@dataclass(frozen=True)
class ScanOutcome:
    scan_id: UUID
    scan_status: ScanStatus
    error: str | None
    coupon: Coupon | None

    @property
    def success(self) -> bool:
        return self.scan_status == ScanStatus.success

    @property
    def message(self) -> str:
        if self.success:
            return settings.scan_success_message
        if self.scan_status == ScanStatus.invalid:
            return INVALID_MESSAGE
        return f"Sorry, this coupon is {self.scan_status.value.lower()}."

    def raise_for_rejection(self) -> None:
        if not self.success:
            raise ScanRejected(
                scan_status=self.scan_status.value,
                error=self.error or "Invalid Coupon",
                message=self.message,
            )


def _scan_limit_message(limit: int) -> str:
    return f"This coupon has reached its scan limit ({limit} scan{'s' if limit > 1 else ''})"


async def _success_scan_count(session: AsyncSession, coupon_id: UUID) -> int:
    count = (
        await session.execute(
            select(func.count())
            .select_from(Scan)
            .where(Scan.coupon_id == coupon_id, Scan.scan_status == ScanStatus.success)
        )
    ).scalar_one()
    return int(count)


async def _precheck(session: AsyncSession, coupon: Coupon, now: datetime) -> tuple[ScanStatus, str | None]:
    """Evaluate a scan against the coupon as read, without writing anything."""
    rejection = STATUS_REJECTIONS.get(coupon.status)
    if rejection is not None:
        return rejection
    if coupon.max_scans_per_code:
        if await _success_scan_count(session, coupon.id) >= coupon.max_scans_per_code:
            return ScanStatus.used, _scan_limit_message(coupon.max_scans_per_code)
    if is_past_expiry(coupon, now):
        return ScanStatus.expired, "Coupon Expired"
    if coupon.total_usage_limit and coupon.current_usage_count >= coupon.total_usage_limit:
        return ScanStatus.exhausted, "Coupon Limit Reached"
    return ScanStatus.success, None


async def claim_usage(session: AsyncSession, coupon_id: UUID) -> tuple[int, CouponStatus] | None:
    """Increment the usage counter only while the coupon is active and under both limits.

    The limit check, the increment and the terminal transition happen in one
    UPDATE, so racing scans serialise on the row and at most the remaining
    allowance succeeds. Returns the new ``(current_usage_count, status)`` or
    None when the claim lost.
    """
    next_count = Coupon.current_usage_count + 1
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.status == CouponStatus.active,
            or_(Coupon.total_usage_limit.is_(None), Coupon.current_usage_count < Coupon.total_usage_limit),
            or_(Coupon.max_scans_per_code.is_(None), Coupon.current_usage_count < Coupon.max_scans_per_code),
        )
        .values(
            current_usage_count=next_count,
            status=case(
                (
                    and_(Coupon.total_usage_limit.is_not(None), next_count >= Coupon.total_usage_limit),
                    CouponStatus.exhausted.value,
                ),
                (
                    and_(Coupon.max_scans_per_code.is_not(None), next_count >= Coupon.max_scans_per_code),
                    CouponStatus.used.value,
                ),
                else_=Coupon.status,
            ),
            updated_at=func.now(),
        )
        .returning(Coupon.current_usage_count, Coupon.status)
        .execution_options(synchronize_session=False)
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    return int(row[0]), CouponStatus(row[1])


def _lost_claim_status(coupon: Coupon) -> tuple[ScanStatus, str]:
    rejection = STATUS_REJECTIONS.get(coupon.status)
    if rejection is not None:
        return rejection
    if coupon.total_usage_limit and coupon.current_usage_count >= coupon.total_usage_limit:
        return ScanStatus.exhausted, "Coupon Limit Reached"
    return ScanStatus.used, _scan_limit_message(coupon.max_scans_per_code or 1)


async def _reload(session: AsyncSession, coupon_id: UUID) -> Coupon:
    return (
        await session.execute(
            select(Coupon).where(Coupon.id == coupon_id).execution_options(populate_existing=True)
        )
    ).scalar_one()


async def verify(
    session: AsyncSession,
    *,
    coupon_code: str,
    location_lat: Decimal | None = None,
    location_lng: Decimal | None = None,
    device_info: str | None = None,
    ip_address: str | None = None,
) -> ScanOutcome:
    """Adjudicate one scan attempt and log it; every attempt leaves exactly one Scan row."""
    code = normalize_code(coupon_code)
    now = now_utc()
    scan = Scan(
        id=uuid.uuid4(),
        scan_status=ScanStatus.invalid,
        location_lat=location_lat,
        location_lng=location_lng,
        device_info=device_info[:500] if device_info else None,
        ip_address=ip_address,
        scanned_at=now,
    )
    try:
        coupon = (await session.execute(select(Coupon).where(Coupon.coupon_code == code))).scalar_one_or_none()
        error: str | None = "Invalid Coupon"
        if coupon is not None:
            scan.coupon_id = coupon.id
            scan.tenant_id = coupon.tenant_id
            scan_status, error = await _precheck(session, coupon, now)
            if scan_status == ScanStatus.success:
                if await claim_usage(session, coupon.id) is None:
                    coupon = await _reload(session, coupon.id)
                    scan_status, error = _lost_claim_status(coupon)
                else:
                    coupon = await _reload(session, coupon.id)
            elif scan_status == ScanStatus.expired and coupon.status == CouponStatus.active:
                coupon.status = CouponStatus.expired
                session.add(coupon)
            scan.scan_status = scan_status
        session.add(scan)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    outcome = ScanOutcome(scan_id=scan.id, scan_status=scan.scan_status, error=error, coupon=coupon)
    metrics.record_scan(scan.scan_status.value)
    log_extra = {
        "scan_status": scan.scan_status.value,
        "coupon_id": str(coupon.id) if coupon is not None else None,
        "tenant_id": str(coupon.tenant_id) if coupon is not None else None,
    }
    if outcome.success:
        log_extra["usage_count"] = coupon.current_usage_count
        logger.info("coupon_scan_verified", extra=log_extra)
    else:
        logger.warning("coupon_scan_rejected", extra=log_extra)
    return outcome


async def list_scans(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    scan_status: ScanStatus | None = None,
    coupon_id: UUID | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[tuple[Scan, str | None]], int]:
    """Tenant scan history, newest first, each row paired with its coupon code."""
    filters = [Scan.tenant_id == tenant_id]
    if scan_status is not None:
        filters.append(Scan.scan_status == scan_status)
    if coupon_id is not None:
        filters.append(Scan.coupon_id == coupon_id)
    total = int((await session.execute(select(func.count()).select_from(Scan).where(*filters))).scalar_one())
    rows = (
        await session.execute(
            select(Scan, Coupon.coupon_code)
            .outerjoin(Coupon, Coupon.id == Scan.coupon_id)
            .where(*filters)
            .order_by(Scan.scanned_at.desc(), Scan.id.desc())
            .offset(max(0, page - 1) * limit)
            .limit(limit)
        )
    ).all()
    return [(scan, code) for scan, code in rows], total

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InvalidRange, NotFoundError, ValidationError
from app.models.coupon import Coupon, CouponBatch, CouponBatchStatus, CouponStatus
from app.services.coupon_codes import parse_reference
from app.services.coupon_lifecycle import (
    ACTIVATABLE_STATUSES,
    DEACTIVATABLE_STATUSES,
    apply_activation,
    apply_deactivation,
    apply_print,
    now_utc,
)

logger = logging.getLogger(__name__)

BULK_ACTIVATION_NOTE = "Bulk activation from selection"


@dataclass
class BulkResult:
    """Outcome of a set-wide transition; rows the transition did not apply to are counted, not raised."""

    changed: list[Coupon] = field(default_factory=list)
    skipped_count: int = 0
    excluded_count: int = 0
    refunded_credits: Decimal = Decimal("0.00")

    @property
    def changed_count(self) -> int:
        return len(self.changed)

    @property
    def references(self) -> list[str]:
        return [c.coupon_reference for c in self.changed]

    @property
    def codes(self) -> list[str]:
        return [c.coupon_code for c in self.changed]


def range_condition(tenant_id: UUID, from_reference: str | None, to_reference: str | None) -> Any:
    """SQL filter for ``[from_reference, to_reference]`` within one tenant.

    Well-formed references compare by their sequence number so ``CP-999`` sorts
    before ``CP-1000``; anything else falls back to plain string order.
    """
    start = (from_reference or "").strip().upper()
    end = (to_reference or "").strip().upper()
    if not start or not end:
        raise ValidationError("from_reference and to_reference are required")
    start_number, end_number = parse_reference(start), parse_reference(end)
    if start_number is not None and end_number is not None:
        if start_number > end_number:
            raise InvalidRange(f"Invalid range: '{start}' comes after '{end}'")
        return and_(
            Coupon.tenant_id == tenant_id,
            Coupon.reference_number >= start_number,
            Coupon.reference_number <= end_number,
        )
    if start > end:
        raise InvalidRange(f"Invalid range: '{start}' is greater than '{end}' alphabetically")
    return and_(Coupon.tenant_id == tenant_id, Coupon.coupon_reference >= start, Coupon.coupon_reference <= end)


async def _locked(session: AsyncSession, *conditions: Any, limit: int | None = None) -> list[Coupon]:
    stmt = (
        select(Coupon)
        .where(*conditions)
        .order_by(Coupon.reference_number)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def _count(session: AsyncSession, *conditions: Any) -> int:
    return int((await session.execute(select(func.count()).select_from(Coupon).where(*conditions))).scalar_one())


async def _refreshed(session: AsyncSession, coupons: list[Coupon]) -> list[Coupon]:
    if not coupons:
        return []
    ids = [c.id for c in coupons]
    rows = (
        await session.execute(
            select(Coupon).where(Coupon.id.in_(ids)).execution_options(populate_existing=True)
        )
    ).scalars().all()
    by_id = {row.id: row for row in rows}
    return [by_id[i] for i in ids if i in by_id]


def _require_ids(coupon_ids: list[UUID]) -> list[UUID]:
    if not coupon_ids:
        raise ValidationError("coupon_ids array is required")
    return list(dict.fromkeys(coupon_ids))


async def _activate(session: AsyncSession, coupons: list[Coupon], note: str | None) -> BulkResult:
    result = BulkResult()
    now = now_utc()
    for coupon in coupons:
        if apply_activation(coupon, note=note, now=now):
            result.changed.append(coupon)
        else:
            result.skipped_count += 1
    session.add_all(result.changed)
    return result


async def _deactivate(session: AsyncSession, coupons: list[Coupon], reason: str, actor_id: UUID | None) -> BulkResult:
    result = BulkResult()
    for coupon in coupons:
        refunded = await apply_deactivation(session, coupon=coupon, reason=reason, actor_id=actor_id)
        if refunded is None:
            result.skipped_count += 1
            continue
        result.changed.append(coupon)
        result.refunded_credits += refunded
    session.add_all(result.changed)
    return result


async def _commit(session: AsyncSession, result: BulkResult) -> BulkResult:
    await session.commit()
    result.changed = await _refreshed(session, result.changed)
    return result


async def activate_range(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    from_reference: str | None,
    to_reference: str | None,
    status_filter: CouponStatus = CouponStatus.printed,
    note: str | None = None,
) -> BulkResult:
    """Activate coupons in a reference range whose status matches ``status_filter``.

    ``excluded_count`` reports in-range coupons with any other status.
    """
    if status_filter not in ACTIVATABLE_STATUSES:
        raise ValidationError("status_filter must be draft or printed")
    in_range = range_condition(tenant_id, from_reference, to_reference)
    try:
        matched = await _locked(
            session, in_range, Coupon.status == status_filter, limit=settings.coupon_range_select_limit
        )
        if not matched:
            raise NotFoundError(f"No coupons found in the specified range with status '{status_filter.value}'")
        excluded = await _count(session, in_range, Coupon.status != status_filter)
        result = await _activate(session, matched, note)
        result.excluded_count = excluded
        await _commit(session, result)
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "coupons_range_activated",
        extra={
            "tenant_id": str(tenant_id),
            "from_reference": from_reference,
            "to_reference": to_reference,
            "activated_count": result.changed_count,
            "skipped_count": result.skipped_count,
        },
    )
    return result


async def deactivate_range(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    from_reference: str | None,
    to_reference: str | None,
    reason: str | None,
    actor_id: UUID | None,
) -> BulkResult:
    """Deactivate every refundable-or-unissued coupon in a range; spent and inactive ones are counted as skipped."""
    if not (reason or "").strip():
        raise ValidationError("deactivation_reason is required")
    in_range = range_condition(tenant_id, from_reference, to_reference)
    try:
        matched = await _locked(session, in_range, Coupon.status.in_(list(DEACTIVATABLE_STATUSES)))
        spent = await _count(session, in_range, Coupon.status.not_in(list(DEACTIVATABLE_STATUSES)))
        result = await _deactivate(session, matched, reason.strip(), actor_id)
        result.skipped_count += spent
        await _commit(session, result)
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "coupons_range_deactivated",
        extra={
            "tenant_id": str(tenant_id),
            "from_reference": from_reference,
            "to_reference": to_reference,
            "deactivated_count": result.changed_count,
            "refunded_credits": str(result.refunded_credits),
        },
    )
    return result


async def bulk_print(session: AsyncSession, *, tenant_id: UUID, coupon_ids: list[UUID]) -> BulkResult:
    ids = _require_ids(coupon_ids)
    try:
        coupons = await _locked(session, Coupon.tenant_id == tenant_id, Coupon.id.in_(ids))
        result = BulkResult(skipped_count=len(ids) - len(coupons))
        now = now_utc()
        for coupon in coupons:
            if apply_print(coupon, now=now):
                result.changed.append(coupon)
            else:
                result.skipped_count += 1
        session.add_all(result.changed)
        await _commit(session, result)
    except Exception:
        await session.rollback()
        raise
    logger.info("coupons_printed", extra={"tenant_id": str(tenant_id), "printed_count": result.changed_count})
    return result


async def bulk_activate(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    coupon_ids: list[UUID],
    note: str | None = None,
) -> BulkResult:
    ids = _require_ids(coupon_ids)
    try:
        coupons = await _locked(
            session, Coupon.tenant_id == tenant_id, Coupon.id.in_(ids), Coupon.status.in_(list(ACTIVATABLE_STATUSES))
        )
        if not coupons:
            raise ValidationError("No coupons found with draft or printed status")
        result = await _activate(session, coupons, note or BULK_ACTIVATION_NOTE)
        result.skipped_count += len(ids) - len(coupons)
        await _commit(session, result)
    except Exception:
        await session.rollback()
        raise
    logger.info("coupons_bulk_activated", extra={"tenant_id": str(tenant_id), "activated_count": result.changed_count})
    return result


async def get_batch(session: AsyncSession, *, tenant_id: UUID, batch_id: UUID, lock: bool = False) -> CouponBatch:
    stmt = select(CouponBatch).where(CouponBatch.id == batch_id, CouponBatch.tenant_id == tenant_id)
    if lock:
        stmt = stmt.with_for_update()
    batch = (await session.execute(stmt)).scalar_one_or_none()
    if batch is None:
        raise NotFoundError("Batch not found")
    return batch


async def print_batch(session: AsyncSession, *, tenant_id: UUID, batch_id: UUID) -> BulkResult:
    """Mark the batch's draft coupons as printed."""
    try:
        batch = await get_batch(session, tenant_id=tenant_id, batch_id=batch_id, lock=True)
        coupons = await _locked(session, Coupon.batch_id == batch.id, Coupon.status == CouponStatus.draft)
        result = BulkResult(
            skipped_count=await _count(session, Coupon.batch_id == batch.id, Coupon.status != CouponStatus.draft)
        )
        now = now_utc()
        for coupon in coupons:
            apply_print(coupon, now=now)
            result.changed.append(coupon)
        if batch.batch_status == CouponBatchStatus.created:
            batch.batch_status = CouponBatchStatus.printed
        session.add_all([batch, *result.changed])
        await _commit(session, result)
    except Exception:
        await session.rollback()
        raise
    return result


async def activate_batch(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    batch_id: UUID,
    note: str | None = None,
    require_printed: bool = False,
) -> BulkResult:
    """Activate the printed coupons of a batch.

    With ``require_printed`` the call is refused while any coupon in the batch is still draft.
    """
    try:
        batch = await get_batch(session, tenant_id=tenant_id, batch_id=batch_id, lock=True)
        if require_printed:
            drafts = await _count(session, Coupon.batch_id == batch.id, Coupon.status == CouponStatus.draft)
            if drafts:
                raise ValidationError(f"Batch has {drafts} coupons that are not printed yet")
        coupons = await _locked(session, Coupon.batch_id == batch.id, Coupon.status == CouponStatus.printed)
        if not coupons:
            raise NotFoundError("No printed coupons found in this batch")
        excluded = await _count(session, Coupon.batch_id == batch.id, Coupon.status != CouponStatus.printed)
        result = await _activate(session, coupons, note or f"Batch activation - {batch.id}")
        result.excluded_count = excluded
        batch.batch_status = CouponBatchStatus.active
        session.add(batch)
        await _commit(session, result)
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "coupon_batch_activated",
        extra={"tenant_id": str(tenant_id), "batch_id": str(batch_id), "activated_count": result.changed_count},
    )
    return result


async def deactivate_batch(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    batch_id: UUID,
    reason: str | None,
    actor_id: UUID | None,
) -> BulkResult:
    if not (reason or "").strip():
        raise ValidationError("deactivation_reason is required")
    try:
        batch = await get_batch(session, tenant_id=tenant_id, batch_id=batch_id, lock=True)
        coupons = await _locked(session, Coupon.batch_id == batch.id, Coupon.status.in_(list(DEACTIVATABLE_STATUSES)))
        spent = await _count(session, Coupon.batch_id == batch.id, Coupon.status.not_in(list(DEACTIVATABLE_STATUSES)))
        result = await _deactivate(session, coupons, reason.strip(), actor_id)
        result.skipped_count += spent
        batch.batch_status = CouponBatchStatus.inactive
        session.add(batch)
        await _commit(session, result)
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "coupon_batch_deactivated",
        extra={
            "tenant_id": str(tenant_id),
            "batch_id": str(batch_id),
            "deactivated_count": result.changed_count,
            "refunded_credits": str(result.refunded_credits),
        },
    )
    return result


async def batch_stats(session: AsyncSession, *, tenant_id: UUID, batch_id: UUID) -> tuple[CouponBatch, dict[str, int]]:
    batch = await get_batch(session, tenant_id=tenant_id, batch_id=batch_id)
    rows = (
        await session.execute(
            select(Coupon.status, func.count()).where(Coupon.batch_id == batch.id).group_by(Coupon.status)
        )
    ).all()
    counts = {status.value: 0 for status in CouponStatus}
    for status, count in rows:
        counts[CouponStatus(status).value] = int(count)
    return batch, counts

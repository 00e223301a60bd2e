from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidTransition, NotFoundError, ValidationError
from app.models.coupon import Coupon, CouponStatus
from app.models.credit import CreditReferenceType, CreditTransactionType
from app.services import credit_ledger

logger = logging.getLogger(__name__)

ACTIVATABLE_STATUSES = frozenset({CouponStatus.draft, CouponStatus.printed})
DEACTIVATABLE_STATUSES = frozenset({CouponStatus.draft, CouponStatus.printed, CouponStatus.active})
EXPIRABLE_STATUSES = frozenset({CouponStatus.draft, CouponStatus.printed, CouponStatus.active})
PRINTABLE_STATUSES = frozenset({CouponStatus.draft, CouponStatus.printed, CouponStatus.active})

TRANSITIONS: dict[CouponStatus, frozenset[CouponStatus]] = {
    CouponStatus.draft: frozenset({CouponStatus.printed, CouponStatus.active, CouponStatus.inactive, CouponStatus.expired}),
    CouponStatus.printed: frozenset({CouponStatus.printed, CouponStatus.active, CouponStatus.inactive, CouponStatus.expired}),
    CouponStatus.active: frozenset(
        {CouponStatus.inactive, CouponStatus.used, CouponStatus.exhausted, CouponStatus.expired}
    ),
    CouponStatus.used: frozenset(),
    CouponStatus.exhausted: frozenset(),
    CouponStatus.expired: frozenset(),
    CouponStatus.inactive: frozenset(),
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def can_transition(current: CouponStatus, target: CouponStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def is_past_expiry(coupon: Coupon, now: datetime | None = None) -> bool:
    return as_aware(coupon.expiry_date) < (now or now_utc())


def effective_status(coupon: Coupon, now: datetime | None = None) -> CouponStatus:
    """Stored status, with expiry derived from ``expiry_date`` for coupons not yet settled."""
    if coupon.status in EXPIRABLE_STATUSES and is_past_expiry(coupon, now):
        return CouponStatus.expired
    return coupon.status


async def get_coupon(session: AsyncSession, *, tenant_id: UUID, coupon_id: UUID, lock: bool = False) -> Coupon:
    stmt = select(Coupon).where(Coupon.id == coupon_id, Coupon.tenant_id == tenant_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    coupon = (await session.execute(stmt)).scalar_one_or_none()
    if coupon is None:
        raise NotFoundError("Coupon not found")
    return coupon


def apply_print(coupon: Coupon, *, now: datetime) -> bool:
    """Stamp a print run. Draft coupons become printed; printed and active ones are reprinted."""
    if coupon.status not in PRINTABLE_STATUSES:
        return False
    if coupon.status == CouponStatus.draft:
        coupon.status = CouponStatus.printed
    coupon.printed_count = int(coupon.printed_count or 0) + 1
    coupon.printed_at = now
    return True


def apply_activation(coupon: Coupon, *, note: str | None, now: datetime) -> bool:
    """Activate a draft/printed coupon in place.

    Returns False when the status does not allow it. A coupon past its expiry date is
    moved to ``expired`` instead of being activated.
    """
    if persist_expiry(coupon, now=now):
        return False
    if not can_transition(coupon.status, CouponStatus.active):
        return False
    coupon.status = CouponStatus.active
    coupon.activated_at = now
    coupon.activation_note = note
    return True


async def apply_deactivation(
    session: AsyncSession,
    *,
    coupon: Coupon,
    reason: str | None,
    actor_id: UUID | None,
    now: datetime | None = None,
) -> Decimal | None:
    """Deactivate a coupon in place, refunding its cost when it was active.

    Returns the refunded amount (zero for never-activated coupons) or None when
    the coupon's status does not allow deactivation. Expired coupons are written
    back as ``expired`` and never refunded. Does not commit.
    """
    if persist_expiry(coupon, now=now):
        return None
    if not can_transition(coupon.status, CouponStatus.inactive):
        return None
    refunded = Decimal("0.00")
    was_active = coupon.status == CouponStatus.active
    coupon.status = CouponStatus.inactive
    coupon.deactivation_reason = reason
    if was_active and Decimal(coupon.credit_cost or 0) > 0:
        entry = await credit_ledger.credit(
            session,
            tenant_id=coupon.tenant_id,
            amount=Decimal(coupon.credit_cost),
            reference_id=coupon.id,
            reference_type=CreditReferenceType.coupon_deactivation,
            description=f"Refund for deactivated coupon: {coupon.coupon_code}",
            created_by=actor_id,
            transaction_type=CreditTransactionType.refund,
        )
        refunded = Decimal(entry.amount)
    return refunded


def persist_expiry(coupon: Coupon, *, now: datetime | None = None) -> bool:
    """Write the derived ``expired`` status back to the row. Returns True if it changed."""
    if coupon.status in EXPIRABLE_STATUSES and is_past_expiry(coupon, now):
        coupon.status = CouponStatus.expired
        return True
    return False


@dataclass(frozen=True)
class StatusChange:
    coupon: Coupon
    previous_status: CouponStatus
    refunded_credits: Decimal


async def mark_printed(session: AsyncSession, *, tenant_id: UUID, coupon_id: UUID) -> Coupon:
    try:
        coupon = await get_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id, lock=True)
        if not apply_print(coupon, now=now_utc()):
            raise InvalidTransition(current=coupon.status.value, target=CouponStatus.printed.value)
        session.add(coupon)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(coupon)
    return coupon


async def update_status(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    coupon_id: UUID,
    target: CouponStatus,
    actor_id: UUID | None,
    note: str | None = None,
    expected_status: CouponStatus | None = None,
) -> StatusChange:
    """Single-coupon status change (activate or deactivate); illegal moves raise InvalidTransition."""
    if target not in (CouponStatus.active, CouponStatus.inactive):
        raise ValidationError("Status must be active or inactive")
    try:
        coupon = await get_coupon(session, tenant_id=tenant_id, coupon_id=coupon_id, lock=True)
        previous = coupon.status
        if expected_status is not None and previous != expected_status:
            raise InvalidTransition(
                current=previous.value,
                target=target.value,
                detail=f"Coupon is {previous.value}, expected {expected_status.value}",
            )
        refunded = Decimal("0.00")
        now = now_utc()
        if target == CouponStatus.active:
            if previous == CouponStatus.active:
                if persist_expiry(coupon, now=now):
                    raise InvalidTransition(current=coupon.status.value, target=target.value)
            elif not apply_activation(coupon, note=note, now=now):
                raise InvalidTransition(current=coupon.status.value, target=target.value)
        else:
            result = await apply_deactivation(session, coupon=coupon, reason=note, actor_id=actor_id, now=now)
            if result is None:
                raise InvalidTransition(current=coupon.status.value, target=target.value)
            refunded = result
        session.add(coupon)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(coupon)
    logger.info(
        "coupon_deactivated" if target == CouponStatus.inactive else "coupon_activated",
        extra={
            "coupon_id": str(coupon.id),
            "from_status": previous.value,
            "to_status": coupon.status.value,
            "refunded_credits": str(refunded),
        },
    )
    return StatusChange(coupon=coupon, previous_status=previous, refunded_credits=refunded)

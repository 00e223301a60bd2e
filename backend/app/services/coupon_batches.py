from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import metrics
from app.core.config import settings
from app.core.errors import ConflictError, ValidationError
from app.models.coupon import Coupon, CouponBatch, CouponBatchStatus, CouponStatus, DiscountType
from app.models.credit import CreditReferenceType
from app.services import coupon_codes, credit_ledger
from app.services.cost_calculator import calculate_coupon_credit_cost, calculate_multi_batch_cost
from app.services.coupon_lifecycle import as_aware, now_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponDraft:
    """Shape of the coupons to mint in one sub-batch."""

    discount_value: Decimal
    expiry_date: datetime
    quantity: int = 1
    description: str | None = None
    total_usage_limit: int | None = None
    max_scans_per_code: int | None = None


@dataclass(frozen=True)
class CreationResult:
    coupons: list[Coupon]
    batches: list[CouponBatch]
    credit_cost: Decimal
    new_balance: Decimal

    @property
    def batch_id(self) -> UUID | None:
        return self.batches[0].id if len(self.batches) == 1 else None


def validate_draft(draft: CouponDraft, *, now: datetime | None = None, label: str = "Coupon") -> None:
    max_quantity = int(settings.coupon_max_batch_quantity)
    if not isinstance(draft.quantity, int) or draft.quantity < 1 or draft.quantity > max_quantity:
        raise ValidationError(f"{label}: quantity must be between 1 and {max_quantity}")
    if draft.discount_value is None or Decimal(draft.discount_value) < settings.coupon_min_discount_value:
        raise ValidationError(f"{label}: discount must be at least {settings.coupon_min_discount_value}")
    if Decimal(draft.discount_value) != Decimal(draft.discount_value).quantize(Decimal("0.01")):
        raise ValidationError(f"{label}: discount supports at most two decimal places")
    if draft.expiry_date is None or as_aware(draft.expiry_date) <= (now or now_utc()):
        raise ValidationError(f"{label}: expiry date must be in the future")
    for field_name in ("total_usage_limit", "max_scans_per_code"):
        value = getattr(draft, field_name)
        if value is not None and value < 1:
            raise ValidationError(f"{label}: {field_name} must be at least 1")


def _new_coupon(
    *,
    tenant_id: UUID,
    verification_app_id: UUID | None,
    batch_id: UUID | None,
    draft: CouponDraft,
    code: str,
    reference_number: int,
    actor_id: UUID | None,
    now: datetime,
) -> Coupon:
    value = Decimal(draft.discount_value)
    return Coupon(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        verification_app_id=verification_app_id,
        batch_id=batch_id,
        coupon_code=code,
        coupon_reference=coupon_codes.format_reference(reference_number),
        reference_number=reference_number,
        discount_type=DiscountType.fixed_amount,
        discount_value=value,
        credit_cost=calculate_coupon_credit_cost(discount_value=value).total,
        status=CouponStatus.draft,
        total_usage_limit=(
            draft.total_usage_limit
            if draft.total_usage_limit is not None
            else settings.coupon_default_total_usage_limit
        ),
        current_usage_count=0,
        max_scans_per_code=(
            draft.max_scans_per_code
            if draft.max_scans_per_code is not None
            else settings.coupon_default_max_scans_per_code
        ),
        description=draft.description,
        qr_code_url=coupon_codes.qr_image_url(code, coupon_codes.verification_url(code)),
        printed_count=0,
        expiry_date=draft.expiry_date,
        created_by=actor_id,
        created_at=now,
        updated_at=now,
    )


async def _mint(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    verification_app_id: UUID | None,
    drafts: list[CouponDraft],
    as_batches: bool,
    batch_names: list[str | None],
    total_cost: Decimal,
    actor_id: UUID | None,
    describe,
) -> CreationResult:
    now = now_utc()
    total_quantity = sum(d.quantity for d in drafts)
    try:
        await credit_ledger.ensure_sufficient(session, tenant_id=tenant_id, amount=total_cost)

        numbers = iter(await coupon_codes.allocate_reference_numbers(session, tenant_id=tenant_id, count=total_quantity))
        reserved: set[str] = set()
        batches: list[CouponBatch] = []
        coupons: list[Coupon] = []
        for draft, name in zip(drafts, batch_names):
            batch = None
            if as_batches:
                batch = CouponBatch(
                    id=uuid.uuid4(),
                    tenant_id=tenant_id,
                    verification_app_id=verification_app_id,
                    batch_name=name,
                    total_coupons=draft.quantity,
                    batch_status=CouponBatchStatus.created,
                    created_by=actor_id,
                    created_at=now,
                )
                session.add(batch)
                batches.append(batch)
            for _ in range(draft.quantity):
                code = await coupon_codes.generate_unique_code(session, reserved=reserved)
                coupons.append(
                    _new_coupon(
                        tenant_id=tenant_id,
                        verification_app_id=verification_app_id,
                        batch_id=batch.id if batch is not None else None,
                        draft=draft,
                        code=code,
                        reference_number=next(numbers),
                        actor_id=actor_id,
                        now=now,
                    )
                )
        if batches:
            await session.flush()
        session.add_all(coupons)
        await session.flush()

        entry = await credit_ledger.debit(
            session,
            tenant_id=tenant_id,
            amount=total_cost,
            reference_id=batches[0].id if batches else coupons[0].id,
            reference_type=CreditReferenceType.coupon_creation,
            description=describe(coupons, batches),
            created_by=actor_id,
        )
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Coupon code or reference already exists; retry the request") from exc
    except Exception:
        await session.rollback()
        raise

    metrics.record_coupons_created(len(coupons))
    logger.info(
        "coupon_batch_created",
        extra={
            "tenant_id": str(tenant_id),
            "coupon_count": len(coupons),
            "batch_count": len(batches),
            "credit_cost": str(total_cost),
            "first_reference": coupons[0].coupon_reference,
            "last_reference": coupons[-1].coupon_reference,
        },
    )
    return CreationResult(
        coupons=coupons,
        batches=batches,
        credit_cost=Decimal(entry.amount),
        new_balance=Decimal(entry.balance_after),
    )


async def create_coupons(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    verification_app_id: UUID | None,
    draft: CouponDraft,
    is_batch: bool,
    actor_id: UUID | None,
    batch_name: str | None = None,
) -> CreationResult:
    """Mint one coupon, or ``draft.quantity`` coupons grouped under a new batch."""
    validate_draft(draft)
    if not is_batch and draft.quantity != 1:
        raise ValidationError("Quantity requires batch creation")
    cost = calculate_coupon_credit_cost(
        discount_value=Decimal(draft.discount_value),
        is_batch=is_batch,
        batch_quantity=draft.quantity,
    )

    def describe(coupons: list[Coupon], _batches: list[CouponBatch]) -> str:
        if is_batch:
            return f"Batch coupon creation: {len(coupons)} coupons"
        return f"Coupon creation: {coupons[0].coupon_code}"

    return await _mint(
        session,
        tenant_id=tenant_id,
        verification_app_id=verification_app_id,
        drafts=[draft],
        as_batches=is_batch,
        batch_names=[batch_name or draft.description],
        total_cost=cost.total,
        actor_id=actor_id,
        describe=describe,
    )


async def create_multi_batch(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    verification_app_id: UUID | None,
    drafts: list[CouponDraft],
    actor_id: UUID | None,
) -> CreationResult:
    """Mint several heterogeneous batches as one unit; any invalid sub-batch rejects them all."""
    if not drafts:
        raise ValidationError("At least one batch is required")
    now = now_utc()
    for index, draft in enumerate(drafts, start=1):
        if not (draft.description or "").strip():
            raise ValidationError(f"Batch {index}: description is required")
        validate_draft(draft, now=now, label=f"Batch {index}")
    total_cost = calculate_multi_batch_cost([(Decimal(d.discount_value), d.quantity) for d in drafts])

    def describe(coupons: list[Coupon], batches: list[CouponBatch]) -> str:
        return f"Multi-batch coupon creation: {len(coupons)} coupons across {len(batches)} batches"

    return await _mint(
        session,
        tenant_id=tenant_id,
        verification_app_id=verification_app_id,
        drafts=drafts,
        as_batches=True,
        batch_names=[d.description for d in drafts],
        total_cost=total_cost,
        actor_id=actor_id,
        describe=describe,
    )

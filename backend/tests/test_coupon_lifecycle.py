import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.errors import InvalidTransition, NotFoundError, ValidationError
from app.db.base import Base
from app.models.coupon import Coupon, CouponStatus
from app.models.credit import CreditReferenceType, CreditTransactionType
from app.services import coupon_lifecycle, credit_ledger
from app.services.coupon_batches import CouponDraft, create_coupons


def make_session_factory() -> async_sessionmaker:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def seed_coupon(session, tenant_id: uuid.UUID, *, discount: str = "10", balance: str = "100") -> Coupon:
    await credit_ledger.credit(
        session,
        tenant_id=tenant_id,
        amount=Decimal(balance),
        reference_id=None,
        reference_type=CreditReferenceType.manual_grant,
        description="seed",
        created_by=None,
    )
    await session.commit()
    result = await create_coupons(
        session,
        tenant_id=tenant_id,
        verification_app_id=None,
        draft=CouponDraft(
            discount_value=Decimal(discount),
            expiry_date=datetime.now(timezone.utc) + timedelta(days=30),
        ),
        is_batch=False,
        actor_id=None,
    )
    return result.coupons[0]


def test_transition_table():
    assert coupon_lifecycle.can_transition(CouponStatus.draft, CouponStatus.active)
    assert coupon_lifecycle.can_transition(CouponStatus.printed, CouponStatus.active)
    assert coupon_lifecycle.can_transition(CouponStatus.active, CouponStatus.inactive)
    assert coupon_lifecycle.can_transition(CouponStatus.active, CouponStatus.used)
    assert not coupon_lifecycle.can_transition(CouponStatus.active, CouponStatus.draft)
    assert not coupon_lifecycle.can_transition(CouponStatus.active, CouponStatus.printed)
    for terminal in (CouponStatus.used, CouponStatus.exhausted, CouponStatus.expired, CouponStatus.inactive):
        for target in CouponStatus:
            assert not coupon_lifecycle.can_transition(terminal, target)


def test_effective_status_derives_expiry_for_unsettled_coupons():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    coupon = Coupon(status=CouponStatus.active, expiry_date=datetime(2029, 12, 31))
    assert coupon_lifecycle.effective_status(coupon, now) == CouponStatus.expired
    coupon.status = CouponStatus.used
    assert coupon_lifecycle.effective_status(coupon, now) == CouponStatus.used
    coupon.status = CouponStatus.printed
    coupon.expiry_date = datetime(2031, 1, 1, tzinfo=timezone.utc)
    assert coupon_lifecycle.effective_status(coupon, now) == CouponStatus.printed


def test_activate_then_deactivate_refunds_exactly_once():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()
    actor_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            coupon = await seed_coupon(session, tenant_id)
            assert (await credit_ledger.get_balance(session, tenant_id=tenant_id)).balance == Decimal("90.00")

            activated = await coupon_lifecycle.update_status(
                session,
                tenant_id=tenant_id,
                coupon_id=coupon.id,
                target=CouponStatus.active,
                actor_id=actor_id,
                note="launch",
            )
            assert activated.previous_status == CouponStatus.draft
            assert activated.coupon.status == CouponStatus.active
            assert activated.coupon.activation_note == "launch"
            assert activated.coupon.activated_at is not None

            deactivated = await coupon_lifecycle.update_status(
                session,
                tenant_id=tenant_id,
                coupon_id=coupon.id,
                target=CouponStatus.inactive,
                actor_id=actor_id,
                note="recalled",
            )
            assert deactivated.refunded_credits == Decimal("10.00")
            assert deactivated.coupon.deactivation_reason == "recalled"

            snapshot = await credit_ledger.get_balance(session, tenant_id=tenant_id)
            assert snapshot.balance == Decimal("100.00")
            assert snapshot.total_spent == Decimal("0.00")

            with pytest.raises(InvalidTransition) as excinfo:
                await coupon_lifecycle.update_status(
                    session,
                    tenant_id=tenant_id,
                    coupon_id=coupon.id,
                    target=CouponStatus.inactive,
                    actor_id=actor_id,
                )
            assert excinfo.value.current == "inactive"
            assert (await credit_ledger.get_balance(session, tenant_id=tenant_id)).balance == Decimal("100.00")

            refunds, total = await credit_ledger.list_transactions(
                session, tenant_id=tenant_id, transaction_type=CreditTransactionType.refund
            )
            assert total == 1
            assert refunds[0].reference_id == coupon.id
            assert refunds[0].reference_type == CreditReferenceType.coupon_deactivation
            assert refunds[0].description == f"Refund for deactivated coupon: {coupon.coupon_code}"

            replay = await credit_ledger.replay_balance(session, tenant_id=tenant_id)
            assert replay.consistent

    asyncio.run(run_flow())


def test_deactivating_draft_does_not_refund():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            coupon = await seed_coupon(session, tenant_id)
            change = await coupon_lifecycle.update_status(
                session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.inactive, actor_id=None
            )
            assert change.refunded_credits == Decimal("0.00")
            assert change.coupon.status == CouponStatus.inactive
            assert (await credit_ledger.get_balance(session, tenant_id=tenant_id)).balance == Decimal("90.00")

            with pytest.raises(InvalidTransition):
                await coupon_lifecycle.update_status(
                    session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.active, actor_id=None
                )

    asyncio.run(run_flow())


def test_activating_active_coupon_is_a_no_op():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            coupon = await seed_coupon(session, tenant_id)
            await coupon_lifecycle.update_status(
                session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.active, actor_id=None
            )
            again = await coupon_lifecycle.update_status(
                session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.active, actor_id=None
            )
            assert again.previous_status == CouponStatus.active
            assert again.coupon.status == CouponStatus.active

    asyncio.run(run_flow())


def test_expected_status_guard_and_bad_target():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            coupon = await seed_coupon(session, tenant_id)
            with pytest.raises(InvalidTransition) as excinfo:
                await coupon_lifecycle.update_status(
                    session,
                    tenant_id=tenant_id,
                    coupon_id=coupon.id,
                    target=CouponStatus.active,
                    actor_id=None,
                    expected_status=CouponStatus.printed,
                )
            assert excinfo.value.extra() == {"current_status": "draft", "target_status": "active"}

            with pytest.raises(ValidationError):
                await coupon_lifecycle.update_status(
                    session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.used, actor_id=None
                )

            with pytest.raises(NotFoundError):
                await coupon_lifecycle.update_status(
                    session, tenant_id=uuid.uuid4(), coupon_id=coupon.id, target=CouponStatus.active, actor_id=None
                )

    asyncio.run(run_flow())


def test_mark_printed_counts_print_runs():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            coupon = await seed_coupon(session, tenant_id)
            first = await coupon_lifecycle.mark_printed(session, tenant_id=tenant_id, coupon_id=coupon.id)
            assert first.status == CouponStatus.printed
            assert first.printed_count == 1
            assert first.printed_at is not None
            second = await coupon_lifecycle.mark_printed(session, tenant_id=tenant_id, coupon_id=coupon.id)
            assert second.status == CouponStatus.printed
            assert second.printed_count == 2

            await coupon_lifecycle.update_status(
                session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.inactive, actor_id=None
            )
            with pytest.raises(InvalidTransition):
                await coupon_lifecycle.mark_printed(session, tenant_id=tenant_id, coupon_id=coupon.id)

    asyncio.run(run_flow())


async def backdate_expiry(session, coupon_id: uuid.UUID) -> None:
    row = await session.get(Coupon, coupon_id, populate_existing=True)
    row.expiry_date = datetime.now(timezone.utc) - timedelta(days=1)
    await session.commit()


def test_deactivating_expired_active_coupon_is_refused_without_refund():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            coupon = await seed_coupon(session, tenant_id)
            await coupon_lifecycle.update_status(
                session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.active, actor_id=None
            )
            await backdate_expiry(session, coupon.id)

            with pytest.raises(InvalidTransition) as excinfo:
                await coupon_lifecycle.update_status(
                    session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.inactive, actor_id=None
                )
            assert excinfo.value.current == "expired"
            assert excinfo.value.target == "inactive"

            assert (await credit_ledger.get_balance(session, tenant_id=tenant_id)).balance == Decimal("90.00")
            _, refunds = await credit_ledger.list_transactions(
                session, tenant_id=tenant_id, transaction_type=CreditTransactionType.refund
            )
            assert refunds == 0

            row = await session.get(Coupon, coupon.id, populate_existing=True)
            assert row.status == CouponStatus.active
            assert coupon_lifecycle.effective_status(row) == CouponStatus.expired

    asyncio.run(run_flow())


def test_activating_expired_draft_coupon_is_refused():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            coupon = await seed_coupon(session, tenant_id)
            await backdate_expiry(session, coupon.id)

            with pytest.raises(InvalidTransition) as excinfo:
                await coupon_lifecycle.update_status(
                    session, tenant_id=tenant_id, coupon_id=coupon.id, target=CouponStatus.active, actor_id=None
                )
            assert excinfo.value.current == "expired"

            row = await session.get(Coupon, coupon.id, populate_existing=True)
            assert row.status == CouponStatus.draft
            assert row.activated_at is None

    asyncio.run(run_flow())


def test_apply_helpers_write_back_expiry():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    printed = Coupon(status=CouponStatus.printed, expiry_date=datetime(2029, 12, 31, tzinfo=timezone.utc))
    assert coupon_lifecycle.apply_activation(printed, note="late", now=now) is False
    assert printed.status == CouponStatus.expired
    assert printed.activation_note is None

    fresh = Coupon(status=CouponStatus.printed, expiry_date=datetime(2030, 6, 1, tzinfo=timezone.utc))
    assert coupon_lifecycle.apply_activation(fresh, note="on time", now=now) is True
    assert fresh.status == CouponStatus.active

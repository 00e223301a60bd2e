import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core import metrics
from app.core.errors import GenerationFailure, InsufficientCredits, ValidationError
from app.db.base import Base
from app.models.coupon import Coupon, CouponBatch, CouponStatus
from app.models.credit import CreditReferenceType, CreditTransaction, CreditTransactionType
from app.services import coupon_codes, credit_ledger
from app.services.coupon_batches import CouponDraft, create_coupons, create_multi_batch


def make_session_factory() -> async_sessionmaker:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


def future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


async def fund(session, tenant_id: uuid.UUID, amount: str) -> None:
    await credit_ledger.credit(
        session,
        tenant_id=tenant_id,
        amount=Decimal(amount),
        reference_id=None,
        reference_type=CreditReferenceType.manual_grant,
        description="seed",
        created_by=None,
    )
    await session.commit()


async def counts(session) -> tuple[int, int, int]:
    coupons = (await session.execute(select(func.count()).select_from(Coupon))).scalar_one()
    batches = (await session.execute(select(func.count()).select_from(CouponBatch))).scalar_one()
    debits = (
        await session.execute(
            select(func.count())
            .select_from(CreditTransaction)
            .where(CreditTransaction.transaction_type == CreditTransactionType.debit)
        )
    ).scalar_one()
    return int(coupons), int(batches), int(debits)


def test_batch_of_five_costs_fifty_and_gets_sequential_references():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()
    actor_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            await fund(session, tenant_id, "1000")
            result = await create_coupons(
                session,
                tenant_id=tenant_id,
                verification_app_id=uuid.uuid4(),
                draft=CouponDraft(discount_value=Decimal("10"), expiry_date=future(), quantity=5),
                is_batch=True,
                actor_id=actor_id,
            )
            assert result.credit_cost == Decimal("50.00")
            assert result.new_balance == Decimal("950.00")
            assert result.batch_id is not None
            assert [c.coupon_reference for c in result.coupons] == ["CP-001", "CP-002", "CP-003", "CP-004", "CP-005"]
            codes = [c.coupon_code for c in result.coupons]
            assert len(set(codes)) == 5
            assert all(coupon_codes.is_valid_code_format(code) for code in codes)
            assert all(c.status == CouponStatus.draft for c in result.coupons)
            assert all(c.credit_cost == Decimal("10") for c in result.coupons)
            assert all(c.batch_id == result.batch_id for c in result.coupons)
            assert all(c.qr_code_url and c.coupon_code in c.qr_code_url for c in result.coupons)

            entries, total = await credit_ledger.list_transactions(
                session, tenant_id=tenant_id, transaction_type=CreditTransactionType.debit
            )
            assert total == 1
            assert entries[0].description == "Batch coupon creation: 5 coupons"
            assert entries[0].reference_type == CreditReferenceType.coupon_creation
            assert entries[0].reference_id == result.batch_id
            assert entries[0].created_by == actor_id

            batch = await session.get(CouponBatch, result.batch_id)
            assert batch is not None
            assert batch.total_coupons == 5
        assert metrics.snapshot().get("coupons_created") == 5

    asyncio.run(run_flow())


def test_single_coupon_has_no_batch_and_uses_defaults():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            await fund(session, tenant_id, "100")
            result = await create_coupons(
                session,
                tenant_id=tenant_id,
                verification_app_id=None,
                draft=CouponDraft(discount_value=Decimal("7.50"), expiry_date=future()),
                is_batch=False,
                actor_id=None,
            )
            coupon = result.coupons[0]
            assert result.batches == []
            assert result.batch_id is None
            assert coupon.batch_id is None
            assert coupon.max_scans_per_code == 1
            assert coupon.total_usage_limit == 1
            assert result.new_balance == Decimal("92.50")
            entries, _ = await credit_ledger.list_transactions(session, tenant_id=tenant_id)
            assert entries[0].description == f"Coupon creation: {coupon.coupon_code}"

    asyncio.run(run_flow())


def test_references_continue_across_batches():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            await fund(session, tenant_id, "100")
            for _ in range(2):
                await create_coupons(
                    session,
                    tenant_id=tenant_id,
                    verification_app_id=None,
                    draft=CouponDraft(discount_value=Decimal("1"), expiry_date=future(), quantity=3),
                    is_batch=True,
                    actor_id=None,
                )
            refs = (
                await session.execute(select(Coupon.coupon_reference).order_by(Coupon.reference_number))
            ).scalars().all()
            assert refs == ["CP-001", "CP-002", "CP-003", "CP-004", "CP-005", "CP-006"]

    asyncio.run(run_flow())


def test_insufficient_credits_leaves_nothing_behind():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            await fund(session, tenant_id, "20")
            with pytest.raises(InsufficientCredits) as excinfo:
                await create_coupons(
                    session,
                    tenant_id=tenant_id,
                    verification_app_id=None,
                    draft=CouponDraft(discount_value=Decimal("10"), expiry_date=future(), quantity=3),
                    is_batch=True,
                    actor_id=None,
                )
            assert excinfo.value.required == Decimal("30")
            assert excinfo.value.available == Decimal("20.00")
            assert await counts(session) == (0, 0, 0)
            snapshot = await credit_ledger.get_balance(session, tenant_id=tenant_id)
            assert snapshot.balance == Decimal("20.00")

    asyncio.run(run_flow())


def test_multi_batch_with_one_invalid_batch_is_rejected_whole():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            await fund(session, tenant_id, "10000")
            with pytest.raises(ValidationError) as excinfo:
                await create_multi_batch(
                    session,
                    tenant_id=tenant_id,
                    verification_app_id=None,
                    drafts=[
                        CouponDraft(discount_value=Decimal("1"), expiry_date=future(), quantity=10, description="ok"),
                        CouponDraft(discount_value=Decimal("1"), expiry_date=future(), quantity=501, description="big"),
                    ],
                    actor_id=None,
                )
            assert "Batch 2" in excinfo.value.detail
            assert await counts(session) == (0, 0, 0)

    asyncio.run(run_flow())


@pytest.mark.parametrize(
    "draft",
    [
        CouponDraft(discount_value=Decimal("0.001"), expiry_date=datetime(2999, 1, 1, tzinfo=timezone.utc), description="x"),
        CouponDraft(discount_value=Decimal("0"), expiry_date=datetime(2999, 1, 1, tzinfo=timezone.utc), description="x"),
        CouponDraft(discount_value=Decimal("5"), expiry_date=datetime(2000, 1, 1, tzinfo=timezone.utc), description="x"),
        CouponDraft(discount_value=Decimal("5"), expiry_date=datetime(2999, 1, 1, tzinfo=timezone.utc), quantity=0, description="x"),
        CouponDraft(discount_value=Decimal("5"), expiry_date=datetime(2999, 1, 1, tzinfo=timezone.utc), description=" "),
    ],
)
def test_multi_batch_shape_validation(draft: CouponDraft):
    SessionLocal = make_session_factory()

    async def run_flow():
        async with SessionLocal() as session:
            with pytest.raises(ValidationError):
                await create_multi_batch(
                    session, tenant_id=uuid.uuid4(), verification_app_id=None, drafts=[draft], actor_id=None
                )

    asyncio.run(run_flow())


def test_multi_batch_creates_one_debit_for_all_batches():
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()

    async def run_flow():
        async with SessionLocal() as session:
            await fund(session, tenant_id, "100")
            result = await create_multi_batch(
                session,
                tenant_id=tenant_id,
                verification_app_id=None,
                drafts=[
                    CouponDraft(discount_value=Decimal("10"), expiry_date=future(), quantity=3, description="Summer"),
                    CouponDraft(discount_value=Decimal("5"), expiry_date=future(60), quantity=2, description="Winter"),
                ],
                actor_id=None,
            )
            assert result.credit_cost == Decimal("40.00")
            assert result.new_balance == Decimal("60.00")
            assert len(result.batches) == 2
            assert result.batch_id is None
            assert [b.batch_name for b in result.batches] == ["Summer", "Winter"]
            assert [c.batch_id for c in result.coupons] == [result.batches[0].id] * 3 + [result.batches[1].id] * 2
            assert await counts(session) == (5, 2, 1)
            entries, _ = await credit_ledger.list_transactions(
                session, tenant_id=tenant_id, transaction_type=CreditTransactionType.debit
            )
            assert entries[0].description == "Multi-batch coupon creation: 5 coupons across 2 batches"

    asyncio.run(run_flow())


def test_code_generation_failure_rolls_back_whole_batch(monkeypatch):
    SessionLocal = make_session_factory()
    tenant_id = uuid.uuid4()
    real_generate = coupon_codes.generate_unique_code
    calls = {"n": 0}

    async def flaky(session, *, reserved=None):
        calls["n"] += 1
        if calls["n"] == 3:
            raise GenerationFailure("Failed to generate unique coupon code")
        return await real_generate(session, reserved=reserved)

    async def run_flow():
        async with SessionLocal() as session:
            await fund(session, tenant_id, "100")
            monkeypatch.setattr(coupon_codes, "generate_unique_code", flaky)
            with pytest.raises(GenerationFailure):
                await create_coupons(
                    session,
                    tenant_id=tenant_id,
                    verification_app_id=None,
                    draft=CouponDraft(discount_value=Decimal("1"), expiry_date=future(), quantity=5),
                    is_batch=True,
                    actor_id=None,
                )
            assert await counts(session) == (0, 0, 0)
            assert (await credit_ledger.get_balance(session, tenant_id=tenant_id)).balance == Decimal("100.00")

            monkeypatch.setattr(coupon_codes, "generate_unique_code", real_generate)
            result = await create_coupons(
                session,
                tenant_id=tenant_id,
                verification_app_id=None,
                draft=CouponDraft(discount_value=Decimal("1"), expiry_date=future(), quantity=2),
                is_batch=True,
                actor_id=None,
            )
            assert [c.coupon_reference for c in result.coupons] == ["CP-001", "CP-002"]

    asyncio.run(run_flow())

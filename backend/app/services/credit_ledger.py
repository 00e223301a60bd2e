from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import metrics
from app.core.errors import InsufficientCredits, ValidationError
from app.models.credit import CreditReferenceType, CreditTransaction, CreditTransactionType, TenantCreditBalance

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class BalanceSnapshot:
    tenant_id: UUID
    balance: Decimal
    total_received: Decimal
    total_spent: Decimal


@dataclass(frozen=True)
class LedgerReplay:
    tenant_id: UUID
    replayed_balance: Decimal
    replayed_received: Decimal
    replayed_spent: Decimal
    stored: BalanceSnapshot
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return (
            self.replayed_balance == self.stored.balance
            and self.replayed_received == self.stored.total_received
            and self.replayed_spent == self.stored.total_spent
        )


def _money(value: Decimal | int | str | None) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(Decimal("0.01"))


def _require_positive(amount: Decimal) -> Decimal:
    amount = _money(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")
    return amount


async def _ensure_balance_row(session: AsyncSession, tenant_id: UUID) -> None:
    bind = session.get_bind()
    dialect = getattr(getattr(bind, "dialect", None), "name", "")
    insert_fn = pg_insert if dialect == "postgresql" else (sqlite_insert if dialect == "sqlite" else None)
    if insert_fn is not None:
        stmt = (
            insert_fn(TenantCreditBalance)
            .values(tenant_id=tenant_id, balance=ZERO, total_received=ZERO, total_spent=ZERO)
            .on_conflict_do_nothing(index_elements=[TenantCreditBalance.tenant_id])
        )
        await session.execute(stmt)
        return
    existing = await session.get(TenantCreditBalance, tenant_id)
    if existing is None:
        session.add(TenantCreditBalance(tenant_id=tenant_id, balance=ZERO, total_received=ZERO, total_spent=ZERO))
        await session.flush()


async def _locked_balance(session: AsyncSession, tenant_id: UUID) -> TenantCreditBalance:
    """Return the tenant balance row under a row lock, creating it on first use."""
    await _ensure_balance_row(session, tenant_id)
    return (
        await session.execute(
            select(TenantCreditBalance)
            .where(TenantCreditBalance.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()


async def get_balance(session: AsyncSession, *, tenant_id: UUID) -> BalanceSnapshot:
    row = await session.get(TenantCreditBalance, tenant_id, populate_existing=True)
    if row is None:
        return BalanceSnapshot(tenant_id=tenant_id, balance=ZERO, total_received=ZERO, total_spent=ZERO)
    return BalanceSnapshot(
        tenant_id=tenant_id,
        balance=_money(row.balance),
        total_received=_money(row.total_received),
        total_spent=_money(row.total_spent),
    )


async def ensure_sufficient(session: AsyncSession, *, tenant_id: UUID, amount: Decimal) -> None:
    """Cheap pre-check before any write; ``debit`` re-checks under the row lock."""
    snapshot = await get_balance(session, tenant_id=tenant_id)
    if snapshot.balance < _money(amount):
        metrics.record_insufficient_credits()
        logger.warning(
            "insufficient_credits",
            extra={"tenant_id": str(tenant_id), "required": str(amount), "available": str(snapshot.balance)},
        )
        raise InsufficientCredits(required=_money(amount), available=snapshot.balance)


async def debit(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    amount: Decimal,
    reference_id: UUID | None,
    reference_type: CreditReferenceType,
    description: str | None,
    created_by: UUID | None,
) -> CreditTransaction:
    """Spend credits. Does not commit; the caller owns the unit of work."""
    amount = _require_positive(amount)
    row = await _locked_balance(session, tenant_id)
    before = _money(row.balance)
    if before < amount:
        metrics.record_insufficient_credits()
        logger.warning(
            "insufficient_credits",
            extra={"tenant_id": str(tenant_id), "required": str(amount), "available": str(before)},
        )
        raise InsufficientCredits(required=amount, available=before)

    after = before - amount
    row.balance = after
    row.total_spent = _money(row.total_spent) + amount
    entry = CreditTransaction(
        tenant_id=tenant_id,
        transaction_type=CreditTransactionType.debit,
        amount=amount,
        balance_before=before,
        balance_after=after,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
        created_by=created_by,
    )
    session.add_all([row, entry])
    await session.flush()
    logger.info(
        "credit_debited",
        extra={"tenant_id": str(tenant_id), "amount": str(amount), "balance_after": str(after)},
    )
    return entry


async def credit(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    amount: Decimal,
    reference_id: UUID | None,
    reference_type: CreditReferenceType,
    description: str | None,
    created_by: UUID | None,
    transaction_type: CreditTransactionType = CreditTransactionType.credit,
) -> CreditTransaction:
    """Add credits back. ``refund`` reverses spend, ``credit`` is fresh spending power."""
    if transaction_type == CreditTransactionType.debit:
        raise ValueError("Use debit() for DEBIT entries")
    amount = _require_positive(amount)
    row = await _locked_balance(session, tenant_id)
    before = _money(row.balance)
    after = before + amount
    row.balance = after
    if transaction_type == CreditTransactionType.refund:
        row.total_spent = _money(row.total_spent) - amount
    else:
        row.total_received = _money(row.total_received) + amount
    entry = CreditTransaction(
        tenant_id=tenant_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=before,
        balance_after=after,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
        created_by=created_by,
    )
    session.add_all([row, entry])
    await session.flush()
    if transaction_type == CreditTransactionType.refund:
        metrics.record_refund()
    logger.info(
        "credit_credited",
        extra={
            "tenant_id": str(tenant_id),
            "amount": str(amount),
            "transaction_type": transaction_type.value,
            "balance_after": str(after),
        },
    )
    return entry


async def list_transactions(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    transaction_type: CreditTransactionType | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[CreditTransaction], int]:
    filters = [CreditTransaction.tenant_id == tenant_id]
    if transaction_type is not None:
        filters.append(CreditTransaction.transaction_type == transaction_type)
    total = int((await session.execute(select(func.count()).select_from(CreditTransaction).where(*filters))).scalar_one())
    rows = (
        await session.execute(
            select(CreditTransaction)
            .where(*filters)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset(max(0, page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    return list(rows), total


async def replay_balance(session: AsyncSession, *, tenant_id: UUID) -> LedgerReplay:
    """Rebuild the balance from the transaction history and compare with the stored row."""
    rows = (
        await session.execute(
            select(CreditTransaction.transaction_type, func.coalesce(func.sum(CreditTransaction.amount), 0), func.count())
            .where(CreditTransaction.tenant_id == tenant_id)
            .group_by(CreditTransaction.transaction_type)
        )
    ).all()
    sums = {tx_type: _money(total) for tx_type, total, _ in rows}
    count = sum(int(n) for _, _, n in rows)
    received = sums.get(CreditTransactionType.credit, ZERO)
    spent = sums.get(CreditTransactionType.debit, ZERO) - sums.get(CreditTransactionType.refund, ZERO)
    stored = await get_balance(session, tenant_id=tenant_id)
    return LedgerReplay(
        tenant_id=tenant_id,
        replayed_balance=received - spent,
        replayed_received=received,
        replayed_spent=spent,
        stored=stored,
        transaction_count=count,
    )

from __future__ import annotations

import logging
import re
import secrets
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import GenerationFailure
from app.models.coupon import Coupon
from app.models.credit import TenantCouponSequence

logger = logging.getLogger(__name__)

# 32 symbols: no 0/O, 1/I/l.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
CODE_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}$")


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def generate_code() -> str:
    raw = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    return f"{raw[:4]}-{raw[4:]}"


def is_valid_code_format(code: str) -> bool:
    return bool(CODE_PATTERN.match(code or ""))


async def _code_exists(session: AsyncSession, code: str) -> bool:
    count = (await session.execute(select(func.count()).select_from(Coupon).where(Coupon.coupon_code == code))).scalar_one()
    return int(count) > 0


async def generate_unique_code(session: AsyncSession, *, reserved: set[str] | None = None) -> str:
    """Draw codes until one is unused, both in the database and in ``reserved``.

    ``reserved`` holds codes already handed out to the same unflushed batch.
    """
    reserved = reserved if reserved is not None else set()
    attempts = max(1, int(settings.coupon_code_max_attempts))
    for _ in range(attempts):
        candidate = generate_code()
        if candidate in reserved:
            continue
        if await _code_exists(session, candidate):
            continue
        reserved.add(candidate)
        return candidate
    logger.warning("coupon_code_generation_failed", extra={"attempts": attempts})
    raise GenerationFailure("Failed to generate unique coupon code")


def format_reference(number: int) -> str:
    width = max(1, int(settings.coupon_reference_min_digits))
    return f"{settings.coupon_reference_prefix}-{int(number):0{width}d}"


def parse_reference(reference: str | None) -> int | None:
    """Return the sequence number of a ``CP-###`` reference, or None if it is not one."""
    prefix = re.escape(settings.coupon_reference_prefix)
    match = re.fullmatch(rf"{prefix}-(\d+)", (reference or "").strip().upper())
    if not match:
        return None
    return int(match.group(1))


async def _bump_via_conflict_stmt(session: AsyncSession, *, tenant_id: UUID, count: int, insert_fn) -> int:
    stmt = (
        insert_fn(TenantCouponSequence)
        .values(tenant_id=tenant_id, last_value=count)
        .on_conflict_do_update(
            index_elements=[TenantCouponSequence.tenant_id],
            set_={"last_value": TenantCouponSequence.last_value + count},
        )
        .returning(TenantCouponSequence.last_value)
    )
    return int((await session.execute(stmt)).scalar_one())


async def _bump_via_row_lock(session: AsyncSession, *, tenant_id: UUID, count: int) -> int:
    row = (
        await session.execute(
            select(TenantCouponSequence).where(TenantCouponSequence.tenant_id == tenant_id).with_for_update()
        )
    ).scalar_one_or_none()
    if row is None:
        row = TenantCouponSequence(tenant_id=tenant_id, last_value=0)
        session.add(row)
    row.last_value = int(row.last_value or 0) + count
    await session.flush()
    return int(row.last_value)


async def allocate_reference_numbers(session: AsyncSession, *, tenant_id: UUID, count: int = 1) -> list[int]:
    """Atomically reserve ``count`` consecutive reference numbers for a tenant.

    The counter row is bumped inside the caller's transaction, so a rolled back
    request releases its numbers and concurrent callers queue on the row.
    """
    if count < 1:
        return []
    bind = session.get_bind()
    dialect = getattr(getattr(bind, "dialect", None), "name", "")
    insert_fn = pg_insert if dialect == "postgresql" else (sqlite_insert if dialect == "sqlite" else None)
    if insert_fn is not None:
        last = await _bump_via_conflict_stmt(session, tenant_id=tenant_id, count=count, insert_fn=insert_fn)
    else:
        last = await _bump_via_row_lock(session, tenant_id=tenant_id, count=count)
    return list(range(last - count + 1, last + 1))


async def next_reference(session: AsyncSession, *, tenant_id: UUID) -> str:
    numbers = await allocate_reference_numbers(session, tenant_id=tenant_id, count=1)
    return format_reference(numbers[0])


def verification_url(code: str) -> str:
    return f"{settings.verification_base_url.rstrip('/')}/verify/{code}"


def qr_image_url(code: str, url: str) -> str:
    """Opaque QR encoder: returns an image URL that renders ``url``."""
    query = urlencode({"size": "300x300", "data": url})
    return f"{settings.qr_image_base_url}?{query}"

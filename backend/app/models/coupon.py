import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, enum_values


class CouponStatus(str, enum.Enum):
    draft = "draft"
    printed = "printed"
    active = "active"
    used = "used"
    exhausted = "exhausted"
    expired = "expired"
    inactive = "inactive"


class DiscountType(str, enum.Enum):
    fixed_amount = "FIXED_AMOUNT"


class CouponBatchStatus(str, enum.Enum):
    created = "created"
    printed = "printed"
    active = "active"
    inactive = "inactive"


class CouponBatch(Base):
    __tablename__ = "coupon_batches"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    verification_app_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    batch_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_coupons: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    batch_status: Mapped[CouponBatchStatus] = mapped_column(
        Enum(CouponBatchStatus, native_enum=False),
        nullable=False,
        default=CouponBatchStatus.created,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    coupons: Mapped[list["Coupon"]] = relationship("Coupon", back_populates="batch", lazy="raise")


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        UniqueConstraint("tenant_id", "coupon_reference", name="uq_coupons_tenant_reference"),
        Index("ix_coupons_tenant_reference_number", "tenant_id", "reference_number"),
        Index("ix_coupons_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    verification_app_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    batch_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupon_batches.id"), nullable=True, index=True
    )
    coupon_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    coupon_reference: Mapped[str] = mapped_column(String(40), nullable=False)
    reference_number: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, native_enum=False, values_callable=enum_values),
        nullable=False,
        default=DiscountType.fixed_amount,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    credit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[CouponStatus] = mapped_column(
        Enum(CouponStatus, native_enum=False),
        nullable=False,
        default=CouponStatus.draft,
    )
    total_usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_scans_per_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_code_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    printed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    printed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activation_note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    deactivation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    batch: Mapped[CouponBatch | None] = relationship("CouponBatch", back_populates="coupons")

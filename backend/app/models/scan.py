import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, enum_values


class ScanStatus(str, enum.Enum):
    success = "SUCCESS"
    invalid = "INVALID"
    not_active = "NOT_ACTIVE"
    not_printed = "NOT_PRINTED"
    used = "USED"
    inactive = "INACTIVE"
    expired = "EXPIRED"
    exhausted = "EXHAUSTED"


class Scan(Base):
    __tablename__ = "scans"
    __table_args__ = (Index("ix_scans_coupon_status", "coupon_id", "scan_status"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("coupons.id"), nullable=True)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    scan_status: Mapped[ScanStatus] = mapped_column(
        Enum(ScanStatus, native_enum=False, values_callable=enum_values),
        nullable=False,
    )
    location_lat: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)
    location_lng: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)
    device_info: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

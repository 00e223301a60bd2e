from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.coupon import DiscountType
from app.models.scan import ScanStatus


class ScanLocation(BaseModel):
    lat: Decimal = Field(ge=-90, le=90)
    lng: Decimal = Field(ge=-180, le=180)


class ScanVerifyRequest(BaseModel):
    coupon_code: str = Field(min_length=1, max_length=20)
    location: ScanLocation | None = None
    device_info: str | None = Field(default=None, max_length=500)


class ScanCouponSummary(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: Decimal


class ScanVerifyResponse(BaseModel):
    success: bool
    message: str
    scan_status: ScanStatus
    coupon: ScanCouponSummary


class ScanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    coupon_id: UUID | None = None
    coupon_code: str | None = None
    scan_status: ScanStatus
    location_lat: Decimal | None = None
    location_lng: Decimal | None = None
    device_info: str | None = None
    ip_address: str | None = None
    scanned_at: datetime


class ScanHistoryResponse(BaseModel):
    items: list[ScanRead]
    total: int
    page: int
    limit: int

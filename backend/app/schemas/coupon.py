from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.coupon import CouponBatchStatus, CouponStatus, DiscountType


class CouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    verification_app_id: UUID | None = None
    batch_id: UUID | None = None
    coupon_code: str
    coupon_reference: str
    discount_type: DiscountType
    discount_value: Decimal
    credit_cost: Decimal
    status: CouponStatus
    effective_status: CouponStatus | None = None
    total_usage_limit: int | None = None
    current_usage_count: int
    max_scans_per_code: int | None = None
    description: str | None = None
    qr_code_url: str | None = None
    printed_at: datetime | None = None
    printed_count: int
    activated_at: datetime | None = None
    activation_note: str | None = None
    deactivation_reason: str | None = None
    expiry_date: datetime
    created_at: datetime
    updated_at: datetime


class CouponDetailRead(CouponRead):
    total_scans: int = 0
    successful_scans: int = 0


class CouponListResponse(BaseModel):
    items: list[CouponRead]
    total: int
    page: int
    limit: int


class CouponCreate(BaseModel):
    verification_app_id: UUID | None = None
    discount_type: DiscountType = DiscountType.fixed_amount
    discount_value: Decimal
    expiry_date: datetime
    quantity: int | None = None
    description: str | None = Field(default=None, max_length=2000)
    batch_name: str | None = Field(default=None, max_length=255)
    total_usage_limit: int | None = None
    max_scans_per_code: int | None = None


class CouponCreateResponse(BaseModel):
    coupon: CouponRead | None = None
    coupons: list[CouponRead] = Field(default_factory=list)
    batch_id: UUID | None = None
    credit_cost: Decimal
    new_balance: Decimal


class MultiBatchItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str
    quantity: int
    discount_amount: Decimal = Field(alias="discountAmount")
    expiry_date: datetime = Field(alias="expiryDate")


class MultiBatchCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verification_app_id: UUID | None = Field(default=None, alias="verificationAppId")
    batches: list[MultiBatchItem]


class MultiBatchResponse(BaseModel):
    coupons: list[CouponRead]
    batch_ids: list[UUID]
    total_coupons: int
    credit_cost: Decimal
    new_balance: Decimal


class CouponStatusUpdate(BaseModel):
    status: CouponStatus
    expected_status: CouponStatus | None = None
    activation_note: str | None = Field(default=None, max_length=500)
    deactivation_reason: str | None = Field(default=None, max_length=500)


class CouponStatusResponse(BaseModel):
    coupon: CouponRead
    previous_status: CouponStatus
    refunded_credits: Decimal


class RangeActivateRequest(BaseModel):
    from_reference: str
    to_reference: str
    status_filter: CouponStatus = CouponStatus.printed
    activation_note: str | None = Field(default=None, max_length=500)


class RangeActivateResponse(BaseModel):
    activated_count: int
    skipped_count: int
    excluded_count: int
    activated_references: list[str]
    activated_codes: list[str]
    message: str


class RangeDeactivateRequest(BaseModel):
    from_reference: str
    to_reference: str
    deactivation_reason: str | None = Field(default=None, max_length=500)


class RangeDeactivateResponse(BaseModel):
    deactivated_count: int
    skipped_count: int
    refunded_credits: Decimal
    deactivated_references: list[str]
    deactivated_codes: list[str]
    message: str


class CouponPrintResponse(BaseModel):
    coupon: CouponRead
    message: str = "Coupon marked as printed"


class CouponIdsRequest(BaseModel):
    coupon_ids: list[UUID]


class BulkActivateRequest(CouponIdsRequest):
    activation_note: str | None = Field(default=None, max_length=500)


class BulkPrintResponse(BaseModel):
    printed_count: int
    skipped_count: int
    coupons: list[CouponRead]


class BulkActivateResponse(BaseModel):
    activated_count: int
    skipped_count: int
    requested_count: int
    activated_coupons: list[CouponRead]


class BatchActivateRequest(BaseModel):
    batch_id: UUID
    activation_note: str | None = Field(default=None, max_length=500)


class BatchNoteRequest(BaseModel):
    activation_note: str | None = Field(default=None, max_length=500)


class BatchDeactivateRequest(BaseModel):
    deactivation_reason: str | None = Field(default=None, max_length=500)


class BatchOperationResponse(BaseModel):
    batch_id: UUID
    changed_count: int
    skipped_count: int
    refunded_credits: Decimal = Decimal("0.00")
    codes: list[str]
    message: str


class BatchStats(BaseModel):
    batch_id: UUID
    batch_name: str | None = None
    batch_status: CouponBatchStatus
    total_coupons: int
    status_counts: dict[str, int]

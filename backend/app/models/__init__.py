from app.db.base import Base  # noqa: F401
from app.models.credit import (
    CreditReferenceType,
    CreditRequest,
    CreditRequestStatus,
    CreditTransaction,
    CreditTransactionType,
    TenantCouponSequence,
    TenantCreditBalance,
)  # noqa: F401
from app.models.coupon import Coupon, CouponBatch, CouponBatchStatus, CouponStatus, DiscountType  # noqa: F401
from app.models.scan import Scan, ScanStatus  # noqa: F401

__all__ = [
    "Base",
    "CreditReferenceType",
    "CreditRequest",
    "CreditRequestStatus",
    "CreditTransaction",
    "CreditTransactionType",
    "TenantCouponSequence",
    "TenantCreditBalance",
    "Coupon",
    "CouponBatch",
    "CouponBatchStatus",
    "CouponStatus",
    "DiscountType",
    "Scan",
    "ScanStatus",
]

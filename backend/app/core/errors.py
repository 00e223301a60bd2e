from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import status


class LedgerError(Exception):
    """Base class for business errors raised by the ledger and coupon services."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def extra(self) -> dict[str, Any]:
        return {}


class ValidationError(LedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class InvalidRange(ValidationError):
    code = "invalid_range"


class NotFoundError(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ConflictError(LedgerError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InsufficientCredits(LedgerError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "insufficient_credits"

    def __init__(self, *, required: Decimal, available: Decimal) -> None:
        super().__init__("Insufficient credits")
        self.required = Decimal(required)
        self.available = Decimal(available)

    def extra(self) -> dict[str, Any]:
        return {"required": self.required, "available": self.available}


class InvalidTransition(LedgerError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, *, current: str, target: str, detail: str | None = None) -> None:
        super().__init__(detail or f"Cannot change coupon status from {current} to {target}")
        self.current = current
        self.target = target

    def extra(self) -> dict[str, Any]:
        return {"current_status": self.current, "target_status": self.target}


class GenerationFailure(LedgerError):
    """Code or reference allocation ran out of attempts; the whole request is safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "generation_failure"


class ScanRejected(LedgerError):
    """A verification attempt that was logged but did not redeem the coupon."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, *, scan_status: str, error: str, message: str) -> None:
        super().__init__(error)
        self.scan_status = scan_status
        self.code = scan_status.lower()
        self.message = message
        if scan_status == "INVALID":
            self.status_code = status.HTTP_404_NOT_FOUND

    def extra(self) -> dict[str, Any]:
        return {"success": False, "error": self.detail, "message": self.message}

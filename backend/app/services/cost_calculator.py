from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class CostBreakdown:
    per_coupon_cost: Decimal
    quantity_multiplier: int
    batch_multiplier: int
    base: Decimal = Decimal("0")


@dataclass(frozen=True)
class CreditCost:
    total: Decimal
    breakdown: CostBreakdown
    minimum_cost: int
    quantity: int = field(default=1)


def calculate_coupon_credit_cost(*, discount_value: Decimal, is_batch: bool = False, batch_quantity: int = 1) -> CreditCost:
    """Credit cost of minting coupons: one credit per unit of discount, per coupon."""
    quantity = int(batch_quantity) if is_batch else 1
    per_coupon = Decimal(discount_value)
    breakdown = CostBreakdown(
        per_coupon_cost=per_coupon,
        quantity_multiplier=quantity,
        batch_multiplier=int(batch_quantity) if is_batch else 1,
    )
    return CreditCost(total=per_coupon * quantity, breakdown=breakdown, minimum_cost=quantity, quantity=quantity)


def calculate_multi_batch_cost(batches: list[tuple[Decimal, int]]) -> Decimal:
    """Sum of ``quantity x discount_value`` over ``(discount_value, quantity)`` pairs."""
    return sum(
        (calculate_coupon_credit_cost(discount_value=value, is_batch=True, batch_quantity=qty).total for value, qty in batches),
        start=Decimal("0"),
    )

from decimal import Decimal

from app.services.cost_calculator import calculate_coupon_credit_cost, calculate_multi_batch_cost


def test_single_coupon_costs_its_discount_value():
    cost = calculate_coupon_credit_cost(discount_value=Decimal("12.50"))
    assert cost.total == Decimal("12.50")
    assert cost.minimum_cost == 1
    assert cost.quantity == 1
    assert cost.breakdown.per_coupon_cost == Decimal("12.50")


def test_batch_cost_multiplies_by_quantity():
    cost = calculate_coupon_credit_cost(discount_value=Decimal("10"), is_batch=True, batch_quantity=5)
    assert cost.total == Decimal("50")
    assert cost.minimum_cost == 5
    assert cost.breakdown.quantity_multiplier == 5


def test_quantity_is_ignored_outside_batch_mode():
    cost = calculate_coupon_credit_cost(discount_value=Decimal("10"), is_batch=False, batch_quantity=40)
    assert cost.total == Decimal("10")
    assert cost.minimum_cost == 1


def test_multi_batch_cost_sums_each_batch():
    total = calculate_multi_batch_cost([(Decimal("10"), 5), (Decimal("2.50"), 4)])
    assert total == Decimal("60.00")
    assert calculate_multi_batch_cost([]) == Decimal("0")

# shopcore/services/pricing_service.py
"""Checkout pricing: line discounts, first-order discount, loyalty and refund credit.

Every monetary stage is rounded half-up to cents before the next stage
consumes it, so rounding never compounds across stages.
"""
from decimal import Decimal, ROUND_FLOOR
from typing import Iterable, Optional, Tuple

from ..models.cart import CartLine
from ..models.checkout import CheckoutComputation
from ..models.refund import RefundStatus
from ..utils.formatters import to_money

POINTS_PER_DOLLAR = 10
FIRST_ORDER_DISCOUNT_PERCENT = 25
REFUND_BONUS_RATES = {
    RefundStatus.APPROVED_FULL: Decimal("0.25"),
    RefundStatus.APPROVED_PARTIAL: Decimal("0.10"),
}

ZERO = Decimal("0.00")


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def first_order_discount_percent(prior_order_count: int) -> int:
    return FIRST_ORDER_DISCOUNT_PERCENT if prior_order_count == 0 else 0


def max_redeemable_points(discounted_total: Decimal) -> int:
    """Points must stay strictly below the total so an order never costs zero via points alone"""
    return max(0, _floor(to_money(discounted_total) * POINTS_PER_DOLLAR) - 1)


def loyalty_usage(requested_points: int, discounted_total: Decimal) -> Tuple[int, Decimal]:
    """Clamp a redemption request against the total; returns (points used, discount amount)"""
    if not requested_points or requested_points <= 0 or discounted_total <= 0:
        return 0, ZERO
    points = min(int(requested_points), max_redeemable_points(discounted_total))
    if points <= 0:
        return 0, ZERO
    return points, to_money(Decimal(points) / POINTS_PER_DOLLAR)


def purchase_points(total_amount: Decimal) -> int:
    """Points earned on a completed purchase"""
    return max(0, _floor(Decimal(str(total_amount)) * POINTS_PER_DOLLAR))


def refund_bonus_points(order_total: Decimal, status: RefundStatus) -> int:
    rate = REFUND_BONUS_RATES.get(status)
    if not rate:
        return 0
    base_points = purchase_points(order_total)
    return _floor(base_points * rate)


def compute_checkout(
    lines: Iterable[CartLine],
    prior_order_count: int,
    requested_points: int = 0,
    available_credit: Decimal = ZERO,
    credit_id: Optional[int] = None,
) -> CheckoutComputation:
    """Produce the authoritative payable total for a cart"""
    lines = list(lines)
    cart_total = to_money(sum((line.line_total for line in lines), Decimal(0)))

    discount_percent = first_order_discount_percent(prior_order_count)
    discounted_total = to_money(cart_total * (100 - discount_percent) / 100)
    first_order_discount = max(ZERO, to_money(cart_total - discounted_total))

    points_used, loyalty_amount = loyalty_usage(requested_points, discounted_total)
    after_loyalty = max(ZERO, to_money(discounted_total - loyalty_amount))

    credit = max(ZERO, to_money(available_credit or 0))
    refund_credit_amount = to_money(min(credit, after_loyalty))
    payable_total = max(ZERO, to_money(after_loyalty - refund_credit_amount))

    return CheckoutComputation(
        lines=lines,
        cart_total=cart_total,
        discount_percent=discount_percent,
        discounted_total=discounted_total,
        first_order_discount=first_order_discount,
        loyalty_points_used=points_used,
        loyalty_discount_amount=loyalty_amount,
        refund_credit_amount=refund_credit_amount,
        refund_credit_id=credit_id if refund_credit_amount > 0 else None,
        payable_total=payable_total,
    )

"""Tests for checkout pricing and loyalty point formulas."""

from decimal import Decimal

import pytest

from conftest import cart_line
from shopcore.models.refund import RefundStatus
from shopcore.services.pricing_service import (
    compute_checkout,
    first_order_discount_percent,
    loyalty_usage,
    max_redeemable_points,
    purchase_points,
    refund_bonus_points,
)


def test_first_order_gets_25_percent():
    comp = compute_checkout([cart_line(price="10.00", quantity=2)], prior_order_count=0)

    assert comp.cart_total == Decimal("20.00")
    assert comp.discount_percent == 25
    assert comp.discounted_total == Decimal("15.00")
    assert comp.first_order_discount == Decimal("5.00")
    assert comp.payable_total == Decimal("15.00")


@pytest.mark.parametrize("prior_orders", [1, 2, 40])
def test_returning_customer_pays_cart_total(prior_orders):
    comp = compute_checkout([cart_line(price="10.00", quantity=2)], prior_order_count=prior_orders)

    assert comp.discount_percent == 0
    assert comp.discounted_total == Decimal("20.00")
    assert comp.first_order_discount == Decimal("0.00")


def test_loyalty_request_clamped_below_total():
    comp = compute_checkout(
        [cart_line(price="10.00", quantity=2)], prior_order_count=0, requested_points=200,
    )

    assert comp.loyalty_points_used == 149
    assert comp.loyalty_discount_amount == Decimal("14.90")
    assert comp.payable_total == Decimal("0.10")


def test_loyalty_request_within_limit_used_as_is():
    comp = compute_checkout(
        [cart_line(price="10.00", quantity=2)], prior_order_count=1, requested_points=55,
    )

    assert comp.loyalty_points_used == 55
    assert comp.loyalty_discount_amount == Decimal("5.50")
    assert comp.payable_total == Decimal("14.50")


def test_refund_credit_offsets_discounted_total():
    comp = compute_checkout(
        [cart_line(price="7.50", quantity=2)],
        prior_order_count=3,
        available_credit=Decimal("5.00"),
        credit_id=11,
    )

    assert comp.discounted_total == Decimal("15.00")
    assert comp.refund_credit_amount == Decimal("5.00")
    assert comp.refund_credit_id == 11
    assert comp.payable_total == Decimal("10.00")


def test_refund_credit_capped_at_remaining_total():
    comp = compute_checkout(
        [cart_line(price="4.00")],
        prior_order_count=1,
        requested_points=10,
        available_credit=Decimal("25.00"),
        credit_id=3,
    )

    assert comp.loyalty_discount_amount == Decimal("1.00")
    assert comp.refund_credit_amount == Decimal("3.00")
    assert comp.payable_total == Decimal("0.00")


def test_unused_credit_is_not_referenced():
    comp = compute_checkout(
        [cart_line(price="4.00")], prior_order_count=1, available_credit=0, credit_id=3,
    )

    assert comp.refund_credit_amount == Decimal("0.00")
    assert comp.refund_credit_id is None


def test_line_discount_rounded_per_unit():
    comp = compute_checkout(
        [cart_line(price="9.99", quantity=3, discount="15")], prior_order_count=1,
    )

    # 9.99 * 0.85 = 8.4915 -> 8.49 per unit
    assert comp.lines[0].discounted_unit_price == Decimal("8.49")
    assert comp.cart_total == Decimal("25.47")


def test_first_order_discount_rounds_half_up():
    comp = compute_checkout([cart_line(price="0.10")], prior_order_count=0, requested_points=5)

    assert comp.discounted_total == Decimal("0.08")
    assert comp.loyalty_points_used == 0


def test_order_lines_capture_discounted_price():
    comp = compute_checkout(
        [cart_line(product_id=4, price="20.00", quantity=2, discount="10")], prior_order_count=0,
    )

    lines = comp.order_lines()
    assert [(l.product_id, l.quantity, l.price) for l in lines] == [(4, 2, Decimal("18.00"))]


def test_empty_cart_computes_zero():
    comp = compute_checkout([], prior_order_count=0, requested_points=50)

    assert comp.is_empty
    assert comp.payable_total == Decimal("0.00")
    assert comp.loyalty_points_used == 0


@pytest.mark.parametrize("price,quantity,prior,points,credit", [
    ("10.00", 2, 0, 0, "0"),
    ("10.00", 2, 0, 10_000, "100"),
    ("0.01", 1, 1, 5, "0"),
    ("3.33", 3, 0, 70, "2.50"),
    ("99.99", 1, 5, 999, "0.01"),
])
def test_payable_total_bounded(price, quantity, prior, points, credit):
    comp = compute_checkout(
        [cart_line(price=price, quantity=quantity)],
        prior_order_count=prior,
        requested_points=points,
        available_credit=Decimal(credit),
        credit_id=1,
    )

    assert Decimal("0.00") <= comp.payable_total <= comp.discounted_total
    assert comp.payable_total == max(
        Decimal("0.00"),
        comp.discounted_total - comp.loyalty_discount_amount - comp.refund_credit_amount,
    )


def test_first_order_discount_percent():
    assert first_order_discount_percent(0) == 25
    assert first_order_discount_percent(1) == 0


def test_max_redeemable_points():
    assert max_redeemable_points(Decimal("15.00")) == 149
    assert max_redeemable_points(Decimal("0.10")) == 0
    assert max_redeemable_points(Decimal("0.00")) == 0


def test_loyalty_usage_ignores_non_positive_requests():
    assert loyalty_usage(0, Decimal("15.00")) == (0, Decimal("0.00"))
    assert loyalty_usage(-5, Decimal("15.00")) == (0, Decimal("0.00"))


def test_purchase_points_floor():
    assert purchase_points(Decimal("15.99")) == 159
    assert purchase_points(Decimal("0.09")) == 0


def test_partial_refund_bonus():
    assert refund_bonus_points(Decimal("15.00"), RefundStatus.APPROVED_PARTIAL) == 15


def test_full_refund_bonus():
    assert refund_bonus_points(Decimal("15.00"), RefundStatus.APPROVED_FULL) == 37


@pytest.mark.parametrize("status", [RefundStatus.REJECTED, RefundStatus.PENDING])
def test_no_bonus_without_approval(status):
    assert refund_bonus_points(Decimal("15.00"), status) == 0

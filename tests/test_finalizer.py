"""Tests for order finalization and its post-commit side effects."""

from decimal import Decimal

import pytest

from conftest import Shop, cart_line, success
from shopcore.errors import OrderPersistenceError
from shopcore.models.order import OrderStatus, PaymentMethod
from shopcore.models.outbox import TaskKind
from shopcore.services.pricing_service import compute_checkout


def _computation(**kwargs):
    lines = kwargs.pop("lines", None) or [
        cart_line(product_id=1, price="10.00", quantity=2),
        cart_line(product_id=2, price="5.00", quantity=1),
    ]
    return compute_checkout(lines, **kwargs)


async def test_order_created_with_payment_ids_and_side_effects(shop):
    shop.products.stock = {1: 10, 2: 10}
    shop.memberships.balances = {7: 100}
    comp = _computation(prior_order_count=1, requested_points=50)

    order, warnings = await shop.finalizer.finalize(7, comp, PaymentMethod.PAYPAL, success("PP-1", "CAP-9"))

    assert warnings == []
    assert order.status == OrderStatus.PROCESSING
    assert order.total_amount == Decimal("20.00")
    assert order.transaction_id == "PP-1"
    assert order.transaction_ref_id == "CAP-9"
    assert [(i.product_id, i.quantity) for i in order.items] == [(1, 2), (2, 1)]
    assert shop.products.stock == {1: 8, 2: 9}
    # 25.00 - 5.00 redeemed, 200 points earned on 20.00
    assert shop.memberships.settlements == [(7, 200, 50)]
    assert shop.memberships.balances[7] == 250
    assert shop.carts.cleared == [7]


async def test_credit_consumed_for_order(shop):
    shop.products.stock = {1: 10, 2: 10}
    credit_id = await shop.credits.issue(7, Decimal("5.00"), 3)
    comp = _computation(prior_order_count=1, available_credit=Decimal("5.00"), credit_id=credit_id)

    order, warnings = await shop.finalizer.finalize(7, comp, PaymentMethod.CARD, success())

    assert warnings == []
    assert shop.credits.credits[credit_id].status == "used"
    assert shop.credits.credits[credit_id].used_order_id == order.order_id


async def test_already_used_credit_reported(shop):
    shop.products.stock = {1: 10, 2: 10}
    credit_id = await shop.credits.issue(7, Decimal("5.00"), 3)
    await shop.credits.consume(credit_id, 99)
    comp = _computation(prior_order_count=1, available_credit=Decimal("5.00"), credit_id=credit_id)

    order, warnings = await shop.finalizer.finalize(7, comp, PaymentMethod.CARD, success())

    assert order.order_id == 1
    assert warnings == [f"Refund credit {credit_id} was already used"]
    assert shop.outbox.enqueued == []


async def test_stock_shortfall_recorded_but_order_stands(shop):
    shop.products.stock = {1: 1, 2: 10}
    comp = _computation(prior_order_count=1)

    order, warnings = await shop.finalizer.finalize(7, comp, PaymentMethod.CARD, success())

    assert order.order_id == 1
    assert shop.products.stock[1] == 0
    assert warnings == ["Insufficient stock for product 1"]
    [(kind, payload, reason)] = shop.outbox.dead
    assert kind == TaskKind.STOCK_SHORTFALL
    assert payload["product_id"] == 1
    assert payload["fulfilled"] == 1
    assert shop.carts.cleared == [7]


async def test_failing_side_effect_is_queued_and_others_still_apply(shop):
    shop.products.stock = {1: 10, 2: 10}
    shop.products.fail_for = {1}
    shop.memberships.balances = {7: 0}
    comp = _computation(prior_order_count=1)

    order, warnings = await shop.finalizer.finalize(7, comp, PaymentMethod.NETS, success())

    assert warnings == ["stock_decrement deferred"]
    [(kind, payload, error)] = shop.outbox.enqueued
    assert kind == TaskKind.STOCK_DECREMENT
    assert payload == {"order_id": order.order_id, "product_id": 1, "quantity": 2}
    assert error == "deadlock detected"
    assert shop.products.stock[2] == 9
    assert shop.memberships.balances[7] == 250
    assert shop.carts.cleared == [7]


async def test_loyalty_failure_does_not_block_cart_clear(shop):
    shop.products.stock = {1: 10, 2: 10}
    shop.memberships.fail = True
    comp = _computation(prior_order_count=1)

    _, warnings = await shop.finalizer.finalize(7, comp, PaymentMethod.CARD, success())

    assert warnings == ["loyalty_adjust deferred"]
    assert shop.outbox.enqueued[0][0] == TaskKind.LOYALTY_ADJUST
    assert shop.carts.cleared == [7]


async def test_cart_clear_failure_is_queued(shop):
    shop.products.stock = {1: 10, 2: 10}
    shop.carts.fail = True
    comp = _computation(prior_order_count=1)

    _, warnings = await shop.finalizer.finalize(7, comp, PaymentMethod.CARD, success())

    assert warnings == ["cart_clear deferred"]
    assert shop.outbox.enqueued == [(TaskKind.CART_CLEAR, {"user_id": 7}, "cart table unavailable")]


async def test_persistence_failure_leaves_ledgers_untouched(shop):
    shop.products.stock = {1: 10, 2: 10}
    shop.memberships.balances = {7: 100}
    shop.orders.fail = True
    comp = _computation(prior_order_count=1, requested_points=50)

    with pytest.raises(OrderPersistenceError):
        await shop.finalizer.finalize(7, comp, PaymentMethod.CARD, success())

    assert shop.products.stock == {1: 10, 2: 10}
    assert shop.memberships.balances == {7: 100}
    assert shop.carts.cleared == []


async def test_no_loyalty_adjustment_for_free_order(shop):
    shop.products.stock = {1: 10}
    comp = compute_checkout(
        [cart_line(product_id=1, price="4.00")], 1,
        available_credit=Decimal("4.00"), credit_id=None,
    )

    await shop.finalizer.finalize(7, comp, PaymentMethod.CARD, success())

    assert shop.memberships.settlements == []


async def test_apply_rejects_unknown_kind():
    with pytest.raises(ValueError):
        await Shop().finalizer.apply(TaskKind.PAYMENT_RECONCILIATION, {})

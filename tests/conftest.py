"""Shared fixtures: in-memory stand-ins for the database-backed services."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from shopcore.errors import OrderPersistenceError, PendingIntentError
from shopcore.models.cart import CartLine
from shopcore.models.checkout import UserContext
from shopcore.models.membership import Membership
from shopcore.models.order import Order, OrderStatus
from shopcore.models.payment import IntentStatus, PaymentInitiation, PaymentOutcome, PaymentStatus, PendingPaymentIntent
from shopcore.models.product import StockDecrement
from shopcore.models.refund import RefundCredit
from shopcore.payments.base import PaymentAdapter
from shopcore.services.checkout_service import CheckoutService
from shopcore.services.finalizer_service import OrderFinalizer


def cart_line(product_id=1, price="10.00", quantity=1, discount="0", name=None) -> CartLine:
    return CartLine(
        product_id=product_id,
        quantity=quantity,
        unit_price=Decimal(price),
        discount_percent=Decimal(discount),
        product_name=name or f"Product {product_id}",
    )


class FakeCarts:
    def __init__(self):
        self.lines: Dict[int, List[CartLine]] = {}
        self.cleared: List[int] = []
        self.fail = False

    async def get_cart_lines(self, user_id):
        return list(self.lines.get(user_id, []))

    async def clear_cart(self, user_id):
        if self.fail:
            raise RuntimeError("cart table unavailable")
        self.cleared.append(user_id)
        self.lines.pop(user_id, None)


class FakeOrders:
    def __init__(self):
        self.orders: Dict[int, Order] = {}
        self.prior_counts: Dict[int, int] = {}
        self.fail = False
        self.fail_transition = False

    async def count_user_orders(self, user_id):
        placed = sum(1 for order in self.orders.values() if order.user_id == user_id)
        return self.prior_counts.get(user_id, 0) + placed

    async def create_order(self, user_id, total_amount, discount_percent, lines,
                           payment_method, transaction_id=None, transaction_ref_id=None):
        if self.fail:
            raise OrderPersistenceError("Unable to place order.")
        order = Order(
            order_id=len(self.orders) + 1,
            user_id=user_id,
            total_amount=total_amount,
            discount_percent=Decimal(discount_percent),
            status=OrderStatus.PROCESSING,
            transaction_id=transaction_id,
            transaction_ref_id=transaction_ref_id,
            payment_method=payment_method,
            items=list(lines),
        )
        self.orders[order.order_id] = order
        return order

    async def get_order(self, order_id):
        return self.orders.get(order_id)

    async def transition_status(self, order_id, expected, new_status):
        if self.fail_transition:
            raise RuntimeError("orders table locked")
        order = self.orders.get(order_id)
        if not order or order.status != expected:
            return False
        order.status = new_status
        return True


class FakeMemberships:
    def __init__(self, balances: Optional[Dict[int, int]] = None):
        self.balances = dict(balances or {})
        self.settlements = []
        self.fail = False

    async def get_membership(self, user_id):
        if user_id not in self.balances:
            return None
        return Membership(membership_id=user_id, user_id=user_id, points=self.balances[user_id])

    async def get_balance(self, user_id):
        return self.balances.get(user_id, 0)

    async def settle(self, user_id, grant=0, debit=0):
        if self.fail:
            raise RuntimeError("memberships table unavailable")
        self.settlements.append((user_id, grant, debit))
        if user_id not in self.balances:
            return None
        balance = self.balances[user_id]
        self.balances[user_id] = balance - min(balance, debit) + grant
        return self.balances[user_id]

    async def grant(self, user_id, points):
        return await self.settle(user_id, grant=points)


class FakeCredits:
    def __init__(self):
        self.credits: Dict[int, RefundCredit] = {}
        self.fail = False

    async def issue(self, user_id, amount, refund_request_id=None):
        if self.fail:
            raise RuntimeError("refund_credits table unavailable")
        credit = RefundCredit(
            credit_id=len(self.credits) + 1,
            user_id=user_id,
            refund_request_id=refund_request_id,
            amount=Decimal(amount),
        )
        self.credits[credit.credit_id] = credit
        return credit.credit_id

    async def get_latest_available(self, user_id):
        available = [
            c for c in self.credits.values()
            if c.user_id == user_id and c.status == "available"
        ]
        return available[-1] if available else None

    async def consume(self, credit_id, order_id):
        credit = self.credits.get(credit_id)
        if not credit or credit.status != "available":
            return False
        credit.status = "used"
        credit.used_order_id = order_id
        return True


class FakeProducts:
    def __init__(self, stock: Optional[Dict[int, int]] = None):
        self.stock = dict(stock or {})
        self.fail_for = set()

    async def decrement_stock(self, product_id, quantity):
        if product_id in self.fail_for:
            raise RuntimeError("deadlock detected")
        if product_id not in self.stock:
            return StockDecrement(product_id=product_id, requested=quantity,
                                  error=f"Product {product_id} not found")
        previous = self.stock[product_id]
        fulfilled = min(previous, quantity)
        self.stock[product_id] = previous - fulfilled
        error = None
        if fulfilled < quantity:
            error = f"Insufficient stock for product {product_id}"
        return StockDecrement(product_id=product_id, requested=quantity, fulfilled=fulfilled,
                              remaining=self.stock[product_id], error=error)


class FakeOutbox:
    def __init__(self):
        self.enqueued = []
        self.dead = []

    async def enqueue(self, kind, payload, error=None):
        self.enqueued.append((kind, payload, error))
        return len(self.enqueued)

    async def record_dead(self, kind, payload, reason):
        self.dead.append((kind, payload, reason))
        return len(self.dead)


class FakeIntents:
    def __init__(self, ttl_minutes=20):
        self.intents: Dict[str, PendingPaymentIntent] = {}
        self.ttl = timedelta(minutes=ttl_minutes)
        self.released = []
        self.completed = []

    async def create(self, user_id, method, external_id, snapshot):
        for key in [k for k, i in self.intents.items()
                    if i.user_id == user_id and i.method == method.value]:
            del self.intents[key]
        now = datetime.now(timezone.utc)
        intent = PendingPaymentIntent(
            external_id=external_id,
            user_id=user_id,
            method=method.value,
            snapshot=snapshot.model_dump(mode="json"),
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.intents[external_id] = intent
        return intent

    async def claim(self, user_id, method, external_id, now=None):
        now = now or datetime.now(timezone.utc)
        mine = [i for i in self.intents.values()
                if i.user_id == user_id and i.method == method.value]
        if not mine:
            raise PendingIntentError(f"No pending {method.label} checkout found.")
        latest = mine[-1]
        if latest.external_id != external_id:
            raise PendingIntentError(f"{method.label} payment does not match the current checkout.")
        if latest.expires_at <= now:
            del self.intents[external_id]
            raise PendingIntentError(f"{method.label} session expired. Please try again.")
        if latest.status != IntentStatus.PENDING:
            raise PendingIntentError(f"This {method.label} payment is already being confirmed.")
        latest.status = IntentStatus.CONFIRMING
        return latest

    async def release(self, external_id):
        self.released.append(external_id)
        if external_id in self.intents:
            self.intents[external_id].status = IntentStatus.PENDING

    async def complete(self, external_id):
        self.completed.append(external_id)
        self.intents.pop(external_id, None)


class ScriptedAdapter(PaymentAdapter):
    """Provider adapter returning canned outcomes"""

    def __init__(self, method, external_id="EXT-1", outcomes=None, initiate_error=None):
        self.method = method
        self.external_id = external_id
        self.outcomes = list(outcomes or [])
        self.initiate_error = initiate_error
        self.initiated = []
        self.confirmed = []

    async def initiate(self, amount, currency):
        if self.initiate_error:
            raise self.initiate_error
        self.initiated.append((amount, currency))
        return PaymentInitiation(external_id=self.external_id, client_payload={"id": self.external_id})

    async def confirm(self, external_id, confirmation=None, **context):
        self.confirmed.append((external_id, context))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def success(external_id="EXT-1", capture_id="CAP-1") -> PaymentOutcome:
    return PaymentOutcome(status=PaymentStatus.SUCCESS, external_id=external_id, capture_id=capture_id)


class Shop:
    """Bundle of fakes wired into a real finalizer and checkout service"""

    def __init__(self, adapters=None):
        self.carts = FakeCarts()
        self.orders = FakeOrders()
        self.memberships = FakeMemberships()
        self.credits = FakeCredits()
        self.products = FakeProducts()
        self.outbox = FakeOutbox()
        self.intents = FakeIntents()
        self.finalizer = OrderFinalizer(
            self.orders, self.products, self.memberships,
            self.credits, self.carts, self.outbox,
        )
        self.checkout = CheckoutService(
            self.carts, self.orders, self.memberships, self.credits,
            self.intents, self.finalizer, self.outbox,
            adapters=adapters, currency="SGD",
        )


@pytest.fixture
def user():
    return UserContext(
        user_id=7,
        username="Ada Tan",
        email="ada@example.com",
        address="1 Orchard Road",
        contact="+6591234567",
    )


@pytest.fixture
def admin():
    return UserContext(user_id=1, username="admin", is_admin=True)


@pytest.fixture
def shop():
    return Shop()

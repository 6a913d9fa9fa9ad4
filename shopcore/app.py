# shopcore/app.py
import asyncio
import logging
from typing import Optional
from .config import Config
from .database.database import Database
from .models.order import PaymentMethod
from .payments.card import CardPaymentAdapter
from .payments.nets import NetsPaymentAdapter
from .payments.paypal import PayPalPaymentAdapter
from .services.cart_service import CartService
from .services.checkout_service import CheckoutService
from .services.finalizer_service import OrderFinalizer
from .services.membership_service import MembershipService
from .services.order_service import OrderService
from .services.outbox_service import OutboxService, OutboxWorker
from .services.payment_intent_service import PaymentIntentService
from .services.product_service import ProductService
from .services.refund_credit_service import RefundCreditService
from .services.refund_service import RefundService


class ShopCore:
    """Wires the services together over one database pool"""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or Database()
        self.logger = logging.getLogger(__name__)
        self.setup_services()

    def setup_services(self):
        self.carts = CartService(self.db)
        self.orders = OrderService(self.db)
        self.products = ProductService(self.db)
        self.memberships = MembershipService(self.db)
        self.credits = RefundCreditService(self.db)
        self.intents = PaymentIntentService(self.db)
        self.outbox = OutboxService(self.db)

        self.finalizer = OrderFinalizer(
            self.orders,
            self.products,
            self.memberships,
            self.credits,
            self.carts,
            self.outbox
        )
        self.checkout = CheckoutService(
            self.carts,
            self.orders,
            self.memberships,
            self.credits,
            self.intents,
            self.finalizer,
            self.outbox,
            adapters={
                PaymentMethod.CARD: CardPaymentAdapter(),
                PaymentMethod.PAYPAL: PayPalPaymentAdapter(),
                PaymentMethod.NETS: NetsPaymentAdapter(),
            }
        )
        self.refunds = RefundService(self.db, self.orders, self.memberships, self.credits)
        self.worker = OutboxWorker(self.outbox, self.finalizer.apply)

    async def purge_intents_forever(self, stop: asyncio.Event):
        interval = Config.PAYMENT_INTENT_TTL_MINUTES * 60 / 4
        while not stop.is_set():
            try:
                await self.intents.purge_expired()
            except Exception as e:
                self.logger.error(f"Error purging payment intents: {e}")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def start(self, stop: Optional[asyncio.Event] = None):
        """Connect and run the background loops until stopped"""
        stop = stop or asyncio.Event()
        await self.db.connect()
        try:
            self.logger.info("Outbox worker started")
            await asyncio.gather(
                self.worker.run_forever(stop),
                self.purge_intents_forever(stop)
            )
        finally:
            await self.db.close()

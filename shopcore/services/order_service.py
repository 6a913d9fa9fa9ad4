# shopcore/services/order_service.py
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional
from ..errors import AccessDenied, NotFound, OrderPersistenceError, ValidationFailed
from ..models.checkout import UserContext
from ..models.order import Order, OrderLine, OrderStatus, PaymentMethod
from ..utils.formatters import to_money

ORDER_COLUMNS = """
    order_id, user_id, total_amount, discount_percent, status,
    transaction_id, transaction_ref_id, payment_method, created_at, updated_at
"""

ITEM_QUERY = """
    SELECT oi.order_id, oi.product_id, oi.quantity, oi.price,
           p.name AS product_name, p.image
    FROM order_items oi
    LEFT JOIN products p ON p.product_id = oi.product_id
    WHERE oi.order_id = ANY($1::int[])
    ORDER BY oi.order_item_id
"""


class OrderService:
    """Orders ledger"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def create_order(self, user_id: int, total_amount: Decimal, discount_percent: int,
                           lines: Iterable[OrderLine], payment_method: PaymentMethod,
                           transaction_id: Optional[str] = None,
                           transaction_ref_id: Optional[str] = None) -> Order:
        """Write the order and its lines in one transaction, status processing"""
        lines = list(lines)
        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    order_id = await conn.fetchval("""
                        INSERT INTO orders (
                            user_id, total_amount, discount_percent, status,
                            transaction_id, transaction_ref_id, payment_method
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                        RETURNING order_id
                    """,
                        user_id,
                        to_money(total_amount),
                        discount_percent,
                        OrderStatus.PROCESSING.value,
                        transaction_id,
                        transaction_ref_id,
                        payment_method.value
                    )

                    if lines:
                        await conn.executemany("""
                            INSERT INTO order_items (
                                order_id, product_id, quantity, price
                            ) VALUES ($1, $2, $3, $4)
                        """, [
                            (order_id, line.product_id, line.quantity, line.price)
                            for line in lines
                        ])
        except Exception as e:
            self.logger.error(f"Order transaction for user {user_id} rolled back: {e}")
            raise OrderPersistenceError("Unable to place order.") from e

        try:
            order = await self.get_order(order_id)
        except Exception as e:
            self.logger.warning(f"Order {order_id} created but could not be reloaded: {e}")
            order = None

        return order or Order(
            order_id=order_id,
            user_id=user_id,
            total_amount=to_money(total_amount),
            discount_percent=Decimal(discount_percent),
            status=OrderStatus.PROCESSING,
            transaction_id=transaction_id,
            transaction_ref_id=transaction_ref_id,
            payment_method=payment_method,
            items=lines
        )

    async def get_order(self, order_id: int) -> Optional[Order]:
        """Load an order with its lines"""
        async with self.db.pool.acquire() as conn:
            order = await conn.fetchrow(f"""
                SELECT {ORDER_COLUMNS} FROM orders WHERE order_id = $1
            """, order_id)
            if not order:
                return None
            items = await conn.fetch(ITEM_QUERY, [order_id])
            return Order.model_validate({**dict(order), "items": [dict(i) for i in items]})

    async def get_user_orders(self, user_id: int) -> List[Order]:
        """All orders placed by a user, newest first"""
        async with self.db.pool.acquire() as conn:
            orders = await conn.fetch(f"""
                SELECT {ORDER_COLUMNS}
                FROM orders
                WHERE user_id = $1
                ORDER BY created_at DESC, order_id DESC
            """, user_id)
            if not orders:
                return []
            items = await conn.fetch(ITEM_QUERY, [o['order_id'] for o in orders])

        items_by_order: Dict[int, List[dict]] = {}
        for item in items:
            items_by_order.setdefault(item['order_id'], []).append(dict(item))

        return [
            Order.model_validate({**dict(o), "items": items_by_order.get(o['order_id'], [])})
            for o in orders
        ]

    async def count_user_orders(self, user_id: int) -> int:
        async with self.db.pool.acquire() as conn:
            return await conn.fetchval("""
                SELECT COUNT(*) FROM orders WHERE user_id = $1
            """, user_id)

    async def transition_status(self, order_id: int, expected: OrderStatus,
                                new_status: OrderStatus) -> bool:
        """Move to new_status only if the order is still in the expected status"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE orders
                SET status = $3, updated_at = CURRENT_TIMESTAMP
                WHERE order_id = $1 AND status = $2
            """, order_id, expected.value, new_status.value)
            return result == "UPDATE 1"

    async def mark_completed(self, order_id: int, actor: UserContext) -> Order:
        """Delivery accepted by the owner or an admin"""
        order = await self.get_order(order_id)
        if not order:
            raise NotFound("Order not found.")
        if not actor.is_admin and order.user_id != actor.user_id:
            raise AccessDenied()

        moved = await self.transition_status(
            order_id, OrderStatus.PROCESSING, OrderStatus.COMPLETED
        )
        if not moved:
            raise ValidationFailed(["Only processing orders can be marked as completed."])

        order.status = OrderStatus.COMPLETED
        return order

    async def admin_update(self, order_id: int, actor: UserContext,
                           total_amount: Optional[Decimal] = None,
                           status: Optional[OrderStatus] = None) -> bool:
        """Admin edit of amount and/or status"""
        if not actor.is_admin:
            raise AccessDenied()
        if total_amount is not None:
            try:
                total_amount = Decimal(str(total_amount))
            except InvalidOperation:
                total_amount = Decimal("NaN")
            if not total_amount.is_finite() or total_amount < 0:
                raise ValidationFailed(["Total amount must be a non-negative number."])

        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE orders
                SET total_amount = COALESCE($2, total_amount),
                    status = COALESCE($3, status),
                    updated_at = CURRENT_TIMESTAMP
                WHERE order_id = $1
            """,
                order_id,
                to_money(total_amount) if total_amount is not None else None,
                status.value if status else None
            )
            return result == "UPDATE 1"

    @staticmethod
    def invoice_discount(order: Order) -> Decimal:
        """Discount shown on an invoice: stored percent applied to the line prices"""
        if order.items and order.discount_percent:
            return to_money(order.subtotal * order.discount_percent / 100)
        return Decimal("0.00")

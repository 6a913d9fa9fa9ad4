# shopcore/services/finalizer_service.py
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple
from ..models.checkout import CheckoutComputation
from ..models.order import Order, PaymentMethod
from ..models.outbox import TaskKind
from ..models.payment import PaymentOutcome
from .pricing_service import purchase_points


class OrderFinalizer:
    """Persists a paid checkout, then applies its ledger side effects.

    The order row and its lines are the only transactional part. Stock,
    loyalty and refund-credit updates run concurrently after the commit;
    a failure in one neither blocks the others nor undoes the order.
    Failures are queued in the outbox so they can be retried, and the cart
    is cleared regardless of how the side effects went.
    """

    def __init__(self, order_service, product_service, membership_service,
                 credit_service, cart_service, outbox_service):
        self.orders = order_service
        self.products = product_service
        self.memberships = membership_service
        self.credits = credit_service
        self.carts = cart_service
        self.outbox = outbox_service
        self.logger = logging.getLogger(__name__)

    async def finalize(self, user_id: int, computation: CheckoutComputation,
                       payment_method: PaymentMethod,
                       outcome: PaymentOutcome) -> Tuple[Order, List[str]]:
        """Create the order; raises OrderPersistenceError when nothing was written"""
        lines = computation.order_lines()
        order = await self.orders.create_order(
            user_id=user_id,
            total_amount=computation.payable_total,
            discount_percent=computation.discount_percent,
            lines=lines,
            payment_method=payment_method,
            transaction_id=outcome.external_id,
            transaction_ref_id=outcome.capture_id
        )
        self.logger.info(
            f"Order {order.order_id} created for user {user_id} "
            f"via {payment_method.value} ({outcome.external_id})"
        )

        side_effects = [
            (TaskKind.STOCK_DECREMENT, {
                "order_id": order.order_id,
                "product_id": line.product_id,
                "quantity": line.quantity,
            })
            for line in lines
        ]

        grant = purchase_points(computation.payable_total)
        debit = computation.loyalty_points_used
        if grant or debit:
            side_effects.append((TaskKind.LOYALTY_ADJUST, {
                "order_id": order.order_id,
                "user_id": user_id,
                "grant": grant,
                "debit": debit,
            }))

        if computation.refund_credit_id and computation.refund_credit_amount > 0:
            side_effects.append((TaskKind.CREDIT_CONSUME, {
                "order_id": order.order_id,
                "credit_id": computation.refund_credit_id,
            }))

        notes = await asyncio.gather(*(
            self._attempt(kind, payload) for kind, payload in side_effects
        ))
        notes = list(notes)
        notes.append(await self._attempt(TaskKind.CART_CLEAR, {"user_id": user_id}))

        return order, [note for note in notes if note]

    async def apply(self, kind: TaskKind, payload: Dict[str, Any]) -> Optional[str]:
        """Run one side effect; returns a note for business failures that are not retried"""
        if kind == TaskKind.STOCK_DECREMENT:
            result = await self.products.decrement_stock(payload["product_id"], payload["quantity"])
            if not result.success:
                try:
                    await self.outbox.record_dead(
                        TaskKind.STOCK_SHORTFALL,
                        {**payload, "fulfilled": result.fulfilled},
                        result.error
                    )
                except Exception as e:
                    self.logger.error(f"Could not record stock shortfall {payload}: {e}")
                return result.error
            return None

        if kind == TaskKind.LOYALTY_ADJUST:
            await self.memberships.settle(
                payload["user_id"], grant=payload.get("grant", 0), debit=payload.get("debit", 0)
            )
            return None

        if kind == TaskKind.CREDIT_CONSUME:
            consumed = await self.credits.consume(payload["credit_id"], payload["order_id"])
            if not consumed:
                return f"Refund credit {payload['credit_id']} was already used"
            return None

        if kind == TaskKind.CART_CLEAR:
            await self.carts.clear_cart(payload["user_id"])
            return None

        raise ValueError(f"Unsupported outbox task kind: {kind}")

    async def _attempt(self, kind: TaskKind, payload: Dict[str, Any]) -> Optional[str]:
        try:
            note = await self.apply(kind, payload)
        except Exception as e:
            self.logger.error(f"Post-order {kind.value} failed for {payload}: {e}")
            try:
                await self.outbox.enqueue(kind, payload, str(e))
            except Exception as queue_error:
                self.logger.error(
                    f"Could not queue {kind.value} retry for {payload}: {queue_error}"
                )
            return f"{kind.value} deferred"

        if note:
            self.logger.warning(f"Post-order {kind.value}: {note}")
        return note

# shopcore/utils/messages.py
from ..models.checkout import CheckoutComputation
from ..utils.formatters import format_price

EMPTY_CART = "Your cart is empty."
CAPTURED_NOT_PERSISTED = "Payment captured but order creation failed. Please contact support."
ORDER_FAILED = "Unable to place order."
NETS_UNCONFIRMED = (
    "NETS payment was not confirmed in time. If your account was charged, "
    "please contact support before paying again."
)


class Messages:
    @staticmethod
    def discount_applied(computation: CheckoutComputation) -> str:
        if computation.discount_percent > 0:
            return f"{computation.discount_percent}% first order discount applied"
        return ""

    @staticmethod
    def loyalty_applied(computation: CheckoutComputation) -> str:
        points = computation.loyalty_points_used
        if not points:
            return ""
        return (
            f"{points} points redeemed for "
            f"{format_price(computation.loyalty_discount_amount)} discount"
        )

    @staticmethod
    def points_plural(points: int) -> str:
        return f"{points} point{'' if points == 1 else 's'}"

# shopcore/models/checkout.py
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel
from .cart import CartLine
from .order import Order, OrderLine
from .payment import PaymentOutcome

class UserContext(BaseModel):
    """Already-authenticated identity supplied by the caller"""
    user_id: int
    username: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    contact: Optional[str] = None
    is_admin: bool = False

class CheckoutDetails(BaseModel):
    full_name: str = ""
    address: str = ""
    contact: str = ""
    email: str = ""
    discount_applied: str = ""
    loyalty_applied: str = ""

class CheckoutComputation(BaseModel):
    """Derived pricing for one checkout; never persisted as-is"""
    lines: List[CartLine] = []
    cart_total: Decimal = Decimal("0.00")
    discount_percent: int = 0
    discounted_total: Decimal = Decimal("0.00")
    first_order_discount: Decimal = Decimal("0.00")
    loyalty_points_used: int = 0
    loyalty_discount_amount: Decimal = Decimal("0.00")
    refund_credit_amount: Decimal = Decimal("0.00")
    refund_credit_id: Optional[int] = None
    payable_total: Decimal = Decimal("0.00")

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def order_lines(self) -> List[OrderLine]:
        return [
            OrderLine(
                product_id=line.product_id,
                quantity=line.quantity,
                price=line.discounted_unit_price,
                product_name=line.product_name,
                image=line.image
            )
            for line in self.lines
        ]

class CheckoutSnapshot(BaseModel):
    """What a pending payment intent remembers between initiate and confirm"""
    computation: CheckoutComputation
    details: CheckoutDetails

class PaymentStart(BaseModel):
    success: bool
    external_id: Optional[str] = None
    payable_total: Optional[Decimal] = None
    client_payload: Dict[str, Any] = {}
    error: Optional[str] = None
    errors: List[str] = []

class CheckoutResult(BaseModel):
    """Self-describing outcome handed back to the rendering layer"""
    success: bool
    status: str
    order: Optional[Order] = None
    computation: Optional[CheckoutComputation] = None
    details: Optional[CheckoutDetails] = None
    payment: Optional[PaymentOutcome] = None
    redirect: str = "/checkout"
    error: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []

    @property
    def order_id(self) -> Optional[int]:
        return self.order.order_id if self.order else None

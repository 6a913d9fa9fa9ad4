# shopcore/models/order.py
from decimal import Decimal
from pydantic import BaseModel, Field
from enum import Enum
from typing import List, Optional
from .base import TimeStampedModel

class OrderStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUND_FULL = "refund_full"
    REFUND_PARTIAL = "refund_partial"
    REFUND_REJECTED = "refund_rejected"

class PaymentMethod(str, Enum):
    CARD = "CARD"
    PAYPAL = "PAYPAL"
    NETS = "NETS"

    @property
    def label(self) -> str:
        return {"CARD": "Card", "PAYPAL": "PayPal", "NETS": "NETS"}[self.value]

class OrderLine(BaseModel):
    """Line captured at purchase time; price is the discounted unit price"""
    product_id: int
    quantity: int = Field(gt=0)
    price: Decimal
    product_name: Optional[str] = None
    image: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        return self.price * self.quantity

class Order(TimeStampedModel):
    """Order placed by a user"""
    order_id: int
    user_id: int
    total_amount: Decimal
    discount_percent: Decimal = Decimal(0)
    status: OrderStatus
    transaction_id: Optional[str] = None
    transaction_ref_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    items: List[OrderLine] = []

    @property
    def is_completed(self) -> bool:
        return self.status == OrderStatus.COMPLETED

    @property
    def subtotal(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal(0))

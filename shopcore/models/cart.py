# shopcore/models/cart.py
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from ..utils.formatters import to_money

class CartLine(BaseModel):
    """One product line in a user's cart"""
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    discount_percent: Decimal = Field(default=Decimal(0), ge=0, lt=100)
    product_name: Optional[str] = None
    image: Optional[str] = None

    @property
    def discounted_unit_price(self) -> Decimal:
        return to_money(self.unit_price * (1 - self.discount_percent / 100))

    @property
    def line_total(self) -> Decimal:
        return self.discounted_unit_price * self.quantity

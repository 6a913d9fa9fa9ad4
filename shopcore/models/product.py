# shopcore/models/product.py
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel
from .base import TimeStampedModel

class Product(TimeStampedModel):
    """Catalog product as seen by checkout"""
    product_id: int
    name: str
    price: Decimal
    discount_percent: Decimal = Decimal(0)
    stock: int = 0
    is_active: bool = True
    image: Optional[str] = None

class StockDecrement(BaseModel):
    """Per-line result of an atomic stock decrement"""
    product_id: int
    requested: int
    fulfilled: int = 0
    remaining: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.fulfilled == self.requested

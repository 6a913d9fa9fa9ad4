# shopcore/utils/formatters.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any
import pytz
from ..config import Config

CENT = Decimal("0.01")

def to_money(amount: Any) -> Decimal:
    """Round to cents, half-up"""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)

def format_price(amount: Decimal) -> str:
    """Format an amount for display"""
    return f"${to_money(amount):,.2f}"

def format_datetime(dt: datetime) -> str:
    """Format a timestamp in the shop's timezone"""
    shop_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(shop_tz).strftime("%Y-%m-%d %H:%M:%S")

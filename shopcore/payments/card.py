# shopcore/payments/card.py
import random
import re
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from ..models.order import PaymentMethod
from ..models.payment import PaymentInitiation, PaymentOutcome, PaymentStatus
from .base import PaymentAdapter

CARD_NUMBER_RE = re.compile(r"^\d{16}$")
CVV_RE = re.compile(r"^\d{3,4}$")
EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")


def validate_card_details(form: Dict[str, Any], now: Optional[datetime] = None) -> List[str]:
    """Field-level problems with the submitted card; empty when acceptable"""
    errors = []
    card_number = str(form.get("card_number") or "").strip()
    cvv = str(form.get("cvv") or "").strip()
    expiry = str(form.get("expiry") or "").strip()

    if not CARD_NUMBER_RE.match(card_number):
        errors.append("Card number must be exactly 16 digits.")
    if not CVV_RE.match(cvv):
        errors.append("CVV must be 3-4 digits.")
    if not EXPIRY_RE.match(expiry):
        errors.append("Expiry must be in MM/YY format.")
    else:
        month, year = expiry.split("/")
        month, year = int(month), 2000 + int(year)
        # valid through the last day of the expiry month
        first_invalid = datetime(year + month // 12, month % 12 + 1, 1)
        if first_invalid <= (now or datetime.now()):
            errors.append("Card has expired.")

    return errors


def build_local_transaction_id(prefix: str = "CARD") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{random.randint(0, 999999)}"


class CardPaymentAdapter(PaymentAdapter):
    """Simulated card rail: accepted locally, no external call"""

    method = PaymentMethod.CARD

    async def initiate(self, amount: Decimal, currency: str) -> PaymentInitiation:
        return PaymentInitiation(external_id=build_local_transaction_id())

    async def confirm(self, external_id, confirmation=None, **context) -> PaymentOutcome:
        return PaymentOutcome(status=PaymentStatus.SUCCESS, external_id=external_id)

    async def authorize(self, amount: Decimal, currency: str) -> PaymentOutcome:
        """Both phases in one step; card fields are validated by the caller"""
        initiation = await self.initiate(amount, currency)
        return await self.confirm(initiation.external_id)

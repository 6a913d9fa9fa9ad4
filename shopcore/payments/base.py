# shopcore/payments/base.py
from decimal import Decimal
from typing import Any, Dict, Optional
from ..models.order import PaymentMethod
from ..models.payment import PaymentInitiation, PaymentOutcome


class PaymentAdapter:
    """Two-phase contract every payment rail converges on"""

    method: PaymentMethod

    async def initiate(self, amount: Decimal, currency: str) -> PaymentInitiation:
        raise NotImplementedError

    async def confirm(self, external_id: str, confirmation: Optional[Dict[str, Any]] = None,
                      **context) -> PaymentOutcome:
        raise NotImplementedError

# shopcore/models/refund.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel
from .base import TimeStampedModel
from .order import OrderStatus

class SupportType(str, Enum):
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"

class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED_FULL = "approved_full"
    APPROVED_PARTIAL = "approved_partial"
    REJECTED = "rejected"

    @property
    def is_approval(self) -> bool:
        return self in (RefundStatus.APPROVED_FULL, RefundStatus.APPROVED_PARTIAL)

class RefundReport(TimeStampedModel):
    refund_id: int
    order_id: int
    user_id: int
    reason: str
    description: Optional[str] = None
    image: Optional[str] = None
    support_type: SupportType = SupportType.FULL_REFUND
    status: RefundStatus = RefundStatus.PENDING
    refund_amount: Decimal = Decimal("0.00")
    resolution_note: Optional[str] = None

    # Joined from the originating order when loaded for resolution
    order_total: Optional[Decimal] = None
    order_status: Optional[OrderStatus] = None

class RefundCreditStatus(str, Enum):
    AVAILABLE = "available"
    USED = "used"

class RefundCredit(BaseModel):
    """Store credit issued from an approved refund"""
    credit_id: int
    user_id: int
    refund_request_id: Optional[int] = None
    amount: Decimal
    status: RefundCreditStatus = RefundCreditStatus.AVAILABLE
    used_order_id: Optional[int] = None
    created_at: Optional[datetime] = None
    used_at: Optional[datetime] = None

class ResolutionResult(BaseModel):
    success: bool
    report: Optional[RefundReport] = None
    order_status: Optional[OrderStatus] = None
    bonus_points: int = 0
    credit_id: Optional[int] = None
    error: Optional[str] = None
    warnings: List[str] = []

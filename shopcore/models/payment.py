# shopcore/models/payment.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel

class PaymentStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"

class PaymentInitiation(BaseModel):
    """External id plus whatever the client needs to authorize"""
    external_id: str
    client_payload: Dict[str, Any] = {}

class PaymentOutcome(BaseModel):
    """Normalized result every payment adapter converges on"""
    status: PaymentStatus
    external_id: Optional[str] = None
    capture_id: Optional[str] = None
    provider_status: Optional[str] = None
    message: Optional[str] = None
    # set when a failure may hide a late provider-side success
    ambiguous: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCESS

class IntentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMING = "confirming"

class PendingPaymentIntent(BaseModel):
    external_id: str
    user_id: int
    method: str
    status: IntentStatus = IntentStatus.PENDING
    snapshot: Dict[str, Any]
    created_at: datetime
    expires_at: datetime

# shopcore/models/outbox.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel

class TaskKind(str, Enum):
    STOCK_DECREMENT = "stock_decrement"
    LOYALTY_ADJUST = "loyalty_adjust"
    CREDIT_CONSUME = "credit_consume"
    CART_CLEAR = "cart_clear"
    # recorded for manual follow-up, never retried
    STOCK_SHORTFALL = "stock_shortfall"
    PAYMENT_RECONCILIATION = "payment_reconciliation"

class TaskStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    DEAD = "dead"

class OutboxTask(BaseModel):
    task_id: int
    kind: TaskKind
    payload: Dict[str, Any]
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None

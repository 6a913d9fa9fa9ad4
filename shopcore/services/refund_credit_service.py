# shopcore/services/refund_credit_service.py
from decimal import Decimal
from typing import Optional
from ..models.refund import RefundCredit

class RefundCreditService:
    """Store-credit ledger fed by approved refunds"""

    def __init__(self, db):
        self.db = db

    async def issue(self, user_id: int, amount: Decimal,
                    refund_request_id: Optional[int] = None) -> int:
        """Create an available credit"""
        async with self.db.pool.acquire() as conn:
            return await conn.fetchval("""
                INSERT INTO refund_credits (user_id, refund_request_id, amount, status)
                VALUES ($1, $2, $3, 'available')
                RETURNING credit_id
            """, user_id, refund_request_id, amount)

    async def get_latest_available(self, user_id: int) -> Optional[RefundCredit]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT *
                FROM refund_credits
                WHERE user_id = $1 AND status = 'available'
                ORDER BY created_at DESC, credit_id DESC
                LIMIT 1
            """, user_id)
            return RefundCredit.model_validate(dict(row)) if row else None

    async def consume(self, credit_id: int, order_id: int) -> bool:
        """Bind the credit to an order; only one caller can win"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE refund_credits
                SET status = 'used', used_order_id = $2, used_at = CURRENT_TIMESTAMP
                WHERE credit_id = $1 AND status = 'available'
            """, credit_id, order_id)
            return result == "UPDATE 1"

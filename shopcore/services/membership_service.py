# shopcore/services/membership_service.py
import logging
from typing import Optional
from ..models.membership import Membership

class MembershipService:
    """Loyalty points ledger"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def join(self, user_id: int) -> bool:
        """Create a membership; joining twice is a no-op"""
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO memberships (user_id, points)
                VALUES ($1, 0)
                ON CONFLICT (user_id) DO NOTHING
            """, user_id)
            return True

    async def cancel(self, user_id: int) -> bool:
        """Remove the membership and its balance"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM memberships WHERE user_id = $1
            """, user_id)
            return result == "DELETE 1"

    async def get_membership(self, user_id: int) -> Optional[Membership]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM memberships WHERE user_id = $1
            """, user_id)
            return Membership.model_validate(dict(row)) if row else None

    async def get_balance(self, user_id: int) -> int:
        """Points balance; 0 for non-members"""
        membership = await self.get_membership(user_id)
        return membership.points if membership else 0

    async def grant(self, user_id: int, points: int) -> Optional[int]:
        """Add points; returns the new balance, or None when the user is not a member"""
        return await self.settle(user_id, grant=points, debit=0)

    async def debit(self, user_id: int, points: int) -> Optional[int]:
        """Subtract up to the current balance"""
        return await self.settle(user_id, grant=0, debit=points)

    async def settle(self, user_id: int, grant: int = 0, debit: int = 0) -> Optional[int]:
        """Apply a debit clamped to the balance and a grant as one adjustment"""
        grant = max(0, int(grant))
        debit = max(0, int(debit))
        if not grant and not debit:
            return await self.get_balance(user_id)

        async with self.db.pool.acquire() as conn:
            balance = await conn.fetchval("""
                UPDATE memberships
                SET points = points - LEAST(points, $2) + $3,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = $1
                RETURNING points
            """, user_id, debit, grant)

        if balance is None:
            self.logger.debug(f"User {user_id} has no membership; points not adjusted")
        return balance

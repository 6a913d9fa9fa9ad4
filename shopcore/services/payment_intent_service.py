# shopcore/services/payment_intent_service.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from ..config import Config
from ..errors import PendingIntentError
from ..models.checkout import CheckoutSnapshot
from ..models.order import PaymentMethod
from ..models.payment import PendingPaymentIntent


class PaymentIntentService:
    """Persisted state bridging a provider's initiate and confirm steps"""

    def __init__(self, db, ttl_minutes: Optional[int] = None):
        self.db = db
        self.ttl = timedelta(minutes=ttl_minutes or Config.PAYMENT_INTENT_TTL_MINUTES)
        self.logger = logging.getLogger(__name__)

    async def create(self, user_id: int, method: PaymentMethod, external_id: str,
                     snapshot: CheckoutSnapshot) -> PendingPaymentIntent:
        """Store a pending intent, replacing any earlier one for the same user and method"""
        now = datetime.now(timezone.utc)
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("""
                    DELETE FROM payment_intents
                    WHERE user_id = $1 AND method = $2 AND status = 'pending'
                """, user_id, method.value)

                row = await conn.fetchrow("""
                    INSERT INTO payment_intents (
                        external_id, user_id, method, status, snapshot,
                        created_at, expires_at
                    ) VALUES ($1, $2, $3, 'pending', $4, $5, $6)
                    RETURNING *
                """,
                    external_id,
                    user_id,
                    method.value,
                    snapshot.model_dump(mode="json"),
                    now,
                    now + self.ttl
                )
        return PendingPaymentIntent.model_validate(dict(row))

    async def claim(self, user_id: int, method: PaymentMethod, external_id: str,
                    now: Optional[datetime] = None) -> PendingPaymentIntent:
        """Validate the supplied id against the stored intent and lock it for confirmation"""
        label = method.label
        now = now or datetime.now(timezone.utc)

        async with self.db.pool.acquire() as conn:
            latest = await conn.fetchrow("""
                SELECT *
                FROM payment_intents
                WHERE user_id = $1 AND method = $2
                ORDER BY created_at DESC
                LIMIT 1
            """, user_id, method.value)

            if not latest:
                raise PendingIntentError(f"No pending {label} checkout found.")
            if latest['external_id'] != external_id:
                raise PendingIntentError(f"{label} payment does not match the current checkout.")
            if latest['expires_at'] <= now:
                await conn.execute("""
                    DELETE FROM payment_intents WHERE external_id = $1
                """, external_id)
                raise PendingIntentError(f"{label} session expired. Please try again.")

            claimed = await conn.fetchrow("""
                UPDATE payment_intents
                SET status = 'confirming'
                WHERE external_id = $1 AND status = 'pending'
                RETURNING *
            """, external_id)

        if not claimed:
            raise PendingIntentError(f"This {label} payment is already being confirmed.")
        return PendingPaymentIntent.model_validate(dict(claimed))

    async def release(self, external_id: str) -> None:
        """Hand a claimed intent back so the client can confirm again"""
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                UPDATE payment_intents
                SET status = 'pending'
                WHERE external_id = $1 AND status = 'confirming'
            """, external_id)

    async def complete(self, external_id: str) -> None:
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                DELETE FROM payment_intents WHERE external_id = $1
            """, external_id)

    async def purge_expired(self) -> int:
        """Discard expired intents; they are never retried"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM payment_intents WHERE expires_at <= CURRENT_TIMESTAMP
            """)
        purged = int(result.split()[-1])
        if purged:
            self.logger.info(f"Purged {purged} expired payment intents")
        return purged

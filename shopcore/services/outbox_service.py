# shopcore/services/outbox_service.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from ..config import Config
from ..models.outbox import OutboxTask, TaskKind, TaskStatus

Dispatch = Callable[[TaskKind, Dict[str, Any]], Awaitable[Optional[str]]]


class OutboxService:
    """Durable record of post-commit side effects that did not apply inline"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def enqueue(self, kind: TaskKind, payload: Dict[str, Any],
                      error: Optional[str] = None) -> int:
        """Queue a retryable task; the first inline attempt already counts"""
        async with self.db.pool.acquire() as conn:
            task_id = await conn.fetchval("""
                INSERT INTO outbox_tasks (kind, payload, status, attempts, last_error)
                VALUES ($1, $2, 'pending', $3, $4)
                RETURNING task_id
            """, kind.value, payload, 1 if error else 0, error)
        self.logger.info(f"Queued {kind.value} task {task_id}: {payload}")
        return task_id

    async def record_dead(self, kind: TaskKind, payload: Dict[str, Any], reason: str) -> int:
        """Record something that needs manual follow-up and must not be retried"""
        async with self.db.pool.acquire() as conn:
            task_id = await conn.fetchval("""
                INSERT INTO outbox_tasks (kind, payload, status, last_error)
                VALUES ($1, $2, 'dead', $3)
                RETURNING task_id
            """, kind.value, payload, reason)
        self.logger.error(f"Recorded {kind.value} entry {task_id} for manual follow-up: {reason}")
        return task_id

    async def lease_due(self, limit: int, lease_seconds: int) -> List[OutboxTask]:
        """Take due tasks, hiding them from other workers for the lease period"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                UPDATE outbox_tasks
                SET next_attempt_at = CURRENT_TIMESTAMP + make_interval(secs => $2),
                    updated_at = CURRENT_TIMESTAMP
                WHERE task_id IN (
                    SELECT task_id
                    FROM outbox_tasks
                    WHERE status = 'pending' AND next_attempt_at <= CURRENT_TIMESTAMP
                    ORDER BY task_id
                    LIMIT $1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
            """, limit, float(lease_seconds))
            return [OutboxTask.model_validate(dict(row)) for row in rows]

    async def mark_done(self, task_id: int) -> None:
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                UPDATE outbox_tasks
                SET status = 'done', updated_at = CURRENT_TIMESTAMP
                WHERE task_id = $1
            """, task_id)

    async def mark_failed(self, task: OutboxTask, error: str, max_attempts: int,
                          backoff_seconds: int) -> TaskStatus:
        """Count the attempt and reschedule with linear backoff, or give up"""
        attempts = task.attempts + 1
        status = TaskStatus.DEAD if attempts >= max_attempts else TaskStatus.PENDING
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                UPDATE outbox_tasks
                SET status = $2,
                    attempts = $3,
                    last_error = $4,
                    next_attempt_at = CURRENT_TIMESTAMP + make_interval(secs => $5),
                    updated_at = CURRENT_TIMESTAMP
                WHERE task_id = $1
            """, task.task_id, status.value, attempts, error, float(backoff_seconds * attempts))
        return status


class OutboxWorker:
    """Re-runs queued side effects until they apply or run out of attempts"""

    def __init__(self, outbox: OutboxService, dispatch: Dispatch,
                 max_attempts: Optional[int] = None, batch_size: Optional[int] = None,
                 poll_seconds: Optional[int] = None):
        self.outbox = outbox
        self.dispatch = dispatch
        self.max_attempts = max_attempts or Config.OUTBOX_MAX_ATTEMPTS
        self.batch_size = batch_size or Config.OUTBOX_BATCH_SIZE
        self.poll_seconds = poll_seconds or Config.OUTBOX_POLL_SECONDS
        self.logger = logging.getLogger(__name__)

    async def run_once(self) -> int:
        """Process one batch; returns the number of tasks that applied"""
        tasks = await self.outbox.lease_due(self.batch_size, self.poll_seconds * 4)
        applied = 0
        for task in tasks:
            try:
                note = await self.dispatch(task.kind, task.payload)
            except Exception as e:
                status = await self.outbox.mark_failed(
                    task, str(e), self.max_attempts, self.poll_seconds
                )
                log = self.logger.error if status == TaskStatus.DEAD else self.logger.warning
                log(f"Outbox task {task.task_id} ({task.kind.value}) failed, now {status.value}: {e}")
                continue

            await self.outbox.mark_done(task.task_id)
            applied += 1
            if note:
                self.logger.warning(f"Outbox task {task.task_id} ({task.kind.value}): {note}")
        return applied

    async def run_forever(self, stop: Optional[asyncio.Event] = None):
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                self.logger.error(f"Outbox batch failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass

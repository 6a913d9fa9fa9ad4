# shopcore/services/refund_service.py
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional
from ..errors import AccessDenied, NotFound, ValidationFailed
from ..models.checkout import UserContext
from ..models.order import OrderStatus
from ..models.refund import RefundReport, RefundStatus, ResolutionResult, SupportType
from ..utils.formatters import to_money
from .pricing_service import refund_bonus_points

OTHER_REASON = "Other"

REPORT_COLUMNS = """
    r.*,
    o.total_amount AS order_total,
    o.status AS order_status
"""


def derive_order_status(refund_status: RefundStatus,
                        order_status: Optional[OrderStatus]) -> Optional[OrderStatus]:
    """Order status implied by a refund decision, or None when the order stays as is.

    Approving a refund on an order that never reached ``completed`` cancels
    it instead of refunding it. Only processing and completed orders move;
    the refund and cancellation statuses are final.
    """
    if order_status == OrderStatus.PROCESSING:
        return OrderStatus.CANCELLED if refund_status.is_approval else None
    if order_status == OrderStatus.COMPLETED:
        return {
            RefundStatus.APPROVED_FULL: OrderStatus.REFUND_FULL,
            RefundStatus.APPROVED_PARTIAL: OrderStatus.REFUND_PARTIAL,
            RefundStatus.REJECTED: OrderStatus.REFUND_REJECTED,
        }.get(refund_status)
    return None


def validate_report(reason: Optional[str], reason_other: Optional[str],
                    description: Optional[str], image: Optional[str],
                    support_type: Optional[str]) -> List[str]:
    errors = []
    if not reason or not reason.strip():
        errors.append("Reason is required.")
    if reason == OTHER_REASON and (not reason_other or not str(reason_other).strip()):
        errors.append('Please provide a reason for "Other".')
    if not description or not description.strip():
        errors.append("Description is required.")
    if support_type and support_type not in [t.value for t in SupportType]:
        errors.append("Invalid support type.")
    if not image:
        errors.append("Evidence image is required.")
    return errors


class RefundService:
    """Refund reports and their admin resolution"""

    def __init__(self, db, order_service, membership_service, credit_service):
        self.db = db
        self.orders = order_service
        self.memberships = membership_service
        self.credits = credit_service
        self.logger = logging.getLogger(__name__)

    async def submit_report(self, order_id: int, actor: UserContext, reason: str,
                            description: str, image: Optional[str],
                            reason_other: Optional[str] = None,
                            support_type: Optional[str] = None) -> RefundReport:
        """File a report against an order; a new one is allowed only after a rejection"""
        errors = validate_report(reason, reason_other, description, image, support_type)
        if errors:
            raise ValidationFailed(errors)

        order = await self.orders.get_order(order_id)
        if not order:
            raise NotFound("Order not found.")
        if not actor.is_admin and order.user_id != actor.user_id:
            raise AccessDenied()

        latest = await self.get_latest_for_order(order_id)
        if latest and latest.status != RefundStatus.REJECTED:
            raise ValidationFailed([
                f"A refund report for this order is already {latest.status.value.replace('_', ' ')}."
            ])

        resolved_reason = str(reason_other).strip() if reason == OTHER_REASON else reason.strip()
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO refund_requests (
                    order_id, user_id, reason, description, image, support_type, status
                ) VALUES ($1, $2, $3, $4, $5, $6, 'pending')
                RETURNING *
            """,
                order_id,
                order.user_id,
                resolved_reason,
                description.strip(),
                image,
                support_type or SupportType.FULL_REFUND.value
            )

        self.logger.info(f"Refund report {row['refund_id']} submitted for order {order_id}")
        return RefundReport.model_validate(dict(row))

    async def get_report(self, refund_id: int) -> Optional[RefundReport]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT {REPORT_COLUMNS}
                FROM refund_requests r
                JOIN orders o ON o.order_id = r.order_id
                WHERE r.refund_id = $1
            """, refund_id)
            return RefundReport.model_validate(dict(row)) if row else None

    async def get_latest_for_order(self, order_id: int) -> Optional[RefundReport]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT {REPORT_COLUMNS}
                FROM refund_requests r
                JOIN orders o ON o.order_id = r.order_id
                WHERE r.order_id = $1
                ORDER BY r.created_at DESC, r.refund_id DESC
                LIMIT 1
            """, order_id)
            return RefundReport.model_validate(dict(row)) if row else None

    async def get_reports_by_order_ids(self, order_ids: Iterable[int]) -> Dict[int, RefundReport]:
        """Latest report per order"""
        order_ids = list(order_ids)
        if not order_ids:
            return {}
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT DISTINCT ON (r.order_id) {REPORT_COLUMNS}
                FROM refund_requests r
                JOIN orders o ON o.order_id = r.order_id
                WHERE r.order_id = ANY($1::int[])
                ORDER BY r.order_id, r.created_at DESC, r.refund_id DESC
            """, order_ids)
            return {row['order_id']: RefundReport.model_validate(dict(row)) for row in rows}

    async def list_reports(self, status: Optional[RefundStatus] = None) -> List[RefundReport]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {REPORT_COLUMNS}
                FROM refund_requests r
                JOIN orders o ON o.order_id = r.order_id
                WHERE $1::text IS NULL OR r.status = $1
                ORDER BY r.created_at DESC
            """, status.value if status else None)
            return [RefundReport.model_validate(dict(row)) for row in rows]

    async def update_report(self, refund_id: int, status: RefundStatus, refund_amount: Decimal,
                            resolution_note: str, support_type: SupportType,
                            expected: Optional[RefundStatus] = None) -> bool:
        """Write a decision; with expected set, only if the report still has that status"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE refund_requests
                SET status = $2,
                    refund_amount = $3,
                    resolution_note = $4,
                    support_type = $5,
                    updated_at = CURRENT_TIMESTAMP
                WHERE refund_id = $1 AND ($6::text IS NULL OR status = $6)
            """, refund_id, status.value, refund_amount, resolution_note, support_type.value,
                expected.value if expected else None)
            return result == "UPDATE 1"

    async def resolve_report(self, refund_id: int, status: Any, refund_amount: Any = None,
                             resolution_note: Optional[str] = None,
                             support_type: Optional[str] = None,
                             as_store_credit: bool = False) -> ResolutionResult:
        """Apply an admin decision.

        Steps run in order and are not rolled back: the report update, the
        order status move, the member bonus, then optional store credit.
        Only a failure of the report update fails the resolution; later
        failures are logged and returned as warnings.
        """
        try:
            status = RefundStatus(status)
        except ValueError:
            return ResolutionResult(success=False, error="Invalid status.")

        try:
            support = SupportType(support_type) if support_type else None
        except ValueError:
            return ResolutionResult(success=False, error="Invalid refund type.")

        note = str(resolution_note or "").strip()
        if status == RefundStatus.REJECTED and not note:
            return ResolutionResult(success=False, error="Please provide a reason before rejecting.")

        try:
            amount = Decimal(str(refund_amount)) if refund_amount not in (None, "") else Decimal(0)
        except InvalidOperation:
            amount = Decimal("NaN")
        if status.is_approval and (not amount.is_finite() or amount < 0):
            return ResolutionResult(success=False, error="Refund amount must be a valid number.")

        report = await self.get_report(refund_id)
        if not report:
            return ResolutionResult(success=False, error="Report not found.")
        if report.status.is_approval:
            return ResolutionResult(success=False, error="This refund has already been approved.")

        if status == RefundStatus.APPROVED_FULL and report.order_total is not None:
            amount = report.order_total
        amount = to_money(amount) if amount.is_finite() else Decimal("0.00")
        support = support or report.support_type

        try:
            updated = await self.update_report(
                refund_id, status, amount, note, support, expected=report.status
            )
        except Exception as e:
            self.logger.error(f"Error updating refund report {refund_id}: {e}")
            return ResolutionResult(success=False, error="Unable to update report.")
        if not updated:
            return ResolutionResult(
                success=False, error="Report was updated by someone else. Please reload and try again."
            )

        report = report.model_copy(update={
            "status": status,
            "refund_amount": amount,
            "resolution_note": note,
            "support_type": support,
        })
        result = ResolutionResult(success=True, report=report, order_status=report.order_status)
        self.logger.info(f"Refund report {refund_id} resolved as {status.value} ({amount})")

        if status == RefundStatus.PENDING:
            return result

        target = derive_order_status(status, report.order_status)
        if target:
            try:
                moved = await self.orders.transition_status(
                    report.order_id, report.order_status, target
                )
                if moved:
                    result.order_status = target
                else:
                    result.warnings.append(
                        f"Order {report.order_id} changed status before the refund was applied"
                    )
            except Exception as e:
                self.logger.error(
                    f"Error updating order {report.order_id} status for refund {refund_id}: {e}"
                )
                result.warnings.append("Order status could not be updated")
        else:
            self.logger.info(
                f"Order {report.order_id} left as {report.order_status} for refund {refund_id}"
            )

        if not status.is_approval:
            return result

        bonus = refund_bonus_points(report.order_total or Decimal(0), status)
        if bonus > 0:
            try:
                balance = await self.memberships.grant(report.user_id, bonus)
                if balance is not None:
                    result.bonus_points = bonus
                    self.logger.info(
                        f"Granted {bonus} refund bonus points to user {report.user_id}"
                    )
            except Exception as e:
                self.logger.error(
                    f"Error granting {bonus} refund bonus points to user {report.user_id}: {e}"
                )
                result.warnings.append("Bonus points could not be granted")

        if as_store_credit and amount > 0:
            try:
                result.credit_id = await self.credits.issue(report.user_id, amount, refund_id)
                self.logger.info(
                    f"Issued refund credit {result.credit_id} of {amount} to user {report.user_id}"
                )
            except Exception as e:
                self.logger.error(
                    f"Error issuing refund credit for report {refund_id}: {e}"
                )
                result.warnings.append("Refund credit could not be issued")

        return result


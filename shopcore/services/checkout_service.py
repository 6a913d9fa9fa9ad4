# shopcore/services/checkout_service.py
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from ..config import Config
from ..errors import (
    OrderPersistenceError, PaymentError, PendingIntentError, ValidationFailed
)
from ..models.checkout import (
    CheckoutComputation, CheckoutDetails, CheckoutResult, CheckoutSnapshot,
    PaymentStart, UserContext
)
from ..models.order import PaymentMethod
from ..models.outbox import TaskKind
from ..models.payment import PaymentOutcome, PaymentStatus
from ..payments.base import PaymentAdapter
from ..payments.card import CardPaymentAdapter, validate_card_details
from ..utils.formatters import format_price
from ..utils.messages import CAPTURED_NOT_PERSISTED, EMPTY_CART, ORDER_FAILED, Messages
from .pricing_service import compute_checkout, loyalty_usage, max_redeemable_points

CONTACT_RE = re.compile(r"^\+?\d{7,15}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_contact_details(form: Dict[str, Any],
                             user: UserContext) -> Tuple[CheckoutDetails, List[str]]:
    """Merge submitted contact fields with the user's defaults and check them"""
    def field(name: str, default: Optional[str]) -> str:
        value = form.get(name)
        if value is None or str(value).strip() == "":
            value = default or ""
        return str(value).strip()

    details = CheckoutDetails(
        full_name=field("full_name", user.username),
        address=field("address", user.address),
        contact=field("contact", user.contact),
        email=field("email", user.email)
    )

    errors = []
    if not details.full_name:
        errors.append("Full name is required.")
    if not details.address:
        errors.append("Address is required.")
    if not CONTACT_RE.match(details.contact):
        errors.append("Contact number must be 7-15 digits.")
    if not EMAIL_RE.match(details.email):
        errors.append("Please enter a valid email address.")
    return details, errors


class CheckoutService:
    """Turns a cart into a paid order across the card, PayPal and NETS rails"""

    def __init__(self, cart_service, order_service, membership_service, credit_service,
                 intent_service, finalizer, outbox_service,
                 adapters: Optional[Dict[PaymentMethod, PaymentAdapter]] = None,
                 currency: Optional[str] = None):
        self.carts = cart_service
        self.orders = order_service
        self.memberships = membership_service
        self.credits = credit_service
        self.intents = intent_service
        self.finalizer = finalizer
        self.outbox = outbox_service
        self.adapters = dict(adapters or {})
        self.adapters.setdefault(PaymentMethod.CARD, CardPaymentAdapter())
        self.currency = currency or Config.CURRENCY
        self.logger = logging.getLogger(__name__)

    async def compute(self, user_id: int, requested_points: int = 0) -> CheckoutComputation:
        """Authoritative pricing for the user's current cart"""
        lines = await self.carts.get_cart_lines(user_id)
        prior_orders = await self.orders.count_user_orders(user_id)

        points = 0
        if requested_points and requested_points > 0:
            balance = await self.memberships.get_balance(user_id)
            points = min(int(requested_points), balance)

        credit = await self.credits.get_latest_available(user_id)
        return compute_checkout(
            lines,
            prior_orders,
            requested_points=points,
            available_credit=credit.amount if credit else 0,
            credit_id=credit.credit_id if credit else None
        )

    async def redeem_loyalty(self, user_id: int, points: Any) -> Dict[str, Any]:
        """Validate a redemption request; the caller holds it until checkout"""
        membership = await self.memberships.get_membership(user_id)
        if not membership or membership.points <= 0:
            raise ValidationFailed(["You have no loyalty points to redeem."])

        try:
            requested = int(str(points).strip())
        except (TypeError, ValueError):
            raise ValidationFailed(["Please enter a whole number of points."])
        if requested <= 0:
            raise ValidationFailed(["Please enter a positive number of points."])
        if requested > membership.points:
            raise ValidationFailed([
                f"You only have {Messages.points_plural(membership.points)}."
            ])

        computation = await self.compute(user_id)
        if computation.is_empty:
            raise ValidationFailed([EMPTY_CART])
        limit = max_redeemable_points(computation.discounted_total)
        if requested > limit:
            raise ValidationFailed([
                f"You can redeem at most {Messages.points_plural(limit)} on this order."
            ])

        used, amount = loyalty_usage(requested, computation.discounted_total)
        return {"points": used, "amount": amount}

    async def checkout_with_card(self, user: UserContext, form: Dict[str, Any],
                                 requested_points: int = 0) -> CheckoutResult:
        details, errors = validate_contact_details(form, user)
        errors += validate_card_details(form)
        if errors:
            return self._failure(errors[0], errors=errors, details=details)

        computation = await self.compute(user.user_id, requested_points)
        if computation.is_empty:
            return self._failure(EMPTY_CART, details=details)
        details = self._describe(details, computation)

        adapter = self.adapters[PaymentMethod.CARD]
        outcome = await adapter.authorize(computation.payable_total, self.currency)
        return await self._finalize(user, computation, details, PaymentMethod.CARD, outcome)

    async def start_payment(self, method: PaymentMethod, user: UserContext,
                            form: Dict[str, Any], requested_points: int = 0) -> PaymentStart:
        """Create the provider-side payment and remember the checkout it pays for"""
        details, errors = validate_contact_details(form, user)
        if errors:
            return PaymentStart(success=False, error=errors[0], errors=errors)

        computation = await self.compute(user.user_id, requested_points)
        if computation.is_empty:
            return PaymentStart(success=False, error=EMPTY_CART)
        details = self._describe(details, computation)

        adapter = self._adapter(method)
        try:
            initiation = await adapter.initiate(computation.payable_total, self.currency)
        except PaymentError as e:
            self.logger.error(f"Error starting {method.value} payment for user {user.user_id}: {e}")
            return PaymentStart(success=False, error=e.message)

        snapshot = CheckoutSnapshot(computation=computation, details=details)
        try:
            await self.intents.create(user.user_id, method, initiation.external_id, snapshot)
        except Exception as e:
            self.logger.error(
                f"Error saving {method.value} intent {initiation.external_id} "
                f"for user {user.user_id}: {e}"
            )
            return PaymentStart(
                success=False, error=f"Unable to start {method.label} payment. Please try again."
            )

        self.logger.info(
            f"{method.label} payment {initiation.external_id} started for user {user.user_id} "
            f"({format_price(computation.payable_total)})"
        )
        return PaymentStart(
            success=True,
            external_id=initiation.external_id,
            payable_total=computation.payable_total,
            client_payload=initiation.client_payload
        )

    async def confirm_payment(self, method: PaymentMethod, user: UserContext, external_id: str,
                              confirmation: Optional[Dict[str, Any]] = None) -> CheckoutResult:
        """Confirm with the provider and, on success, place the remembered order"""
        try:
            intent = await self.intents.claim(user.user_id, method, external_id)
        except PendingIntentError as e:
            return self._failure(e.message)

        snapshot = CheckoutSnapshot.model_validate(intent.snapshot)
        adapter = self._adapter(method)
        try:
            outcome = await adapter.confirm(
                external_id, confirmation, initiated_at=intent.created_at
            )
        except PaymentError as e:
            self.logger.error(f"Error confirming {method.value} payment {external_id}: {e}")
            await self.intents.release(external_id)
            return self._failure(e.message, details=snapshot.details)

        if outcome.status == PaymentStatus.PENDING:
            await self.intents.release(external_id)
            return CheckoutResult(
                success=False,
                status=PaymentStatus.PENDING.value,
                computation=snapshot.computation,
                details=snapshot.details,
                payment=outcome,
                error=outcome.message
            )

        await self.intents.complete(external_id)

        if outcome.status == PaymentStatus.FAILED:
            warnings = []
            if outcome.ambiguous:
                self.logger.error(
                    f"{method.label} payment {external_id} for user {user.user_id} "
                    f"may have succeeded after being treated as failed "
                    f"({outcome.provider_status})"
                )
                await self._record_reconciliation(user.user_id, snapshot.computation, method,
                                                  outcome, "unconfirmed payment")
                warnings.append(outcome.message)
            return self._failure(
                outcome.message or f"{method.label} payment failed.",
                details=snapshot.details,
                payment=outcome,
                warnings=warnings
            )

        return await self._finalize(
            user, snapshot.computation, snapshot.details, method, outcome
        )

    async def _finalize(self, user: UserContext, computation: CheckoutComputation,
                        details: CheckoutDetails, method: PaymentMethod,
                        outcome: PaymentOutcome) -> CheckoutResult:
        try:
            order, warnings = await self.finalizer.finalize(
                user.user_id, computation, method, outcome
            )
        except OrderPersistenceError:
            self.logger.error(
                f"Reconciliation needed: {method.value} payment {outcome.external_id} "
                f"(capture {outcome.capture_id}) of {format_price(computation.payable_total)} "
                f"for user {user.user_id} has no order"
            )
            await self._record_reconciliation(user.user_id, computation, method,
                                              outcome, "order not persisted")
            return self._failure(CAPTURED_NOT_PERSISTED, details=details, payment=outcome)
        except Exception as e:
            self.logger.error(f"Unexpected error finalizing order for user {user.user_id}: {e}")
            await self._record_reconciliation(user.user_id, computation, method,
                                              outcome, str(e))
            return self._failure(ORDER_FAILED, details=details, payment=outcome)

        return CheckoutResult(
            success=True,
            status=PaymentStatus.SUCCESS.value,
            order=order,
            computation=computation,
            details=details,
            payment=outcome,
            redirect=f"/invoice/{order.order_id}",
            warnings=warnings
        )

    async def _record_reconciliation(self, user_id: int, computation: CheckoutComputation,
                                     method: PaymentMethod, outcome: PaymentOutcome,
                                     reason: str):
        try:
            await self.outbox.record_dead(TaskKind.PAYMENT_RECONCILIATION, {
                "user_id": user_id,
                "payment_method": method.value,
                "transaction_id": outcome.external_id,
                "transaction_ref_id": outcome.capture_id,
                "amount": str(computation.payable_total),
                "provider_status": outcome.provider_status,
            }, reason)
        except Exception as e:
            self.logger.error(f"Could not record reconciliation for {outcome.external_id}: {e}")

    def _adapter(self, method: PaymentMethod) -> PaymentAdapter:
        adapter = self.adapters.get(method)
        if adapter is None:
            raise ValueError(f"No payment adapter configured for {method.value}")
        return adapter

    @staticmethod
    def _describe(details: CheckoutDetails, computation: CheckoutComputation) -> CheckoutDetails:
        return details.model_copy(update={
            "discount_applied": Messages.discount_applied(computation),
            "loyalty_applied": Messages.loyalty_applied(computation),
        })

    @staticmethod
    def _failure(error: str, errors: Optional[List[str]] = None, **fields) -> CheckoutResult:
        return CheckoutResult(
            success=False,
            status=PaymentStatus.FAILED.value,
            error=error,
            errors=errors or [error],
            **fields
        )

# shopcore/errors.py
from typing import Iterable, List, Optional


class ShopError(Exception):
    """Base class for checkout and refund failures"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ShopError):
    """Input rejected before any side effect; carries field-level messages"""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__(self.errors[0] if self.errors else "Invalid input.")


class NotFound(ShopError):
    pass


class AccessDenied(ShopError):
    def __init__(self, message: str = "Access denied."):
        super().__init__(message)


class PaymentError(ShopError):
    """Provider unreachable or payment not completed; the user may retry"""

    def __init__(self, message: str, provider_status: Optional[str] = None):
        super().__init__(message)
        self.provider_status = provider_status


class PaymentConfigError(PaymentError):
    pass


class PendingIntentError(PaymentError):
    """Missing, mismatched or expired pending payment intent"""


class OrderPersistenceError(ShopError):
    """The order + lines transaction was rolled back"""

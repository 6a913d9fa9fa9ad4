# shopcore/payments/paypal.py
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
import aiohttp
from ..config import Config
from ..errors import PaymentConfigError, PaymentError
from ..models.order import PaymentMethod
from ..models.payment import PaymentInitiation, PaymentOutcome, PaymentStatus
from ..utils.formatters import to_money
from .base import PaymentAdapter


class PayPalClient:
    """Thin wrapper around the PayPal Orders v2 REST API"""

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 api_base: Optional[str] = None, timeout: Optional[int] = None):
        self.client_id = Config.PAYPAL_CLIENT_ID if client_id is None else client_id
        self.client_secret = Config.PAYPAL_CLIENT_SECRET if client_secret is None else client_secret
        self.api_base = (api_base or Config.PAYPAL_API).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.HTTP_TIMEOUT_SECONDS)
        self.logger = logging.getLogger(__name__)

    def _ensure_config(self):
        if not self.client_id or not self.client_secret or not self.api_base:
            raise PaymentConfigError(
                "Missing PayPal configuration. Please set PAYPAL_CLIENT_ID, "
                "PAYPAL_CLIENT_SECRET, and PAYPAL_API."
            )

    async def _get_access_token(self, session: aiohttp.ClientSession) -> str:
        async with session.post(
            f"{self.api_base}/v1/oauth2/token",
            headers={"Authorization": aiohttp.BasicAuth(self.client_id, self.client_secret).encode()},
            data={"grant_type": "client_credentials"}
        ) as response:
            if response.status != 200:
                text = await response.text()
                raise PaymentError(f"PayPal auth failed: {response.status} {text}")
            data = await response.json()
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise PaymentError("PayPal auth failed: no access token in response")
        return token

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None,
                    action: str = "request") -> Dict[str, Any]:
        self._ensure_config()
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                token = await self._get_access_token(session)
                async with session.post(
                    f"{self.api_base}{path}",
                    json=payload if payload is not None else {},
                    headers={"Authorization": f"Bearer {token}"}
                ) as response:
                    if response.status not in (200, 201):
                        text = await response.text()
                        raise PaymentError(f"PayPal {action} failed: {response.status} {text}")
                    return await response.json()
        except asyncio.TimeoutError:
            self.logger.error(f"PayPal {action} timed out after {self.timeout.total}s")
            raise PaymentError(f"PayPal {action} timed out. Please try again.")
        except (aiohttp.ClientError, ValueError) as e:
            self.logger.error(f"PayPal {action} request error: {e}")
            raise PaymentError(f"PayPal {action} failed: {e}")

    async def create_order(self, amount: Decimal, currency: str) -> Dict[str, Any]:
        return await self._post("/v2/checkout/orders", {
            "intent": "CAPTURE",
            "purchase_units": [{
                "amount": {
                    "currency_code": currency,
                    "value": f"{to_money(amount):.2f}"
                }
            }]
        }, action="createOrder")

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        return await self._post(f"/v2/checkout/orders/{order_id}/capture", action="captureOrder")


def extract_capture_id(capture: Dict[str, Any]) -> Optional[str]:
    try:
        return capture["purchase_units"][0]["payments"]["captures"][0]["id"]
    except (KeyError, IndexError, TypeError):
        return None


class PayPalPaymentAdapter(PaymentAdapter):
    method = PaymentMethod.PAYPAL

    def __init__(self, client: Optional[PayPalClient] = None):
        self.client = client or PayPalClient()
        self.logger = logging.getLogger(__name__)

    async def initiate(self, amount: Decimal, currency: str) -> PaymentInitiation:
        if to_money(amount) <= 0:
            raise PaymentError("PayPal payments require a positive amount.")
        order = await self.client.create_order(amount, currency)
        order_id = order.get("id")
        if not order_id:
            raise PaymentError("PayPal did not return an order id.")
        approve_url = next(
            (link.get("href") for link in order.get("links", []) if link.get("rel") == "approve"),
            None
        )
        return PaymentInitiation(
            external_id=order_id,
            client_payload={"id": order_id, "approve_url": approve_url}
        )

    async def confirm(self, external_id, confirmation=None, **context) -> PaymentOutcome:
        capture = await self.client.capture_order(external_id)
        status = capture.get("status")
        if status != "COMPLETED":
            self.logger.warning(f"PayPal order {external_id} not completed: {status}")
            return PaymentOutcome(
                status=PaymentStatus.FAILED,
                external_id=external_id,
                provider_status=status,
                message=f"Payment not completed (status: {status or 'UNKNOWN'})"
            )
        return PaymentOutcome(
            status=PaymentStatus.SUCCESS,
            external_id=external_id,
            capture_id=extract_capture_id(capture),
            provider_status=status
        )

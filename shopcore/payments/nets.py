# shopcore/payments/nets.py
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
import aiohttp
from ..config import Config
from ..errors import PaymentConfigError, PaymentError
from ..models.order import PaymentMethod
from ..models.payment import PaymentInitiation, PaymentOutcome, PaymentStatus
from ..utils.formatters import to_money
from ..utils.messages import NETS_UNCONFIRMED
from .base import PaymentAdapter

QR_DISPLAY_SECONDS = 300
SUCCESS_RESPONSE_CODE = "00"
SUCCESS_TXN_STATUS = 1


class NetsClient:
    """NETS QR sandbox API: QR request and status query"""

    def __init__(self, api_key: Optional[str] = None, project_id: Optional[str] = None,
                 api_base: Optional[str] = None, txn_id: Optional[str] = None,
                 course_init_id: Optional[str] = None, timeout: Optional[int] = None):
        self.api_key = Config.NETS_API_KEY if api_key is None else api_key
        self.project_id = Config.NETS_PROJECT_ID if project_id is None else project_id
        self.api_base = (api_base or Config.NETS_API_BASE).rstrip("/")
        self.txn_id = txn_id or Config.NETS_TXN_ID
        self.course_init_id = Config.NETS_COURSE_INIT_ID if course_init_id is None else course_init_id
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.HTTP_TIMEOUT_SECONDS)
        self.logger = logging.getLogger(__name__)

    def _ensure_config(self):
        if not self.api_key or not self.project_id:
            raise PaymentConfigError("Missing NETS API configuration (API_KEY or PROJECT_ID).")

    @property
    def headers(self) -> Dict[str, str]:
        return {"api-key": self.api_key, "project-id": self.project_id}

    def webhook_url(self, txn_retrieval_ref: Optional[str]) -> str:
        if not txn_retrieval_ref:
            return ""
        return (
            f"{self.api_base}/nets/webhook?txn_retrieval_ref={txn_retrieval_ref}"
            f"&course_init_id={self.course_init_id}"
        )

    async def _post(self, path: str, payload: Dict[str, Any], action: str) -> Dict[str, Any]:
        self._ensure_config()
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    f"{self.api_base}{path}",
                    json=payload,
                    headers=self.headers
                ) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise PaymentError(f"NETS {action} failed: {response.status} {text}")
                    body = await response.json()
        except asyncio.TimeoutError:
            self.logger.error(f"NETS {action} timed out after {self.timeout.total}s")
            raise PaymentError(f"NETS {action} timed out. Please try again.")
        except (aiohttp.ClientError, ValueError) as e:
            self.logger.error(f"NETS {action} request error: {e}")
            raise PaymentError(f"NETS {action} failed: {e}")
        return body or {}

    async def request_qr(self, amount: Decimal) -> Dict[str, Any]:
        body = await self._post("/nets-qr/request", {
            "txn_id": self.txn_id,
            "amt_in_dollars": f"{to_money(amount):.2f}",
            "notify_mobile": 0
        }, action="QR request")
        return (body.get("result") or {}).get("data") or {}

    async def query(self, txn_retrieval_ref: str, frontend_timeout_status: int = 0) -> Dict[str, Any]:
        if not txn_retrieval_ref:
            raise PaymentError("Missing NETS transaction reference.")
        body = await self._post("/nets-qr/query", {
            "txn_retrieval_ref": txn_retrieval_ref,
            "frontend_timeout_status": frontend_timeout_status
        }, action="status query")
        data = (body.get("result") or {}).get("data") or {}
        txn_status = data.get("txn_status")
        if txn_status is None:
            txn_status = data.get("txnStatus", data.get("status"))
        return {
            "txn_status": txn_status,
            "response_code": data.get("response_code") or data.get("responseCode"),
            "raw": body
        }


class NetsPaymentAdapter(PaymentAdapter):
    """NETS QR rail.

    Status queries lag behind the provider's webhook, so a non-success
    answer is read as "pending" while the QR code is younger than the
    success window and as a failure afterwards. A failure reported after
    the window is flagged ambiguous: the payment may still have gone
    through and the caller has to say so.
    """

    method = PaymentMethod.NETS

    def __init__(self, client: Optional[NetsClient] = None,
                 success_window_seconds: Optional[int] = None):
        self.client = client or NetsClient()
        self.success_window_seconds = success_window_seconds or Config.NETS_SUCCESS_WINDOW_SECONDS
        self.logger = logging.getLogger(__name__)

    async def initiate(self, amount: Decimal, currency: str) -> PaymentInitiation:
        if to_money(amount) <= 0:
            raise PaymentError("NETS payments require a positive amount.")

        qr_data = await self.client.request_qr(amount)
        if not (
            qr_data.get("response_code") == SUCCESS_RESPONSE_CODE
            and qr_data.get("txn_status") == SUCCESS_TXN_STATUS
            and qr_data.get("qr_code")
        ):
            raise PaymentError(
                qr_data.get("error_message") or "An error occurred while generating the QR code.",
                provider_status=qr_data.get("response_code")
            )

        txn_retrieval_ref = qr_data.get("txn_retrieval_ref")
        if not txn_retrieval_ref:
            raise PaymentError("NETS did not return a transaction reference.")

        return PaymentInitiation(
            external_id=txn_retrieval_ref,
            client_payload={
                "txn_retrieval_ref": txn_retrieval_ref,
                "qr_code_url": f"data:image/png;base64,{qr_data['qr_code']}",
                "webhook_url": self.client.webhook_url(txn_retrieval_ref),
                "network_status": qr_data.get("network_status"),
                "timer": QR_DISPLAY_SECONDS
            }
        )

    async def confirm(self, external_id, confirmation=None, initiated_at: Optional[datetime] = None,
                      now: Optional[datetime] = None, **context) -> PaymentOutcome:
        now = now or datetime.now(timezone.utc)
        elapsed = (now - initiated_at).total_seconds() if initiated_at else 0
        window_passed = elapsed > self.success_window_seconds

        status = await self.client.query(external_id, frontend_timeout_status=1 if window_passed else 0)
        txn_status = status.get("txn_status")
        response_code = status.get("response_code")
        provider_status = f"{response_code}/{txn_status}"

        if response_code == SUCCESS_RESPONSE_CODE and txn_status == SUCCESS_TXN_STATUS:
            return PaymentOutcome(
                status=PaymentStatus.SUCCESS,
                external_id=external_id,
                capture_id=external_id,
                provider_status=provider_status
            )

        if not window_passed:
            return PaymentOutcome(
                status=PaymentStatus.PENDING,
                external_id=external_id,
                provider_status=provider_status,
                message="Waiting for NETS payment confirmation."
            )

        self.logger.warning(
            f"NETS payment {external_id} unconfirmed after {elapsed:.0f}s "
            f"(status {provider_status}); treating as failed"
        )
        return PaymentOutcome(
            status=PaymentStatus.FAILED,
            external_id=external_id,
            provider_status=provider_status,
            message=NETS_UNCONFIRMED,
            ambiguous=True
        )

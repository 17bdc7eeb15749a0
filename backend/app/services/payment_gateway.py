"""
Payment gateway client (Midtrans Snap + Core API).

Every call has a bounded timeout and runs through the gateway circuit
breaker. Any transport failure, timeout, non-2xx answer or open circuit
surfaces as GatewayError.
"""

import time
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from backend.app.core.config import settings
from backend.app.core.exceptions import GatewayError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError, gateway_circuit_breaker
from backend.app.models.rental import Rental
from backend.app.models.user import User

logger = logging.getLogger(__name__)


class PaymentSession(BaseModel):
    """Handle returned by the gateway for a new payment."""
    order_id: str
    token: str
    redirect_url: str


def build_order_id(rental_id: int) -> str:
    """Unique external order id for a rental payment attempt."""
    return f"RENTAL-{rental_id}-{int(time.time() * 1000)}"


def build_transaction_payload(rental: Rental, user: User, order_id: str) -> Dict[str, Any]:
    """
    Snap transaction body for a rental.
    """
    customer = {
        "first_name": user.name,
        "email": user.email,
        "phone": user.phone_number or "",
    }
    callback_base = settings.payment_callback_base_url.rstrip("/")

    return {
        "transaction_details": {
            "order_id": order_id,
            "gross_amount": int(rental.total_amount),
        },
        "customer_details": {**customer, "billing_address": dict(customer)},
        "item_details": [{
            "id": f"vehicle-{rental.vehicle_id}",
            "price": int(rental.price_per_day),
            "quantity": rental.total_days,
            "name": f"Vehicle Rental - {rental.total_days} days",
            "category": "Vehicle Rental",
        }],
        "credit_card": {"secure": True},
        "callbacks": {
            "finish": f"{callback_base}/payment/success",
            "error": f"{callback_base}/payment/error",
            "pending": f"{callback_base}/payment/pending",
        },
    }


class MidtransGateway:
    """
    Thin async client for the three gateway operations the rental core needs.
    """

    def __init__(
        self,
        server_key: str = None,
        snap_url: str = None,
        api_url: str = None,
        timeout: float = None,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.server_key = server_key or settings.midtrans_server_key
        self.snap_url = (snap_url or settings.midtrans_snap_url).rstrip("/")
        self.api_url = (api_url or settings.midtrans_api_url).rstrip("/")
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.breaker = breaker or gateway_circuit_breaker
        self.transport = transport

    async def _send(self, method: str, url: str, json: Optional[dict] = None) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            auth=(self.server_key, ""),
            headers={"Accept": "application/json"},
            transport=self.transport,
        ) as client:
            response = await client.request(method, url, json=json)
            response.raise_for_status()
            body = response.json()

        # Core API reports failures in the body with HTTP 200
        body_status = str(body.get("status_code", "200"))
        if not body_status.startswith("2"):
            raise httpx.HTTPStatusError(
                f"Gateway answered status_code={body_status}: {body.get('status_message')}",
                request=response.request,
                response=response,
            )
        return body

    async def _call(self, operation: str, method: str, url: str, json: Optional[dict] = None) -> Dict[str, Any]:
        try:
            return await self.breaker.call(self._send, method, url, json)
        except CircuitOpenError as e:
            logger.warning("Gateway %s skipped: %s", operation, e)
            raise GatewayError(details={"operation": operation, "reason": "circuit_open"})
        except httpx.TimeoutException:
            logger.warning("Gateway %s timed out after %ss", operation, self.timeout)
            raise GatewayError("Payment gateway timed out", details={"operation": operation, "reason": "timeout"})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Gateway %s failed: %s", operation, e)
            raise GatewayError(details={"operation": operation, "reason": str(e)})

    async def create_session(self, rental: Rental, user: User, order_id: str) -> PaymentSession:
        """
        Create a Snap payment session.

        Raises:
            GatewayError: If the gateway fails or times out
        """
        payload = build_transaction_payload(rental, user, order_id)
        body = await self._call("create_session", "POST", f"{self.snap_url}/transactions", json=payload)

        if not body.get("token"):
            raise GatewayError("Payment gateway returned no token", details={"operation": "create_session"})

        return PaymentSession(order_id=order_id, token=body["token"], redirect_url=body.get("redirect_url", ""))

    async def get_status(self, order_id: str) -> Dict[str, Any]:
        """Fetch the current transaction status document."""
        return await self._call("get_status", "GET", f"{self.api_url}/{order_id}/status")

    async def cancel(self, order_id: str) -> Dict[str, Any]:
        """Cancel an open transaction."""
        return await self._call("cancel", "POST", f"{self.api_url}/{order_id}/cancel")


payment_gateway = MidtransGateway()


def get_payment_gateway() -> MidtransGateway:
    """
    FastAPI dependency returning the shared gateway client.
    """
    return payment_gateway

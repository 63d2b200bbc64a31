"""
Payment capture implementations.

The checkout protocol is identical for every provider; gateways only know how
to open a capture session and hand back the URL the buyer is redirected to.
"""

from typing import Optional

import httpx

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.services.interfaces.payment import CaptureSession, PaymentGateway, PaymentGatewayError

logger = get_logger(__name__)


def _amount(value) -> str:
    return f"{value:.2f}"


class StubPaymentGateway(PaymentGateway):
    """
    Development gateway. The buyer is sent to the dev confirmation endpoint,
    which plays the provider's success callback.
    """

    name = "stub"

    def __init__(self, return_url: Optional[str] = None):
        self.return_url = return_url or get_settings().PAYMENT_RETURN_URL

    async def start_capture(self, order) -> CaptureSession:
        return CaptureSession(
            provider=self.name,
            redirect_url=f"{self.return_url}?order_id={order.id}",
            provider_session_id=f"stub-{order.id}",
        )


class HostedCheckoutGateway(PaymentGateway):
    """
    Hosted checkout page at an external provider.

    POSTs the order summary to PAYMENT_PROVIDER_URL and expects
    {"id": ..., "redirect_url": ...} back. The order id travels as
    external_reference so the provider's webhook can name it.
    """

    name = "hosted"

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = get_settings()
        self.base_url = base_url or settings.PAYMENT_PROVIDER_URL
        self.timeout = settings.PAYMENT_PROVIDER_TIMEOUT
        self.return_url = settings.PAYMENT_RETURN_URL
        self._transport = transport

    def _payload(self, order) -> dict:
        items = [
            {
                "ticket_type_id": line.ticket_type_id,
                "quantity": line.quantity,
                "unit_price": _amount(line.unit_price),
            }
            for line in order.lines
        ]
        return {
            "external_reference": order.id,
            "payer_email": order.buyer_email,
            "items": items,
            "discount": _amount(order.discount_amount),
            "service_fee": _amount(order.fee_amount),
            "total": _amount(order.total_amount),
            "return_url": self.return_url,
            "expires_at": order.expires_at.isoformat(),
        }

    async def start_capture(self, order) -> CaptureSession:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.base_url, json=self._payload(order))
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("payment_capture_start_failed", order_id=order.id, error=str(e))
            raise PaymentGatewayError(str(e)) from e

        redirect_url = body.get("redirect_url")
        if not redirect_url:
            logger.error("payment_capture_missing_redirect", order_id=order.id, body=body)
            raise PaymentGatewayError("Provider response has no redirect_url")

        logger.info("payment_capture_started", order_id=order.id, provider=self.name)
        return CaptureSession(
            provider=self.name,
            redirect_url=redirect_url,
            provider_session_id=str(body.get("id")) if body.get("id") is not None else None,
        )

"""
Payment capture collaborator interface.
Allows swapping providers without touching the checkout protocol.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class PaymentGatewayError(Exception):
    """The provider could not be reached or refused to open a capture session."""


@dataclass(frozen=True)
class CaptureSession:
    provider: str
    redirect_url: str
    provider_session_id: Optional[str] = None


class PaymentGateway(ABC):
    """
    Interface for payment capture providers.

    Implementations:
    - StubPaymentGateway: local development, redirects to a dev confirm URL
    - HostedCheckoutGateway: hosted checkout page at an external provider

    Success is reported asynchronously through the payment webhook, which
    calls checkout_service.confirm_payment. Failure or abandonment is reported
    either through the webhook or not at all (handled by order expiry).
    """

    name: str = "abstract"

    @abstractmethod
    async def start_capture(self, order) -> CaptureSession:
        """
        Open a capture session for a pending order.

        Args:
            order: Pending Order with its lines loaded

        Returns:
            CaptureSession with the URL the buyer must be sent to

        Raises:
            PaymentGatewayError: provider unreachable or refused
        """
        pass

"""
Collaborator factory.
Configures which payment gateway and notifier the checkout core talks to.
"""

from typing import Optional

from boxoffice.core.config import get_settings
from boxoffice.services.interfaces.notification import Notifier
from boxoffice.services.interfaces.payment import PaymentGateway
from boxoffice.services.notifiers import LogNotifier, WebhookNotifier
from boxoffice.services.payment_gateways import HostedCheckoutGateway, StubPaymentGateway


def build_payment_gateway() -> PaymentGateway:
    """
    Selected by PAYMENT_PROVIDER:
    - stub: local development
    - hosted: external hosted checkout
    """
    provider = get_settings().PAYMENT_PROVIDER
    if provider == "hosted":
        return HostedCheckoutGateway()
    if provider == "stub":
        return StubPaymentGateway()
    raise ValueError(f"Unknown PAYMENT_PROVIDER: {provider}")


def build_notifier() -> Notifier:
    kind = get_settings().NOTIFIER
    if kind == "webhook":
        return WebhookNotifier()
    return LogNotifier()


_gateway: Optional[PaymentGateway] = None
_notifier: Optional[Notifier] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; singleton per process."""
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier

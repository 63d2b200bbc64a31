"""
Collaborator interfaces for dependency inversion.
Payment capture and notification delivery are external systems; the core
only depends on these contracts.
"""

from .notification import Notifier
from .payment import CaptureSession, PaymentGateway, PaymentGatewayError

__all__ = ['Notifier', 'CaptureSession', 'PaymentGateway', 'PaymentGatewayError']

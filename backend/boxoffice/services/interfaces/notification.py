"""
Notification collaborator interface.
"""

from abc import ABC, abstractmethod


class Notifier(ABC):
    """
    Fire-and-forget delivery of domain events (emails, push).

    Implementations must never raise: a failed notification is logged and
    counted, it never rolls back the operation that produced it.
    """

    @abstractmethod
    async def notify(self, kind: str, payload: dict) -> None:
        """
        Args:
            kind: Event kind, e.g. "order_paid", "transfer_initiated"
            payload: JSON-serializable event data
        """
        pass

"""
Collaborator interfaces used by the reminder and subscription use cases.

Implementations:
  - SubscriptionRepository -> infrastructure/db/subscription_repository.py (SQLAlchemy)
  - Notifier               -> infrastructure/email/notifier.py (SMTP)

Tests plug in fakes.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass

from subtracker.domain.subscription import Subscription


class RepositoryError(Exception):
    """Persistence is unavailable or the write failed"""
    pass


class ConcurrentModificationError(RepositoryError):
    """The record was changed by someone else since it was loaded"""
    pass


class SubscriptionNotFoundError(LookupError):
    """No such subscription for this user"""
    pass


class NotifierError(Exception):
    """Transport, authentication or timeout failure while sending"""
    pass


@dataclass(frozen=True)
class SubscriptionOwner:
    """The part of a user the reminder pipeline needs"""
    id: int
    email: str
    full_name: str
    is_active: bool = True


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class SubscriptionRepository(ABC):
    """
    Persistence for Subscription aggregates (subscription + payment history).

    save() must be atomic per record and must reject stale writes with
    ConcurrentModificationError.
    """

    @abstractmethod
    def find_active_subscriptions(self) -> list[tuple[Subscription, SubscriptionOwner | None]]:
        """All subscriptions with is_active = True, with their owners (None if missing)"""
        pass

    @abstractmethod
    def get(self, subscription_id: int) -> Subscription | None:
        """Fresh copy of one subscription, None if it was deleted"""
        pass

    @abstractmethod
    def save(self, subscription: Subscription) -> Subscription:
        """Insert or update one subscription. Returns it with id/version refreshed."""
        pass


class Notifier(ABC):
    """Sends a payment reminder. Must be safe to call again after a failure."""

    @abstractmethod
    def send(self, owner: SubscriptionOwner, subscription: Subscription) -> NotificationResult:
        """
        Raises:
            NotifierError: delivery failed (implementations may also return
                NotificationResult(success=False) instead)
        """
        pass

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from ..models import (
    AdminNote,
    AuditEntry,
    AuditLedger,
    PaymentStatus,
    Subscription,
    SubscriptionDraft,
    SubscriptionStatus,
    User,
)


@dataclass(slots=True)
class Supersession:
    """A prior latest subscription to demote when a new one is created."""

    subscription_id: int
    entry: AuditEntry


@dataclass(slots=True)
class SubscriptionQuery:
    user_id: Optional[int] = None
    status: Optional[SubscriptionStatus] = None
    payment_status: Optional[PaymentStatus] = None
    product_id: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    limit: Optional[int] = None
    offset: int = 0


class SubscriptionRepository(Protocol):
    """Storage for subscriptions and their audit ledger.

    Every mutating call writes the subscription row and its ledger rows in
    one transaction.
    """

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        ...

    def list_subscriptions(self, query: SubscriptionQuery) -> List[Subscription]:
        ...

    def count_subscriptions(self, query: SubscriptionQuery) -> int:
        ...

    def get_latest_subscriptions(self, user_id: int, product_id: str) -> List[Subscription]:
        ...

    def create_subscription(
        self,
        draft: SubscriptionDraft,
        changes: Sequence[AuditEntry],
        supersede: Sequence[Supersession] = (),
    ) -> Subscription:
        ...

    def save_subscription(
        self,
        subscription: Subscription,
        expected_version: int,
        changes: Sequence[AuditEntry],
        notes: Sequence[AdminNote] = (),
    ) -> Subscription:
        """Compare-and-swap on ``version``; raises ConflictError or NotFoundError."""
        ...

    def get_audit_ledger(self, subscription_id: int) -> AuditLedger:
        ...


class UserRepository(Protocol):
    """Persistence functions related to admin user accounts."""

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        ...

    def create_user(self, email: str, password_hash: str) -> User:
        ...


class PersistenceGateway(
    SubscriptionRepository,
    UserRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    def close(self) -> None:
        ...

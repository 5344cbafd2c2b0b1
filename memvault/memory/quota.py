"""
Usage quota gate.

Mutating memory operations are allowed only for users with an active
subscription that has quota left. Usage is recorded after the operation
succeeds, on a best-effort basis: a failure to record never undoes or
blocks a write that already happened.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from ..errors import QuotaCheckError, QuotaExceededError, QuotaForbiddenError
from .types import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


PLAN_QUOTAS = {
    "basic": 1000,
    "pro": 10000,
    "enterprise": 100000,
}


@dataclass
class Subscription:
    """
    A user's subscription.

    Attributes:
        subscription_id: Unique identifier
        user_id: Owning user
        quota_used: Operations used in the current period
        quota_limit: Operations allowed per period
        is_active: Whether the subscription is active
        plan: Plan name ("basic", "pro" or "enterprise")
        period_start: Start of the current quota period
    """

    subscription_id: str
    user_id: str
    quota_used: int = 0
    quota_limit: int = PLAN_QUOTAS["basic"]
    is_active: bool = True
    plan: str = "basic"
    period_start: datetime = field(default_factory=utc_now)

    @property
    def remaining(self) -> int:
        return max(0, self.quota_limit - self.quota_used)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "subscription_id": self.subscription_id,
            "user_id": self.user_id,
            "quota_used": self.quota_used,
            "quota_limit": self.quota_limit,
            "is_active": self.is_active,
            "plan": self.plan,
            "period_start": self.period_start.isoformat(),
        }


class SubscriptionStore(ABC):
    """Abstract base class for subscription record stores."""

    @abstractmethod
    async def get_by_user(self, user_id: str) -> Optional[Subscription]:
        """Get a user's subscription, or None if they have none."""
        pass

    @abstractmethod
    async def increment_usage(self, subscription_id: str) -> Subscription:
        """
        Add 1 to a subscription's usage.

        Raises:
            KeyError: If the subscription does not exist
        """
        pass

    @abstractmethod
    async def create(
        self,
        user_id: str,
        plan: str = "basic",
        quota_limit: Optional[int] = None,
    ) -> Subscription:
        """Create a subscription for a user."""
        pass


class InMemorySubscriptionStore(SubscriptionStore):
    """Subscription store kept in memory; updates are serialized by a lock."""

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def get_by_user(self, user_id: str) -> Optional[Subscription]:
        async with self._lock:
            for subscription in self._subscriptions.values():
                if subscription.user_id == user_id:
                    return replace(subscription)
            return None

    async def increment_usage(self, subscription_id: str) -> Subscription:
        async with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                raise KeyError(f"Unknown subscription: {subscription_id}")
            subscription.quota_used += 1
            return replace(subscription)

    async def create(
        self,
        user_id: str,
        plan: str = "basic",
        quota_limit: Optional[int] = None,
    ) -> Subscription:
        if quota_limit is None:
            if plan not in PLAN_QUOTAS:
                raise ValueError(f"Unknown plan: {plan}")
            quota_limit = PLAN_QUOTAS[plan]

        subscription = Subscription(
            subscription_id=uuid.uuid4().hex,
            user_id=user_id,
            quota_limit=quota_limit,
            plan=plan,
        )
        async with self._lock:
            self._subscriptions[subscription.subscription_id] = subscription
        logger.info(f"Created {plan} subscription for user {user_id}")
        return replace(subscription)

    async def set_active(self, subscription_id: str, is_active: bool) -> None:
        """Activate or deactivate a subscription."""
        async with self._lock:
            self._subscriptions[subscription_id].is_active = is_active


class QuotaGate:
    """
    Authorizes mutating operations against a user's subscription.

    Example:
        >>> gate = QuotaGate(InMemorySubscriptionStore())
        >>> result = await gate.run_metered(user_id, lambda: memories.create_memory(text))
    """

    def __init__(self, store: SubscriptionStore):
        self.store = store

    async def authorize(self, user_id: str) -> Subscription:
        """
        Check that a user may perform a mutating operation.

        Args:
            user_id: User to check

        Returns:
            The user's subscription

        Raises:
            QuotaForbiddenError: No subscription, or it is inactive
            QuotaExceededError: The quota is used up
            QuotaCheckError: The subscription store failed
        """
        try:
            subscription = await self.store.get_by_user(user_id)
        except Exception as e:
            logger.error(f"Quota check failed: {e}")
            raise QuotaCheckError("Failed to check quota", cause=e) from e

        if subscription is None:
            raise QuotaForbiddenError("No active subscription found")
        if not subscription.is_active:
            raise QuotaForbiddenError("Subscription is inactive")
        if subscription.quota_used >= subscription.quota_limit:
            raise QuotaExceededError(
                f"Quota exceeded. Used {subscription.quota_used}/{subscription.quota_limit}",
                used=subscription.quota_used,
                limit=subscription.quota_limit,
            )

        logger.debug(
            f"Quota check passed for user {user_id}: "
            f"{subscription.quota_used}/{subscription.quota_limit}"
        )
        return subscription

    async def record_usage(self, user_id: str) -> bool:
        """
        Record one operation against a user's quota.

        Never raises.

        Returns:
            True if usage was recorded
        """
        try:
            subscription = await self.store.get_by_user(user_id)
            if subscription is None:
                logger.warning(f"No subscription to record usage for user {user_id}")
                return False
            await self.store.increment_usage(subscription.subscription_id)
        except Exception as e:
            logger.error(f"Failed to update quota for user {user_id}: {e}")
            return False

        logger.info(f"Quota updated for user: {user_id}")
        return True

    async def run_metered(self, user_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Authorize, run an operation, then record its usage.

        The operation's result stands even if recording usage fails.

        Args:
            user_id: User performing the operation
            operation: Coroutine function to run

        Returns:
            The operation's result
        """
        await self.authorize(user_id)
        result = await operation()
        await self.record_usage(user_id)
        return result

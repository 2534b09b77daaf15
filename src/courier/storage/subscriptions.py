"""Subscription storage operations for Courier.

Provides methods to store, retrieve, match and manage webhook subscriptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier.exceptions import StorageError
from courier.models import WebhookSubscription, utc_now

if TYPE_CHECKING:
    import asyncio

    from courier.models import EventScope


class SubscriptionMixin:
    """Mixin providing subscription operations for CourierStorage.

    This mixin expects the following attributes/methods from the base class:
    - _subscriptions: dict[str, WebhookSubscription]
    - _lock: asyncio.Lock
    - _copy(model) -> model
    - _newest_first(items) -> items
    """

    _subscriptions: dict[str, WebhookSubscription]
    _lock: asyncio.Lock
    _copy: Any
    _newest_first: Any

    async def store_subscription(self, subscription: WebhookSubscription) -> str:
        """Store a new subscription.

        Args:
            subscription: WebhookSubscription to store.

        Returns:
            The subscription ID.

        Raises:
            StorageError: If a subscription with the same ID exists.
        """
        async with self._lock:
            if subscription.id in self._subscriptions:
                raise StorageError(f"subscription already exists: {subscription.id}")
            self._subscriptions[subscription.id] = self._copy(subscription)
        return subscription.id

    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        """Get a subscription by ID, or None if not found."""
        subscription = self._subscriptions.get(subscription_id)
        return self._copy(subscription) if subscription is not None else None

    async def list_subscriptions(
        self,
        record_id: str | None = None,
        account_id: str | None = None,
        enabled_only: bool = False,
    ) -> list[WebhookSubscription]:
        """List subscriptions, newest first.

        Args:
            record_id: Only subscriptions owned by this record.
            account_id: Only subscriptions owned by this account.
            enabled_only: If True, only return enabled subscriptions.

        Returns:
            List of WebhookSubscription ordered by created_at descending.
        """
        results = [
            s
            for s in self._subscriptions.values()
            if (record_id is None or s.record_id == record_id)
            and (account_id is None or s.account_id == account_id)
            and (not enabled_only or s.enabled)
        ]
        return [self._copy(s) for s in self._newest_first(results)]

    async def get_subscriptions_for_event(
        self,
        event_type: str,
        scope: EventScope,
    ) -> list[WebhookSubscription]:
        """Get all enabled subscriptions receiving an event raised in a scope.

        Args:
            event_type: The event type to filter for.
            scope: Record/account scope of the event.

        Returns:
            List of WebhookSubscription, newest first.
        """
        matches = [
            s
            for s in self._subscriptions.values()
            if s.subscribes_to(event_type) and s.matches_scope(scope)
        ]
        return [self._copy(s) for s in self._newest_first(matches)]

    async def update_subscription(
        self,
        subscription_id: str,
        **updates: Any,
    ) -> WebhookSubscription | None:
        """Update a subscription atomically.

        The merged record is re-validated as a whole before it replaces the
        stored one, so a rejected update leaves the stored record untouched.

        Args:
            subscription_id: ID of the subscription to update.
            **updates: Fields to update.

        Returns:
            Updated WebhookSubscription or None if not found.

        Raises:
            pydantic.ValidationError: If the merged record is invalid.
        """
        async with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                return None
            data = current.model_dump()
            data.update(updates)
            data["id"] = current.id
            data["created_at"] = current.created_at
            data["updated_at"] = utc_now()
            updated = WebhookSubscription.model_validate(data)
            self._subscriptions[subscription_id] = updated
            return self._copy(updated)

    async def delete_subscription(self, subscription_id: str) -> bool:
        """Delete a subscription.

        Delivery history of the subscription is kept.

        Returns:
            True if deleted, False if not found.
        """
        async with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

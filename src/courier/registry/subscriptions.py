"""Subscription registry: owner-facing CRUD over webhook subscriptions.

Validation errors from pydantic are turned into courier ValidationError and
unknown ids into NotFoundError, so callers only ever see the courier
exception hierarchy.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from courier.exceptions import NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import (
    SubscriptionPatch,
    SubscriptionSpec,
    SubscriptionView,
    WebhookSubscription,
    generate_secret,
)

if TYPE_CHECKING:
    from courier.storage import SubscriptionStore

logger = get_logger(__name__)

# Called with the subscription id when a subscription is disabled or deleted
SubscriptionListener = Callable[[str], Awaitable[None] | None]


def as_validation_error(error: PydanticValidationError) -> ValidationError:
    """Convert the first pydantic error into a courier ValidationError."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    message = first.get("msg", "invalid value")
    # Model-level validators report "Value error, ..." with an empty location
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return ValidationError(field, message)


class SubscriptionRegistry:
    """Create, list, read, update and delete webhook subscriptions.

    Secrets are generated server-side when not supplied and only returned by
    create and rotate_secret. Listeners are told when a subscription is
    disabled or deleted so in-flight delivery chains can be cancelled.

    Example:
        ```python
        registry = SubscriptionRegistry(storage)
        view = await registry.create(
            SubscriptionSpec(url="https://example.com/hook", events=["record_submitted"],
                             account_id="acct_1")
        )
        print(view.secret)  # only time the secret is visible
        ```
    """

    def __init__(self, storage: SubscriptionStore) -> None:
        self._storage = storage
        self._listeners: list[SubscriptionListener] = []

    def add_listener(self, listener: SubscriptionListener) -> None:
        """Register a callback for disable/delete notifications."""
        self._listeners.append(listener)

    async def _notify(self, subscription_id: str) -> None:
        for listener in self._listeners:
            try:
                result = listener(subscription_id)
                if result is not None:
                    await result
            except Exception:
                logger.exception(
                    "Subscription listener failed", subscription_id=subscription_id
                )

    async def create(self, spec: SubscriptionSpec | dict[str, Any]) -> SubscriptionView:
        """Register a new subscription.

        Args:
            spec: URL, event types, scope and optional settings.

        Returns:
            View of the stored subscription, including its secret.

        Raises:
            ValidationError: If a required field is missing or malformed.
        """
        try:
            if isinstance(spec, dict):
                spec = SubscriptionSpec.model_validate(spec)
            data = spec.model_dump()
            if data.get("secret") is None:
                data["secret"] = generate_secret()
            subscription = WebhookSubscription.model_validate(data)
        except PydanticValidationError as e:
            raise as_validation_error(e) from e

        await self._storage.store_subscription(subscription)
        logger.info(
            "Subscription created",
            subscription_id=subscription.id,
            record_id=subscription.record_id,
            account_id=subscription.account_id,
            events=list(subscription.events),
        )
        return SubscriptionView.from_subscription(subscription, reveal_secret=True)

    async def list(
        self,
        record_id: str | None = None,
        account_id: str | None = None,
    ) -> list[SubscriptionView]:
        """List subscriptions newest first, optionally filtered by scope."""
        subscriptions = await self._storage.list_subscriptions(
            record_id=record_id, account_id=account_id
        )
        return [SubscriptionView.from_subscription(s) for s in subscriptions]

    async def get(self, subscription_id: str) -> SubscriptionView:
        """Get one subscription (without its secret).

        Raises:
            NotFoundError: If the subscription doesn't exist.
        """
        return SubscriptionView.from_subscription(await self.get_subscription(subscription_id))

    async def get_subscription(self, subscription_id: str) -> WebhookSubscription:
        """Get the full stored subscription, secret included. Internal use."""
        subscription = await self._storage.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def update(
        self,
        subscription_id: str,
        patch: SubscriptionPatch | dict[str, Any],
    ) -> SubscriptionView:
        """Apply a partial update.

        The patched subscription is validated with the same rules as create.

        Raises:
            ValidationError: If the patched subscription is invalid.
            NotFoundError: If the subscription doesn't exist (or was deleted
                concurrently).
        """
        try:
            if isinstance(patch, dict):
                patch = SubscriptionPatch.model_validate(patch)
            updates = patch.model_dump(exclude_unset=True)
            updated = await self._storage.update_subscription(subscription_id, **updates)
        except PydanticValidationError as e:
            raise as_validation_error(e) from e

        if updated is None:
            raise NotFoundError("subscription", subscription_id)

        logger.info(
            "Subscription updated",
            subscription_id=subscription_id,
            fields=sorted(updates),
        )
        if not updated.enabled:
            await self._notify(subscription_id)
        return SubscriptionView.from_subscription(updated)

    async def delete(self, subscription_id: str) -> None:
        """Delete a subscription. Its delivery history is kept.

        Raises:
            NotFoundError: If the subscription doesn't exist.
        """
        deleted = await self._storage.delete_subscription(subscription_id)
        if not deleted:
            raise NotFoundError("subscription", subscription_id)
        logger.info("Subscription deleted", subscription_id=subscription_id)
        await self._notify(subscription_id)

    async def rotate_secret(self, subscription_id: str) -> SubscriptionView:
        """Replace the signing secret and return it once.

        Raises:
            NotFoundError: If the subscription doesn't exist.
        """
        updated = await self._storage.update_subscription(
            subscription_id, secret=generate_secret()
        )
        if updated is None:
            raise NotFoundError("subscription", subscription_id)
        logger.info("Subscription secret rotated", subscription_id=subscription_id)
        return SubscriptionView.from_subscription(updated, reveal_secret=True)


__all__ = [
    "SubscriptionListener",
    "SubscriptionRegistry",
    "as_validation_error",
]

"""Fan-out of domain events to matching webhook subscriptions.

trigger() never waits on the network: each matching subscription gets its own
asyncio task running a delivery chain, and failures only ever reach the
delivery log.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from courier.exceptions import ValidationError
from courier.logging import bind_context, get_logger
from courier.models import ALL_EVENT_TYPES, EventScope, WebhookEvent, generate_id

from .delivery import ABORT_ERROR, CancellationToken

if TYPE_CHECKING:
    from courier.models import WebhookSubscription
    from courier.storage import SubscriptionStore

    from .delivery import DeliveryWorker

logger = get_logger(__name__)


class WebhookDispatcher:
    """Dispatches webhook events to registered endpoints.

    Handles:
    - Finding enabled subscriptions subscribed to the event in its scope
    - Starting one independent delivery chain per match
    - Cancelling a subscription's chains when it is disabled or deleted
    - Draining or cancelling in-flight chains on shutdown

    Example:
        ```python
        dispatcher = WebhookDispatcher(storage, worker)

        # Fire and forget from the producer
        chain_ids = await dispatcher.trigger(
            "record_submitted",
            {"recordTypeId": "rt_1", "data": {"email": "a@example.com"}},
            EventScope(record_id="rec_1", account_id="acct_1"),
        )

        # In tests / on shutdown
        await dispatcher.drain()
        ```
    """

    def __init__(self, subscriptions: SubscriptionStore, worker: DeliveryWorker) -> None:
        self._subscriptions = subscriptions
        self._worker = worker
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._tokens: dict[str, CancellationToken] = {}

    @staticmethod
    def build_event(
        event_type: str,
        payload: Mapping[str, Any],
        scope: EventScope | Mapping[str, Any] | None = None,
    ) -> WebhookEvent:
        """Validate producer input and build the event.

        Raises:
            ValidationError: If the event type is unknown or the payload is not
                a JSON-serializable mapping.
        """
        if event_type not in ALL_EVENT_TYPES:
            raise ValidationError(
                "event_type",
                f"unknown event type {event_type!r}; expected one of {', '.join(ALL_EVENT_TYPES)}",
            )
        if not isinstance(payload, Mapping):
            raise ValidationError("payload", "payload must be a JSON object")
        try:
            json.dumps(payload, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValidationError("payload", f"payload is not JSON-serializable: {e}") from e

        if scope is None:
            scope = EventScope()
        elif not isinstance(scope, EventScope):
            scope = EventScope.model_validate(dict(scope))
        return WebhookEvent(event_type=event_type, payload=dict(payload), scope=scope)

    async def trigger(
        self,
        event_type: str,
        payload: Mapping[str, Any],
        scope: EventScope | Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Fan an event out to every matching subscription.

        Returns once the delivery tasks exist. Zero matches is a no-op.

        Args:
            event_type: Known event type name.
            payload: Event data, sent as-is inside the envelope.
            scope: Record/account the event concerns.

        Returns:
            Chain ids of the scheduled deliveries.

        Raises:
            ValidationError: If the event type or payload is malformed.
        """
        event = self.build_event(event_type, payload, scope)
        return await self.dispatch_event(event)

    async def dispatch_event(self, event: WebhookEvent) -> list[str]:
        """Dispatch an already-built event. See trigger()."""
        try:
            subscriptions = await self._subscriptions.get_subscriptions_for_event(
                event.event_type, event.scope
            )
        except Exception:
            logger.exception(
                "Subscription lookup failed; event dropped",
                event_id=event.id,
                event_type=event.event_type,
            )
            return []

        if not subscriptions:
            logger.debug(
                "No webhooks subscribed to event",
                event_type=event.event_type,
                record_id=event.scope.record_id,
                account_id=event.scope.account_id,
            )
            return []

        chain_ids = [self._start_chain(subscription, event) for subscription in subscriptions]
        logger.info(
            "Event dispatched",
            event_id=event.id,
            event_type=event.event_type,
            chains=len(chain_ids),
        )
        return chain_ids

    def _token_for(self, subscription_id: str) -> CancellationToken:
        token = self._tokens.get(subscription_id)
        if token is None or token.cancelled:
            token = CancellationToken()
            self._tokens[subscription_id] = token
        return token

    def _start_chain(self, subscription: WebhookSubscription, event: WebhookEvent) -> str:
        chain_id = generate_id("chn")
        token = self._token_for(subscription.id)
        task = asyncio.create_task(
            self._run(subscription, event, token, chain_id),
            name=f"courier-chain-{chain_id}",
        )
        self._tasks[chain_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(chain_id, None))
        return chain_id

    async def _run(
        self,
        subscription: WebhookSubscription,
        event: WebhookEvent,
        token: CancellationToken,
        chain_id: str,
    ) -> None:
        # Task-local: each chain runs in its own copy of the context
        bind_context(chain_id=chain_id, subscription_id=subscription.id, event_id=event.id)
        try:
            await self._worker.deliver(subscription, event, token=token, chain_id=chain_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Delivery chain crashed",
                subscription_id=subscription.id,
                chain_id=chain_id,
                event_id=event.id,
            )

    def cancel_subscription(self, subscription_id: str) -> None:
        """Signal all in-flight chains of a subscription to stop.

        Chains stop at their next backoff wait or in-flight HTTP call and
        write one final exhausted row.
        """
        token = self._tokens.pop(subscription_id, None)
        if token is not None:
            token.cancel(ABORT_ERROR)
            logger.info("Delivery chains cancelled", subscription_id=subscription_id)

    def active_chains(self) -> list[str]:
        """Chain ids of deliveries still running."""
        return [chain_id for chain_id, task in self._tasks.items() if not task.done()]

    async def drain(self) -> None:
        """Wait until every in-flight chain has finished."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Cancel every in-flight chain and wait for the tasks to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._tokens.clear()


__all__ = ["WebhookDispatcher"]

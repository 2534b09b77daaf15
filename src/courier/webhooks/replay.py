"""Manual resend and test sends for webhook subscriptions.

Both bypass event matching and run one-attempt chains through the delivery
worker, so a failure is recorded as exhausted and never retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier.exceptions import ForbiddenError, NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import DeliveryAttempt, EventScope, WebhookEvent, generate_id, utc_now

from .formatting import build_body, dump_json
from .signing import format_timestamp

if TYPE_CHECKING:
    from courier.models import WebhookSubscription
    from courier.storage import DeliveryLogStore, SubscriptionStore

    from .delivery import DeliveryWorker

logger = get_logger(__name__)

TEST_EVENT_TYPE = "test"
SIMULATED_OK = "SIMULATED_OK"
SIMULATED_FAILURE = "SIMULATED_FAILURE"


class ReplayService:
    """Resend logged deliveries and send test payloads.

    Example:
        ```python
        replay = ReplayService(storage, storage, worker)
        attempt = await replay.resend("whk_abc", "dlv_123")
        attempt = await replay.test("whk_abc", {"hello": "world"})
        ```
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryLogStore,
        worker: DeliveryWorker,
    ) -> None:
        self._subscriptions = subscriptions
        self._deliveries = deliveries
        self._worker = worker

    async def _enabled_subscription(self, webhook_id: str) -> WebhookSubscription:
        subscription = await self._subscriptions.get_subscription(webhook_id)
        if subscription is None:
            raise NotFoundError("subscription", webhook_id)
        if not subscription.enabled:
            raise ForbiddenError(f"subscription {webhook_id} is disabled")
        return subscription

    async def resend(self, webhook_id: str, log_id: str) -> DeliveryAttempt:
        """Send a logged request body again, unchanged.

        The resend is a new chain; the original chain's rows are untouched.

        Args:
            webhook_id: Subscription the log belongs to.
            log_id: Delivery attempt whose body is re-sent.

        Returns:
            The single attempt row of the resend chain.

        Raises:
            NotFoundError: If the log is missing or belongs to another
                subscription, or the subscription is gone.
            ForbiddenError: If the subscription is disabled.
        """
        original = await self._deliveries.get_delivery(log_id)
        if original is None or original.subscription_id != webhook_id:
            raise NotFoundError("delivery_attempt", log_id)
        subscription = await self._enabled_subscription(webhook_id)

        attempt = await self._worker.attempt_once(
            subscription,
            body=original.request_body,
            timestamp=format_timestamp(utc_now()),
            event_type=original.event_type,
            chain_id=generate_id("rsd"),
            kind="resend",
            event_id=original.event_id,
            resent_from=original.id,
        )
        logger.info(
            "Delivery resent",
            subscription_id=webhook_id,
            resent_from=log_id,
            chain_id=attempt.chain_id,
            outcome=attempt.outcome,
        )
        return attempt

    async def test(
        self,
        webhook_id: str,
        sample_payload: dict[str, Any] | None = None,
    ) -> DeliveryAttempt:
        """Send a synthetic "test" event to the subscription's current URL.

        A sample payload of {"simulate": "success"} or {"simulate": "failure"}
        writes a simulated row without any network call.

        Raises:
            NotFoundError: If the subscription doesn't exist.
            ForbiddenError: If the subscription is disabled.
            ValidationError: If the sample payload cannot be encoded as JSON.
        """
        subscription = await self._enabled_subscription(webhook_id)
        chain_id = generate_id("tst")

        simulate = (sample_payload or {}).get("simulate")
        if simulate in ("success", "failure"):
            return await self._simulate(subscription, chain_id, simulate)

        timestamp = utc_now()
        payload = sample_payload or {
            "test": True,
            "message": "This is a test webhook from Courier.",
            "timestamp": format_timestamp(timestamp),
            "webhookId": webhook_id,
        }
        event = WebhookEvent(
            event_type=TEST_EVENT_TYPE,
            payload=payload,
            scope=EventScope(record_id=subscription.record_id, account_id=subscription.account_id),
            timestamp=timestamp,
        )
        try:
            body = build_body(subscription, event)
        except ValueError as e:
            raise ValidationError("sample_payload", f"sample payload is not valid JSON: {e}") from e
        attempt = await self._worker.attempt_once(
            subscription,
            body=body,
            timestamp=event.envelope()["timestamp"],
            event_type=TEST_EVENT_TYPE,
            chain_id=chain_id,
            kind="test",
            is_test=True,
        )
        logger.info(
            "Test webhook sent",
            subscription_id=webhook_id,
            chain_id=chain_id,
            outcome=attempt.outcome,
            status=attempt.response_status,
        )
        return attempt

    async def _simulate(
        self, subscription: WebhookSubscription, chain_id: str, simulate: str
    ) -> DeliveryAttempt:
        succeeded = simulate == "success"
        row = DeliveryAttempt(
            subscription_id=subscription.id,
            chain_id=chain_id,
            event_type=TEST_EVENT_TYPE,
            request_body=dump_json({"simulate": simulate}),
            response_status=200 if succeeded else 500,
            response_body=SIMULATED_OK if succeeded else None,
            error=None if succeeded else SIMULATED_FAILURE,
            outcome="succeeded" if succeeded else "exhausted",
            kind="test",
            is_test=True,
            record_id=subscription.record_id,
            account_id=subscription.account_id,
            duration_ms=0,
            completed_at=utc_now(),
        )
        await self._deliveries.log_delivery(row)
        logger.info(
            "Simulated test webhook",
            subscription_id=subscription.id,
            chain_id=chain_id,
            simulate=simulate,
        )
        await self._worker.notify(subscription, row)
        return row


__all__ = [
    "SIMULATED_FAILURE",
    "SIMULATED_OK",
    "TEST_EVENT_TYPE",
    "ReplayService",
]

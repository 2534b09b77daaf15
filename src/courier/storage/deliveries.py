"""Delivery log storage operations for Courier.

The delivery log is append-only. A row is appended as pending when an attempt
starts and finalized exactly once with its outcome; nothing else ever changes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier.exceptions import StorageError
from courier.models import DeliveryAttempt, DeliveryLogFilter, utc_now

if TYPE_CHECKING:
    import asyncio

    from courier.models import DeliveryOutcome


class DeliveryLogMixin:
    """Mixin providing delivery log operations for CourierStorage.

    Expects _deliveries, _lock, _copy and _newest_first from the base class.
    """

    _deliveries: dict[str, DeliveryAttempt]
    _lock: asyncio.Lock
    _copy: Any
    _newest_first: Any

    async def log_delivery(self, delivery: DeliveryAttempt) -> str:
        """Append a delivery attempt to the log.

        Args:
            delivery: DeliveryAttempt to append.

        Returns:
            The delivery ID.

        Raises:
            StorageError: If the ID is already in the log.
        """
        async with self._lock:
            if delivery.id in self._deliveries:
                raise StorageError(f"delivery attempt already logged: {delivery.id}")
            self._deliveries[delivery.id] = self._copy(delivery)
        return delivery.id

    async def finalize_delivery(
        self,
        delivery_id: str,
        outcome: DeliveryOutcome,
        response_status: int | None = None,
        response_body: str | None = None,
        error: str | None = None,
        duration_ms: int | None = None,
        next_retry_delay_seconds: float | None = None,
    ) -> DeliveryAttempt:
        """Record the outcome of a pending delivery attempt.

        Args:
            delivery_id: ID of the pending attempt.
            outcome: succeeded, failed, or exhausted.
            response_status: HTTP status if a response was received.
            response_body: Truncated response body.
            error: Transport error or abort reason.
            duration_ms: Wall time of the attempt.
            next_retry_delay_seconds: Backoff scheduled after a failed attempt.

        Returns:
            The finalized DeliveryAttempt.

        Raises:
            StorageError: If the attempt is unknown, already finalized, or the
                outcome is pending.
        """
        if outcome == "pending":
            raise StorageError("cannot finalize a delivery attempt as pending")

        async with self._lock:
            current = self._deliveries.get(delivery_id)
            if current is None:
                raise StorageError(f"delivery attempt not logged: {delivery_id}")
            if current.outcome != "pending":
                raise StorageError(
                    f"delivery attempt {delivery_id} already finalized as {current.outcome}"
                )
            finalized = current.model_copy(
                update={
                    "outcome": outcome,
                    "response_status": response_status,
                    "response_body": response_body,
                    "error": error,
                    "duration_ms": duration_ms,
                    "next_retry_delay_seconds": next_retry_delay_seconds,
                    "completed_at": utc_now(),
                }
            )
            self._deliveries[delivery_id] = finalized
            return self._copy(finalized)

    async def get_delivery(self, delivery_id: str) -> DeliveryAttempt | None:
        delivery = self._deliveries.get(delivery_id)
        return self._copy(delivery) if delivery is not None else None

    async def get_delivery_logs(
        self,
        filters: DeliveryLogFilter | None = None,
    ) -> list[DeliveryAttempt]:
        """Query the delivery log.

        Args:
            filters: Subscription/record/account/outcome filters. Test sends
                are excluded unless filters.include_tests is set.

        Returns:
            List of DeliveryAttempt sorted by created_at (newest first).
        """
        filters = filters or DeliveryLogFilter()
        matches = [d for d in self._deliveries.values() if filters.matches(d)]
        return [self._copy(d) for d in self._newest_first(matches)[: filters.limit]]

    async def get_chain(self, chain_id: str) -> list[DeliveryAttempt]:
        """All attempts of one delivery chain in attempt order."""
        chain = [d for d in self._deliveries.values() if d.chain_id == chain_id]
        chain.sort(key=lambda d: d.attempt)
        return [self._copy(d) for d in chain]

"""Webhook delivery with HMAC signatures and exponential backoff retry.

One delivery chain carries one body to one subscription:
- every attempt is appended to the delivery log as pending, then finalized
- 2xx ends the chain as succeeded
- anything else is retried with exponential backoff and jitter
- the last allowed failure ends the chain as exhausted

Before each retry the subscription is reloaded; a chain whose subscription
was disabled or deleted (or whose cancellation token fired) is aborted with
one final exhausted row.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from courier.exceptions import DeliveryError
from courier.logging import get_logger
from courier.models import DeliveryAttempt, generate_id, utc_now

from .formatting import build_body
from .signing import (
    ATTEMPT_HEADER,
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    EVENT_ID_HEADER,
    signature_headers,
)

if TYPE_CHECKING:
    from courier.config import Settings
    from courier.models import DeliveryKind, WebhookEvent, WebhookSubscription
    from courier.storage import DeliveryLogStore, SubscriptionStore

logger = get_logger(__name__)

ABORT_ERROR = "chain aborted: subscription disabled or deleted"

SleepFunc = Callable[[float], Awaitable[Any]]


class ChainState(str, Enum):
    """State of a delivery chain."""

    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


_TRANSITIONS: dict[ChainState, frozenset[ChainState]] = {
    ChainState.SCHEDULED: frozenset({ChainState.IN_FLIGHT, ChainState.EXHAUSTED}),
    ChainState.IN_FLIGHT: frozenset(
        {ChainState.SUCCEEDED, ChainState.FAILED, ChainState.EXHAUSTED}
    ),
    ChainState.FAILED: frozenset({ChainState.SCHEDULED}),
    ChainState.SUCCEEDED: frozenset(),
    ChainState.EXHAUSTED: frozenset(),
}


@dataclass
class DeliveryChain:
    """Task-local state of one delivery chain.

    Attributes:
        chain_id: Identifier shared by every attempt row of the chain.
        subscription_id: Subscription being delivered to.
        max_attempts: Attempts allowed before the chain is exhausted.
        state: Current state.
        attempt: Number of the attempt most recently started (0 before the first).
    """

    chain_id: str
    subscription_id: str
    max_attempts: int
    state: ChainState = ChainState.SCHEDULED
    attempt: int = 0
    history: list[ChainState] = field(default_factory=list, repr=False)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def transition(self, new_state: ChainState) -> None:
        """Move to a new state.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"illegal delivery chain transition {self.state.value} -> {new_state.value} "
                f"(chain {self.chain_id})"
            )
        self.history.append(self.state)
        self.state = new_state


class CancellationToken:
    """One-shot signal shared by all chains of a subscription."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = ABORT_ERROR) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class ChainCancelled(Exception):
    """The cancellation token fired while an attempt or backoff was pending."""


@runtime_checkable
class Notifier(Protocol):
    """Sends delivery notices to a subscription's notification address."""

    async def send(self, to: str, subject: str, message: str) -> None: ...


class LoggingNotifier:
    """Notifier that only logs notices. Used when no mail sender is wired in."""

    async def send(self, to: str, subject: str, message: str) -> None:
        logger.info("Delivery notice", to=to, subject=subject)


@dataclass
class AttemptResult:
    """Outcome of one HTTP call."""

    status: int | None = None
    body: str | None = None
    error: str | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300


async def _race(awaitable: Awaitable[Any], token: CancellationToken | None) -> Any:
    """Await `awaitable` unless the token fires first.

    Raises:
        ChainCancelled: If the token fired first (the awaitable is cancelled).
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise ChainCancelled(token.reason or ABORT_ERROR)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
    if work.done():
        return work.result()
    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
    raise ChainCancelled(token.reason or ABORT_ERROR)


class DeliveryWorker:
    """Runs delivery chains against subscription endpoints.

    Handles:
    - Signing bodies with HMAC-SHA256
    - POSTing with httpx, bounded by a concurrency semaphore
    - Exponential backoff retry with jitter
    - Appending every attempt to the delivery log
    - Success/failure notices via a Notifier

    The httpx transport, sleep function and random source are injectable so
    chains can be driven deterministically in tests.

    Example:
        ```python
        worker = DeliveryWorker(storage, storage, settings)
        final = await worker.deliver(subscription, event)
        print(final.outcome)  # "succeeded" or "exhausted"
        ```
    """

    def __init__(
        self,
        deliveries: DeliveryLogStore,
        subscriptions: SubscriptionStore,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
        notifier: Notifier | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._deliveries = deliveries
        self._subscriptions = subscriptions
        self._settings = settings
        self._transport = transport
        self._sleep = sleep
        self._notifier = notifier
        self._rng = rng or random.Random()
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_deliveries)

    @property
    def settings(self) -> Settings:
        return self._settings

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt following failed attempt `attempt`.

        base * 2**(attempt-1), capped at the max delay, plus uniform jitter in
        [0, retry_jitter_seconds].
        """
        s = self._settings
        base = min(s.retry_base_delay_seconds * (2 ** (attempt - 1)), s.retry_max_delay_seconds)
        jitter = self._rng.uniform(0.0, s.retry_jitter_seconds) if s.retry_jitter_seconds else 0.0
        return base + jitter

    async def deliver(
        self,
        subscription: WebhookSubscription,
        event: WebhookEvent,
        token: CancellationToken | None = None,
        chain_id: str | None = None,
    ) -> DeliveryAttempt:
        """Deliver an event to one subscription with retries.

        Args:
            subscription: Subscription matched for the event.
            event: Event being delivered.
            token: Cancellation token of the subscription.
            chain_id: Chain identifier (generated if not given).

        Returns:
            The final (terminal) attempt row of the chain.
        """
        return await self.run_chain(
            subscription,
            body=build_body(subscription, event),
            timestamp=event.envelope()["timestamp"],
            event_type=event.event_type,
            event_id=event.id,
            chain_id=chain_id or generate_id("chn"),
            max_attempts=self._settings.delivery_max_attempts,
            token=token,
        )

    async def attempt_once(
        self,
        subscription: WebhookSubscription,
        body: str,
        timestamp: str,
        event_type: str,
        chain_id: str,
        kind: DeliveryKind,
        event_id: str | None = None,
        resent_from: str | None = None,
        is_test: bool = False,
    ) -> DeliveryAttempt:
        """Run a one-attempt chain (resend and test). A failure is exhausted."""
        return await self.run_chain(
            subscription,
            body=body,
            timestamp=timestamp,
            event_type=event_type,
            event_id=event_id,
            chain_id=chain_id,
            max_attempts=1,
            kind=kind,
            resent_from=resent_from,
            is_test=is_test,
        )

    async def run_chain(
        self,
        subscription: WebhookSubscription,
        body: str,
        timestamp: str,
        event_type: str,
        event_id: str | None,
        chain_id: str,
        max_attempts: int,
        token: CancellationToken | None = None,
        kind: DeliveryKind = "delivery",
        resent_from: str | None = None,
        is_test: bool = False,
    ) -> DeliveryAttempt:
        """Drive a chain from scheduled to a terminal state."""
        chain = DeliveryChain(
            chain_id=chain_id,
            subscription_id=subscription.id,
            max_attempts=max_attempts,
        )
        current = subscription
        log = logger.bind(
            subscription_id=subscription.id,
            chain_id=chain_id,
            event_type=event_type,
            kind=kind,
        )

        def new_row(attempt: int) -> DeliveryAttempt:
            return DeliveryAttempt(
                subscription_id=subscription.id,
                chain_id=chain_id,
                event_id=event_id,
                event_type=event_type,
                request_body=body,
                attempt=attempt,
                kind=kind,
                is_test=is_test,
                resent_from=resent_from,
                record_id=subscription.record_id,
                account_id=subscription.account_id,
            )

        while True:
            attempt = chain.attempt + 1

            if attempt > 1:
                reloaded = await self._subscriptions.get_subscription(subscription.id)
                cancelled = token is not None and token.cancelled
                if cancelled or reloaded is None or not reloaded.enabled:
                    chain.transition(ChainState.EXHAUSTED)
                    row = new_row(attempt).model_copy(
                        update={
                            "outcome": "exhausted",
                            "error": ABORT_ERROR,
                            "completed_at": utc_now(),
                        }
                    )
                    await self._deliveries.log_delivery(row)
                    log.info("Delivery chain aborted", attempt=attempt)
                    return row
                current = reloaded

            chain.transition(ChainState.IN_FLIGHT)
            chain.attempt = attempt
            row = new_row(attempt)
            await self._deliveries.log_delivery(row)

            try:
                result = await self._send(
                    current, row, body, timestamp, event_type, chain_id, token
                )
            except ChainCancelled as e:
                chain.transition(ChainState.EXHAUSTED)
                log.info("Delivery chain cancelled in flight", attempt=attempt)
                return await self._deliveries.finalize_delivery(
                    row.id, "exhausted", error=str(e)
                )
            except Exception as e:
                # A pending row must not outlive its chain
                chain.transition(ChainState.EXHAUSTED)
                log.exception("Delivery attempt crashed", attempt=attempt)
                final = await self._deliveries.finalize_delivery(
                    row.id, "exhausted", error=f"{type(e).__name__}: {e}"
                )
                await self.notify(current, final)
                return final

            if result.ok:
                chain.transition(ChainState.SUCCEEDED)
                final = await self._deliveries.finalize_delivery(
                    row.id,
                    "succeeded",
                    response_status=result.status,
                    response_body=result.body,
                    duration_ms=result.duration_ms,
                )
                log.info(
                    "Webhook delivered",
                    attempt=attempt,
                    status=result.status,
                    duration_ms=result.duration_ms,
                )
                await self.notify(current, final)
                return final

            if attempt >= chain.max_attempts:
                chain.transition(ChainState.EXHAUSTED)
                final = await self._deliveries.finalize_delivery(
                    row.id,
                    "exhausted",
                    response_status=result.status,
                    response_body=result.body,
                    error=result.error,
                    duration_ms=result.duration_ms,
                )
                log.warning(
                    "Webhook delivery exhausted",
                    attempts=attempt,
                    status=result.status,
                    error=result.error,
                )
                await self.notify(current, final)
                return final

            delay = self.backoff_delay(attempt)
            chain.transition(ChainState.FAILED)
            await self._deliveries.finalize_delivery(
                row.id,
                "failed",
                response_status=result.status,
                response_body=result.body,
                error=result.error,
                duration_ms=result.duration_ms,
                next_retry_delay_seconds=delay,
            )
            log.info(
                "Webhook delivery failed, retry scheduled",
                attempt=attempt,
                status=result.status,
                error=result.error,
                delay_seconds=round(delay, 3),
            )
            chain.transition(ChainState.SCHEDULED)
            try:
                await _race(self._sleep(delay), token)
            except ChainCancelled:
                # The liveness check at the top of the loop writes the abort row
                pass

    async def _send(
        self,
        subscription: WebhookSubscription,
        row: DeliveryAttempt,
        body: str,
        timestamp: str,
        event_type: str,
        chain_id: str,
        token: CancellationToken | None,
    ) -> AttemptResult:
        headers = self.build_headers(subscription, row, body, timestamp, event_type, chain_id)
        async with self._semaphore:
            started = time.monotonic()
            try:
                response = await _race(self._post(subscription.url, body, headers), token)
            except DeliveryError as e:
                return AttemptResult(error=e.message, duration_ms=_elapsed_ms(started))

        limit = self._settings.response_body_max_chars
        text = response.text
        return AttemptResult(
            status=response.status_code,
            body=text[:limit] if text else None,
            error=None if response.is_success else f"HTTP {response.status_code}",
            duration_ms=_elapsed_ms(started),
        )

    async def _post(self, url: str, body: str, headers: dict[str, str]) -> httpx.Response:
        """POST one request.

        Raises:
            DeliveryError: On timeout or transport failure.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.delivery_timeout_seconds,
                transport=self._transport,
            ) as client:
                return await client.post(url, content=body.encode("utf-8"), headers=headers)
        except httpx.TimeoutException as e:
            raise DeliveryError(
                f"Request timeout after {self._settings.delivery_timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"{type(e).__name__}: {e}") from e

    @staticmethod
    def build_headers(
        subscription: WebhookSubscription,
        row: DeliveryAttempt,
        body: str,
        timestamp: str,
        event_type: str,
        chain_id: str,
    ) -> dict[str, str]:
        """Headers for one attempt: custom headers first, then the signed set."""
        headers: dict[str, str] = {}
        if not any(name.lower() == "content-type" for name in subscription.headers):
            headers["Content-Type"] = "application/json"
        headers.update(subscription.headers)
        headers.update(signature_headers(body, subscription.secret, timestamp))
        headers[EVENT_HEADER] = event_type
        headers[EVENT_ID_HEADER] = chain_id
        headers[DELIVERY_ID_HEADER] = row.id
        headers[ATTEMPT_HEADER] = str(row.attempt)
        return headers

    async def notify(self, subscription: WebhookSubscription, final: DeliveryAttempt) -> None:
        """Send a success or failure notice for a finished chain, if configured."""
        if self._notifier is None or not subscription.notification_email:
            return
        if final.outcome == "succeeded" and subscription.notify_on_success:
            subject = f"Webhook delivered successfully ({final.response_status})"
            message = (
                f"# Webhook Success\n\n- URL: {subscription.url}\n"
                f"- Event: {final.event_type}\n- Status: {final.response_status}\n"
                f"- Attempts: {final.attempt}\n\n## Response Body\n\n"
                f"```\n{(final.response_body or '')[:4000]}\n```"
            )
        elif final.outcome == "exhausted" and subscription.notify_on_failure:
            subject = "Webhook delivery failed"
            message = (
                f"# Webhook Failure\n\n- URL: {subscription.url}\n"
                f"- Event: {final.event_type}\n- Status: {final.response_status or 'none'}\n"
                f"- Error: {final.error}\n\nAttempts: {final.attempt}"
            )
        else:
            return

        try:
            await self._notifier.send(subscription.notification_email, subject, message)
        except Exception:
            logger.exception(
                "Delivery notice failed",
                subscription_id=subscription.id,
                chain_id=final.chain_id,
            )


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


__all__ = [
    "ABORT_ERROR",
    "AttemptResult",
    "CancellationToken",
    "ChainCancelled",
    "ChainState",
    "DeliveryChain",
    "DeliveryWorker",
    "LoggingNotifier",
    "Notifier",
]

"""High-level Courier service wiring every component together."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from courier.config import Settings
from courier.inbound import (
    HttpSubmissionSink,
    InboundIngestor,
    IngestResult,
    InMemorySubmissionSink,
    SubmissionSink,
)
from courier.logging import get_logger
from courier.models import DeliveryAttempt, DeliveryLogFilter, EventScope
from courier.registry import MappingRegistry, SubscriptionRegistry
from courier.storage import CourierStorage
from courier.webhooks import (
    DeliveryWorker,
    LoggingNotifier,
    Notifier,
    ReplayService,
    WebhookDispatcher,
)
from courier.webhooks.delivery import SleepFunc

logger = get_logger(__name__)


@dataclass
class CourierService:
    """Composition root for the webhook notification layer.

    Exposes:
    - subscriptions / mappings: owner-facing registries
    - dispatcher: trigger() for the event producer
    - replay: resend() and test()
    - ingestor: ingest() for the public inbound endpoint
    - get_logs(): delivery history queries

    Uses dependency injection throughout, so tests can swap the HTTP
    transport, the sleep function, the notifier or the submission sink.

    Attributes:
        settings: Configuration settings.
        storage: Storage backend for subscriptions, mappings and the delivery log.
        subscriptions: Subscription registry.
        mappings: Inbound mapping registry.
        worker: Delivery worker running retry chains.
        dispatcher: Event fan-out.
        replay: Resend and test sends.
        ingestor: Inbound ingestion.
    """

    settings: Settings
    storage: CourierStorage
    subscriptions: SubscriptionRegistry
    mappings: MappingRegistry
    worker: DeliveryWorker
    dispatcher: WebhookDispatcher
    replay: ReplayService
    ingestor: InboundIngestor

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        storage: CourierStorage | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
        notifier: Notifier | None = None,
        sink: SubmissionSink | None = None,
    ) -> CourierService:
        """Create a CourierService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            storage: Optional storage. A fresh in-memory store if None.
            transport: httpx transport for outbound deliveries.
            sleep: Backoff sleep function.
            notifier: Delivery notice sender. Notices are only logged if None.
            sink: Submission sink. Built from settings.submission_url if None.

        Returns:
            Configured CourierService instance.
        """
        if settings is None:
            settings = Settings()
        if storage is None:
            storage = CourierStorage()
        if sink is None:
            if settings.submission_url:
                sink = HttpSubmissionSink(
                    settings.submission_url,
                    timeout_seconds=settings.submission_timeout_seconds,
                )
            else:
                logger.warning("No submission URL configured; inbound records kept in memory")
                sink = InMemorySubmissionSink()

        worker = DeliveryWorker(
            storage,
            storage,
            settings,
            transport=transport,
            sleep=sleep,
            notifier=notifier or LoggingNotifier(),
        )
        dispatcher = WebhookDispatcher(storage, worker)
        subscriptions = SubscriptionRegistry(storage)
        subscriptions.add_listener(dispatcher.cancel_subscription)

        return cls(
            settings=settings,
            storage=storage,
            subscriptions=subscriptions,
            mappings=MappingRegistry(storage),
            worker=worker,
            dispatcher=dispatcher,
            replay=ReplayService(storage, storage, worker),
            ingestor=InboundIngestor(storage, sink, settings),
        )

    async def initialize(self) -> None:
        """Initialize the service (storage tables, etc.)."""
        await self.storage.initialize()
        logger.info("Courier service initialized", env=self.settings.env)

    async def close(self) -> None:
        """Cancel in-flight deliveries and release storage."""
        await self.dispatcher.close()
        await self.storage.close()

    async def __aenter__(self) -> CourierService:
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def trigger(
        self,
        event_type: str,
        payload: Mapping[str, Any],
        scope: EventScope | Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Producer hook. See WebhookDispatcher.trigger()."""
        return await self.dispatcher.trigger(event_type, payload, scope)

    async def ingest(
        self, mapping_id: str, headers: Mapping[str, str], raw_body: bytes | str
    ) -> IngestResult:
        return await self.ingestor.ingest(mapping_id, headers, raw_body)

    async def get_logs(self, filters: DeliveryLogFilter | None = None) -> list[DeliveryAttempt]:
        """Query delivery history, newest first."""
        return await self.storage.get_delivery_logs(filters)


__all__ = ["CourierService"]

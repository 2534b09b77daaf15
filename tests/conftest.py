"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable
from pathlib import Path

import httpx
import pytest

from courier.config import Settings
from courier.models import EventScope, WebhookEvent, WebhookSubscription
from courier.service import CourierService
from courier.storage import CourierStorage
from courier.webhooks import DeliveryWorker, WebhookDispatcher

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))


class RecordingSleep:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedEndpoint:
    """httpx mock endpoint answering with a scripted list of responses.

    Each script entry is a status code, or an exception instance to raise
    (e.g. httpx.ConnectError). The last entry repeats once the script runs out.
    """

    def __init__(self, script: Iterable[int | Exception], body: str = "ok") -> None:
        self.script = list(script)
        self.body = body
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step, text=self.body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings() -> Settings:
    """Settings with a deterministic backoff (no jitter)."""
    return Settings(
        env="test",
        delivery_max_attempts=5,
        retry_base_delay_seconds=1.0,
        retry_max_delay_seconds=60.0,
        retry_jitter_seconds=0.0,
        log_format="text",
    )


@pytest.fixture
def storage() -> CourierStorage:
    return CourierStorage()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_subscription() -> Callable[..., WebhookSubscription]:
    """Factory for subscriptions with sensible defaults."""

    def _make(**overrides: object) -> WebhookSubscription:
        data: dict[str, object] = {
            "url": "https://example.com/hooks/courier",
            "events": ["record_submitted"],
            "account_id": "acct_1",
            "secret": "s3cret",
        }
        data.update(overrides)
        return WebhookSubscription.model_validate(data)

    return _make


@pytest.fixture
def sample_event() -> WebhookEvent:
    return WebhookEvent(
        event_type="record_submitted",
        payload={"recordTypeId": "rt_contact", "data": {"email": "a@example.com"}},
        scope=EventScope(record_id="rec_1", account_id="acct_1"),
    )


@pytest.fixture
def make_worker(
    storage: CourierStorage, settings: Settings, recording_sleep: RecordingSleep
) -> Callable[..., DeliveryWorker]:
    """Factory for a worker bound to a scripted endpoint."""

    def _make(endpoint: ScriptedEndpoint, **kwargs: object) -> DeliveryWorker:
        return DeliveryWorker(
            storage,
            storage,
            kwargs.pop("settings", settings),  # type: ignore[arg-type]
            transport=endpoint.transport,
            sleep=recording_sleep,
            **kwargs,  # type: ignore[arg-type]
        )

    return _make


@pytest.fixture
def make_dispatcher(
    storage: CourierStorage, make_worker: Callable[..., DeliveryWorker]
) -> Callable[[ScriptedEndpoint], WebhookDispatcher]:
    def _make(endpoint: ScriptedEndpoint) -> WebhookDispatcher:
        return WebhookDispatcher(storage, make_worker(endpoint))

    return _make


@pytest.fixture
def make_service(
    settings: Settings, recording_sleep: RecordingSleep
) -> Callable[..., CourierService]:
    """Factory for a fully wired service talking to a scripted endpoint."""

    def _make(endpoint: ScriptedEndpoint | None = None, **kwargs: object) -> CourierService:
        endpoint = endpoint or ScriptedEndpoint([200])
        return CourierService.create(
            settings,
            transport=endpoint.transport,
            sleep=recording_sleep,
            **kwargs,  # type: ignore[arg-type]
        )

    return _make

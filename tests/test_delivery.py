"""Tests for webhook delivery chains."""

import asyncio
import json
import random

import httpx
import pytest
from conftest import RecordingSleep, ScriptedEndpoint

from courier.config import Settings
from courier.models import DeliveryAttempt
from courier.webhooks import (
    ABORT_ERROR,
    CancellationToken,
    ChainState,
    DeliveryChain,
    DeliveryWorker,
    LoggingNotifier,
    Notifier,
    verify_signature,
)
from courier.webhooks.delivery import ChainCancelled, _race
from courier.webhooks.signing import (
    ATTEMPT_HEADER,
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    EVENT_ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, message: str) -> None:
        self.sent.append((to, subject, message))


async def _stored(storage, make_subscription, **overrides):
    sub = make_subscription(**overrides)
    await storage.store_subscription(sub)
    return sub


class TestDeliveryChain:
    """Tests for the chain state machine."""

    def test_happy_path(self):
        chain = DeliveryChain(chain_id="chn_1", subscription_id="whk_1", max_attempts=3)
        chain.transition(ChainState.IN_FLIGHT)
        chain.transition(ChainState.FAILED)
        chain.transition(ChainState.SCHEDULED)
        chain.transition(ChainState.IN_FLIGHT)
        chain.transition(ChainState.SUCCEEDED)
        assert chain.is_terminal
        assert chain.history[0] == ChainState.SCHEDULED

    def test_illegal_transition(self):
        chain = DeliveryChain(chain_id="chn_1", subscription_id="whk_1", max_attempts=3)
        with pytest.raises(RuntimeError, match="illegal delivery chain transition"):
            chain.transition(ChainState.SUCCEEDED)

    def test_terminal_states_are_final(self):
        chain = DeliveryChain(chain_id="chn_1", subscription_id="whk_1", max_attempts=1)
        chain.transition(ChainState.EXHAUSTED)
        with pytest.raises(RuntimeError):
            chain.transition(ChainState.SCHEDULED)


class TestBackoff:
    """Tests for backoff_delay."""

    def test_doubles_without_jitter(self, make_worker):
        worker = make_worker(ScriptedEndpoint([200]))
        assert [worker.backoff_delay(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self, make_worker):
        settings = Settings(
            retry_base_delay_seconds=1.0, retry_max_delay_seconds=3.0, retry_jitter_seconds=0.0
        )
        worker = make_worker(ScriptedEndpoint([200]), settings=settings)
        assert [worker.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 3.0, 3.0, 3.0]

    def test_jitter_keeps_delays_increasing(self, make_worker):
        settings = Settings(
            retry_base_delay_seconds=1.0, retry_max_delay_seconds=60.0, retry_jitter_seconds=0.5
        )
        worker = make_worker(ScriptedEndpoint([200]), settings=settings, rng=random.Random(7))
        delays = [worker.backoff_delay(n) for n in range(1, 6)]
        for base, delay in zip([1.0, 2.0, 4.0, 8.0, 16.0], delays, strict=True):
            assert base <= delay <= base + 0.5
        assert delays == sorted(delays)
        assert len(set(delays)) == len(delays)


class TestDeliver:
    """Tests for DeliveryWorker.deliver."""

    @pytest.mark.asyncio
    async def test_first_try_success(self, storage, make_worker, make_subscription, sample_event):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([200], body="thanks")
        worker = make_worker(endpoint)

        final = await worker.deliver(sub, sample_event, chain_id="chn_ok")

        assert final.outcome == "succeeded"
        assert final.response_status == 200
        assert final.response_body == "thanks"
        assert final.attempt == 1
        assert final.event_id == sample_event.id
        assert final.record_id is None and final.account_id == "acct_1"
        assert len(endpoint.requests) == 1
        assert json.loads(endpoint.requests[0].content) == sample_event.envelope()

    @pytest.mark.asyncio
    async def test_retries_until_success(
        self, storage, make_worker, make_subscription, sample_event, recording_sleep
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([500, 503, 200])
        worker = make_worker(endpoint)

        final = await worker.deliver(sub, sample_event, chain_id="chn_retry")

        rows = await storage.get_chain("chn_retry")
        assert [r.outcome for r in rows] == ["failed", "failed", "succeeded"]
        assert [r.response_status for r in rows] == [500, 503, 200]
        assert [r.attempt for r in rows] == [1, 2, 3]
        assert rows[0].error == "HTTP 500"
        assert [r.next_retry_delay_seconds for r in rows] == [1.0, 2.0, None]
        assert recording_sleep.delays == [1.0, 2.0]
        assert final.id == rows[-1].id

    @pytest.mark.asyncio
    async def test_same_body_every_attempt(
        self, storage, make_worker, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([500, 500, 204])
        await make_worker(endpoint).deliver(sub, sample_event)

        bodies = {request.content for request in endpoint.requests}
        assert len(bodies) == 1
        attempts = [request.headers[ATTEMPT_HEADER] for request in endpoint.requests]
        assert attempts == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_exhausted_after_max_attempts(
        self, storage, make_worker, make_subscription, sample_event, recording_sleep
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([500])

        final = await make_worker(endpoint).deliver(sub, sample_event, chain_id="chn_x")

        rows = await storage.get_chain("chn_x")
        assert [r.outcome for r in rows] == ["failed"] * 4 + ["exhausted"]
        assert final.outcome == "exhausted"
        assert final.attempt == 5
        assert final.next_retry_delay_seconds is None
        assert len(endpoint.requests) == 5
        assert recording_sleep.delays == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_redirect_is_a_failure(
        self, storage, make_worker, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        settings = Settings(delivery_max_attempts=1, retry_jitter_seconds=0.0)
        final = await make_worker(ScriptedEndpoint([302]), settings=settings).deliver(
            sub, sample_event
        )
        assert final.outcome == "exhausted"
        assert final.response_status == 302

    @pytest.mark.asyncio
    async def test_transport_error_recorded(
        self, storage, make_worker, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([httpx.ConnectError("connection refused"), 200])

        await make_worker(endpoint).deliver(sub, sample_event, chain_id="chn_err")

        first, second = await storage.get_chain("chn_err")
        assert first.outcome == "failed"
        assert first.response_status is None
        assert "ConnectError" in first.error
        assert "connection refused" in first.error
        assert second.outcome == "succeeded"

    @pytest.mark.asyncio
    async def test_timeout_recorded(self, storage, make_worker, make_subscription, sample_event):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([httpx.ReadTimeout("too slow"), 200])

        await make_worker(endpoint).deliver(sub, sample_event, chain_id="chn_to")

        first = (await storage.get_chain("chn_to"))[0]
        assert first.error == "Request timeout after 10.0s"

    @pytest.mark.asyncio
    async def test_response_body_truncated(
        self, storage, make_worker, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        settings = Settings(response_body_max_chars=5, retry_jitter_seconds=0.0)
        endpoint = ScriptedEndpoint([200], body="abcdefghij")
        final = await make_worker(endpoint, settings=settings).deliver(sub, sample_event)
        assert final.response_body == "abcde"

    @pytest.mark.asyncio
    async def test_unexpected_error_finalizes_row(
        self, storage, make_worker, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([RuntimeError("handler exploded"), 200])

        final = await make_worker(endpoint).deliver(sub, sample_event, chain_id="chn_boom")

        rows = await storage.get_chain("chn_boom")
        assert [r.outcome for r in rows] == ["exhausted"]
        assert final.error == "RuntimeError: handler exploded"
        assert final.completed_at is not None
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_unencodable_header_finalizes_row(
        self, storage, make_worker, make_subscription, sample_event
    ):
        # model_copy skips validation, so the header reaches the worker
        sub = make_subscription().model_copy(update={"headers": {"X-Team": "café"}})
        await storage.store_subscription(sub)
        endpoint = ScriptedEndpoint([200])

        final = await make_worker(endpoint).deliver(sub, sample_event, chain_id="chn_hdr")

        rows = await storage.get_chain("chn_hdr")
        assert [r.outcome for r in rows] == ["exhausted"]
        assert final.error.startswith("UnicodeEncodeError")
        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_duration_excludes_semaphore_wait(
        self, storage, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        settings = Settings(max_concurrent_deliveries=1, retry_jitter_seconds=0.0)
        calls = 0

        async def first_slow(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(0.3)
            return httpx.Response(200)

        worker = DeliveryWorker(
            storage,
            storage,
            settings,
            transport=httpx.MockTransport(first_slow),
            sleep=RecordingSleep(),
        )
        finals = await asyncio.gather(
            worker.deliver(sub, sample_event), worker.deliver(sub, sample_event)
        )
        fast, slow = sorted(final.duration_ms for final in finals)
        assert slow >= 250
        assert fast < 250


class TestHeaders:
    """Tests for signed request headers."""

    @pytest.mark.asyncio
    async def test_signed_headers(self, storage, make_worker, make_subscription, sample_event):
        sub = await _stored(storage, make_subscription, headers={"Authorization": "Bearer t"})
        endpoint = ScriptedEndpoint([200])

        final = await make_worker(endpoint).deliver(sub, sample_event, chain_id="chn_h")

        request = endpoint.requests[0]
        assert verify_signature(request.content, "s3cret", request.headers[SIGNATURE_HEADER])
        assert request.headers[TIMESTAMP_HEADER] == sample_event.timestamp.isoformat()
        assert request.headers[EVENT_HEADER] == "record_submitted"
        assert request.headers[EVENT_ID_HEADER] == "chn_h"
        assert request.headers[DELIVERY_ID_HEADER] == final.id
        assert request.headers[ATTEMPT_HEADER] == "1"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    async def test_signature_matches_logged_body(
        self, storage, make_worker, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([200])
        final = await make_worker(endpoint).deliver(sub, sample_event)
        assert endpoint.requests[0].content == final.payload_bytes

    def test_template_content_type_kept(self, make_subscription):
        sub = make_subscription(
            headers={"content-type": "text/plain"}, payload_template="{{ eventType }}"
        )
        row = DeliveryAttempt(
            subscription_id=sub.id, chain_id="chn_1", event_type="x", request_body="x"
        )
        headers = DeliveryWorker.build_headers(sub, row, "x", "2024-01-01T00:00:00+00:00", "x", "c")
        assert headers["content-type"] == "text/plain"
        assert "Content-Type" not in headers


class TestAbort:
    """Disabled or deleted subscriptions stop their chains."""

    @pytest.mark.asyncio
    async def test_disabled_between_attempts(
        self, storage, settings, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([500])

        async def disable_during_backoff(delay: float) -> None:
            await storage.update_subscription(sub.id, enabled=False)

        worker = DeliveryWorker(
            storage,
            storage,
            settings,
            transport=endpoint.transport,
            sleep=disable_during_backoff,
        )
        final = await worker.deliver(sub, sample_event, chain_id="chn_ab")

        rows = await storage.get_chain("chn_ab")
        assert [r.outcome for r in rows] == ["failed", "exhausted"]
        assert final.attempt == 2
        assert final.error == ABORT_ERROR
        assert final.response_status is None
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_deleted_between_attempts(
        self, storage, settings, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        endpoint = ScriptedEndpoint([500])

        async def delete_during_backoff(delay: float) -> None:
            await storage.delete_subscription(sub.id)

        worker = DeliveryWorker(
            storage, storage, settings, transport=endpoint.transport, sleep=delete_during_backoff
        )
        final = await worker.deliver(sub, sample_event)
        assert final.outcome == "exhausted"
        assert final.error == ABORT_ERROR

    @pytest.mark.asyncio
    async def test_token_cancelled_during_backoff(
        self, storage, settings, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        token = CancellationToken()
        endpoint = ScriptedEndpoint([500])

        async def cancel_during_backoff(delay: float) -> None:
            token.cancel()
            await asyncio.sleep(10)

        worker = DeliveryWorker(
            storage, storage, settings, transport=endpoint.transport, sleep=cancel_during_backoff
        )
        final = await asyncio.wait_for(
            worker.deliver(sub, sample_event, token=token, chain_id="chn_tok"), timeout=5
        )
        assert final.attempt == 2
        assert final.error == ABORT_ERROR
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_token_cancelled_in_flight(
        self, storage, settings, make_subscription, sample_event
    ):
        sub = await _stored(storage, make_subscription)
        token = CancellationToken()

        async def hanging(request: httpx.Request) -> httpx.Response:
            token.cancel()
            await asyncio.sleep(10)
            return httpx.Response(200)

        worker = DeliveryWorker(
            storage,
            storage,
            settings,
            transport=httpx.MockTransport(hanging),
            sleep=RecordingSleep(),
        )
        final = await asyncio.wait_for(
            worker.deliver(sub, sample_event, token=token, chain_id="chn_fl"), timeout=5
        )
        rows = await storage.get_chain("chn_fl")
        assert len(rows) == 1
        assert final.outcome == "exhausted"
        assert final.error == ABORT_ERROR


class TestNotifications:
    """Tests for success/failure notices."""

    @pytest.mark.asyncio
    async def test_failure_notice(self, storage, make_worker, make_subscription, sample_event):
        sub = await _stored(storage, make_subscription, notification_email="ops@example.com")
        notifier = RecordingNotifier()
        worker = make_worker(ScriptedEndpoint([500]), notifier=notifier)

        await worker.deliver(sub, sample_event)

        assert len(notifier.sent) == 1
        to, subject, message = notifier.sent[0]
        assert to == "ops@example.com"
        assert subject == "Webhook delivery failed"
        assert "HTTP 500" in message

    @pytest.mark.asyncio
    async def test_success_notice_opt_in(
        self, storage, make_worker, make_subscription, sample_event
    ):
        notifier = RecordingNotifier()
        quiet = await _stored(storage, make_subscription, notification_email="a@example.com")
        loud = await _stored(
            storage,
            make_subscription,
            notification_email="b@example.com",
            notify_on_success=True,
        )
        worker = make_worker(ScriptedEndpoint([200], body="fine"), notifier=notifier)

        await worker.deliver(quiet, sample_event)
        await worker.deliver(loud, sample_event)

        assert [to for to, _, _ in notifier.sent] == ["b@example.com"]
        assert "fine" in notifier.sent[0][2]

    @pytest.mark.asyncio
    async def test_no_email_no_notice(self, storage, make_worker, make_subscription, sample_event):
        sub = await _stored(storage, make_subscription)
        notifier = RecordingNotifier()
        await make_worker(ScriptedEndpoint([500]), notifier=notifier).deliver(sub, sample_event)
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_notifier_failure_is_logged(
        self, storage, make_worker, make_subscription, sample_event
    ):
        class BrokenNotifier:
            async def send(self, to: str, subject: str, message: str) -> None:
                raise RuntimeError("smtp down")

        sub = await _stored(storage, make_subscription, notification_email="ops@example.com")
        worker = make_worker(ScriptedEndpoint([500]), notifier=BrokenNotifier())
        final = await worker.deliver(sub, sample_event)
        assert final.outcome == "exhausted"

    def test_logging_notifier_is_a_notifier(self):
        assert isinstance(LoggingNotifier(), Notifier)


class TestRace:
    """Tests for racing work against a cancellation token."""

    @pytest.mark.asyncio
    async def test_token_wins(self):
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(ChainCancelled, match="stop"):
            await _race(asyncio.sleep(10), token)

    @pytest.mark.asyncio
    async def test_outer_cancel_during_cleanup_propagates(self):
        """A task cancelled while its work winds down must stay cancelled."""
        token = CancellationToken()
        cleaning_up = asyncio.Event()

        async def slow_to_stop() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cleaning_up.set()
                await asyncio.sleep(10)
                raise

        task = asyncio.create_task(_race(slow_to_stop(), token))
        await asyncio.sleep(0)
        token.cancel()
        await asyncio.wait_for(cleaning_up.wait(), timeout=5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)

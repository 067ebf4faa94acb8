"""Tests for webhook delivery, retry policy and bus dispatch."""

import json

import httpx
import pytest

from conftest import FakeGateway
from sessionhub.bus.events import SESSION_DESTROYED, SESSION_STATUS, SESSIONS_UPDATED
from sessionhub.bus.queue import NotificationBus
from sessionhub.session.manager import SessionManager
from sessionhub.webhook.policy import RetryPolicy, exponential_backoff
from sessionhub.webhook.service import WebhookDispatcher, WebhookService

URL = "https://hooks.example.com/wa"


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _transport(statuses, requests):
    """MockTransport answering with the given status codes in order."""
    codes = iter(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(next(codes), text="ok")

    return httpx.MockTransport(handler)


def _gateway_with_webhook(url=URL) -> FakeGateway:
    gateway = FakeGateway()
    gateway.add_row("s1", "ready", name="Sales", webhook_url=url)
    return gateway


def test_exponential_backoff():
    backoff = exponential_backoff()
    assert [backoff(n) for n in range(3)] == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_retry_policy_skips_wait_after_last_attempt():
    sleep = SleepRecorder()
    policy = RetryPolicy(max_attempts=3, sleep=sleep)

    for attempt in policy.attempts():
        await policy.wait(attempt)

    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_no_webhook_configured_returns_false():
    """Sessions without a URL get no HTTP attempts and no delivery records."""
    gateway = _gateway_with_webhook(url=None)
    requests = []
    service = WebhookService(gateway, transport=_transport([200], requests))

    assert await service.send_webhook("s1", "session:status", {"status": "ready"}) is False
    assert requests == []
    assert gateway.webhook_events == []


@pytest.mark.asyncio
async def test_unknown_session_returns_false():
    requests = []
    service = WebhookService(FakeGateway(), transport=_transport([200], requests))

    assert await service.send_webhook("missing", "session:status", {}) is False
    assert requests == []


@pytest.mark.asyncio
async def test_no_gateway_returns_false():
    service = WebhookService(None)
    assert await service.send_webhook("s1", "session:status", {}) is False


@pytest.mark.asyncio
async def test_retries_until_success():
    """500, 500, 200 → delivered on the third attempt with 1s and 2s waits."""
    gateway = _gateway_with_webhook()
    sleep = SleepRecorder()
    requests = []
    service = WebhookService(
        gateway,
        policy=RetryPolicy(sleep=sleep),
        transport=_transport([500, 500, 200], requests),
    )

    assert await service.send_webhook("s1", "session:status", {"status": "ready"}) is True

    assert len(requests) == 3
    assert [e["response_status"] for e in gateway.webhook_events] == [500, 500, 200]
    assert [e["attempt"] for e in gateway.webhook_events] == [0, 1, 2]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_redirect_status_counts_as_success():
    gateway = _gateway_with_webhook()
    requests = []
    service = WebhookService(gateway, transport=_transport([302], requests))

    assert await service.send_webhook("s1", "session:status", {}) is True
    assert len(gateway.webhook_events) == 1


@pytest.mark.asyncio
async def test_exhausted_attempts_return_false():
    gateway = _gateway_with_webhook()
    sleep = SleepRecorder()
    requests = []
    service = WebhookService(
        gateway,
        policy=RetryPolicy(sleep=sleep),
        transport=_transport([503, 503, 503], requests),
    )

    assert await service.send_webhook("s1", "message:received", {"body": "hi"}) is False
    assert len(requests) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_network_error_recorded_as_status_zero():
    gateway = _gateway_with_webhook()

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    service = WebhookService(
        gateway,
        policy=RetryPolicy(max_attempts=2, sleep=SleepRecorder()),
        transport=httpx.MockTransport(handler),
    )

    assert await service.send_webhook("s1", "session:status", {}) is False
    assert [e["response_status"] for e in gateway.webhook_events] == [0, 0]
    assert "connection refused" in gateway.webhook_events[0]["response_body"]


@pytest.mark.asyncio
async def test_envelope_format():
    gateway = _gateway_with_webhook()
    requests = []
    service = WebhookService(gateway, transport=_transport([200], requests))

    await service.send_webhook("s1", "session:qr", {"sessionId": "s1", "status": "qr_received"})

    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == URL
    assert request.headers["content-type"] == "application/json"
    envelope = json.loads(request.content)
    assert envelope["event"] == "session:qr"
    assert envelope["sessionId"] == "s1"
    assert envelope["sessionName"] == "Sales"
    assert envelope["timestamp"]
    assert envelope["data"] == {"sessionId": "s1", "status": "qr_received"}
    assert gateway.webhook_events[0]["payload"] == request.content.decode()


@pytest.mark.asyncio
async def test_attempt_logging_failure_is_ignored():
    gateway = _gateway_with_webhook()
    gateway.fail.add("log_webhook_event")
    requests = []
    service = WebhookService(gateway, transport=_transport([200], requests))

    assert await service.send_webhook("s1", "session:status", {}) is True


@pytest.mark.asyncio
async def test_webhook_lookup_failure_returns_false():
    gateway = _gateway_with_webhook()
    gateway.fail.add("get_session_webhook")
    requests = []
    service = WebhookService(gateway, transport=_transport([200], requests))

    assert await service.send_webhook("s1", "session:status", {}) is False
    assert requests == []


@pytest.mark.asyncio
async def test_dispatcher_delivers_session_events():
    gateway = _gateway_with_webhook()
    requests = []
    bus = NotificationBus()
    dispatcher = WebhookDispatcher(
        WebhookService(gateway, transport=_transport([200, 200], requests)), bus
    )

    await bus.publish(SESSION_STATUS, {"sessionId": "s1", "status": "ready"})
    await bus.publish(SESSIONS_UPDATED, [{"id": "s1"}])
    await bus.flush()
    await dispatcher.drain()

    assert len(requests) == 1
    assert json.loads(requests[0].content)["event"] == SESSION_STATUS
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_informational_status_is_not_success():
    gateway = _gateway_with_webhook()
    sleep = SleepRecorder()
    requests = []
    service = WebhookService(
        gateway,
        policy=RetryPolicy(sleep=sleep),
        transport=_transport([101, 101, 101], requests),
    )

    assert await service.send_webhook("s1", "session:status", {}) is False
    assert [e["response_status"] for e in gateway.webhook_events] == [101, 101, 101]


@pytest.mark.asyncio
async def test_explicit_target_skips_gateway_lookup():
    gateway = FakeGateway()
    requests = []
    service = WebhookService(gateway, transport=_transport([200], requests))

    delivered = await service.send_webhook(
        "gone", "session:destroyed", {"sessionId": "gone"},
        target={"webhook_url": URL, "name": "Sales"},
    )

    assert delivered is True
    assert gateway.calls_to("get_session_webhook") == []
    assert json.loads(requests[0].content)["sessionName"] == "Sales"


@pytest.mark.asyncio
async def test_dispatcher_delivers_destroyed_event(sessions_config, factory, gateway):
    requests = []
    bus = NotificationBus()
    manager = SessionManager(sessions_config, bus, factory, gateway=gateway)
    dispatcher = WebhookDispatcher(
        WebhookService(gateway, transport=_transport([200] * 5, requests)), bus
    )
    created = await manager.create_session("Sales", "u1", webhook_url=URL)
    await bus.flush()
    await dispatcher.drain()

    await manager.destroy_session(created["id"])
    await bus.flush()
    await dispatcher.drain()

    envelopes = [json.loads(r.content) for r in requests]
    assert [e["event"] for e in envelopes] == [SESSION_STATUS, SESSION_DESTROYED]
    assert envelopes[-1]["sessionName"] == "Sales"
    assert envelopes[-1]["data"] == {"sessionId": created["id"]}
    assert created["id"] not in gateway.sessions
    assert gateway.webhook_events[-1]["event_type"] == SESSION_DESTROYED
    await manager.close()

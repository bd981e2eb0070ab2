import asyncio

import httpx

from supportdesk.shared.application.notifications import ChannelNotification
from supportdesk.shared.infrastructure.notifications import (
    BroadcastHub,
    CircuitBreaker,
    CircuitState,
    EmailClient,
    NotificationDispatcher,
    WebhookClient,
)


async def test_hub_delivers_to_channel_subscribers_only():
    hub = BroadcastHub()

    async with hub.subscribe("admin") as admin, hub.subscribe("dashboard") as dashboard:
        assert hub.subscriber_count("admin") == 1
        delivered = await hub.publish("admin", {"type": "SUPPORT_ALERT"})

        assert delivered == 1
        assert await asyncio.wait_for(admin.get(), timeout=1) == {"type": "SUPPORT_ALERT"}
        assert dashboard.empty()

    assert hub.subscriber_count("admin") == 0
    assert await hub.publish("admin", {"type": "late"}) == 0


async def test_hub_drops_oldest_message_for_slow_subscriber():
    hub = BroadcastHub(max_queue_size=2)

    async with hub.subscribe("support") as queue:
        for i in range(3):
            await hub.publish("support", {"n": i})

        assert [queue.get_nowait()["n"] for _ in range(2)] == [1, 2]


def test_circuit_breaker_opens_after_threshold():
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

    breaker.record_failure()
    assert breaker.allow_request()
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert not breaker.allow_request()

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED


def test_circuit_breaker_half_opens_after_timeout():
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
    breaker.record_failure()
    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.allow_request()


async def test_webhook_retries_then_succeeds():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(500 if len(attempts) == 1 else 200)

    client = WebhookClient(
        retry_base_delay=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    assert await client.send("https://hooks.example.com/x", {"text": "hi"}) is True
    assert len(attempts) == 2
    await client.close()


async def test_webhook_gives_up_after_max_retries():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = WebhookClient(
        max_retries=3,
        retry_base_delay=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    assert await client.send("https://hooks.example.com/x", {"text": "hi"}) is False
    await client.close()


async def test_email_client_posts_json():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(200, json={"id": "1"})

    client = EmailClient(
        api_url="https://mail.example.com/emails",
        api_key="secret",
        sender="support@example.com",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    assert await client.send("admin@company.com", "Support Alert: x", "<p>x</p>") is True
    request = sent[0]
    assert request.headers["Authorization"] == "Bearer secret"
    assert b'"to":["admin@company.com"]' in request.content.replace(b" ", b"")
    await client.close()


async def test_email_client_disabled_without_url():
    client = EmailClient(api_url="")
    assert not client.enabled
    assert await client.send("a@b.c", "s", "b") is False


async def test_dispatcher_reports_failures_without_raising():
    class ExplodingEmail(EmailClient):
        async def send(self, to, subject, html):
            raise RuntimeError("smtp on fire")

    hub = BroadcastHub()
    dispatcher = NotificationDispatcher(
        hub,
        webhook_client=WebhookClient(),
        email_client=ExplodingEmail(api_url="https://mail.example.com"),
    )

    assert await dispatcher.send_email("a@b.c", "s", "b") is False

    async with hub.subscribe("admin") as queue:
        notification = ChannelNotification(type="SUPPORT_ALERT", title="t", message="m")
        assert await dispatcher.send_to_channel("admin", notification) is True
        payload = queue.get_nowait()
        assert payload["type"] == "SUPPORT_ALERT"
        assert payload["id"] == notification.id

    await dispatcher.close()


def test_dispatcher_email_flag_follows_client():
    assert NotificationDispatcher(BroadcastHub(), email_client=EmailClient(api_url="")).email_enabled is False
    assert NotificationDispatcher(BroadcastHub(), email_client=EmailClient(api_url="https://m.example.com")).email_enabled is True

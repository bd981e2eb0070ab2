"""
Notification Delivery
=====================

Concrete delivery channels behind `INotificationDispatcher`:
- BroadcastHub: in-process pub/sub feeding live dashboard WebSockets
- WebhookClient: JSON webhooks (Slack-style) with retry and circuit breaker
- EmailClient: HTTP email API (Resend-compatible)
"""

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Set

import httpx

from supportdesk.config import settings
from supportdesk.shared.application.notifications import (
    ChannelNotification,
    INotificationDispatcher,
)
from supportdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class BroadcastHub:
    """
    In-process publish/subscribe hub.

    Each subscriber gets a bounded queue; a slow consumer loses its oldest
    messages instead of blocking publishers.
    """

    def __init__(self, max_queue_size: int = 100):
        self._max_queue_size = max_queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def publish(self, channel: str, message: Dict[str, Any]) -> int:
        """Deliver a message to every subscriber of a channel. Returns receiver count."""
        async with self._lock:
            queues = list(self._subscribers.get(channel, ()))

        for queue in queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(message)

        return len(queues)

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[asyncio.Queue]:
        """
        Subscribe to a channel for the lifetime of the context.

        Usage:
            async with hub.subscribe("admin") as queue:
                message = await queue.get()
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._subscribers[channel].add(queue)
        try:
            yield queue
        finally:
            async with self._lock:
                self._subscribers[channel].discard(queue)
                if not self._subscribers[channel]:
                    del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        """Number of live subscribers on a channel."""
        return len(self._subscribers.get(channel, ()))


class WebhookClient:
    """
    Webhook client with circuit breaker and retry logic.

    Handles POSTing structured payloads with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._timeout = timeout_seconds or settings.webhook_timeout_seconds
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def send(self, url: str, payload: Dict[str, Any]) -> bool:
        """
        POST payload to the webhook URL.

        Returns:
            True if delivered (2xx), False otherwise
        """
        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping webhook", extra={"url": url})
            return False

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info("Webhook delivered", extra={"url": url})
                    return True

                logger.warning(
                    "Webhook returned non-2xx",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Webhook delivery failed",
                    extra={"error": str(e), "attempt": attempt + 1, "url": url}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class EmailClient:
    """
    Sends HTML email through an HTTP email API.

    Speaks the Resend JSON shape (`from`, `to`, `subject`, `html`).
    Disabled when no API URL is configured.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._api_url = api_url if api_url is not None else settings.email_api_url
        self._api_key = api_key if api_key is not None else settings.email_api_key
        self._sender = sender or settings.email_from
        self._timeout = timeout_seconds or settings.email_timeout_seconds
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self._api_url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def send(self, to: str, subject: str, html: str) -> bool:
        """Send one email. Returns False when disabled or on failure."""
        if not self.enabled:
            logger.debug("Email API not configured, skipping email", extra={"to": to})
            return False

        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        client = await self._get_client()
        response = await client.post(
            self._api_url,
            json={"from": self._sender, "to": [to], "subject": subject, "html": html},
            headers=headers,
        )
        if response.is_success:
            logger.info("Email sent", extra={"to": to, "subject": subject})
            return True

        logger.warning(
            "Email API returned non-2xx",
            extra={"to": to, "status_code": response.status_code}
        )
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class NotificationDispatcher(INotificationDispatcher):
    """
    Multi-channel dispatcher composed from the hub, webhook and email clients.

    Failures are logged and reported as False; nothing propagates to the
    ticket or alert operation that triggered the notification.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        webhook_client: Optional[WebhookClient] = None,
        email_client: Optional[EmailClient] = None
    ):
        self.hub = hub
        self._webhook_client = webhook_client or WebhookClient()
        self._email_client = email_client or EmailClient()

    @property
    def email_enabled(self) -> bool:
        return self._email_client.enabled

    async def send_to_channel(self, channel: str, notification: ChannelNotification) -> bool:
        try:
            await self.hub.publish(channel, notification.to_dict())
            return True
        except Exception as e:
            logger.error(
                "Channel broadcast failed",
                extra={"channel": channel, "type": notification.type, "error": str(e)}
            )
            return False

    async def send_email(self, address: str, subject: str, body: str) -> bool:
        try:
            return await self._email_client.send(address, subject, body)
        except Exception as e:
            logger.error("Email delivery failed", extra={"to": address, "error": str(e)})
            return False

    async def send_webhook(self, url: str, payload: Dict[str, Any]) -> bool:
        try:
            return await self._webhook_client.send(url, payload)
        except Exception as e:
            logger.error("Webhook delivery failed", extra={"url": url, "error": str(e)})
            return False

    async def close(self) -> None:
        await self._webhook_client.close()
        await self._email_client.close()

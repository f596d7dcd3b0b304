"""Webhook subscriptions and signed, retried event delivery.

Delivery is at-least-once with a bounded number of attempts: each matching
subscription gets one Delivery record per triggered event, attempts are
retried with exponential backoff, and a delivery that never succeeds ends
in the failed state. Failures are recorded on the delivery, never raised
from trigger().
"""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Set

import httpx

from relay.core.http_client import create_http_client
from relay.core.logging import get_log_context, get_logger
from relay.core.retry import RetryPolicy
from relay.core.security import sign_payload, verify_signature
from relay.exceptions import InvalidConfigurationError

logger = get_logger(__name__)

WILDCARD_EVENT = "*"
SIGNATURE_HEADER = "X-Webhook-Signature"

_UPDATABLE_FIELDS = frozenset(("url", "events", "secret", "active"))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class DeliveryStatus(str, Enum):
    """Delivery lifecycle state."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class Subscription:
    """A registered webhook endpoint and the events it listens to."""

    id: str
    url: str
    events: Set[str]
    secret: Optional[str] = None
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    last_triggered_at: Optional[datetime] = None

    def matches(self, event: str) -> bool:
        """Active and listening to this event (or to every event)."""
        return self.active and (WILDCARD_EVENT in self.events or event in self.events)


@dataclass
class WebhookPayload:
    """Body of a webhook request."""

    event: str
    timestamp: datetime
    data: Any
    subscription_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "subscriptionId": self.subscription_id,
        }

    def serialize(self) -> bytes:
        """Exact bytes sent on the wire (and signed)."""
        return json.dumps(self.to_dict(), default=str, ensure_ascii=False).encode("utf-8")


@dataclass
class DeliveryResponse:
    """Outcome of the latest attempt. status_code is 0 when no response arrived."""

    status_code: int
    body: str


@dataclass
class Delivery:
    """Bookkeeping for one event sent to one subscription."""

    id: str
    subscription_id: str
    event: str
    payload: WebhookPayload
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    response: Optional[DeliveryResponse] = None


class WebhookObserver:
    """Receives dispatcher notifications.

    Subclass and override the hooks of interest. Hooks run synchronously;
    an exception raised by a hook is logged and does not affect delivery.
    """

    def on_subscription_created(self, subscription: Subscription) -> None:
        pass

    def on_subscription_updated(self, subscription: Subscription) -> None:
        pass

    def on_subscription_deleted(self, subscription: Subscription) -> None:
        pass

    def on_delivery_attempt_failed(self, delivery: Delivery, reason: str) -> None:
        pass

    def on_delivery_success(self, delivery: Delivery) -> None:
        pass

    def on_delivery_failed(self, delivery: Delivery) -> None:
        pass


@dataclass
class WebhookConfig:
    """Dispatcher configuration.

    Attributes:
        max_retries: Total delivery attempts per subscription and event
        retry_delay_ms: Delay after the first failed attempt; doubles each time
        timeout_ms: Per-request timeout
        user_agent: User-Agent header sent with every delivery
    """

    max_retries: int = 3
    retry_delay_ms: int = 1000
    timeout_ms: int = 5000
    user_agent: str = "relaykit-webhook/1.0"

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise InvalidConfigurationError("max_retries must be at least 1")
        if self.retry_delay_ms < 0:
            raise InvalidConfigurationError("retry_delay_ms must not be negative")
        if self.timeout_ms < 1:
            raise InvalidConfigurationError("timeout_ms must be a positive integer")


class WebhookDispatcher:
    """Fan events out to subscribed HTTP endpoints.

    Subscriptions matching an event are delivered to concurrently; attempts
    for a single subscription are strictly sequential.

    Example:
        >>> dispatcher = WebhookDispatcher(WebhookConfig(max_retries=2))
        >>> sub = dispatcher.subscribe("https://example.com/hook", ["thread.created"], "s3cret")
        >>> deliveries = await dispatcher.trigger("thread.created", {"threadId": "1"})
    """

    verify_signature = staticmethod(verify_signature)

    def __init__(
        self,
        config: Optional[WebhookConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        observers: Iterable[WebhookObserver] = (),
    ):
        """Initialize the dispatcher.

        Args:
            config: Retry, timeout and header settings
            http_client: Optional shared HTTP client; a short-lived client is
                created per trigger() call otherwise
            observers: Initial notification observers
        """
        self.config = config or WebhookConfig()
        self._http_client = http_client
        self._policy = RetryPolicy(
            max_attempts=self.config.max_retries,
            base_delay_ms=self.config.retry_delay_ms,
        )
        self._subscriptions: Dict[str, Subscription] = {}
        self._deliveries: Dict[str, Delivery] = {}
        self._observers: List[WebhookObserver] = list(observers)

    # --- Observers ---

    def add_observer(self, observer: WebhookObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: WebhookObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, hook: str, *args: Any) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, hook)(*args)
            except Exception:
                logger.exception(f"Webhook observer {observer!r} failed in {hook}")

    # --- Subscriptions ---

    def subscribe(
        self, url: str, events: Iterable[str], secret: Optional[str] = None
    ) -> Subscription:
        """Register an endpoint for a set of events ("*" matches every event).

        Raises:
            InvalidConfigurationError: If the URL is not http(s) or no event is given
        """
        event_set = set(events)
        self._validate(url, event_set)

        subscription = Subscription(id=_new_id(), url=url, events=event_set, secret=secret)
        self._subscriptions[subscription.id] = subscription
        logger.info(
            f"Webhook subscription created: {url} for {sorted(event_set)}",
            extra=get_log_context(subscription_id=subscription.id),
        )
        self._notify("on_subscription_created", subscription)
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        logger.info(
            "Webhook subscription deleted",
            extra=get_log_context(subscription_id=subscription_id),
        )
        self._notify("on_subscription_deleted", subscription)
        return True

    def update_subscription(
        self, subscription_id: str, **updates: Any
    ) -> Optional[Subscription]:
        """Merge updates into a subscription.

        Only url, events, secret and active may be updated.

        Returns:
            The updated subscription, or None if the id is unknown
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update subscription fields: {sorted(unknown)}")

        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return None

        if "events" in updates:
            updates["events"] = set(updates["events"])
        self._validate(
            updates.get("url", subscription.url),
            updates.get("events", subscription.events),
        )

        for name, value in updates.items():
            setattr(subscription, name, value)
        self._notify("on_subscription_updated", subscription)
        return subscription

    @staticmethod
    def _validate(url: str, events: Set[str]) -> None:
        try:
            scheme = httpx.URL(url).scheme
        except httpx.InvalidURL as e:
            raise InvalidConfigurationError(f"Invalid webhook URL: {url}") from e
        if scheme not in ("http", "https"):
            raise InvalidConfigurationError(f"Webhook URL must be http(s): {url}")
        if not events:
            raise InvalidConfigurationError("A subscription needs at least one event")

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(subscription_id)

    def get_subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    def get_subscriptions_for_event(self, event: str) -> List[Subscription]:
        return [sub for sub in self._subscriptions.values() if sub.matches(event)]

    # --- Delivery ---

    @asynccontextmanager
    async def _client_context(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        if self._http_client is not None:
            yield self._http_client
            return
        client = create_http_client()
        try:
            yield client
        finally:
            await client.aclose()

    async def trigger(self, event: str, data: Any) -> List[Delivery]:
        """Deliver an event to every active matching subscription.

        Returns once every subscription has finished its attempt sequence.

        Args:
            event: Event name, e.g. "thread.created"
            data: JSON-serializable event data

        Returns:
            One delivery record per matching subscription, in subscription order
        """
        subscriptions = self.get_subscriptions_for_event(event)
        if not subscriptions:
            logger.debug(f"No webhook subscriptions for event {event}")
            return []

        async with self._client_context() as client:
            deliveries = await asyncio.gather(
                *(self._deliver(client, sub, event, data) for sub in subscriptions)
            )
        return list(deliveries)

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        subscription: Subscription,
        event: str,
        data: Any,
    ) -> Delivery:
        payload = WebhookPayload(
            event=event,
            timestamp=_utcnow(),
            data=data,
            subscription_id=subscription.id,
        )
        delivery = Delivery(
            id=_new_id(),
            subscription_id=subscription.id,
            event=event,
            payload=payload,
        )
        self._deliveries[delivery.id] = delivery
        body = payload.serialize()

        for attempt in range(self._policy.max_attempts):
            delivery.attempts = attempt + 1
            delivery.last_attempt_at = _utcnow()
            context = get_log_context(
                event=event,
                subscription_id=subscription.id,
                delivery_id=delivery.id,
                attempt=delivery.attempts,
            )

            try:
                delivery.response = await self._send(client, subscription, body)
            except httpx.HTTPError as e:
                delivery.response = DeliveryResponse(status_code=0, body=str(e))
                reason = f"{type(e).__name__}: {e}"
            except Exception as e:
                # Any other send error counts as a failed attempt
                logger.exception(
                    f"Unexpected error delivering webhook to {subscription.url}",
                    extra=context,
                )
                delivery.response = DeliveryResponse(status_code=0, body=str(e))
                reason = f"{type(e).__name__}: {e}"
            else:
                if 200 <= delivery.response.status_code < 300:
                    delivery.status = DeliveryStatus.SUCCESS
                    subscription.last_triggered_at = _utcnow()
                    logger.info(
                        f"Webhook delivered to {subscription.url}",
                        extra={**context, "status_code": delivery.response.status_code},
                    )
                    self._notify("on_delivery_success", delivery)
                    return delivery
                reason = f"HTTP {delivery.response.status_code}"

            logger.warning(
                f"Webhook attempt {delivery.attempts}/{self._policy.max_attempts} "
                f"to {subscription.url} failed: {reason}",
                extra=context,
            )
            self._notify("on_delivery_attempt_failed", delivery, reason)

            if self._policy.should_retry(attempt):
                await asyncio.sleep(self._policy.calculate_delay(attempt) / 1000)

        delivery.status = DeliveryStatus.FAILED
        logger.error(
            f"Webhook delivery to {subscription.url} failed after "
            f"{delivery.attempts} attempts",
            extra=get_log_context(
                event=event, subscription_id=subscription.id, delivery_id=delivery.id
            ),
        )
        self._notify("on_delivery_failed", delivery)
        return delivery

    async def _send(
        self, client: httpx.AsyncClient, subscription: Subscription, body: bytes
    ) -> DeliveryResponse:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
        }
        if subscription.secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, subscription.secret)

        resp = await client.post(
            subscription.url,
            content=body,
            headers=headers,
            timeout=self.config.timeout_ms / 1000,
        )
        return DeliveryResponse(status_code=resp.status_code, body=resp.text)

    # --- Delivery records ---

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        return self._deliveries.get(delivery_id)

    def get_deliveries_for_subscription(self, subscription_id: str) -> List[Delivery]:
        return [d for d in self._deliveries.values() if d.subscription_id == subscription_id]

    def clean_deliveries(self, older_than: datetime) -> int:
        """Drop delivery records whose last attempt is older than a cutoff.

        Args:
            older_than: Timezone-aware cutoff

        Returns:
            Number of records removed
        """
        stale = [
            delivery_id
            for delivery_id, delivery in self._deliveries.items()
            if delivery.last_attempt_at is not None and delivery.last_attempt_at < older_than
        ]
        for delivery_id in stale:
            del self._deliveries[delivery_id]
        return len(stale)

    def stats(self) -> Dict[str, int]:
        """Get subscription and delivery counts."""
        deliveries = list(self._deliveries.values())
        return {
            "subscriptions": len(self._subscriptions),
            "active_subscriptions": sum(1 for s in self._subscriptions.values() if s.active),
            "deliveries": len(deliveries),
            "successful_deliveries": sum(
                1 for d in deliveries if d.status is DeliveryStatus.SUCCESS
            ),
            "failed_deliveries": sum(1 for d in deliveries if d.status is DeliveryStatus.FAILED),
        }

"""Services package.

This package provides:
- Webhook subscriptions and delivery (WebhookDispatcher)
- The resilient client facade (ResilientClient)
"""

from relay.services.resilient_client import (
    DEFAULT_OPERATIONS,
    OperationKind,
    OperationPolicy,
    ResilientClient,
)
from relay.services.webhooks import (
    Delivery,
    DeliveryResponse,
    DeliveryStatus,
    SIGNATURE_HEADER,
    Subscription,
    WebhookConfig,
    WebhookDispatcher,
    WebhookObserver,
    WebhookPayload,
)

__all__ = [
    # Resilient client
    "DEFAULT_OPERATIONS",
    "OperationKind",
    "OperationPolicy",
    "ResilientClient",
    # Webhooks
    "Delivery",
    "DeliveryResponse",
    "DeliveryStatus",
    "SIGNATURE_HEADER",
    "Subscription",
    "WebhookConfig",
    "WebhookDispatcher",
    "WebhookObserver",
    "WebhookPayload",
]

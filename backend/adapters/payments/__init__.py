"""Payment provider adapters."""

from .stripe_adapter import (
    StripeAPIError,
    StripeAuthError,
    StripeGateway,
    StripeGatewayError,
    StripeWebhookError,
    create_stripe_gateway,
)
from .stripe_events import (
    CheckoutSessionCompleted,
    InvoicePaymentEvent,
    MalformedEvent,
    PaymentIntentClosed,
    PaymentIntentSucceeded,
    StripeEvent,
    StripeEventType,
    StripePaymentIntent,
    StripeSubscription,
    SubscriptionChanged,
    UnknownEvent,
    parse_event,
)

__all__ = [
    "StripeGateway",
    "StripeGatewayError",
    "StripeAPIError",
    "StripeAuthError",
    "StripeWebhookError",
    "create_stripe_gateway",
    "StripeEvent",
    "StripeEventType",
    "StripeSubscription",
    "StripePaymentIntent",
    "CheckoutSessionCompleted",
    "PaymentIntentSucceeded",
    "PaymentIntentClosed",
    "SubscriptionChanged",
    "InvoicePaymentEvent",
    "UnknownEvent",
    "MalformedEvent",
    "parse_event",
]

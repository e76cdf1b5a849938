"""
Typed Stripe webhook events.

Stripe delivers loosely-typed JSON. ``parse_event`` validates it once at the
boundary and returns one variant of a small tagged union, so handlers work
with explicit fields instead of probing nested metadata dictionaries. A
missing correlation field is ``None``; it is never guessed.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional, Union


class StripeEventType:
    """Stripe event types the webhook handles."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def timestamp_to_datetime(value: Any) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def object_id(value: Any) -> Optional[str]:
    """Reduce an id-or-expanded-object reference to its id."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        ref = value.get("id")
        return ref if isinstance(ref, str) and ref else None
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def metadata_value(metadata: Any, key: str) -> Optional[str]:
    if not isinstance(metadata, Mapping):
        return None
    value = metadata.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class StripeSubscription:
    """Stripe subscription fields the billing service relies on."""

    id: str
    customer_id: Optional[str]
    status: str
    metadata: dict[str, str]
    current_period_end: Optional[datetime]
    interval: Optional[str]
    price_id: Optional[str]

    @classmethod
    def from_api_response(cls, data: Mapping[str, Any]) -> "StripeSubscription":
        """Create subscription from an API object or webhook payload."""
        items = data.get("items")
        item_list = items.get("data") if isinstance(items, Mapping) else None
        first_item = _mapping(item_list[0] if isinstance(item_list, list) and item_list else None)
        price = _mapping(first_item.get("price"))
        recurring = _mapping(price.get("recurring"))

        # Newer API versions moved the billing period onto the subscription items
        period_end = data.get("current_period_end")
        if period_end is None:
            period_end = first_item.get("current_period_end")

        metadata = data.get("metadata")
        if not isinstance(metadata, Mapping):
            metadata = {}
        return cls(
            id=_optional_str(data.get("id")) or "",
            customer_id=object_id(data.get("customer")),
            status=_optional_str(data.get("status")) or "",
            metadata={str(k): str(v) for k, v in metadata.items() if v is not None},
            current_period_end=timestamp_to_datetime(period_end),
            interval=_optional_str(recurring.get("interval")),
            price_id=_optional_str(price.get("id")),
        )

    @property
    def subscription_type(self) -> Optional[str]:
        return metadata_value(self.metadata, "subscription_type")

    @property
    def user_id(self) -> Optional[str]:
        return metadata_value(self.metadata, "user_id")


@dataclass(frozen=True)
class StripePaymentIntent:
    """Stripe payment intent fields used for one-time purchases."""

    id: str
    status: str
    metadata: dict[str, str]

    @classmethod
    def from_api_response(cls, data: Mapping[str, Any]) -> "StripePaymentIntent":
        metadata = data.get("metadata")
        if not isinstance(metadata, Mapping):
            metadata = {}
        return cls(
            id=_optional_str(data.get("id")) or "",
            status=_optional_str(data.get("status")) or "",
            metadata={str(k): str(v) for k, v in metadata.items() if v is not None},
        )

    @property
    def subscription_type(self) -> Optional[str]:
        return metadata_value(self.metadata, "subscription_type")

    @property
    def user_id(self) -> Optional[str]:
        return metadata_value(self.metadata, "user_id")


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BaseEvent:
    event_id: Optional[str]
    event_type: str
    created: Optional[datetime]


@dataclass(frozen=True)
class CheckoutSessionCompleted(BaseEvent):
    session_id: Optional[str]
    mode: Optional[str]  # payment | subscription | setup
    user_id: Optional[str]
    payment_intent_id: Optional[str]
    subscription_id: Optional[str]


@dataclass(frozen=True)
class PaymentIntentSucceeded(BaseEvent):
    payment_intent: StripePaymentIntent


@dataclass(frozen=True)
class PaymentIntentClosed(BaseEvent):
    """A one-time payment that failed or was canceled."""

    payment_intent_id: Optional[str]
    outcome: str  # failed | canceled
    failure_message: Optional[str]


@dataclass(frozen=True)
class SubscriptionChanged(BaseEvent):
    action: str  # created | updated | deleted
    subscription: StripeSubscription


@dataclass(frozen=True)
class InvoicePaymentEvent(BaseEvent):
    invoice_id: Optional[str]
    subscription_id: Optional[str]
    succeeded: bool


@dataclass(frozen=True)
class UnknownEvent(BaseEvent):
    """An event type the webhook does not handle."""


@dataclass(frozen=True)
class MalformedEvent(BaseEvent):
    """A handled event type whose payload is missing required structure."""

    reason: str


StripeEvent = Union[
    CheckoutSessionCompleted,
    PaymentIntentSucceeded,
    PaymentIntentClosed,
    SubscriptionChanged,
    InvoicePaymentEvent,
    UnknownEvent,
    MalformedEvent,
]

_SUBSCRIPTION_ACTIONS = {
    StripeEventType.SUBSCRIPTION_CREATED: "created",
    StripeEventType.SUBSCRIPTION_UPDATED: "updated",
    StripeEventType.SUBSCRIPTION_DELETED: "deleted",
}

_HANDLED_TYPES = {
    StripeEventType.CHECKOUT_SESSION_COMPLETED,
    StripeEventType.PAYMENT_INTENT_SUCCEEDED,
    StripeEventType.PAYMENT_INTENT_FAILED,
    StripeEventType.PAYMENT_INTENT_CANCELED,
    StripeEventType.INVOICE_PAYMENT_SUCCEEDED,
    StripeEventType.INVOICE_PAYMENT_FAILED,
    *_SUBSCRIPTION_ACTIONS,
}


class EventPayloadError(ValueError):
    """Raised when a payload is not a Stripe event at all."""


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    subscription_id = object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under parent.subscription_details
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") if isinstance(parent, Mapping) else None
    if isinstance(details, Mapping):
        return object_id(details.get("subscription"))
    return None


def parse_event(payload: Any) -> StripeEvent:
    """
    Parse a decoded Stripe event payload into a typed event.

    Args:
        payload: Decoded JSON body of the webhook request

    Returns:
        One StripeEvent variant. Unhandled types become UnknownEvent and
        handled types without a usable ``data.object`` become MalformedEvent.

    Raises:
        EventPayloadError: If the payload is not an object with a ``type``
    """
    if not isinstance(payload, Mapping):
        raise EventPayloadError("Event payload must be a JSON object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventPayloadError("Event payload has no type")

    base = {
        "event_id": payload.get("id") if isinstance(payload.get("id"), str) else None,
        "event_type": event_type,
        "created": timestamp_to_datetime(payload.get("created")),
    }

    if event_type not in _HANDLED_TYPES:
        return UnknownEvent(**base)

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        return MalformedEvent(**base, reason="Missing data.object")

    if event_type == StripeEventType.CHECKOUT_SESSION_COMPLETED:
        user_id = _optional_str(obj.get("client_reference_id")) or metadata_value(obj.get("metadata"), "userId")
        return CheckoutSessionCompleted(
            **base,
            session_id=_optional_str(obj.get("id")),
            mode=_optional_str(obj.get("mode")),
            user_id=str(user_id) if user_id else None,
            payment_intent_id=object_id(obj.get("payment_intent")),
            subscription_id=object_id(obj.get("subscription")),
        )

    if event_type == StripeEventType.PAYMENT_INTENT_SUCCEEDED:
        return PaymentIntentSucceeded(
            **base,
            payment_intent=StripePaymentIntent.from_api_response(obj),
        )

    if event_type in (StripeEventType.PAYMENT_INTENT_FAILED, StripeEventType.PAYMENT_INTENT_CANCELED):
        last_error = obj.get("last_payment_error") or {}
        return PaymentIntentClosed(
            **base,
            payment_intent_id=_optional_str(obj.get("id")),
            outcome="failed" if event_type == StripeEventType.PAYMENT_INTENT_FAILED else "canceled",
            failure_message=last_error.get("message") if isinstance(last_error, Mapping) else None,
        )

    if event_type in _SUBSCRIPTION_ACTIONS:
        return SubscriptionChanged(
            **base,
            action=_SUBSCRIPTION_ACTIONS[event_type],
            subscription=StripeSubscription.from_api_response(obj),
        )

    return InvoicePaymentEvent(
        **base,
        invoice_id=_optional_str(obj.get("id")),
        subscription_id=_invoice_subscription_id(obj),
        succeeded=event_type == StripeEventType.INVOICE_PAYMENT_SUCCEEDED,
    )

"""
Stripe webhook processing.

Maps typed Stripe events to profile mutations. Business failures (missing
user id, unknown event type, Stripe lookup errors) come back as a
``WebhookResult`` with ``processed=False`` so the endpoint still answers
200 and Stripe does not retry an event that can never succeed. Database
faults propagate to the endpoint, which answers 500 so Stripe retries.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import StripeGateway, StripeGatewayError
from adapters.payments.stripe_events import (
    CheckoutSessionCompleted,
    InvoicePaymentEvent,
    MalformedEvent,
    PaymentIntentClosed,
    PaymentIntentSucceeded,
    StripeEvent,
    StripeSubscription,
    SubscriptionChanged,
    UnknownEvent,
)
from core.domain.subscription import (
    STRIPE_WEB_SOURCE,
    SubscriptionTier,
    derive_subscription,
    utcnow,
)
from infrastructure.database.models import StripeWebhookEvent
from services.profile_updates import ProfileNotFoundError, update_user_profile

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = "month"


@dataclass(frozen=True)
class WebhookResult:
    """Outcome of processing one webhook event."""

    processed: bool
    error: Optional[str] = None
    duplicate: bool = False

    @classmethod
    def ok(cls) -> "WebhookResult":
        return cls(processed=True)

    @classmethod
    def failed(cls, reason: str) -> "WebhookResult":
        return cls(processed=False, error=reason)

    @classmethod
    def already_processed(cls) -> "WebhookResult":
        return cls(processed=True, duplicate=True)


def _subscription_fields(subscription: StripeSubscription, status: str) -> dict[str, Any]:
    """Fields for a subscription-billed plan: tier from the tag, expiry from the billing period."""
    derived = derive_subscription(
        subscription.subscription_type or "",
        billing_period_end=subscription.current_period_end,
    )
    return {
        "subscription_tier": derived.tier.value,
        "subscription_status": status,
        "subscription_plan_type": subscription.interval or DEFAULT_INTERVAL,
        "subscription_expires_at": derived.expires_at,
        "subscription_source": STRIPE_WEB_SOURCE,
    }


def _one_time_fields(tag: str) -> dict[str, Any]:
    """Fields for a one-time purchase: fixed duration from the tag."""
    now = utcnow()
    derived = derive_subscription(tag, now=now)
    return {
        "subscription_tier": derived.tier.value,
        "subscription_status": "active",
        "subscription_plan_type": derived.plan_type,
        "subscription_started_at": now,
        "subscription_expires_at": derived.expires_at,
        "subscription_source": STRIPE_WEB_SOURCE,
    }


class StripeWebhookProcessor:
    """Applies verified Stripe events to user profiles."""

    def __init__(self, db: AsyncSession, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self._handlers: dict[type, Callable[[Any], Awaitable[WebhookResult]]] = {
            CheckoutSessionCompleted: self._handle_checkout_session_completed,
            PaymentIntentSucceeded: self._handle_payment_intent_succeeded,
            PaymentIntentClosed: self._handle_payment_intent_closed,
            SubscriptionChanged: self._handle_subscription_changed,
            InvoicePaymentEvent: self._handle_invoice_payment,
            MalformedEvent: self._handle_malformed,
            UnknownEvent: self._handle_unknown,
        }

    async def process(self, event: StripeEvent, payload: Optional[dict] = None) -> WebhookResult:
        """
        Process a verified event and record it in the webhook ledger.

        Args:
            event: Parsed Stripe event
            payload: Raw decoded event body, stored in the ledger

        Returns:
            WebhookResult. An event id already recorded as processed is
            acknowledged without being applied again.
        """
        log_extra = {"event_id": event.event_id, "event_type": event.event_type}

        if event.event_id:
            existing = await self.db.get(StripeWebhookEvent, event.event_id)
            if existing is not None and existing.processed:
                logger.info("Duplicate webhook event %s, skipping", event.event_id, extra=log_extra)
                return WebhookResult.already_processed()

        logger.info("Processing webhook event %s (%s)", event.event_id, event.event_type, extra=log_extra)

        handler = self._handlers[type(event)]
        try:
            result = await handler(event)
        except (StripeGatewayError, ProfileNotFoundError) as e:
            logger.error("Webhook %s failed: %s", event.event_type, e, extra=log_extra)
            await self.db.rollback()
            result = WebhookResult.failed(str(e))

        if event.event_id:
            await self._record(event, payload, result)

        await self.db.commit()

        logger.info(
            "Webhook event %s processed=%s error=%s",
            event.event_id,
            result.processed,
            result.error,
            extra=log_extra,
        )
        return result

    async def _record(self, event: StripeEvent, payload: Optional[dict], result: WebhookResult) -> None:
        row = await self.db.get(StripeWebhookEvent, event.event_id)
        if row is None:
            row = StripeWebhookEvent(
                id=event.event_id,
                type=event.event_type,
                payload=payload or {},
            )
            self.db.add(row)
        row.processed = result.processed
        row.processed_at = utcnow() if result.processed else None
        row.error = result.error
        await self.db.flush()

    # ── Checkout / one-time payments ─────────────────────────────────────────

    async def _handle_checkout_session_completed(self, event: CheckoutSessionCompleted) -> WebhookResult:
        if not event.user_id:
            logger.error("No user ID found in checkout session %s", event.session_id)
            return WebhookResult.failed("No user ID found")

        if event.mode == "payment":
            if not event.payment_intent_id:
                return WebhookResult.failed("No payment intent found")

            payment_intent = await self.gateway.retrieve_payment_intent(event.payment_intent_id)
            tag = payment_intent.subscription_type
            if not tag:
                logger.error("No subscription type on payment intent %s", payment_intent.id)
                return WebhookResult.failed("No subscription type found")

            await update_user_profile(
                self.db,
                event.user_id,
                _one_time_fields(tag),
                "checkout session completed (one-time)",
            )
            return WebhookResult.ok()

        if event.mode == "subscription" and event.subscription_id:
            subscription = await self.gateway.retrieve_subscription(event.subscription_id)
            fields = _subscription_fields(subscription, subscription.status)
            fields["subscription_started_at"] = utcnow()

            await update_user_profile(
                self.db,
                event.user_id,
                fields,
                "checkout session completed (subscription)",
            )
            return WebhookResult.ok()

        logger.warning("Unknown checkout session mode: %s", event.mode)
        return WebhookResult.failed(f"Unknown session mode: {event.mode}")

    async def _handle_payment_intent_succeeded(self, event: PaymentIntentSucceeded) -> WebhookResult:
        payment_intent = event.payment_intent
        user_id = payment_intent.user_id
        tag = payment_intent.subscription_type

        if not user_id or not tag:
            logger.error("Missing required metadata on payment intent %s", payment_intent.id)
            return WebhookResult.failed("Missing required metadata")

        await update_user_profile(self.db, user_id, _one_time_fields(tag), "payment intent succeeded")
        return WebhookResult.ok()

    async def _handle_payment_intent_closed(self, event: PaymentIntentClosed) -> WebhookResult:
        # No entitlement was granted, so there is nothing to revoke
        logger.info(
            "Payment intent %s %s: %s",
            event.payment_intent_id,
            event.outcome,
            event.failure_message or "no message",
        )
        return WebhookResult.ok()

    # ── Subscriptions ────────────────────────────────────────────────────────

    async def _handle_subscription_changed(self, event: SubscriptionChanged) -> WebhookResult:
        subscription = event.subscription
        user_id = subscription.user_id
        if not user_id:
            logger.error("No user ID found in metadata of subscription %s", subscription.id)
            return WebhookResult.failed("No user ID found")

        logger.info(
            "Subscription %s %s: status=%s",
            subscription.id,
            event.action,
            subscription.status,
        )

        if event.action == "created":
            fields = _subscription_fields(subscription, "active")
            fields["subscription_started_at"] = utcnow()
        elif event.action == "deleted":
            fields = {
                "subscription_tier": SubscriptionTier.FREE.value,
                "subscription_status": "canceled",
                "subscription_expires_at": utcnow(),
                "subscription_source": STRIPE_WEB_SOURCE,
            }
        elif subscription.status in ("canceled", "unpaid"):
            fields = {
                "subscription_tier": SubscriptionTier.FREE.value,
                "subscription_status": subscription.status,
                "subscription_expires_at": utcnow(),
                "subscription_source": STRIPE_WEB_SOURCE,
            }
        elif subscription.status in ("active", "trialing"):
            fields = _subscription_fields(subscription, subscription.status)
        else:
            # past_due, incomplete, paused: Stripe is still retrying, keep the tier
            fields = {
                "subscription_status": subscription.status,
                "subscription_source": STRIPE_WEB_SOURCE,
            }

        applied = await update_user_profile(
            self.db,
            user_id,
            fields,
            f"subscription {event.action}",
            event_at=event.created,
        )
        if not applied:
            return WebhookResult.failed("stale event")
        return WebhookResult.ok()

    # ── Invoices ─────────────────────────────────────────────────────────────

    async def _handle_invoice_payment(self, event: InvoicePaymentEvent) -> WebhookResult:
        if not event.subscription_id:
            logger.info("Invoice %s has no subscription, ignoring", event.invoice_id)
            return WebhookResult.failed("No subscription ID found")

        subscription = await self.gateway.retrieve_subscription(event.subscription_id)
        user_id = subscription.user_id
        if not user_id:
            logger.error("No user ID found in metadata of subscription %s", subscription.id)
            return WebhookResult.failed("No user ID found")

        if event.succeeded:
            fields = _subscription_fields(subscription, "active")
            context = "invoice payment succeeded"
        else:
            fields = {
                "subscription_status": "past_due",
                "subscription_source": STRIPE_WEB_SOURCE,
            }
            context = "invoice payment failed"

        await update_user_profile(self.db, user_id, fields, context)
        return WebhookResult.ok()

    # ── Fallbacks ────────────────────────────────────────────────────────────

    async def _handle_malformed(self, event: MalformedEvent) -> WebhookResult:
        logger.error("Malformed %s event: %s", event.event_type, event.reason)
        return WebhookResult.failed(event.reason)

    async def _handle_unknown(self, event: UnknownEvent) -> WebhookResult:
        logger.info("Unhandled event type: %s", event.event_type)
        return WebhookResult.failed(f"Unhandled event type: {event.event_type}")

"""
Stripe billing adapter.

Wraps the Stripe SDK for the calls the billing service makes: webhook
verification, subscription and payment intent lookups, and the
customer-by-email search the reconciler uses. The adapter is constructed
explicitly and injected, and passes its API key on every request instead
of setting the SDK's global key.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Optional

import stripe

from infrastructure.config.settings import settings

from .stripe_events import (
    EventPayloadError,
    StripeEvent,
    StripePaymentIntent,
    StripeSubscription,
    parse_event,
)

logger = logging.getLogger(__name__)


# Custom Exceptions
class StripeGatewayError(Exception):
    """Base exception for Stripe adapter errors."""

    pass


class StripeAPIError(StripeGatewayError):
    """Raised when a Stripe API call fails."""

    pass


class StripeAuthError(StripeGatewayError):
    """Raised when the Stripe secret key is not configured."""

    pass


class StripeWebhookError(StripeGatewayError):
    """Raised when webhook verification or payload parsing fails."""

    pass


class StripeGateway:
    """
    Stripe API adapter for subscription billing.

    All SDK calls are blocking, so they run on a worker thread to keep the
    event loop free while Stripe responds.
    """

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        tolerance: int | None = None,
    ):
        """
        Initialize Stripe adapter.

        Args:
            api_key: Stripe secret key
            webhook_secret: Webhook signing secret (whsec_...). When empty,
                signature verification is skipped (development only).
            tolerance: Maximum age of a signed webhook in seconds
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance if tolerance is not None else 300

        if not self.api_key:
            logger.warning("Stripe secret key not configured. Set STRIPE_SECRET_KEY in settings.")

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any) -> Any:
        """
        Run a Stripe SDK call on a worker thread.

        Raises:
            StripeAuthError: If no secret key is configured
            StripeAPIError: If the API call fails
        """
        if not self.api_key:
            raise StripeAuthError("Stripe secret key not configured. Set STRIPE_SECRET_KEY in settings.")

        try:
            result = await asyncio.to_thread(fn, *args, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error("Stripe API error during %s: %s", operation, e.user_message or str(e))
            raise StripeAPIError(f"{operation} failed: {e.user_message or e}") from e

        # StripeObject is not a Mapping; hand plain dicts to the payload parsers
        return result.to_dict() if isinstance(result, stripe.StripeObject) else result

    # ── Webhooks ─────────────────────────────────────────────────────────────

    def construct_event(self, payload: bytes, signature: str | None) -> StripeEvent:
        """
        Verify a webhook delivery and parse it into a typed event.

        Args:
            payload: Raw request body
            signature: Value of the Stripe-Signature header

        Returns:
            Parsed StripeEvent

        Raises:
            StripeWebhookError: If the signature is missing or invalid, or the
                body is not a Stripe event
        """
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StripeWebhookError("Failed to parse request body.") from e

        if self.webhook_secret:
            if not signature:
                raise StripeWebhookError("No signature found")
            try:
                stripe.WebhookSignature.verify_header(
                    body, signature, self.webhook_secret, self.tolerance
                )
            except stripe.SignatureVerificationError as e:
                logger.warning("Webhook signature verification failed: %s", e)
                raise StripeWebhookError(f"Webhook signature verification failed: {e}") from e
            logger.info("Webhook signature verified successfully")
        else:
            logger.warning(
                "STRIPE_WEBHOOK_SECRET not set. Skipping signature verification. THIS IS INSECURE."
            )

        try:
            return parse_event(json.loads(body))
        except (json.JSONDecodeError, EventPayloadError) as e:
            logger.error("Failed to parse webhook body: %s", e)
            raise StripeWebhookError("Failed to parse request body.") from e

    # ── Lookups ──────────────────────────────────────────────────────────────

    async def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        """
        Get subscription by ID.

        Raises:
            StripeAPIError: If API request fails
        """
        logger.info("Fetching subscription %s", subscription_id)
        data = await self._call(
            "retrieve subscription", stripe.Subscription.retrieve, subscription_id
        )
        return StripeSubscription.from_api_response(data)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> StripePaymentIntent:
        """
        Get payment intent by ID.

        Raises:
            StripeAPIError: If API request fails
        """
        logger.info("Fetching payment intent %s", payment_intent_id)
        data = await self._call(
            "retrieve payment intent", stripe.PaymentIntent.retrieve, payment_intent_id
        )
        return StripePaymentIntent.from_api_response(data)

    async def find_active_subscription(self, email: str) -> Optional[StripeSubscription]:
        """
        Find the most recent active subscription for a customer email.

        Email is the join key between profiles and Stripe customers; the
        first customer Stripe returns for the address is used.

        Returns:
            The first active subscription, or None when the customer or an
            active subscription does not exist

        Raises:
            StripeAPIError: If API request fails
        """
        customers = await self._call("list customers", stripe.Customer.list, email=email, limit=1)
        customer_list = customers.get("data") or []
        if not customer_list:
            logger.info("No Stripe customer found for email")
            return None

        customer_id = customer_list[0].get("id")
        subscriptions = await self._call(
            "list subscriptions",
            stripe.Subscription.list,
            customer=customer_id,
            status="active",
            limit=10,
        )
        subscription_list = subscriptions.get("data") or []
        if not subscription_list:
            logger.info("No active Stripe subscriptions for customer %s", customer_id)
            return None

        return StripeSubscription.from_api_response(subscription_list[0])


# Factory function for easy instantiation
def create_stripe_gateway(
    api_key: str | None = None,
    webhook_secret: str | None = None,
) -> StripeGateway:
    """
    Create a Stripe gateway from explicit values or settings.

    Args:
        api_key: Stripe secret key (defaults to settings)
        webhook_secret: Webhook signing secret (defaults to settings)

    Returns:
        StripeGateway instance
    """
    return StripeGateway(
        api_key=api_key or settings.stripe_secret_key,
        webhook_secret=webhook_secret or settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance_seconds,
    )

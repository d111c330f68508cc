"""Stripe API access, constructed once at startup and injected into handlers."""

import asyncio
import json
import logging
from typing import Any

import stripe

logger = logging.getLogger(__name__)


class StripeProcessor:
    """Thin wrapper over the Stripe SDK bound to one account's keys.

    The SDK is synchronous; network calls run in a worker thread so the
    event loop keeps serving other requests.
    """

    def __init__(self, secret_key: str, webhook_secret: str):
        if not secret_key:
            raise ValueError("stripe secret key not configured")
        if not webhook_secret:
            raise ValueError("stripe webhook secret not configured")
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    async def create_checkout_session(self, **params: Any) -> stripe.checkout.Session:
        """Create a Checkout Session. Raises stripe.StripeError on API errors."""
        return await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=self._secret_key,
            **params,
        )

    async def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> stripe.billing_portal.Session:
        """Create a Billing Portal session for a customer."""
        return await asyncio.to_thread(
            stripe.billing_portal.Session.create,
            api_key=self._secret_key,
            customer=customer_id,
            return_url=return_url,
        )

    def construct_event(self, payload: bytes, sig_header: str) -> dict:
        """Verify a webhook signature and decode the event.

        Args:
            payload: Raw request body, exactly as received
            sig_header: Stripe-Signature header value

        Returns:
            The event as a plain dict

        Raises:
            ValueError: If the payload is not UTF-8 JSON
            stripe.SignatureVerificationError: If the signature does not match
        """
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            text,
            sig_header,
            self._webhook_secret,
            stripe.Webhook.DEFAULT_TOLERANCE,
        )
        event = json.loads(text)
        if not isinstance(event, dict):
            raise ValueError("Webhook payload is not a JSON object")
        return event

"""Stripe webhook handler and event processing."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import stripe
from aiohttp import web

from healtone.db.models import PaymentType, Plan, SubscriptionStatus
from healtone.db.store import CheckoutCompletion, SubscriptionStore
from healtone.payments.checkout import TRIAL_PERIOD_DAYS
from healtone.payments.processor import StripeProcessor

logger = logging.getLogger(__name__)

# Signature failures may be forgery attempts; kept apart from operational errors
security_logger = logging.getLogger(f"{__name__}.security")

STRIPE_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIAL,
    "active": SubscriptionStatus.ACTIVE,
}


class WebhookPayloadError(ValueError):
    """A verified event that lacks the data needed to apply it."""


async def handle_webhook(
    payload: bytes,
    sig_header: str,
    processor: StripeProcessor,
    store: SubscriptionStore,
) -> web.Response:
    """Handle and verify Stripe webhook events.

    Verifies webhook signature, routes events to appropriate handlers,
    and returns appropriate HTTP responses. Nothing touches the store
    before the signature has been verified.

    Args:
        payload: Raw webhook payload bytes
        sig_header: Stripe-Signature header value
        processor: Stripe access used for signature verification
        store: Subscription datastore

    Returns:
        aiohttp.web.Response (200 acknowledged, 400 rejected, 500 retry later)
    """
    try:
        event = processor.construct_event(payload, sig_header)
    except ValueError as e:
        security_logger.warning(f"Invalid webhook payload: {e}")
        return web.Response(status=400, text="Invalid payload")
    except stripe.SignatureVerificationError as e:
        security_logger.warning(f"Webhook signature verification failed: {e}")
        return web.Response(status=400, text="Invalid signature")

    event_type = event.get("type")
    event_id = event.get("id")
    logger.info(f"Received webhook {event_id}: {event_type}")

    try:
        if event_type == "checkout.session.completed":
            await _handle_checkout_completed(event, store)
        elif event_type == "customer.subscription.updated":
            await _handle_subscription_updated(event, store)
        elif event_type == "customer.subscription.deleted":
            await _handle_subscription_deleted(event, store)
        elif event_type == "invoice.payment_succeeded":
            await _handle_invoice_payment_succeeded(event, store)
        elif event_type == "invoice.payment_failed":
            await _handle_invoice_payment_failed(event, store)
        else:
            # Unknown event type - acknowledge but don't process
            logger.info(f"Unhandled event type: {event_type}")

    except WebhookPayloadError as e:
        logger.error(f"Cannot apply webhook {event_id} ({event_type}): {e}")
        return web.Response(status=400, text=str(e))

    except Exception as e:
        logger.exception(f"Error processing webhook {event_id} ({event_type}): {e}")
        # Return 500 so Stripe will retry
        return web.Response(status=500, text="Internal error")

    return web.json_response({"received": True})


def _event_object(event: dict) -> dict:
    obj = (event.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise WebhookPayloadError("event has no data.object")
    return obj


def _event_time(event: dict) -> datetime:
    """Creation time of the event.

    Every timestamp written to a profile derives from it, so replaying an
    event writes identical values. It also orders concurrent updates.
    """
    created = event.get("created")
    if created is None:
        raise WebhookPayloadError("event has no created timestamp")
    return datetime.fromtimestamp(created, tz=timezone.utc)


def _expandable_id(value) -> Optional[str]:
    """Stripe references are either an ID string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Subscription behind an invoice, across old and new API layouts."""
    subscription_id = _expandable_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _expandable_id(details.get("subscription"))


async def _handle_checkout_completed(event: dict, store: SubscriptionStore) -> None:
    """Handle checkout.session.completed event.

    Grants the purchased tier and appends the payment row. The plan must
    come from session metadata stamped at checkout creation; it is never
    inferred from the shape of the session.
    """
    session = _event_object(event)
    metadata = session.get("metadata") or {}

    session_id = session.get("id")
    if not session_id:
        raise WebhookPayloadError("checkout session has no id")

    user_id = metadata.get("userId") or session.get("client_reference_id")
    if not user_id:
        raise WebhookPayloadError(f"checkout session {session_id} missing userId")

    try:
        plan = Plan(metadata.get("plan"))
    except ValueError:
        raise WebhookPayloadError(
            f"checkout session {session_id} has missing or unknown plan: "
            f"{metadata.get('plan')!r}"
        )

    subscription_id = _expandable_id(session.get("subscription"))
    recurring = plan is Plan.WEEKLY and subscription_id is not None
    in_trial = recurring and metadata.get("trial") != "false"

    event_at = _event_time(event)

    completion = CheckoutCompletion(
        event_id=event.get("id") or session_id,
        event_at=event_at,
        session_id=session_id,
        user_id=str(user_id),
        plan=plan,
        status=SubscriptionStatus.TRIAL if in_trial else SubscriptionStatus.ACTIVE,
        customer_id=_expandable_id(session.get("customer")),
        subscription_id=subscription_id if recurring else None,
        trial_ends_at=event_at + timedelta(days=TRIAL_PERIOD_DAYS) if in_trial else None,
        started_at=event_at,
        amount=Decimal(session.get("amount_total") or 0) / 100,
        currency=(session.get("currency") or "").upper(),
        payment_type=PaymentType.SUBSCRIPTION if recurring else PaymentType.ONE_TIME,
    )

    await store.complete_checkout(completion)


async def _handle_subscription_updated(event: dict, store: SubscriptionStore) -> None:
    """Handle customer.subscription.updated event.

    Syncs subscription status from Stripe; anything other than trialing or
    active counts as past_due.
    """
    subscription = _event_object(event)
    subscription_id = subscription.get("id")
    if not subscription_id:
        raise WebhookPayloadError("subscription object has no id")

    stripe_status = subscription.get("status")
    status = STRIPE_STATUS_MAP.get(stripe_status, SubscriptionStatus.PAST_DUE)
    if stripe_status not in STRIPE_STATUS_MAP:
        logger.info(f"Subscription {subscription_id}: Stripe status {stripe_status} -> past_due")

    event_at = _event_time(event)
    await store.update_status(
        subscription_id,
        status,
        event_at=event_at,
        last_payment_at=event_at,
    )


async def _handle_subscription_deleted(event: dict, store: SubscriptionStore) -> None:
    """Handle customer.subscription.deleted event.

    Sets tier to free and status to canceled.
    """
    subscription = _event_object(event)
    subscription_id = subscription.get("id")
    if not subscription_id:
        raise WebhookPayloadError("subscription object has no id")

    event_at = _event_time(event)
    await store.cancel_subscription(
        subscription_id,
        ended_at=event_at,
        event_at=event_at,
    )


async def _handle_invoice_payment_succeeded(event: dict, store: SubscriptionStore) -> None:
    """Handle invoice.payment_succeeded event.

    One-time purchases also produce invoices; those carry no subscription
    and are ignored here.
    """
    invoice = _event_object(event)
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info(f"Invoice {invoice.get('id')} has no subscription - skipping")
        return

    event_at = _event_time(event)
    await store.update_status(
        subscription_id,
        SubscriptionStatus.ACTIVE,
        event_at=event_at,
        last_payment_at=event_at,
    )


async def _handle_invoice_payment_failed(event: dict, store: SubscriptionStore) -> None:
    """Handle invoice.payment_failed event. Only the status changes."""
    invoice = _event_object(event)
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info(f"Invoice {invoice.get('id')} has no subscription - skipping")
        return

    await store.update_status(
        subscription_id,
        SubscriptionStatus.PAST_DUE,
        event_at=_event_time(event),
    )

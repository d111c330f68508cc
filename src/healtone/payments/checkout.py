"""Stripe Checkout and Billing Portal session creation."""

import logging
from typing import Any

from healtone.config import AppConfig
from healtone.db.models import Plan
from healtone.payments.processor import StripeProcessor

logger = logging.getLogger(__name__)

TRIAL_PERIOD_DAYS = 7

REQUIRED_CHECKOUT_FIELDS = ("plan", "userId", "email")


class CheckoutRequestError(ValueError):
    """Client-caused problem with a checkout or portal request."""


def _missing_fields(body: dict[str, Any], fields: tuple[str, ...]) -> list[str]:
    return [name for name in fields if not body.get(name)]


def build_checkout_params(body: dict[str, Any], config: AppConfig) -> dict[str, Any]:
    """Validate a checkout request and build the Stripe session parameters.

    Args:
        body: Request JSON with plan, userId, email and optional skipTrial
        config: Application configuration (price IDs, client URL)

    Returns:
        Keyword arguments for stripe.checkout.Session.create

    Raises:
        CheckoutRequestError: If a required field is missing or the plan is unknown
    """
    missing = _missing_fields(body, REQUIRED_CHECKOUT_FIELDS)
    if missing:
        raise CheckoutRequestError(f"Missing required field(s): {', '.join(missing)}")

    plan_name = body["plan"]
    price_id = config.plan_prices().get(plan_name) if isinstance(plan_name, str) else None
    if not price_id:
        raise CheckoutRequestError(f"Unknown plan: {plan_name}")

    plan = Plan(plan_name)
    user_id = str(body["userId"])
    skip_trial = body.get("skipTrial", False)
    if not isinstance(skip_trial, bool):
        raise CheckoutRequestError("skipTrial must be a boolean")
    with_trial = plan is Plan.WEEKLY and not skip_trial

    params: dict[str, Any] = {
        "customer_email": body["email"],
        "client_reference_id": user_id,
        "line_items": [{"price": price_id, "quantity": 1}],
        "mode": "payment" if plan is Plan.LIFETIME else "subscription",
        "success_url": f"{config.client_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{config.client_url}/pricing",
        "metadata": {
            "userId": user_id,
            "plan": plan.value,
            "trial": "true" if with_trial else "false",
        },
    }
    if with_trial:
        params["subscription_data"] = {"trial_period_days": TRIAL_PERIOD_DAYS}

    return params


async def create_checkout_url(
    body: dict[str, Any],
    processor: StripeProcessor,
    config: AppConfig,
) -> str:
    """Create a Stripe Checkout Session for a plan purchase.

    Validation happens before any Stripe call. Session creation is never
    retried: a blind retry could open duplicate sessions.

    Returns:
        Stripe Checkout Session URL

    Raises:
        CheckoutRequestError: On invalid input
        stripe.StripeError: On Stripe API errors
    """
    params = build_checkout_params(body, config)
    session = await processor.create_checkout_session(**params)

    logger.info(
        f"Created checkout session {session.id} for user {params['client_reference_id']} "
        f"(plan={params['metadata']['plan']}, trial={params['metadata']['trial']})"
    )
    return session.url


async def create_portal_url(
    body: dict[str, Any],
    processor: StripeProcessor,
    config: AppConfig,
) -> str:
    """Create a Billing Portal session so a customer can manage or cancel."""
    if not body.get("customerId"):
        raise CheckoutRequestError("Missing required field(s): customerId")

    session = await processor.create_portal_session(
        customer_id=body["customerId"],
        return_url=f"{config.client_url}/profile.html",
    )

    logger.info(f"Created portal session for customer {body['customerId']}")
    return session.url

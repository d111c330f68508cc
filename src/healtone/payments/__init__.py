"""Stripe checkout and webhook processing.

Handles checkout and billing portal session creation, webhook signature
verification, and subscription state reconciliation.
"""

from healtone.payments.checkout import create_checkout_url, create_portal_url
from healtone.payments.processor import StripeProcessor
from healtone.payments.webhooks import handle_webhook

__all__ = [
    "StripeProcessor",
    "create_checkout_url",
    "create_portal_url",
    "handle_webhook",
]

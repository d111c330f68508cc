"""Pytest configuration and shared fixtures for payment tests."""

import hashlib
import hmac
import json
import time
from datetime import datetime
from typing import Any, Optional

import pytest

from healtone.config.settings import AppConfig
from healtone.db.models import SubscriptionStatus, SubscriptionTier
from healtone.db.store import CheckoutCompletion
from healtone.payments.processor import StripeProcessor

WEBHOOK_SECRET = "whsec_test_secret"


class FakeStore:
    """In-memory stand-in for SubscriptionStore.

    Mirrors the datastore rules the reconciler relies on: unique
    event/session ids on payments and the last_event_at ordering guard.
    """

    def __init__(self):
        self.profiles: dict[str, dict[str, Any]] = {}
        self.payments: list[dict[str, Any]] = []
        self.calls: list[str] = []

    def add_profile(self, user_id: str, **fields: Any) -> dict[str, Any]:
        profile = {
            "subscription_tier": SubscriptionTier.FREE.value,
            "subscription_status": SubscriptionStatus.NONE.value,
            "stripe_customer_id": None,
            "stripe_subscription_id": None,
            "trial_ends_at": None,
            "subscription_started_at": None,
            "subscription_ended_at": None,
            "last_payment_at": None,
            "last_event_at": None,
        }
        profile.update(fields)
        self.profiles[user_id] = profile
        return profile

    @staticmethod
    def _fresh(profile: dict[str, Any], event_at: datetime) -> bool:
        return profile["last_event_at"] is None or profile["last_event_at"] <= event_at

    def _by_subscription(self, subscription_id: str, event_at: datetime):
        return [
            p for p in self.profiles.values()
            if p["stripe_subscription_id"] == subscription_id and self._fresh(p, event_at)
        ]

    async def complete_checkout(self, completion: CheckoutCompletion) -> bool:
        self.calls.append("complete_checkout")
        profile = self.profiles.get(completion.user_id)
        if profile is not None and self._fresh(profile, completion.event_at):
            profile.update(
                subscription_tier=completion.plan.value,
                subscription_status=completion.status.value,
                stripe_customer_id=completion.customer_id,
                stripe_subscription_id=completion.subscription_id,
                trial_ends_at=completion.trial_ends_at,
                subscription_started_at=completion.started_at,
                subscription_ended_at=None,
                last_event_at=completion.event_at,
            )

        for payment in self.payments:
            if (
                payment["stripe_event_id"] == completion.event_id
                or payment["stripe_session_id"] == completion.session_id
            ):
                return False

        self.payments.append(
            {
                "user_id": completion.user_id,
                "stripe_event_id": completion.event_id,
                "stripe_session_id": completion.session_id,
                "amount": completion.amount,
                "currency": completion.currency,
                "plan": completion.plan.value,
                "payment_type": completion.payment_type.value,
                "status": "succeeded",
            }
        )
        return True

    async def update_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        *,
        event_at: datetime,
        last_payment_at: Optional[datetime] = None,
    ) -> int:
        self.calls.append("update_status")
        rows = self._by_subscription(subscription_id, event_at)
        for profile in rows:
            profile["subscription_status"] = status.value
            if last_payment_at is not None:
                profile["last_payment_at"] = last_payment_at
            profile["last_event_at"] = event_at
        return len(rows)

    async def cancel_subscription(
        self,
        subscription_id: str,
        *,
        ended_at: datetime,
        event_at: datetime,
    ) -> int:
        self.calls.append("cancel_subscription")
        rows = self._by_subscription(subscription_id, event_at)
        for profile in rows:
            profile["subscription_status"] = SubscriptionStatus.CANCELED.value
            profile["subscription_tier"] = SubscriptionTier.FREE.value
            profile["subscription_ended_at"] = ended_at
            profile["last_event_at"] = event_at
        return len(rows)


@pytest.fixture
def config() -> AppConfig:
    """Fully populated configuration, independent of the process environment."""
    return AppConfig(
        env="dev",
        db_dsn="postgresql://healtone@localhost:5432/healtone",
        db_service_key="service-role-key",
        stripe_secret="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_price_weekly="price_weekly_123",
        stripe_price_lifetime="price_lifetime_123",
        client_url="https://app.example.com/",
    )


@pytest.fixture
def processor() -> StripeProcessor:
    """Real processor; signature checks run against WEBHOOK_SECRET."""
    return StripeProcessor("sk_test_123", WEBHOOK_SECRET)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way Stripe does (HMAC-SHA256 over 't.payload')."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(
    event_type: str,
    obj: dict[str, Any],
    event_id: str = "evt_test_1",
    created: Optional[int] = None,
) -> bytes:
    """Serialize a minimal Stripe event envelope."""
    event = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()) if created is None else created,
        "data": {"object": obj},
    }
    return json.dumps(event).encode("utf-8")


@pytest.fixture
def signed_event():
    """Factory returning (payload, signature header) for an event."""

    def _signed_event(event_type: str, obj: dict[str, Any], **kwargs: Any) -> tuple[bytes, str]:
        payload = make_event(event_type, obj, **kwargs)
        return payload, sign(payload)

    return _signed_event


@pytest.fixture
def sign_payload():
    return sign

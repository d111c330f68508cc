"""Subscription record persistence.

All writes are point updates keyed by user id or Stripe subscription id,
plus the append-only payments insert. Every profile mutation carries the
processor event's creation time and is skipped when the row has already
seen a newer event.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import asyncpg

from healtone.db.models import (
    PaymentStatus,
    PaymentType,
    Plan,
    SubscriptionStatus,
    SubscriptionTier,
    Table,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckoutCompletion:
    """Everything a completed checkout writes: profile changes plus one payment row."""

    event_id: str
    event_at: datetime  # processor event creation time, UTC
    session_id: str
    user_id: str
    plan: Plan
    status: SubscriptionStatus
    customer_id: str | None
    subscription_id: str | None
    trial_ends_at: datetime | None
    started_at: datetime
    amount: Decimal  # major units (minor / 100)
    currency: str  # upper-cased ISO code
    payment_type: PaymentType


def _rows_affected(command_status: str) -> int:
    """Parse asyncpg's command tag, e.g. 'UPDATE 1' -> 1."""
    return int(command_status.rsplit(" ", 1)[-1])


class SubscriptionStore:
    """Subscription and payment writes against the profiles/payments tables."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def complete_checkout(self, completion: CheckoutCompletion) -> bool:
        """Apply a completed checkout and record its payment.

        The profile update and the payment insert share one transaction.
        The insert is a no-op when a row for the same event or session
        already exists, so redelivered events never duplicate payments.

        Returns:
            True if a new payment row was written, False on redelivery
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    f"""
                    UPDATE {Table.PROFILES} SET
                        subscription_tier = $2,
                        subscription_status = $3,
                        stripe_customer_id = $4,
                        stripe_subscription_id = $5,
                        trial_ends_at = $6,
                        subscription_started_at = $7,
                        subscription_ended_at = NULL,
                        last_event_at = $8,
                        updated_at = now()
                    WHERE id = $1
                      AND (last_event_at IS NULL OR last_event_at <= $8)
                    """,
                    completion.user_id,
                    SubscriptionTier(completion.plan.value).value,
                    completion.status.value,
                    completion.customer_id,
                    completion.subscription_id,
                    completion.trial_ends_at,
                    completion.started_at,
                    completion.event_at,
                )
                if _rows_affected(status) == 0:
                    logger.warning(
                        f"Checkout {completion.session_id}: profile {completion.user_id} "
                        f"not updated (missing or already past event {completion.event_id})"
                    )

                payment_id = await conn.fetchval(
                    f"""
                    INSERT INTO {Table.PAYMENTS}
                        (user_id, stripe_event_id, stripe_session_id, amount,
                         currency, plan, payment_type, status)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    ON CONFLICT DO NOTHING
                    RETURNING id
                    """,
                    completion.user_id,
                    completion.event_id,
                    completion.session_id,
                    completion.amount,
                    completion.currency,
                    completion.plan.value,
                    completion.payment_type.value,
                    PaymentStatus.SUCCEEDED.value,
                )

        if payment_id is None:
            logger.info(
                f"Payment for session {completion.session_id} already recorded - skipped"
            )
            return False

        logger.info(
            f"Recorded payment {payment_id} for user {completion.user_id}: "
            f"{completion.amount} {completion.currency} ({completion.plan.value})"
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
        """Set status (and optionally the last payment time) by subscription id.

        Returns:
            Number of profile rows changed
        """
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE {Table.PROFILES} SET
                    subscription_status = $2,
                    last_payment_at = COALESCE($3, last_payment_at),
                    last_event_at = $4,
                    updated_at = now()
                WHERE stripe_subscription_id = $1
                  AND (last_event_at IS NULL OR last_event_at <= $4)
                """,
                subscription_id,
                status.value,
                last_payment_at,
                event_at,
            )

        changed = _rows_affected(result)
        logger.info(
            f"Subscription {subscription_id}: status={status.value} ({changed} row(s))"
        )
        return changed

    async def cancel_subscription(
        self,
        subscription_id: str,
        *,
        ended_at: datetime,
        event_at: datetime,
    ) -> int:
        """Downgrade to free/canceled and stamp the end time by subscription id.

        Returns:
            Number of profile rows changed
        """
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE {Table.PROFILES} SET
                    subscription_status = $2,
                    subscription_tier = $3,
                    subscription_ended_at = $4,
                    last_event_at = $5,
                    updated_at = now()
                WHERE stripe_subscription_id = $1
                  AND (last_event_at IS NULL OR last_event_at <= $5)
                """,
                subscription_id,
                SubscriptionStatus.CANCELED.value,
                SubscriptionTier.FREE.value,
                ended_at,
                event_at,
            )

        changed = _rows_affected(result)
        logger.info(f"Subscription {subscription_id}: canceled ({changed} row(s))")
        return changed

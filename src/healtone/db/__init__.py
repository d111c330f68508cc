"""Database layer: connection pool, table constants, and the subscription store."""

from healtone.db.pool import close_pool, create_pool
from healtone.db.store import CheckoutCompletion, SubscriptionStore

__all__ = ["create_pool", "close_pool", "SubscriptionStore", "CheckoutCompletion"]

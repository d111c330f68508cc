"""Lightweight table-name constants and column-name enums."""

from enum import Enum


# Table name constants
class Table:
    """Database table names."""

    PROFILES = "profiles"
    PAYMENTS = "payments"
    SCHEMA_MIGRATIONS = "schema_migrations"


# Column name enums
class SubscriptionTier(str, Enum):
    """Product plan a user is entitled to."""

    FREE = "free"
    WEEKLY = "weekly"
    LIFETIME = "lifetime"


class Plan(str, Enum):
    """Purchasable tiers."""

    WEEKLY = "weekly"
    LIFETIME = "lifetime"


class SubscriptionStatus(str, Enum):
    """Current standing of a user's subscription."""

    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class PaymentType(str, Enum):
    """Payment event kind."""

    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


class PaymentStatus(str, Enum):
    """Payment event outcome."""

    SUCCEEDED = "succeeded"

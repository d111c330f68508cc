"""HealTone billing relay: Stripe checkout sessions and webhook reconciliation."""

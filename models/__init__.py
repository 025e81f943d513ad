from .billing import StripeWebhookEventLog, SubscriptionPlan, UserEntitlement  # noqa: F401

"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from billing_sync.models.base import Base
from billing_sync.models.plan import Plan
from billing_sync.models.subscription import Subscription
from billing_sync.models.shop import Shop
from billing_sync.models.stripe_webhook import StripeWebhook

# Export all for convenience
__all__ = ["Base", "Plan", "Subscription", "Shop", "StripeWebhook"]

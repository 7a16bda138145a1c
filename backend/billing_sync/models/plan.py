"""Plan model"""
from sqlalchemy import Column, Integer, String, JSON, DateTime
from datetime import datetime, timezone
from billing_sync.models.base import Base


class Plan(Base):
    """Static mapping from a Stripe price to an internal plan. Read-only for webhooks."""
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    stripe_price_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    tier = Column(String(50), nullable=False)  # 'starter', 'pro', 'enterprise'
    limits = Column(JSON, nullable=False, default=dict)  # e.g. {"max_shops": 3, "max_items": 5000}
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

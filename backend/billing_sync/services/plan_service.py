"""Plan lookups and seeding"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from billing_sync.models.plan import Plan

logger = logging.getLogger(__name__)


def get_plan_by_price_id(db: Session, stripe_price_id: str) -> Optional[Plan]:
    return db.query(Plan).filter(Plan.stripe_price_id == stripe_price_id).first()


def seed_plans(db: Session, plans: Iterable[Dict]) -> List[Plan]:
    """Upsert plans keyed by stripe_price_id.

    Each entry needs ``stripe_price_id``, ``name`` and ``tier``; ``limits`` is optional.
    """
    seeded = []
    for entry in plans:
        price_id = entry.get("stripe_price_id")
        if not price_id or not entry.get("name") or not entry.get("tier"):
            raise ValueError(f"Plan entry needs stripe_price_id, name and tier: {entry!r}")

        plan = get_plan_by_price_id(db, price_id)
        if plan is None:
            plan = Plan(stripe_price_id=price_id)
            db.add(plan)
            logger.info(f"Creating plan for price {price_id}")
        else:
            logger.info(f"Updating plan for price {price_id}")

        plan.name = entry["name"]
        plan.tier = entry["tier"]
        plan.limits = entry.get("limits") or {}
        seeded.append(plan)

    db.commit()
    for plan in seeded:
        db.refresh(plan)
    return seeded

#!/usr/bin/env python3
"""
Load the Stripe price → plan mapping into the plans table.

Usage:
    python seed_plans.py plans.json

plans.json holds a list of objects:
    [{"stripe_price_id": "price_pro", "name": "Pro", "tier": "pro",
      "limits": {"max_shops": 3, "max_items": 5000}}]
"""

import argparse
import json
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from billing_sync.core.logging import setup_logging
from billing_sync.db.session import SessionLocal
from billing_sync.services.plan_service import seed_plans


def main():
    parser = argparse.ArgumentParser(description="Upsert plans from a JSON file")
    parser.add_argument("path", help="JSON file with a list of plans")
    args = parser.parse_args()

    setup_logging()

    with open(args.path, "r", encoding="utf-8") as f:
        entries = json.load(f)

    db = SessionLocal()
    try:
        plans = seed_plans(db, entries)
    except ValueError as e:
        db.rollback()
        print(f"❌ {e}")
        sys.exit(1)
    finally:
        db.close()

    print(f"✅ Seeded {len(plans)} plan(s)")


if __name__ == "__main__":
    main()

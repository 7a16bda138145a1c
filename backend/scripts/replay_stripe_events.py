#!/usr/bin/env python3
"""
Inspect and replay Stripe webhook events that failed processing.

Usage:
    # List unprocessed ledger rows with their error messages
    python replay_stripe_events.py --list

    # Replay a single event from its stored payload
    python replay_stripe_events.py --event-id evt_123

    # Replay every unprocessed event, oldest first
    python replay_stripe_events.py --all-failed
"""

import argparse
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from billing_sync.core.logging import setup_logging
from billing_sync.db.session import SessionLocal
from billing_sync.schemas.webhooks import WebhookStatus
from billing_sync.services.webhook_service import list_failed_events, replay_event


def list_events(limit: int):
    """Print unprocessed ledger rows"""
    db = SessionLocal()
    try:
        events = list_failed_events(db, limit=limit)
        if not events:
            print("✅ No unprocessed webhook events")
            return True

        print(f"Found {len(events)} unprocessed event(s):")
        for event in events:
            print(f"  {event.stripe_event_id}  {event.event_type}  received {event.created_at}")
            print(f"      error: {event.error_message or '(none - handler never finished)'}")
        return True
    finally:
        db.close()


def replay(event_id: str):
    """Replay one event"""
    db = SessionLocal()
    try:
        ack = replay_event(db, event_id)
    except LookupError as e:
        print(f"❌ {e}")
        return False
    finally:
        db.close()

    if ack.status == WebhookStatus.ERROR:
        print(f"❌ {event_id}: still failing (see error_message in stripe_webhooks)")
        return False
    print(f"✅ {event_id}: {ack.status.value}")
    return True


def replay_all(limit: int):
    """Replay every unprocessed event"""
    db = SessionLocal()
    try:
        event_ids = [event.stripe_event_id for event in list_failed_events(db, limit=limit)]
    finally:
        db.close()

    if not event_ids:
        print("✅ No unprocessed webhook events")
        return True

    results = [replay(event_id) for event_id in event_ids]
    print(f"Replayed {len(results)} event(s): {sum(results)} succeeded, {len(results) - sum(results)} failed")
    return all(results)


def main():
    parser = argparse.ArgumentParser(description="Inspect and replay failed Stripe webhook events")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", action="store_true", help="List unprocessed events")
    group.add_argument("--event-id", help="Replay a single event by Stripe event id")
    group.add_argument("--all-failed", action="store_true", help="Replay every unprocessed event")
    parser.add_argument("--limit", type=int, default=100, help="Maximum number of events to list or replay")
    args = parser.parse_args()

    setup_logging()

    if args.list:
        ok = list_events(args.limit)
    elif args.event_id:
        ok = replay(args.event_id)
    else:
        ok = replay_all(args.limit)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()

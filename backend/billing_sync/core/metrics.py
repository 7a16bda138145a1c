"""Prometheus counters for Stripe webhook handling"""
from prometheus_client import Counter, REGISTRY

try:
    stripe_webhooks_counter = Counter(
        'billing_sync_stripe_webhooks_total',
        'Stripe webhook events that reached the ledger, by outcome',
        ['event_type', 'status']
    )
except ValueError:
    stripe_webhooks_counter = REGISTRY._names_to_collectors.get('billing_sync_stripe_webhooks_total')

try:
    stripe_webhook_rejections_counter = Counter(
        'billing_sync_stripe_webhook_rejections_total',
        'Stripe webhook deliveries rejected before reaching the ledger',
        ['reason']
    )
except ValueError:
    stripe_webhook_rejections_counter = REGISTRY._names_to_collectors.get('billing_sync_stripe_webhook_rejections_total')

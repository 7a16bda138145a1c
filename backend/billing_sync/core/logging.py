"""Log setup and the per-event webhook log line"""
import logging

from billing_sync.core.config import settings

NOISY_LOGGERS = ("stripe", "urllib3", "httpx", "sqlalchemy.engine")

webhook_logger = logging.getLogger("webhooks")


def setup_logging():
    """Route every logger to stderr at LOG_LEVEL, keeping client libraries at WARNING"""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_webhook(event_id: str, event_type: str, message: str, level: int = logging.INFO, **fields):
    """Log one stage of webhook processing.

    Only identifiers belong in ``fields``; payload contents and secrets are never logged.
    """
    suffix = ""
    if fields:
        suffix = " " + " ".join(f"{k}={v}" for k, v in fields.items())
    webhook_logger.log(level, f"[Stripe Webhook] {event_type} ({event_id}): {message}{suffix}")

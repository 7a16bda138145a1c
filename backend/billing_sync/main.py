"""Billing sync service: receives Stripe webhooks and reconciles subscriptions"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from billing_sync.api import monitoring, webhooks
from billing_sync.core.config import settings
from billing_sync.core.logging import setup_logging
from billing_sync.db.session import init_db

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting billing sync ({settings.ENVIRONMENT})")

    if settings.DB_AUTO_CREATE:
        logger.info("DB_AUTO_CREATE set, creating missing tables")
        try:
            init_db()
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET not set - every webhook delivery will be rejected")

    yield

    logger.info("Billing sync stopped")


app = FastAPI(
    title="Jewelry Billing Sync",
    description="Stripe subscription reconciliation for the jewelry retail platform",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(webhooks.router)
app.include_router(monitoring.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last resort for errors outside the webhook reconciler, which contains its own"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

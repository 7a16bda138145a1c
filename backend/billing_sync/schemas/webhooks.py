"""Pydantic schemas for webhook responses"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class WebhookStatus(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    ERROR = "error"


class WebhookAck(BaseModel):
    """Body returned to Stripe once an event is in the ledger"""
    received: bool = True
    status: WebhookStatus
    message: Optional[str] = None

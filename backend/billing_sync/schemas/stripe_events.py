"""Pydantic schemas for inbound Stripe webhook events

Stripe moved billing periods onto subscription items and the invoice's subscription
reference under ``parent.subscription_details`` in its 2025 API versions. The
``from_stripe`` constructors accept both shapes and produce one normalized struct,
so handlers never reach into raw payloads.
"""
import json
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationError, field_validator

from billing_sync.core.exceptions import MalformedEventError, WebhookDataError
from billing_sync.services.status_mapping import unix_to_datetime


def _ref_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object with an id."""
    if isinstance(value, dict):
        value = value.get("id")
    if value is None or value == "":
        return None
    return str(value)


def _nested(obj: Dict[str, Any], key: str, kind: type = dict, path: str = None) -> Any:
    """``obj[key]``, empty when absent, WebhookDataError when it has the wrong JSON type."""
    value = obj.get(key)
    if value is None:
        return kind()
    if not isinstance(value, kind):
        expected = "an object" if kind is dict else "a list"
        raise WebhookDataError(f"Expected {path or key} to be {expected}, got {type(value).__name__}")
    return value


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors()
    )


class EventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: Dict[str, Any]


class StripeEventEnvelope(BaseModel):
    """Outer shape every Stripe event shares"""
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: EventData

    _raw: Dict[str, Any] = PrivateAttr(default_factory=dict)

    @field_validator("id", "type")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @property
    def data_object(self) -> Dict[str, Any]:
        return self.data.object

    @property
    def raw(self) -> Dict[str, Any]:
        """The event exactly as Stripe sent it, for the ledger"""
        return self._raw

    @classmethod
    def from_dict(cls, event: Any) -> "StripeEventEnvelope":
        if not isinstance(event, dict):
            raise MalformedEventError("Event body must be a JSON object")
        try:
            envelope = cls.model_validate(event)
        except ValidationError as e:
            raise MalformedEventError(f"Invalid event envelope: {_describe(e)}") from e
        envelope._raw = event
        return envelope

    @classmethod
    def from_payload(cls, payload: Union[bytes, str]) -> "StripeEventEnvelope":
        try:
            event = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise MalformedEventError("Event body is not valid JSON") from e
        return cls.from_dict(event)


class SubscriptionEventData(BaseModel):
    """Version-normalized view of a Stripe Subscription object"""

    subscription_id: str
    status: Optional[str] = None
    user_id: Optional[str] = None
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None

    @classmethod
    def from_stripe(cls, obj: Dict[str, Any]) -> "SubscriptionEventData":
        items = _nested(_nested(obj, "items"), "data", list, path="items.data")
        first_item = items[0] if items else {}
        if not isinstance(first_item, dict):
            raise WebhookDataError(f"Expected items.data[0] to be an object, got {type(first_item).__name__}")
        metadata = _nested(obj, "metadata")

        # Item-level periods on current API versions, subscription-level on older ones
        start = first_item.get("current_period_start") or obj.get("current_period_start")
        end = first_item.get("current_period_end") or obj.get("current_period_end")

        try:
            return cls(
                subscription_id=_ref_id(obj.get("id")),
                status=obj.get("status"),
                user_id=_ref_id(metadata.get("user_id")),
                price_id=_ref_id(first_item.get("price")),
                current_period_start=unix_to_datetime(start) if start else None,
                current_period_end=unix_to_datetime(end) if end else None,
                cancel_at_period_end=bool(obj.get("cancel_at_period_end") or False),
                canceled_at=unix_to_datetime(obj["canceled_at"]) if obj.get("canceled_at") else None,
            )
        except ValidationError as e:
            raise WebhookDataError(f"Invalid subscription payload: {_describe(e)}") from e

    @property
    def has_period(self) -> bool:
        return self.current_period_start is not None and self.current_period_end is not None


class InvoiceEventData(BaseModel):
    """Version-normalized view of a Stripe Invoice object"""

    invoice_id: Optional[str] = None
    subscription_id: Optional[str] = None

    @classmethod
    def from_stripe(cls, obj: Dict[str, Any]) -> "InvoiceEventData":
        parent = _nested(obj, "parent")
        details = _nested(parent, "subscription_details", path="parent.subscription_details")
        subscription_ref = details.get("subscription") or obj.get("subscription")
        try:
            return cls(
                invoice_id=_ref_id(obj.get("id")),
                subscription_id=_ref_id(subscription_ref),
            )
        except ValidationError as e:
            raise WebhookDataError(f"Invalid invoice payload: {_describe(e)}") from e

"""Parsing and version normalization of inbound Stripe payloads"""
import json
from datetime import datetime, timezone

import pytest

from billing_sync.core.exceptions import MalformedEventError, WebhookDataError
from billing_sync.schemas.stripe_events import InvoiceEventData, StripeEventEnvelope, SubscriptionEventData


@pytest.mark.high
class TestEnvelope:

    def test_from_payload(self):
        event = {"id": "evt_1", "object": "event", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}}

        envelope = StripeEventEnvelope.from_payload(json.dumps(event).encode("utf-8"))

        assert envelope.id == "evt_1"
        assert envelope.type == "invoice.paid"
        assert envelope.data_object == {"id": "in_1"}
        assert envelope.raw == event

    def test_not_json(self):
        with pytest.raises(MalformedEventError):
            StripeEventEnvelope.from_payload(b"{not json")

    def test_not_an_object(self):
        with pytest.raises(MalformedEventError, match="JSON object"):
            StripeEventEnvelope.from_payload(b"[1, 2, 3]")

    @pytest.mark.parametrize("event", [
        {"type": "invoice.paid", "data": {"object": {}}},
        {"id": "evt_1", "data": {"object": {}}},
        {"id": "evt_1", "type": "invoice.paid"},
        {"id": "evt_1", "type": "invoice.paid", "data": {}},
        {"id": "evt_1", "type": "invoice.paid", "data": {"object": "in_1"}},
        {"id": "  ", "type": "invoice.paid", "data": {"object": {}}},
    ])
    def test_incomplete_envelope(self, event):
        with pytest.raises(MalformedEventError, match="Invalid event envelope"):
            StripeEventEnvelope.from_dict(event)


@pytest.mark.high
class TestSubscriptionEventData:

    def test_item_level_period(self):
        data = SubscriptionEventData.from_stripe({
            "id": "sub_1",
            "status": "active",
            "metadata": {"user_id": "u1"},
            "items": {"data": [{"price": {"id": "price_pro"},
                                "current_period_start": 1700000000,
                                "current_period_end": 1702678400}]},
        })

        assert data.subscription_id == "sub_1"
        assert data.user_id == "u1"
        assert data.price_id == "price_pro"
        assert data.current_period_start == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert data.current_period_end == datetime(2023, 12, 15, 22, 13, 20, tzinfo=timezone.utc)
        assert data.has_period
        assert data.cancel_at_period_end is False
        assert data.canceled_at is None

    def test_subscription_level_period_fallback(self):
        data = SubscriptionEventData.from_stripe({
            "id": "sub_1",
            "items": {"data": [{"price": "price_pro"}]},
            "current_period_start": 1700000000,
            "current_period_end": 1702678400,
        })

        assert data.price_id == "price_pro"
        assert data.has_period

    def test_item_period_wins(self):
        data = SubscriptionEventData.from_stripe({
            "id": "sub_1",
            "items": {"data": [{"current_period_start": 1700000000, "current_period_end": 1702678400}]},
            "current_period_start": 1, "current_period_end": 2,
        })

        assert data.current_period_start.year == 2023

    def test_missing_pieces_are_none(self):
        data = SubscriptionEventData.from_stripe({"id": "sub_1"})

        assert data.status is None
        assert data.user_id is None
        assert data.price_id is None
        assert not data.has_period

    def test_user_id_coerced_to_string(self):
        data = SubscriptionEventData.from_stripe({"id": "sub_1", "metadata": {"user_id": 42}})

        assert data.user_id == "42"

    def test_canceled_at(self):
        data = SubscriptionEventData.from_stripe({"id": "sub_1", "canceled_at": 1701000000})

        assert data.canceled_at == datetime.fromtimestamp(1701000000, tz=timezone.utc)

    def test_missing_id(self):
        with pytest.raises(WebhookDataError, match="Invalid subscription payload"):
            SubscriptionEventData.from_stripe({"status": "active"})

    @pytest.mark.parametrize("obj,field", [
        ({"id": "sub_1", "metadata": "u1"}, "metadata"),
        ({"id": "sub_1", "items": [{"price": "price_pro"}]}, "items"),
        ({"id": "sub_1", "items": {"data": {"price": "price_pro"}}}, "items.data"),
        ({"id": "sub_1", "items": {"data": ["si_1"]}}, r"items.data\[0\]"),
    ])
    def test_wrong_shape_is_data_error(self, obj, field):
        with pytest.raises(WebhookDataError, match=f"Expected {field} to be"):
            SubscriptionEventData.from_stripe(obj)

    def test_bad_timestamp(self):
        with pytest.raises(WebhookDataError, match="Invalid timestamp"):
            SubscriptionEventData.from_stripe({"id": "sub_1", "current_period_start": "soon"})


@pytest.mark.high
class TestInvoiceEventData:

    def test_parent_subscription_details(self):
        data = InvoiceEventData.from_stripe({
            "id": "in_1",
            "parent": {"type": "subscription_details", "subscription_details": {"subscription": "sub_1"}},
        })

        assert data.invoice_id == "in_1"
        assert data.subscription_id == "sub_1"

    def test_legacy_subscription_field(self):
        data = InvoiceEventData.from_stripe({"id": "in_1", "subscription": "sub_1"})

        assert data.subscription_id == "sub_1"

    def test_expanded_subscription_object(self):
        data = InvoiceEventData.from_stripe({
            "id": "in_1",
            "parent": {"subscription_details": {"subscription": {"id": "sub_1", "object": "subscription"}}},
        })

        assert data.subscription_id == "sub_1"

    @pytest.mark.parametrize("obj", [
        {"id": "in_1", "parent": "sub_1"},
        {"id": "in_1", "parent": {"subscription_details": ["sub_1"]}},
    ])
    def test_wrong_shape_is_data_error(self, obj):
        with pytest.raises(WebhookDataError, match="Expected parent"):
            InvoiceEventData.from_stripe(obj)

    def test_one_off_invoice(self):
        data = InvoiceEventData.from_stripe({"id": "in_1", "parent": None, "subscription": None})

        assert data.subscription_id is None

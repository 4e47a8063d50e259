"""
Tests du rapprochement des statuts : tables totales, vocabulaire Yalidine, idempotence, notifications.
"""
from datetime import datetime, timedelta, timezone

import pytest

from models.common import CarrierStatus, CodStatus, OrderStatus, PaymentMethod
from models.webhook import ReconciliationOutcome, WebhookEvent, WebhookEventType, WebhookParcel
from services.status_service import (
    CARRIER_TO_COD, COD_TO_ORDER, ReconciliationEngine, event_carrier_status, event_key,
    parse_carrier_status, parse_webhook_payload,
)


def typed_event(event: str, tracking: str = "T1", status=None, **extra) -> WebhookEvent:
    return WebhookEvent(
        event=event,
        parcel=WebhookParcel(tracking_number=tracking, status=status, recipient={"name": "Yacine Benali"}),
        timestamp=extra.pop("timestamp", "2024-05-02T10:00:00Z"),
        **extra,
    )


class TestStatusTables:
    def test_carrier_map_is_total(self):
        assert set(CARRIER_TO_COD) == set(CarrierStatus)

    def test_cod_map_is_total(self):
        assert set(COD_TO_ORDER) == set(CodStatus)

    def test_unknown_carrier_status_has_no_target(self):
        assert CARRIER_TO_COD[CarrierStatus.UNKNOWN] is None

    def test_mapping_is_deterministic(self):
        known = [s for s in CarrierStatus if s != CarrierStatus.UNKNOWN]
        assert all(isinstance(COD_TO_ORDER[CARRIER_TO_COD[s]], OrderStatus) for s in known)
        assert COD_TO_ORDER[CARRIER_TO_COD[CarrierStatus.DELIVERED]] == OrderStatus.DELIVERED
        assert COD_TO_ORDER[CARRIER_TO_COD[CarrierStatus.RETURNED]] == OrderStatus.CANCELLED


class TestCarrierVocabulary:
    @pytest.mark.parametrize("text, expected", [
        ("delivered", CarrierStatus.DELIVERED),
        ("in_transit", CarrierStatus.IN_TRANSIT),
        ("Out for delivery", CarrierStatus.OUT_FOR_DELIVERY),
        ("Livré", CarrierStatus.DELIVERED),
        ("Sorti en livraison", CarrierStatus.OUT_FOR_DELIVERY),
        ("Prêt pour livreur", CarrierStatus.OUT_FOR_DELIVERY),
        ("Retourné au vendeur", CarrierStatus.RETURNED),
        ("Echèc livraison", CarrierStatus.FAILED_DELIVERY),
        ("Tentative échouée", CarrierStatus.FAILED_DELIVERY),
        ("En préparation", CarrierStatus.PENDING),
        ("Ramassé", CarrierStatus.PICKED_UP),
        ("Expédié", CarrierStatus.IN_TRANSIT),
        ("Reçu à Wilaya", CarrierStatus.IN_TRANSIT),
        ("Annulé", CarrierStatus.CANCELLED),
        ("statut exotique", CarrierStatus.UNKNOWN),
        ("", CarrierStatus.UNKNOWN),
        (None, CarrierStatus.UNKNOWN),
    ])
    def test_parse_carrier_status(self, text, expected):
        assert parse_carrier_status(text) == expected

    def test_parcel_status_wins_over_event_type(self):
        event = typed_event("parcel.updated", status="Livré")
        assert event_carrier_status(event) == CarrierStatus.DELIVERED

    def test_event_type_used_when_parcel_status_unreadable(self):
        event = typed_event("parcel.out_for_delivery", status="???")
        assert event_carrier_status(event) == CarrierStatus.OUT_FOR_DELIVERY


class TestWebhookPayloadShapes:
    def test_typed_payload(self):
        events = parse_webhook_payload({
            "event": "parcel.delivered",
            "parcel": {"tracking_number": "T1", "order_id": "CMD-1001"},
            "timestamp": "2024-05-02T10:00:00Z",
        })
        assert len(events) == 1
        assert events[0].event == WebhookEventType.DELIVERED
        assert events[0].parcel.tracking_number == "T1"

    def test_flat_payload(self):
        events = parse_webhook_payload({
            "status": "delivered", "tracking": "T2", "order_id": "CMD-2", "recipient_name": "Amina",
        })
        assert events[0].event == WebhookEventType.DELIVERED
        assert events[0].parcel.tracking_number == "T2"
        assert events[0].parcel.recipient.name == "Amina"

    def test_flat_payload_with_french_status(self):
        events = parse_webhook_payload({"status": "Sorti en livraison", "tracking_number": "T3"})
        assert events[0].event == WebhookEventType.UPDATED
        assert event_carrier_status(events[0]) == CarrierStatus.OUT_FOR_DELIVERY

    def test_batch_payload(self):
        events = parse_webhook_payload({
            "type": "parcel_status_updated",
            "events": [
                {"event_id": "evt_1", "occurred_at": "2024-05-02 10:00:00",
                 "data": {"tracking": "T1", "status": "Livré", "order_id": 1001}},
                {"event_id": "evt_2", "occurred_at": "2024-05-02 10:05:00", "data": {"status": "Livré"}},
            ],
        })
        assert len(events) == 1
        assert events[0].event_id == "evt_1"
        assert events[0].parcel.order_id == "1001"

    def test_batch_delete_is_cancellation(self):
        events = parse_webhook_payload({
            "type": "parcel_deleted", "events": [{"event_id": "e", "data": {"tracking": "T9"}}],
        })
        assert event_carrier_status(events[0]) == CarrierStatus.CANCELLED

    def test_typed_payload_with_unknown_event_type_is_kept(self):
        events = parse_webhook_payload({"event": "parcel.exception", "parcel": {"tracking_number": "T1"}})
        assert events[0].event == WebhookEventType.UPDATED
        assert event_carrier_status(events[0]) == CarrierStatus.UNKNOWN

    def test_unusable_payload_raises(self):
        with pytest.raises(ValueError):
            parse_webhook_payload({"hello": "world"})
        with pytest.raises(ValueError):
            parse_webhook_payload(["not", "an", "object"])

    def test_event_key_prefers_event_id(self):
        assert event_key(typed_event("parcel.delivered", event_id="evt_42")) == "evt_42"

    def test_event_key_is_stable_without_event_id(self):
        a = typed_event("parcel.in_transit", status="in_transit")
        b = typed_event("parcel.in_transit", status="in_transit")
        c = typed_event("parcel.in_transit", status="in_transit", timestamp="2024-05-03T08:00:00Z")
        assert event_key(a) == event_key(b)
        assert event_key(a) != event_key(c)


class TestReconciliationEngine:
    @pytest.mark.asyncio
    async def test_delivered_event_updates_order_and_notifies(self, store, notifier, order_factory):
        """Commande COD liée à un client, événement parcel.delivered sur T1."""
        store.add(order_factory())
        engine = ReconciliationEngine(store, notifier)

        result = await engine.handle_event(typed_event("parcel.delivered"))

        order = store.orders["ord_001"]
        assert result.outcome == ReconciliationOutcome.UPDATED
        assert order.status == OrderStatus.DELIVERED
        assert order.cod_status == CodStatus.DELIVERED
        assert order.delivered_at is not None
        assert len(notifier.customer) == 1
        assert len(notifier.admin) == 1
        assert notifier.customer[0]["user_id"] == "usr_client"
        assert "CMD-1001" in notifier.customer[0]["message"]
        assert "Yacine Benali" in notifier.admin[0]["message"]

    @pytest.mark.asyncio
    async def test_delivered_at_taken_from_parcel(self, store, notifier, order_factory):
        store.add(order_factory())
        event = typed_event("parcel.delivered")
        event.parcel.delivered_at = "2024-05-02T09:30:00Z"

        await ReconciliationEngine(store, notifier).handle_event(event)

        assert store.orders["ord_001"].delivered_at == datetime(2024, 5, 2, 9, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_replayed_event_does_not_notify_twice(self, store, notifier, order_factory):
        store.add(order_factory())
        engine = ReconciliationEngine(store, notifier)
        event = typed_event("parcel.in_transit", event_id="evt_100")

        first = await engine.handle_event(event)
        second = await engine.handle_event(event)

        assert first.outcome == ReconciliationOutcome.UPDATED
        assert second.outcome == ReconciliationOutcome.DUPLICATE
        assert len(notifier.customer) == 1
        assert notifier.admin == []

    @pytest.mark.asyncio
    async def test_unknown_tracking_is_not_found(self, store, notifier):
        result = await ReconciliationEngine(store, notifier).handle_event(typed_event("parcel.delivered", "ZZZ"))
        assert result.outcome == ReconciliationOutcome.NOT_FOUND
        assert "ZZZ" in result.message
        assert notifier.customer == []

    @pytest.mark.asyncio
    async def test_terminal_state_never_moves(self, store, notifier, order_factory):
        store.add(order_factory(cod_status=CodStatus.DELIVERED, status=OrderStatus.DELIVERED))

        result = await ReconciliationEngine(store, notifier).handle_event(typed_event("parcel.returned"))

        assert result.outcome == ReconciliationOutcome.IGNORED
        assert store.orders["ord_001"].cod_status == CodStatus.DELIVERED
        assert store.updates == []
        assert notifier.customer == [] and notifier.admin == []

    @pytest.mark.asyncio
    async def test_first_dispatch_sets_shipping_dates(self, store, notifier, order_factory):
        store.add(order_factory(cod_status=CodStatus.SUBMITTED, status=OrderStatus.CONFIRMED, shipped_at=None))
        before = datetime.now(timezone.utc)

        result = await ReconciliationEngine(store, notifier).handle_event(
            typed_event("parcel.updated", status="Expédié"),
        )

        order = store.orders["ord_001"]
        assert result.cod_status == CodStatus.DISPATCHED
        assert order.status == OrderStatus.SHIPPED
        assert order.shipped_at >= before
        assert order.estimated_delivery - order.shipped_at == timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_older_status_does_not_regress(self, store, notifier, order_factory):
        store.add(order_factory())
        result = await ReconciliationEngine(store, notifier).handle_event(
            typed_event("parcel.created", status="En préparation"),
        )
        assert result.cod_status == CodStatus.DISPATCHED
        assert store.orders["ord_001"].status == OrderStatus.SHIPPED

    @pytest.mark.asyncio
    async def test_failed_delivery_alerts_admins(self, store, notifier, order_factory):
        store.add(order_factory())
        result = await ReconciliationEngine(store, notifier).handle_event(typed_event("parcel.failed_delivery"))

        assert result.cod_status == CodStatus.FAILED
        assert store.orders["ord_001"].status == OrderStatus.CANCELLED
        assert len(notifier.admin) == 1

    @pytest.mark.asyncio
    async def test_non_cod_order_only_moves_generic_status(self, store, notifier, order_factory):
        store.add(order_factory(payment_method=PaymentMethod.CARD, status=OrderStatus.CONFIRMED, shipped_at=None))

        await ReconciliationEngine(store, notifier).handle_event(typed_event("parcel.out_for_delivery"))

        order = store.orders["ord_001"]
        assert order.cod_status is None
        assert order.status == OrderStatus.SHIPPED
        assert order.estimated_delivery is not None

    @pytest.mark.asyncio
    async def test_order_without_customer_only_alerts_admins(self, store, notifier, order_factory):
        store.add(order_factory(user_id=None))
        result = await ReconciliationEngine(store, notifier).handle_event(typed_event("parcel.returned"))
        assert result.notifications == 1
        assert notifier.customer == []
        assert len(notifier.admin) == 1

    @pytest.mark.asyncio
    async def test_unreadable_status_leaves_order_untouched(self, store, notifier, order_factory):
        store.add(order_factory(cod_status=CodStatus.SUBMITTED, status=OrderStatus.CONFIRMED, shipped_at=None))

        result = await ReconciliationEngine(store, notifier).handle_event(
            typed_event("parcel.updated", status="Statut jamais vu", event_id="evt_x"),
        )

        order = store.orders["ord_001"]
        assert result.outcome == ReconciliationOutcome.UPDATED
        assert result.changes == {}
        assert order.cod_status == CodStatus.SUBMITTED
        assert order.status == OrderStatus.CONFIRMED
        assert order.shipped_at is None and order.estimated_delivery is None
        assert store.updates == []
        assert "evt_x" in store.processed
        assert notifier.customer == [] and notifier.admin == []

    @pytest.mark.asyncio
    async def test_status_less_update_leaves_order_untouched(self, store, notifier, order_factory):
        store.add(order_factory(cod_status=CodStatus.SUBMITTED, status=OrderStatus.CONFIRMED, shipped_at=None))

        await ReconciliationEngine(store, notifier).handle_event(
            WebhookEvent(event=WebhookEventType.UPDATED, parcel=WebhookParcel(tracking_number="T1")),
        )

        assert store.orders["ord_001"].status == OrderStatus.CONFIRMED
        assert notifier.customer == []

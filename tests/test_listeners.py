"""
Tests for the status and receipt stream listeners.

Tests cover:
- Envelope parsing and normalization per stream
- Malformed events skipped without stopping the loop
- A failing event not stopping later events
- Concurrent duplicate events producing one row per recipient
- The abstract base and batch capacity checks
"""

import asyncio

import pytest

from status_relay import listeners, message_store, timeline_store
from status_relay.engine import reconcile
from status_relay.listeners import EventListener, ListenerHub, ReceiptListener, StatusListener
from status_relay.normalizer import CanonicalStatus


def status_event(external_id, code):
    return {"key": {"id": external_id, "remoteJid": "1000@s.whatsapp.net"}, "update": {"status": code}}


def receipt_event(external_id, kind):
    return {"key": {"id": external_id}, "receipt": {"type": kind}}


def run_listener(listener_cls, instance_id, events, **kwargs):
    async def _run():
        listener = listener_cls(**kwargs)
        listener.start()
        for event in events:
            listener.submit(instance_id, event)
        await listener.drain()
        await listener.stop()
        return listener

    return asyncio.run(_run())


class RecordingStatusListener(StatusListener):
    """Keeps every handle() result for inspection."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.results = []

    async def handle(self, instance_id, raw):
        result = await super().handle(instance_id, raw)
        self.results.append(result)
        return result


class TestParse:

    def test_status_event(self):
        assert StatusListener().parse(status_event("WA1", 3)) == ("WA1", CanonicalStatus.DELIVERED)

    def test_unknown_status_code_defaults_to_sent(self):
        assert StatusListener().parse(status_event("WA1", 42)) == ("WA1", CanonicalStatus.SENT)

    def test_receipt_event(self):
        assert ReceiptListener().parse(receipt_event("WA1", "read")) == ("WA1", CanonicalStatus.READ)
        assert ReceiptListener().parse(receipt_event("WA1", "delivered")) == ("WA1", CanonicalStatus.DELIVERED)

    def test_malformed_envelopes(self):
        listener = StatusListener()
        assert listener.parse({"update": {"status": 3}}) is None
        assert listener.parse({"key": {"id": "WA1"}}) is None
        assert listener.parse({"key": {"id": "  "}, "update": {"status": 3}}) is None
        assert listener.parse({"key": {"id": "WA1"}, "update": {}}) is None
        assert listener.parse("not an event") is None
        assert ReceiptListener().parse({"key": {"id": "WA1"}, "receipt": None}) is None


class TestStreams:

    def test_status_stream_reconciles(self, db):
        message = message_store.create_message(db, "I1", "+1000,+2000", external_id="WA123", status="sent")
        db.commit()

        run_listener(StatusListener, "I1", [status_event("WA123", 3)], concurrency=1)

        db.expire_all()
        assert message_store.get_message_by_id(db, message.id).status == "delivered"
        rows = timeline_store.list_for_external_id(db, "I1", "WA123")
        assert len(rows) == 2
        assert all(row.delivered_at is not None for row in rows)

    def test_receipt_stream_uses_fallback(self, db):
        pending = message_store.create_message(db, "I1", "+1000", status="pending")
        db.commit()

        run_listener(ReceiptListener, "I1", [receipt_event("WA999", "read")], concurrency=1)

        db.expire_all()
        message = message_store.get_message_by_id(db, pending.id)
        assert message.external_id == "WA999"
        assert message.status == "read"
        assert timeline_store.find_entry(db, "I1", "+1000", "WA999").read_at is not None

    def test_malformed_events_are_skipped(self, db):
        message = message_store.create_message(db, "I1", "+1000", external_id="WA1", status="sent")
        db.commit()

        events = [
            {"key": {}},
            {"update": {"status": 3}},
            "garbage",
            None,
            status_event("WA1", 4),
        ]
        run_listener(StatusListener, "I1", events, concurrency=1)

        db.expire_all()
        assert message_store.get_message_by_id(db, message.id).status == "read"

    def test_unknown_id_is_dropped(self, db):
        message = message_store.create_message(db, "I1", "+1000", external_id="WA1", status="delivered")
        db.commit()

        run_listener(StatusListener, "I1", [status_event("WA404", 4)], concurrency=1)

        db.expire_all()
        assert message_store.get_message_by_id(db, message.id).status == "delivered"
        assert timeline_store.find_by_external_id(db, "I1", "WA404") is None

    def test_failing_event_does_not_stop_stream(self, db, monkeypatch):
        message = message_store.create_message(db, "I1", "+1000", external_id="WA2", status="sent")
        db.commit()

        def exploding_reconcile(session_factory, instance_id, external_id, status):
            if external_id == "BOOM":
                raise RuntimeError("unexpected")
            return reconcile(session_factory, instance_id, external_id, status)

        monkeypatch.setattr(listeners, "reconcile", exploding_reconcile)

        run_listener(
            StatusListener, "I1", [status_event("BOOM", 3), status_event("WA2", 3)], concurrency=1
        )

        db.expire_all()
        assert message_store.get_message_by_id(db, message.id).status == "delivered"

    def test_concurrent_duplicates_write_each_row_once(self, db):
        """At-least-once delivery: many copies of one event, processed in parallel."""
        message_store.create_message(db, "I1", "+1000,+2000,+3000", external_id="WA77", status="sent")
        db.commit()

        listener = run_listener(RecordingStatusListener, "I1", [status_event("WA77", 3)] * 10, concurrency=4)

        assert len(listener.results) == 10
        assert all(result is not None and result.success for result in listener.results)
        assert sum(result.fields_set for result in listener.results) == 3

        db.expire_all()
        rows = timeline_store.list_for_external_id(db, "I1", "WA77")
        assert sorted(row.recipient for row in rows) == ["+1000", "+2000", "+3000"]
        assert all(row.delivered_at is not None for row in rows)


class TestListenerBase:

    def test_base_listener_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            EventListener()

    def test_has_room_for_whole_batch(self):
        listener = StatusListener(maxsize=2)

        assert listener.has_room(2)
        listener.submit("I1", status_event("WA1", 3))
        assert listener.has_room(1)
        assert not listener.has_room(2)

    def test_unbounded_queue_always_has_room(self):
        assert StatusListener(maxsize=0).has_room(10_000)


class TestHub:

    def test_both_streams_run_independently(self, db):
        first = message_store.create_message(db, "I1", "+1000", external_id="WA1", status="sent")
        second = message_store.create_message(db, "I1", "+2000", external_id="WA2", status="sent")
        db.commit()

        async def _run():
            hub = ListenerHub(concurrency=2)
            hub.start()
            hub.listener_for("status").submit("I1", status_event("WA1", -1))
            hub.listener_for("receipts").submit("I1", receipt_event("WA2", "read"))
            await hub.drain()
            await hub.stop()

        asyncio.run(_run())

        db.expire_all()
        assert message_store.get_message_by_id(db, first.id).status == "failed"
        assert message_store.get_message_by_id(db, second.id).status == "read"

"""
Tests for seeding the timeline from existing messages.
"""

from status_relay import message_store, timeline_store
from status_relay.migrate import seed_timeline


T0 = "2025-01-15T10:00:00Z"
T1 = "2025-01-15T11:00:00Z"
T9 = "2025-01-15T19:00:00Z"


def test_seeds_one_row_per_recipient(db):
    message_store.create_message(db, "I1", "+1000, +2000", external_id="WA1", status="delivered", created_at=T0)
    message_store.create_message(db, "I1", "+3000", external_id="WA2", status="Read", created_at=T1)
    message_store.create_message(db, "I1", "+4000", status="pending", created_at=T1)
    db.commit()

    counts = seed_timeline(db)

    assert counts["messages"] == 2
    assert counts["rows"] == 3
    first = timeline_store.find_entry(db, "I1", "+2000", "WA1")
    assert first.initiated_at == T0
    assert first.delivered_at == T0
    second = timeline_store.find_entry(db, "I1", "+3000", "WA2")
    assert second.read_at == T1
    assert timeline_store.find_by_recipient(db, "I1", "+4000") is None


def test_existing_milestones_are_kept(db):
    message_store.create_message(db, "I1", "+1000", external_id="WA1", status="sent", created_at=T0)
    timeline_store.upsert(db, "I1", "+1000", "WA1", "sent_at", T9)
    db.commit()

    counts = seed_timeline(db)

    entry = timeline_store.find_entry(db, "I1", "+1000", "WA1")
    assert entry.sent_at == T9
    assert entry.initiated_at == T0
    assert counts["fields_set"] == 0
    assert counts["initiated_filled"] == 1


def test_unknown_stored_status_only_seeds_initiated(db):
    message_store.create_message(db, "I1", "+1000", external_id="WA1", status="queued", created_at=T0)
    db.commit()

    seed_timeline(db)

    entry = timeline_store.find_entry(db, "I1", "+1000", "WA1")
    assert entry.initiated_at == T0
    assert entry.sent_at is None


def test_seeding_twice_is_idempotent(db):
    message_store.create_message(db, "I1", "+1000", external_id="WA1", status="read", created_at=T0)
    db.commit()

    seed_timeline(db)
    counts = seed_timeline(db)

    assert counts["rows"] == 1
    assert counts["fields_set"] == 0
    assert len(timeline_store.list_for_external_id(db, "I1", "WA1")) == 1

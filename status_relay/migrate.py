"""
Seed the delivery timeline from existing message records.

For every message that has an external id, make sure each recipient has a
timeline row, seeded with the message's creation time as both initiated_at
and the milestone implied by its current status. Columns that are already
set are left alone. Then fill any initiated_at that is still null.

Run with: python -m status_relay.migrate
"""

import logging
from typing import Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from status_relay import message_store, timeline_store
from status_relay.config import settings
from status_relay.models import Message, TimelineEntry
from status_relay.normalizer import coerce_status, timeline_field

logger = logging.getLogger(__name__)


def seed_timeline(db: Session, delimiter: str = None) -> Dict[str, int]:
    """
    Backfill timeline rows for all messages with an external id.

    Returns:
        Counts: messages scanned, rows upserted, fields set, initiated_at filled
    """
    delimiter = delimiter or settings.RECIPIENT_DELIMITER
    counts = {"messages": 0, "rows": 0, "fields_set": 0, "initiated_filled": 0}

    messages = db.execute(
        select(Message)
        .where(Message.external_id.is_not(None), Message.external_id != "")
        .order_by(Message.id.asc())
    ).scalars().all()
    logger.info(f"Found {len(messages)} messages to seed")

    try:
        for message in messages:
            counts["messages"] += 1
            status, valid = coerce_status((message.status or "").lower())
            # Unknown stored statuses only get initiated_at
            field = timeline_field(status) if valid else "initiated_at"
            for recipient in message_store.split_recipients(message.recipient, delimiter):
                counts["rows"] += 1
                if timeline_store.upsert(
                    db,
                    instance_id=message.instance_id,
                    recipient=recipient,
                    external_id=message.external_id,
                    field=field,
                    timestamp=message.created_at,
                    initiated_at=message.created_at,
                ):
                    counts["fields_set"] += 1

        missing = db.execute(
            select(TimelineEntry.instance_id, TimelineEntry.external_id, Message.created_at)
            .join(
                Message,
                (Message.instance_id == TimelineEntry.instance_id)
                & (Message.external_id == TimelineEntry.external_id),
            )
            .where(TimelineEntry.initiated_at.is_(None))
            .distinct()
        ).all()
        logger.info(f"Found {len(missing)} sends with rows missing initiated_at")
        for instance_id, external_id, created_at in missing:
            counts["initiated_filled"] += timeline_store.fill_missing_initiated(
                db, instance_id, external_id, created_at
            )

        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Timeline seeding failed: {e}")
        raise

    logger.info(f"Timeline seeding completed: {counts}")
    return counts


def main() -> None:
    from status_relay.logging_utils import setup_logging
    from status_relay.storage import SessionLocal, init_db

    setup_logging(settings.LOG_LEVEL)
    init_db()
    with SessionLocal() as db:
        seed_timeline(db)


if __name__ == "__main__":
    main()

"""
Timeline Store: per-recipient delivery milestones in `report_time`.

Rows are keyed by (instance_id, recipient, external_id). A milestone column
is written with a conditional UPDATE (`... WHERE <column> IS NULL`) so that
concurrent writers cannot both set it and a set value never moves.
Functions here never commit; the caller owns the transaction.
"""

import logging
from typing import List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from status_relay.models import TimelineEntry
from status_relay.normalizer import TIMELINE_FIELDS

logger = logging.getLogger(__name__)

MILESTONE_FIELDS = frozenset(TIMELINE_FIELDS.values())

_KEY_COLUMNS = ["instance_id", "recipient", "external_id"]


def find_by_external_id(db: Session, instance_id: str, external_id: str) -> Optional[TimelineEntry]:
    """First timeline row of a send, if any recipient has one."""
    stmt = (
        select(TimelineEntry)
        .where(TimelineEntry.instance_id == instance_id, TimelineEntry.external_id == external_id)
        .order_by(TimelineEntry.id.asc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def find_by_recipient(db: Session, instance_id: str, recipient: str) -> Optional[TimelineEntry]:
    """Most recently created timeline row of a recipient in an instance."""
    stmt = (
        select(TimelineEntry)
        .where(TimelineEntry.instance_id == instance_id, TimelineEntry.recipient == recipient)
        .order_by(TimelineEntry.created_at.desc(), TimelineEntry.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def find_entry(db: Session, instance_id: str, recipient: str, external_id: str) -> Optional[TimelineEntry]:
    stmt = select(TimelineEntry).where(
        TimelineEntry.instance_id == instance_id,
        TimelineEntry.recipient == recipient,
        TimelineEntry.external_id == external_id,
    )
    return db.execute(stmt).scalars().first()


def list_for_external_id(db: Session, instance_id: str, external_id: str) -> List[TimelineEntry]:
    """All recipient rows of a send, in creation order."""
    stmt = (
        select(TimelineEntry)
        .where(TimelineEntry.instance_id == instance_id, TimelineEntry.external_id == external_id)
        .order_by(TimelineEntry.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def _dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def _insert_if_absent(db: Session, values: dict) -> None:
    """Insert a row unless its compound key already exists."""
    dialect = _dialect_name(db)

    if dialect == "sqlite":
        stmt = sqlite.insert(TimelineEntry).values(**values).on_conflict_do_nothing(
            index_elements=_KEY_COLUMNS
        )
        db.execute(stmt)
    elif dialect == "postgresql":
        stmt = postgresql.insert(TimelineEntry).values(**values).on_conflict_do_nothing(
            index_elements=_KEY_COLUMNS
        )
        db.execute(stmt)
    elif dialect in ("mysql", "mariadb"):
        db.execute(insert(TimelineEntry).values(**values).prefix_with("IGNORE", dialect=dialect))
    else:
        # Savepoint keeps the event's outer transaction usable after a conflict
        try:
            with db.begin_nested():
                db.execute(insert(TimelineEntry).values(**values))
        except IntegrityError:
            logger.debug(f"Timeline row already exists: {values['instance_id']}/{values['recipient']}/{values['external_id']}")


def upsert(
    db: Session,
    instance_id: str,
    recipient: str,
    external_id: str,
    field: str,
    timestamp: str,
    initiated_at: Optional[str] = None,
) -> bool:
    """
    Make sure the recipient's row exists and set `field` if it is still null.

    Args:
        db: Database session
        instance_id: Tenant scope
        recipient: Single recipient address
        external_id: Transport id of the send
        field: Milestone column to set (e.g. "delivered_at")
        timestamp: Value for `field` (ISO-8601 UTC)
        initiated_at: Seed for initiated_at when the row is created

    Returns:
        True if `field` was set by this call, False if it was already set
    """
    if field not in MILESTONE_FIELDS:
        raise ValueError(f"Unknown timeline field: {field}")

    _insert_if_absent(db, {
        "instance_id": instance_id,
        "recipient": recipient,
        "external_id": external_id,
        "initiated_at": initiated_at,
        "created_at": timestamp,
        "updated_at": timestamp,
    })

    column = getattr(TimelineEntry, field)
    result = db.execute(
        update(TimelineEntry)
        .where(
            TimelineEntry.instance_id == instance_id,
            TimelineEntry.recipient == recipient,
            TimelineEntry.external_id == external_id,
            column.is_(None),
        )
        .values({field: timestamp, "updated_at": timestamp})
        .execution_options(synchronize_session=False)
    )
    was_set = result.rowcount > 0
    logger.debug(
        f"Timeline upsert {instance_id}/{recipient}/{external_id}: "
        f"{field} {'set' if was_set else 'already set'}"
    )
    return was_set


def fill_missing_initiated(db: Session, instance_id: str, external_id: str, initiated_at: str) -> int:
    """Set initiated_at on rows of a send where it is still null."""
    result = db.execute(
        update(TimelineEntry)
        .where(
            TimelineEntry.instance_id == instance_id,
            TimelineEntry.external_id == external_id,
            TimelineEntry.initiated_at.is_(None),
        )
        .values(initiated_at=initiated_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount

"""
Message Store: queries and the two permitted mutations on `messages`.

The reconciliation engine may only change `status` and `external_id`.
Functions here never commit; the caller owns the transaction.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from status_relay.models import Message
from status_relay.normalizer import CanonicalStatus
from status_relay.utils import utc_now

logger = logging.getLogger(__name__)


def split_recipients(recipient: Optional[str], delimiter: str = ",") -> List[str]:
    """
    Split a delimited recipient field into the fan-out set.

    Whitespace is trimmed and empty entries are skipped; order is kept and
    duplicates are dropped.
    """
    if not recipient:
        return []
    recipients = []
    for part in recipient.split(delimiter):
        part = part.strip()
        if part and part not in recipients:
            recipients.append(part)
    return recipients


def create_message(
    db: Session,
    instance_id: str,
    recipient: str,
    external_id: Optional[str] = None,
    status: str = CanonicalStatus.PENDING.value,
    body: Optional[str] = None,
    created_at: Optional[str] = None,
) -> Message:
    """
    Record an outbound send. Normally done by the sending component.

    Args:
        db: Database session
        instance_id: Tenant/channel the send belongs to
        recipient: One address, or several joined by the delimiter
        external_id: Transport id, if already known
        status: Initial status
        body: Optional message text
        created_at: Creation time (ISO-8601 UTC); defaults to now

    Returns:
        The flushed Message with its id assigned
    """
    message = Message(
        instance_id=instance_id,
        recipient=recipient,
        external_id=external_id,
        status=status,
        body=body,
        created_at=created_at or utc_now(),
    )
    db.add(message)
    db.flush()
    logger.info(f"Message recorded: id={message.id}, instance={instance_id}, external_id={external_id}")
    return message


def get_message_by_id(db: Session, message_id: int) -> Optional[Message]:
    return db.get(Message, message_id)


def find_by_external_id(db: Session, instance_id: str, external_id: str) -> Optional[Message]:
    """Exact match on external_id within an instance."""
    stmt = (
        select(Message)
        .where(Message.instance_id == instance_id, Message.external_id == external_id)
        .order_by(Message.id.asc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def find_by_external_id_like(db: Session, instance_id: str, pattern: str) -> Optional[Message]:
    """
    Substring match on external_id within an instance.

    LIKE wildcards in `pattern` are escaped, so only a literal substring
    matches.
    """
    stmt = (
        select(Message)
        .where(
            Message.instance_id == instance_id,
            Message.external_id.is_not(None),
            Message.external_id.contains(pattern, autoescape=True),
        )
        .order_by(Message.id.asc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def find_most_recent_pending(db: Session, instance_id: str) -> Optional[Message]:
    """Newest message of the instance still in `pending` status."""
    stmt = (
        select(Message)
        .where(
            Message.instance_id == instance_id,
            Message.status == CanonicalStatus.PENDING.value,
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def backfill_external_id(db: Session, message_id: int, external_id: str) -> int:
    """Write a transport id onto a message. Returns affected row count."""
    result = db.execute(
        update(Message)
        .where(Message.id == message_id)
        .values(external_id=external_id)
        .execution_options(synchronize_session="fetch")
    )
    logger.info(f"Backfilled external_id={external_id} onto message {message_id}")
    return result.rowcount


def set_status(db: Session, message_id: int, status: str) -> int:
    """Overwrite the latest status (last write wins). Returns affected row count."""
    result = db.execute(
        update(Message)
        .where(Message.id == message_id)
        .values(status=status)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount

"""
Reconciliation Engine: apply one delivery event to the stores.

For one (instance, transport id, status) event:

1. resolve the message (resolver.py); a miss ends the event with no writes
2. coerce the status, downgrading anything unknown to `sent`
3. overwrite the message's latest status (no ordering enforced)
4. pick the timeline column implied by the status
5. split the recipient list into the fan-out set
6. upsert one timeline row per recipient, setting the column only if null
7. report how many recipients were touched

All writes of an event share one transaction. A store error rolls the whole
event back, backfill included, and is returned as a failed result.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from status_relay import message_store, timeline_store
from status_relay.config import settings
from status_relay.metrics import record_resolution
from status_relay.normalizer import CanonicalStatus, coerce_status, timeline_field
from status_relay.resolver import MatchKind, resolve
from status_relay.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    success: bool
    updated_count: int = 0
    fields_set: int = 0
    status: Optional[CanonicalStatus] = None
    match: Optional[MatchKind] = None
    message_id: Optional[int] = None
    error: Optional[str] = None


def apply(
    db: Session,
    instance_id: str,
    external_id: str,
    status: Union[CanonicalStatus, str],
    now: Optional[str] = None,
    delimiter: Optional[str] = None,
) -> ReconciliationResult:
    """
    Reconcile one status event and commit it.

    Args:
        db: Session used for this event only
        instance_id: Tenant scope of the event
        external_id: Transport id carried by the event
        status: Canonical status (CanonicalStatus or its string value)
        now: Event-processing time; defaults to the current time
        delimiter: Recipient separator; defaults to settings

    Returns:
        ReconciliationResult describing the outcome
    """
    now = now or utc_now()
    delimiter = delimiter or settings.RECIPIENT_DELIMITER
    context = {
        "instance_id": instance_id,
        "external_id": external_id,
        "status": getattr(status, "value", status),
        "event_ts": now,
    }

    try:
        resolution = resolve(db, instance_id, external_id)
        if resolution is None:
            record_resolution("not_found")
            db.rollback()
            return ReconciliationResult(success=False, error="message not found")
        record_resolution(resolution.match.value)

        canonical, valid = coerce_status(status)
        if not valid:
            logger.warning(
                f"Invalid message status {status!r}, defaulting to '{canonical.value}'",
                extra=context,
            )

        message = resolution.message
        message_id = message.id
        affected = message_store.set_status(db, message_id, canonical.value)
        if affected == 0:
            db.rollback()
            logger.warning(f"No message found with id {message_id}", extra=context)
            return ReconciliationResult(success=False, error="message not found", match=resolution.match)

        # Timeline rows join back to the message on its stored id
        stored_external_id = message.external_id or external_id
        field = timeline_field(canonical)
        recipients = message_store.split_recipients(message.recipient, delimiter)

        fields_set = 0
        for recipient in recipients:
            if timeline_store.upsert(
                db,
                instance_id=instance_id,
                recipient=recipient,
                external_id=stored_external_id,
                field=field,
                timestamp=now,
                initiated_at=message.created_at,
            ):
                fields_set += 1

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to reconcile status event: {e}", extra=context)
        return ReconciliationResult(success=False, status=coerce_status(status)[0], error=str(e))

    logger.info(
        f"Reconciled {external_id} -> {canonical.value} for message {message_id} "
        f"({resolution.match.value} match, {len(recipients)} recipients, {fields_set} fields set)",
        extra=context,
    )
    return ReconciliationResult(
        success=True,
        updated_count=len(recipients),
        fields_set=fields_set,
        status=canonical,
        match=resolution.match,
        message_id=message_id,
    )


def reconcile(
    session_factory: Callable[[], Session],
    instance_id: str,
    external_id: str,
    status: Union[CanonicalStatus, str],
) -> ReconciliationResult:
    """Apply one event in a session of its own. Safe to call from worker threads."""
    with session_factory() as db:
        return apply(db, instance_id, external_id, status)

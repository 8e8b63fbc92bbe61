"""
Identity Resolver: find the local message a transport id refers to.

Tiers, each tried only when the previous one misses:

1. exact    - external_id equals the transport id
2. fuzzy    - external_id contains the transport id (the transport sometimes
              decorates ids with a prefix or suffix)
3. fallback - newest still-pending message of the instance; its external_id
              is backfilled with the transport id

The fallback tier covers sends whose status callback raced the write of
their external_id. It is a guess and can misattribute an event, notably
when two unknown ids resolve concurrently against the same pending message.
Callers can tell a guess apart through `Resolution.match`.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from status_relay import message_store
from status_relay.models import Message

logger = logging.getLogger(__name__)


class MatchKind(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Resolution:
    """A message matched to a transport id, and how it was matched."""

    message: Message
    match: MatchKind

    @property
    def is_guess(self) -> bool:
        return self.match is MatchKind.FALLBACK


def resolve(db: Session, instance_id: str, external_id: str) -> Optional[Resolution]:
    """
    Resolve a transport id to a message of the instance.

    The fallback tier writes to the session (backfill) without committing.

    Returns:
        A Resolution, or None when no tier matched
    """
    message = message_store.find_by_external_id(db, instance_id, external_id)
    if message is not None:
        logger.debug(f"Exact match for {external_id} in {instance_id}: message {message.id}")
        return Resolution(message, MatchKind.EXACT)

    logger.info(f"No exact match for {external_id} in {instance_id}, trying substring match")
    message = message_store.find_by_external_id_like(db, instance_id, external_id)
    if message is not None:
        logger.info(
            f"Substring match for {external_id} in {instance_id}: "
            f"message {message.id} (external_id={message.external_id})"
        )
        return Resolution(message, MatchKind.FUZZY)

    logger.info(f"No substring match for {external_id} in {instance_id}, checking pending messages")
    message = message_store.find_most_recent_pending(db, instance_id)
    if message is not None:
        logger.warning(
            f"Using most recent pending message {message.id} as fallback for {external_id} "
            f"in {instance_id} (previous external_id={message.external_id})"
        )
        message_store.backfill_external_id(db, message.id, external_id)
        return Resolution(message, MatchKind.FALLBACK)

    logger.warning(f"Message not found for {external_id} in {instance_id}")
    return None

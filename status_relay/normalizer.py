"""
Mapping of transport status codes and receipt kinds to canonical statuses.

Normalization never fails: unknown inputs fall back to a documented default.
"""

import logging
from enum import Enum
from typing import Any, Tuple

logger = logging.getLogger(__name__)


class CanonicalStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Timeline column written when a status is observed
TIMELINE_FIELDS = {
    CanonicalStatus.PENDING: "initiated_at",
    CanonicalStatus.SENT: "sent_at",
    CanonicalStatus.DELIVERED: "delivered_at",
    CanonicalStatus.READ: "read_at",
    CanonicalStatus.FAILED: "failed_at",
}

STATUS_CODES = {
    1: CanonicalStatus.PENDING,
    2: CanonicalStatus.SENT,
    3: CanonicalStatus.DELIVERED,
    4: CanonicalStatus.READ,
    -1: CanonicalStatus.FAILED,
}

# An unknown code still means the message left us
DEFAULT_STATUS = CanonicalStatus.SENT


def normalize_status_code(code: Any) -> CanonicalStatus:
    """
    Map a transport status code to a canonical status.

    Accepts ints, numeric strings and the literal "PENDING". Anything else
    falls back to `sent`.
    """
    if isinstance(code, str):
        if code.strip().upper() == "PENDING":
            return CanonicalStatus.PENDING
        try:
            code = int(code.strip())
        except ValueError:
            logger.warning(f"Unrecognized status code {code!r}, defaulting to '{DEFAULT_STATUS.value}'")
            return DEFAULT_STATUS

    # bool is an int subclass; True must not read as code 1
    if isinstance(code, int) and not isinstance(code, bool) and code in STATUS_CODES:
        return STATUS_CODES[code]

    logger.warning(f"Unrecognized status code {code!r}, defaulting to '{DEFAULT_STATUS.value}'")
    return DEFAULT_STATUS


def normalize_receipt_kind(kind: Any) -> CanonicalStatus:
    """Map a receipt kind to a canonical status: "read" or else delivered."""
    if isinstance(kind, str) and kind.strip().lower() == "read":
        return CanonicalStatus.READ
    return CanonicalStatus.DELIVERED


def coerce_status(value: Any) -> Tuple[CanonicalStatus, bool]:
    """
    Coerce an already-normalized status to the enumeration.

    Returns:
        Tuple of (status, was_valid). Invalid values come back as `sent`.
    """
    if isinstance(value, CanonicalStatus):
        return value, True
    try:
        return CanonicalStatus(value), True
    except ValueError:
        return DEFAULT_STATUS, False


def timeline_field(status: CanonicalStatus) -> str:
    return TIMELINE_FIELDS[status]

"""
Tests for status code and receipt kind normalization.
"""

import pytest

from status_relay.normalizer import (
    CanonicalStatus,
    coerce_status,
    normalize_receipt_kind,
    normalize_status_code,
    timeline_field,
)


class TestStatusCodes:
    """Status-update stream codes."""

    @pytest.mark.parametrize("code, expected", [
        (1, CanonicalStatus.PENDING),
        (2, CanonicalStatus.SENT),
        (3, CanonicalStatus.DELIVERED),
        (4, CanonicalStatus.READ),
        (-1, CanonicalStatus.FAILED),
    ])
    def test_known_codes(self, code, expected):
        assert normalize_status_code(code) is expected

    def test_pending_literal(self):
        assert normalize_status_code("PENDING") is CanonicalStatus.PENDING

    def test_numeric_string(self):
        assert normalize_status_code(" 3 ") is CanonicalStatus.DELIVERED

    @pytest.mark.parametrize("code", [0, 5, 99, -2, "played", None, 3.5, True])
    def test_unknown_codes_default_to_sent(self, code):
        """An unrecognized code still means the message left the system."""
        assert normalize_status_code(code) is CanonicalStatus.SENT


class TestReceiptKinds:
    """Receipt stream kinds."""

    def test_read(self):
        assert normalize_receipt_kind("read") is CanonicalStatus.READ

    def test_delivered(self):
        assert normalize_receipt_kind("delivered") is CanonicalStatus.DELIVERED

    def test_other_kind_is_delivered(self):
        assert normalize_receipt_kind("inactive") is CanonicalStatus.DELIVERED


class TestCoerce:
    def test_enum_passes_through(self):
        assert coerce_status(CanonicalStatus.READ) == (CanonicalStatus.READ, True)

    def test_string_value(self):
        assert coerce_status("failed") == (CanonicalStatus.FAILED, True)

    def test_invalid_downgrades_to_sent(self):
        assert coerce_status("exploded") == (CanonicalStatus.SENT, False)

    def test_timeline_fields(self):
        assert timeline_field(CanonicalStatus.PENDING) == "initiated_at"
        assert timeline_field(CanonicalStatus.SENT) == "sent_at"
        assert timeline_field(CanonicalStatus.DELIVERED) == "delivered_at"
        assert timeline_field(CanonicalStatus.READ) == "read_at"
        assert timeline_field(CanonicalStatus.FAILED) == "failed_at"

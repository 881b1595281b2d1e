"""Tests for CRM inbox normalizers.

Tests cover the helpers for native ids, email addresses, phone numbers,
free text and platform timestamps.
"""

import hashlib
from datetime import UTC, datetime

from app.services.crm.inbox.normalizers import (
    _coerce_timestamp,
    _normalize_email_address,
    _normalize_external_id,
    _normalize_phone_address,
    _normalize_text,
)


class TestNormalizeExternalId:
    """Tests for _normalize_external_id function."""

    def test_returns_none_for_none_input(self):
        assert _normalize_external_id(None) is None

    def test_returns_none_for_whitespace_only(self):
        assert _normalize_external_id("   ") is None
        assert _normalize_external_id("\t\n") is None

    def test_strips_whitespace(self):
        assert _normalize_external_id("  U1234  ") == "U1234"

    def test_numeric_ids_become_strings(self):
        assert _normalize_external_id(1234567890) == "1234567890"

    def test_returns_id_exactly_120_chars(self):
        exact_id = "x" * 120
        assert _normalize_external_id(exact_id) == exact_id

    def test_hashes_id_over_120_chars(self):
        long_id = "y" * 121
        result = _normalize_external_id(long_id)
        assert result == hashlib.sha256(long_id.encode("utf-8")).hexdigest()
        assert len(result) == 64  # SHA-256 hex length


class TestNormalizeEmailAddress:
    """Tests for _normalize_email_address function."""

    def test_returns_none_for_empty(self):
        assert _normalize_email_address(None) is None
        assert _normalize_email_address("  ") is None

    def test_lowercases_and_strips(self):
        assert _normalize_email_address("  User@Example.COM ") == "user@example.com"


class TestNormalizePhoneAddress:
    """Tests for _normalize_phone_address function."""

    def test_returns_none_without_digits(self):
        assert _normalize_phone_address(None) is None
        assert _normalize_phone_address("n/a") is None

    def test_keeps_digits_with_plus_prefix(self):
        assert _normalize_phone_address("+66 (81) 234-5678") == "+66812345678"
        assert _normalize_phone_address("0812345678") == "+0812345678"


class TestNormalizeText:
    def test_blank_is_none(self):
        assert _normalize_text("   ") is None
        assert _normalize_text(None) is None

    def test_strips(self):
        assert _normalize_text("  hi  ") == "hi"


class TestCoerceTimestamp:
    """Tests for _coerce_timestamp function."""

    def test_epoch_milliseconds(self):
        assert _coerce_timestamp(1767225600000) == datetime(2026, 1, 1, tzinfo=UTC)

    def test_epoch_seconds(self):
        assert _coerce_timestamp(1767225600) == datetime(2026, 1, 1, tzinfo=UTC)

    def test_numeric_string(self):
        assert _coerce_timestamp("1767225600000") == datetime(2026, 1, 1, tzinfo=UTC)

    def test_iso_string_with_z_suffix(self):
        assert _coerce_timestamp("2026-01-01T00:00:00Z") == datetime(2026, 1, 1, tzinfo=UTC)

    def test_naive_datetime_is_treated_as_utc(self):
        assert _coerce_timestamp(datetime(2026, 1, 1)) == datetime(2026, 1, 1, tzinfo=UTC)

    def test_unparseable_values_are_none(self):
        assert _coerce_timestamp(None) is None
        assert _coerce_timestamp("") is None
        assert _coerce_timestamp("yesterday") is None
        assert _coerce_timestamp(True) is None

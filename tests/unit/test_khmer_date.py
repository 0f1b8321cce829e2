"""Unit tests for Khmer-aware transaction date parsing."""

from datetime import datetime, timezone

import pytest

from payverify.fraud.khmer_date import convert_khmer_numerals, parse_khmer_date


class TestConvertKhmerNumerals:
    """Test Khmer digit conversion."""

    def test_converts_all_digits(self) -> None:
        """Every Khmer digit maps to its ASCII counterpart."""
        assert convert_khmer_numerals("០១២៣៤៥៦៧៨៩") == "0123456789"

    def test_leaves_other_text_alone(self) -> None:
        """Latin text and Khmer letters are untouched."""
        assert convert_khmer_numerals("Jan ០៦ មករា") == "Jan 06 មករា"

    def test_empty(self) -> None:
        """Empty input is returned unchanged."""
        assert convert_khmer_numerals("") == ""


class TestParseKhmerDate:
    """Test parse_khmer_date fallbacks in order."""

    def test_iso_timestamp(self) -> None:
        """ISO 8601 is parsed first."""
        assert parse_khmer_date("2026-01-04T13:35:00") == datetime(2026, 1, 4, 13, 35)

    def test_iso_with_zulu_offset(self) -> None:
        """A trailing Z keeps UTC."""
        parsed = parse_khmer_date("2026-01-04T13:35:00Z")
        assert parsed == datetime(2026, 1, 4, 13, 35, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Jan 04, 2026 01:35 PM", datetime(2026, 1, 4, 13, 35)),
            ("Jan 04, 2026", datetime(2026, 1, 4)),
            ("04 Jan 2026 13:35", datetime(2026, 1, 4, 13, 35)),
            ("2026/01/04 13:35", datetime(2026, 1, 4, 13, 35)),
        ],
    )
    def test_english_layouts(self, text: str, expected: datetime) -> None:
        """Common banking app layouts are recognized."""
        assert parse_khmer_date(text) == expected

    def test_khmer_numerals_in_iso(self) -> None:
        """Khmer digits are converted before retrying standard layouts."""
        assert parse_khmer_date("២០២៦-០១-០៤") == datetime(2026, 1, 4)

    def test_khmer_month_with_khmer_digits(self) -> None:
        """Khmer month names are reconstructed into day/month/year."""
        assert parse_khmer_date("០៦ មករា ២០២៦") == datetime(2026, 1, 6)

    def test_khmer_month_with_time(self) -> None:
        """Hour and minute are taken from the trailing numbers."""
        assert parse_khmer_date("06 មករា 2026 13:35") == datetime(2026, 1, 6, 13, 35)

    def test_khmer_month_year_first(self) -> None:
        """The token above 31 is the year, wherever it appears."""
        assert parse_khmer_date("2026 កុម្ភៈ 14") == datetime(2026, 2, 14)

    def test_short_khmer_month(self) -> None:
        """Abbreviated month spellings are accepted."""
        assert parse_khmer_date("15 មិនា 2026") == datetime(2026, 3, 15)

    def test_day_first_numeric(self) -> None:
        """Numeric dates are read day first."""
        assert parse_khmer_date("06/01/2026") == datetime(2026, 1, 6)

    def test_swaps_when_month_exceeds_twelve(self) -> None:
        """An impossible month is swapped with the day."""
        assert parse_khmer_date("01/25/2026") == datetime(2026, 1, 25)

    def test_dash_separated(self) -> None:
        """DD-MM-YYYY is accepted."""
        assert parse_khmer_date("25-01-2026") == datetime(2026, 1, 25)

    @pytest.mark.parametrize("text", ["", "not a date", "99/99/2026", "32 មករា 2026"])
    def test_unparseable(self, text: str) -> None:
        """Unparseable text yields None."""
        assert parse_khmer_date(text) is None

    def test_none(self) -> None:
        """None yields None."""
        assert parse_khmer_date(None) is None

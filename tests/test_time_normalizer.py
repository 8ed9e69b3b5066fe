"""Unit tests for the timezone compensation helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from services.time_normalizer import TimeNormalizer


def test_compensate_adds_offset_to_naive_datetime() -> None:
    normalizer = TimeNormalizer(offset_hours=2)

    result = normalizer.compensate(datetime(2024, 3, 10, 23, 59, 59))

    assert result == datetime(2024, 3, 11, 1, 59, 59, tzinfo=timezone.utc)
    assert result.utcoffset() == timedelta(0)


def test_compensate_parses_source_and_iso_strings() -> None:
    normalizer = TimeNormalizer(offset_hours=2)

    assert normalizer.compensate("2024-03-10 23:00:00") == datetime(
        2024, 3, 11, 1, 0, tzinfo=timezone.utc
    )
    assert normalizer.compensate("2024-03-10T23:59:59Z") == datetime(
        2024, 3, 11, 1, 59, 59, tzinfo=timezone.utc
    )


def test_compensate_converts_aware_values_to_utc_first() -> None:
    normalizer = TimeNormalizer(offset_hours=2)

    result = normalizer.compensate("2024-03-10T23:00:00+01:00")

    assert result == datetime(2024, 3, 11, 0, 0, tzinfo=timezone.utc)


def test_compensate_accepts_plain_dates() -> None:
    normalizer = TimeNormalizer(offset_hours=2)

    assert normalizer.compensate(date(2024, 3, 11)) == datetime(
        2024, 3, 11, 2, 0, tzinfo=timezone.utc
    )


def test_compensate_rejects_invalid_strings() -> None:
    normalizer = TimeNormalizer()

    with pytest.raises(ValueError):
        normalizer.compensate("not-a-date")
    with pytest.raises(ValueError):
        normalizer.compensate("   ")


def test_truncate_to_day_drops_time_of_day() -> None:
    timestamp = datetime(2024, 3, 11, 1, 59, 59, 999000, tzinfo=timezone.utc)

    assert TimeNormalizer.truncate_to_day(timestamp) == datetime(
        2024, 3, 11, tzinfo=timezone.utc
    )


def test_day_start_compensates_before_truncating() -> None:
    normalizer = TimeNormalizer(offset_hours=2)

    assert normalizer.day_start(datetime(2024, 3, 10, 23, 0)) == datetime(
        2024, 3, 11, tzinfo=timezone.utc
    )
    assert normalizer.day_start(date(2024, 3, 10)) == datetime(
        2024, 3, 10, tzinfo=timezone.utc
    )


def test_zero_offset_is_identity_on_utc_values() -> None:
    normalizer = TimeNormalizer(offset_hours=0)
    value = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    assert normalizer.compensate(value) == value

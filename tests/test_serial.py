from datetime import UTC, datetime, timedelta, timezone

import pytest

from nowlogs import InvalidDateFormat, LogSerial, parse_instant, parse_since


def test_from_instant_pads_pid_and_sequence_with_zeros() -> None:
    serial = LogSerial.from_instant(datetime(2024, 1, 1, tzinfo=UTC))
    assert serial.value == "1704067200000" + "0" * 38


def test_from_instant_sorts_at_or_before_real_serials_of_that_millisecond() -> None:
    bound = LogSerial.from_instant(datetime(2024, 1, 1, tzinfo=UTC))
    real = LogSerial("1704067200000" + "1".zfill(19) + "7".zfill(19))
    earlier = LogSerial("1704067199999" + "9" * 38)

    assert bound <= real
    assert earlier < bound
    assert bound.compare(real) == -1
    assert real.compare(bound) == 1
    assert bound.compare(LogSerial(bound.value)) == 0


def test_serials_compare_numerically_across_lengths() -> None:
    assert LogSerial("99") < LogSerial("100")
    assert LogSerial("007") == LogSerial("7")
    assert hash(LogSerial("007")) == hash(LogSerial("7"))
    assert sorted([LogSerial("30"), LogSerial("4"), LogSerial("100")]) == [
        LogSerial("4"),
        LogSerial("30"),
        LogSerial("100"),
    ]


def test_serial_rejects_non_digit_values() -> None:
    with pytest.raises(ValueError, match="Invalid log serial"):
        LogSerial("abc")
    with pytest.raises(ValueError, match="Invalid log serial"):
        LogSerial("")
    with pytest.raises(ValueError, match="Invalid log serial"):
        LogSerial("1²")


def test_serial_instant_reads_millis_prefix() -> None:
    serial = LogSerial("1704067200123" + "0" * 38)
    assert serial.instant == datetime(2024, 1, 1, tzinfo=UTC) + timedelta(
        milliseconds=123
    )
    assert LogSerial("12345").instant is None


def test_parse_instant_accepts_iso_8601_forms() -> None:
    assert parse_instant("2024-01-02") == datetime(2024, 1, 2, tzinfo=UTC)
    assert parse_instant("2024-01-02T03:04:05Z") == datetime(
        2024, 1, 2, 3, 4, 5, tzinfo=UTC
    )
    assert parse_instant("2024-01-02T03:04:05+08:00") == datetime(
        2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=8))
    )


def test_parse_since_rejects_invalid_dates() -> None:
    with pytest.raises(InvalidDateFormat, match="Invalid date string: not-a-date"):
        parse_since("not-a-date")
    with pytest.raises(InvalidDateFormat):
        parse_since("   ")


def test_parse_since_passes_through_missing_values() -> None:
    assert parse_since(None) is None
    assert parse_since("") is None
    assert parse_since("2024-01-01") == LogSerial("1704067200000" + "0" * 38)

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from cadetscope.timezones import normalize_snapshot, parse_timestamp, session_window

LA = ZoneInfo("America/Los_Angeles")


def _reading(device_id: str, timestamp: str) -> dict:
    return {"device_id": device_id, "timestamp": timestamp, "infection_status": 0}


def test_parse_timestamp_converts_to_zone() -> None:
    parsed = parse_timestamp("2025-07-10T20:00:00Z", LA)

    assert parsed is not None
    assert parsed.hour == 13
    assert parsed.utcoffset().total_seconds() == -7 * 3600


def test_parse_timestamp_reads_naive_values_in_zone() -> None:
    parsed = parse_timestamp("2025-07-10T09:30:00", LA)

    assert parsed == datetime(2025, 7, 10, 9, 30, tzinfo=LA)


def test_parse_timestamp_rejects_garbage() -> None:
    assert parse_timestamp("not-a-time", LA) is None
    assert parse_timestamp("", LA) is None
    assert parse_timestamp(1720641600, LA) is None
    assert parse_timestamp(None, LA) is None


def test_parse_timestamp_rejects_instants_outside_datetime_range() -> None:
    assert parse_timestamp("9999-12-31T23:59:59-12:00", LA) is None
    assert parse_timestamp("0001-01-01T00:00:00+14:00", LA) is None
    assert parse_timestamp("9999-12-31T23:00:00", LA) is None


def test_session_window_before_noon_is_morning_half() -> None:
    now = datetime(2025, 7, 10, 17, 0, tzinfo=timezone.utc)  # 10:00 local

    window = session_window(now, LA)

    assert window.half == "AM"
    assert window.start == datetime(2025, 7, 10, 0, 0, tzinfo=LA)
    assert window.end == datetime(2025, 7, 10, 12, 0, tzinfo=LA)
    assert window.contains(datetime(2025, 7, 10, 11, 59, tzinfo=LA))
    assert not window.contains(datetime(2025, 7, 10, 12, 0, tzinfo=LA))
    assert not window.contains(datetime(2025, 7, 9, 11, 0, tzinfo=LA))


def test_session_window_after_noon_is_afternoon_half() -> None:
    now = datetime(2025, 7, 10, 12, 0, tzinfo=LA)

    window = session_window(now, LA)

    assert window.half == "PM"
    assert window.contains(datetime(2025, 7, 10, 12, 0, tzinfo=LA))
    assert not window.contains(datetime(2025, 7, 10, 11, 59, tzinfo=LA))


def test_normalize_snapshot_filters_window_and_sorts() -> None:
    snapshot = {
        "b": _reading("S1", "2025-07-10T14:00:00-07:00"),
        "a": _reading("S2", "2025-07-10T13:00:00-07:00"),
        "morning": _reading("S3", "2025-07-10T11:00:00-07:00"),
        "broken": _reading("S4", "yesterday"),
        "tomorrow": _reading("S5", "2025-07-11T01:00:00-07:00"),
    }
    now = datetime(2025, 7, 10, 15, 0, tzinfo=LA)

    records = normalize_snapshot(snapshot, LA, now)

    assert [record.record_id for record in records] == ["a", "b"]
    assert records[0].zoned_time == datetime(2025, 7, 10, 13, 0, tzinfo=LA)


def test_normalize_snapshot_can_span_past_midnight() -> None:
    snapshot = {
        "late": _reading("S1", "2025-07-11T01:00:00-07:00"),
        "now": _reading("S1", "2025-07-10T14:00:00-07:00"),
    }
    now = datetime(2025, 7, 10, 15, 0, tzinfo=LA)

    records = normalize_snapshot(snapshot, LA, now, restrict_to_current_day=False)

    assert [record.record_id for record in records] == ["now", "late"]


def test_normalize_snapshot_handles_empty_input() -> None:
    now = datetime(2025, 7, 10, 15, 0, tzinfo=LA)

    assert normalize_snapshot(None, LA, now) == []
    assert normalize_snapshot({}, LA, now) == []


def test_normalize_snapshot_drops_out_of_range_timestamps() -> None:
    snapshot = {
        "ok": _reading("S1", "2025-07-10T14:00:00-07:00"),
        "bad": _reading("S2", "9999-12-31T23:59:59-12:00"),
    }
    now = datetime(2025, 7, 10, 15, 0, tzinfo=LA)

    records = normalize_snapshot(snapshot, LA, now)

    assert [record.record_id for record in records] == ["ok"]

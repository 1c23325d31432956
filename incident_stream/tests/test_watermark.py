"""Watermark tracker tests"""

from datetime import datetime, timedelta, timezone

from incident_stream.ingestion.watermark import (
    WatermarkTracker,
    format_timestamp,
    max_record_timestamp,
    next_watermark,
    parse_timestamp,
)
from incident_stream.tests.conftest import T0, build_record


class TestParseTimestamp:
    """Timestamp parsing is lenient and never raises"""

    def test_parses_zulu_with_seven_fraction_digits(self):
        parsed = parse_timestamp("2021-08-13T08:44:53.0233333Z")
        assert parsed == datetime(2021, 8, 13, 8, 44, 53, 23333, tzinfo=timezone.utc)

    def test_naive_values_are_utc(self):
        assert parse_timestamp("2024-03-01T12:00:00") == T0

    def test_offsets_are_normalized_to_utc(self):
        assert parse_timestamp("2024-03-01T14:00:00+02:00") == T0

    def test_garbage_is_none(self):
        assert parse_timestamp("not a timestamp") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(12345) is None

    def test_format_round_trips_through_filter_format(self):
        assert format_timestamp(T0) == "2024-03-01T12:00:00Z"


class TestMaxRecordTimestamp:
    """Max over a batch, skipping unusable timestamps"""

    def test_unsorted_batch(self):
        records = [
            build_record(1, "2024-03-01T12:00:05Z"),
            build_record(2, "2024-03-01T12:00:09Z"),
            build_record(3, "2024-03-01T12:00:01Z"),
        ]
        assert max_record_timestamp(records) == T0 + timedelta(seconds=9)

    def test_missing_and_malformed_are_skipped(self):
        records = [
            build_record(1),
            build_record(2, "yesterday-ish"),
            build_record(3, "2024-03-01T12:00:03Z"),
        ]
        assert max_record_timestamp(records) == T0 + timedelta(seconds=3)

    def test_no_usable_timestamps(self):
        assert max_record_timestamp([build_record(1), build_record(2, "???")]) is None
        assert max_record_timestamp([]) is None


class TestWatermarkTracker:
    """The watermark never moves backwards"""

    def test_initial_value_from_configuration(self):
        assert WatermarkTracker(T0).current == T0

    def test_initial_value_defaults_to_now(self):
        before = datetime.now(timezone.utc)
        tracker = WatermarkTracker()
        assert before <= tracker.current <= datetime.now(timezone.utc)

    def test_advances_to_newest_record(self):
        tracker = WatermarkTracker(T0)
        tracker.advance_from_batch([build_record(1, "2024-03-01T12:30:00Z")])
        assert tracker.current == T0 + timedelta(minutes=30)

    def test_older_batch_does_not_regress(self):
        tracker = WatermarkTracker(T0)
        tracker.advance_from_batch([build_record(1, "2024-02-01T00:00:00Z")])
        assert tracker.current == T0

    def test_batch_without_timestamps_leaves_watermark_unchanged(self):
        tracker = WatermarkTracker(T0)
        tracker.advance_from_batch([build_record(1), build_record(2, "bad")])
        assert tracker.current == T0

    def test_monotonic_over_a_sequence(self):
        tracker = WatermarkTracker(T0)
        seen = [tracker.current]
        for candidate in (T0 + timedelta(seconds=5), None, T0 - timedelta(days=1), T0 + timedelta(seconds=2)):
            seen.append(tracker.advance(candidate))
        assert seen == sorted(seen)
        assert tracker.current == T0 + timedelta(seconds=5)

    def test_next_watermark_is_pure(self):
        assert next_watermark(T0, None) == T0
        assert next_watermark(T0, T0 - timedelta(seconds=1)) == T0
        assert next_watermark(T0, T0 + timedelta(seconds=1)) == T0 + timedelta(seconds=1)

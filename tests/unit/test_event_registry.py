"""
Unit tests for the generic record parser and the event registry.
"""

import logging

import pytest

from prs1core.models.events import Event, EventType, SignalKind, samples_from_events
from prs1core.parsers.event_registry import (
    EventRegistry,
    decode_frames,
    map_code,
    parse_generic_record,
    scale_value,
)
from prs1core.parsers.frames import FrameDecoder
from prs1core.parsers.records import Record
from tests.helpers.synthetic_data import (
    NIGHT_START,
    build_chunk,
    build_record,
    minute_offset_event,
    sample_chunk,
    scalar_event,
    series_event,
)


def _record(data: bytes, rec_type: int = 0x01, flags: int = 0) -> Record:
    return Record(
        frame_offset=12,
        index_in_frame=0,
        type=rec_type,
        flags=flags,
        data=data,
        crc_ok=True,
        raw=data,
    )


class TestCodeMapping:
    def test_known_codes(self):
        assert map_code(0x01, is_series=False) is EventType.OBSTRUCTIVE_APNEA
        assert map_code(0x11, is_series=False) is EventType.SNORE
        assert map_code(0x20, is_series=False) is EventType.LARGE_LEAK

    def test_pressure_code_depends_on_shape(self):
        """0x30 is a pressure change as a scalar and pressure samples as a series."""
        assert map_code(0x30, is_series=False) is EventType.PRESSURE_CHANGE
        assert map_code(0x30, is_series=True) is EventType.PRESSURE_SAMPLE

    def test_unmapped_code_is_unknown(self):
        assert map_code(0x77, is_series=False) is EventType.UNKNOWN

    def test_scale_divisors(self):
        assert scale_value(0x32, 250) == pytest.approx(2.5)
        assert scale_value(0x30, 105) == pytest.approx(10.5)
        assert scale_value(0x77, -20) == pytest.approx(-2.0)


class TestGenericParser:
    """Test the best-effort record layout."""

    def test_scalar_with_absolute_time(self):
        (event,) = parse_generic_record(_record(scalar_event(0x01, NIGHT_START + 60, 5), flags=2), 0)

        assert event.type is EventType.OBSTRUCTIVE_APNEA
        assert event.t_epoch_sec == NIGHT_START + 60
        assert event.value == pytest.approx(0.5)
        assert event.code == 0x01
        assert event.flags == 2
        assert event.crc_ok is True
        assert event.source_offset == 12

    def test_minute_offset_when_time_unusable(self):
        """An out-of-range timestamp falls back to start + minutes * 60."""
        (event,) = parse_generic_record(_record(minute_offset_event(0x03, 7, 0)), NIGHT_START)

        assert event.type is EventType.HYPOPNEA
        assert event.t_epoch_sec == NIGHT_START + 7 * 60

    def test_series_expands_per_value(self):
        data = series_event(0x30, NIGHT_START, 60, [100, 110, 120])

        events = parse_generic_record(_record(data), 0)

        assert [e.type for e in events] == [EventType.PRESSURE_SAMPLE] * 3
        assert [e.t_epoch_sec for e in events] == [NIGHT_START, NIGHT_START + 60, NIGHT_START + 120]
        assert [e.value for e in events] == pytest.approx([10.0, 11.0, 12.0])

    def test_boolean_unknown_series_becomes_relief(self):
        """An unmapped series holding only 0/1/10 is read as relief activity."""
        data = series_event(0x55, NIGHT_START, 1, [0, 10, 1, 0])

        events = parse_generic_record(_record(data), 0)

        assert {e.type for e in events} == {EventType.RELIEF_ACTIVE_SAMPLE}
        assert [e.value for e in events] == [0.0, 1.0, 1.0, 0.0]

    def test_unknown_scalar_preserved(self):
        (event,) = parse_generic_record(_record(scalar_event(0x77, NIGHT_START, 42)), 0)

        assert event.type is EventType.UNKNOWN
        assert event.code == 0x77
        assert event.value == pytest.approx(4.2)

    def test_too_short_record_yields_nothing(self):
        assert parse_generic_record(_record(b"\x01\x02"), NIGHT_START) == []

    def test_missing_value_is_none(self):
        data = scalar_event(0x01, NIGHT_START, 0)[:5]

        (event,) = parse_generic_record(_record(data), 0)

        assert event.value is None

    def test_raw_bytes_trimmed(self):
        data = series_event(0x31, NIGHT_START, 1, [1] * 200)

        events = parse_generic_record(_record(data), 0)

        assert len(events) == 200
        assert len(events[0].raw) == 128


class TestEventRegistry:
    def test_unregistered_types_use_generic_parser(self):
        registry = EventRegistry()

        assert registry.parser_for(0x42) is parse_generic_record
        assert registry.parser_for(0xFF) is parse_generic_record

    def test_register_custom_parser(self):
        registry = EventRegistry()

        def parser(record, start):
            return [Event(t_epoch_sec=start, type=EventType.RERA)]

        registry.register(0x42, parser)

        (event,) = registry.decode_record(_record(b"\x00\x00\x00", rec_type=0x42), 100)
        assert event.type is EventType.RERA
        assert event.t_epoch_sec == 100

    @pytest.mark.parametrize("record_type", [-1, 0x100])
    def test_register_rejects_out_of_range_type(self, record_type):
        with pytest.raises(ValueError, match="fit in a byte"):
            EventRegistry().register(record_type, parse_generic_record)


class TestDecodeFrames:
    def test_sample_chunk(self):
        frames = FrameDecoder().decode(sample_chunk())

        events = decode_frames(frames, NIGHT_START)

        types = [e.type for e in events]
        assert types.count(EventType.PRESSURE_SAMPLE) == 3
        assert types.count(EventType.SNORE) == 2
        assert EventType.OBSTRUCTIVE_APNEA in types
        assert EventType.HYPOPNEA in types
        assert [e.t_epoch_sec for e in events] == sorted(e.t_epoch_sec for e in events)

    def test_samples_from_events(self):
        events = decode_frames(FrameDecoder().decode(sample_chunk()), NIGHT_START)

        samples = samples_from_events(events)

        assert list(samples) == [SignalKind.PRESSURE]
        assert [s.value for s in samples[SignalKind.PRESSURE]] == pytest.approx([10.0, 11.0, 12.0])

    def test_unknown_codes_logged_once_with_raw_bytes(self, caplog):
        body = scalar_event(0x77, NIGHT_START, 42)
        chunk = build_chunk(
            [build_record(0x01, body) + build_record(0x01, scalar_event(0x77, NIGHT_START + 5, 1))]
        )

        with caplog.at_level(logging.DEBUG, logger="prs1core"):
            events = decode_frames(FrameDecoder().decode(chunk), NIGHT_START)

        assert [e.type for e in events] == [EventType.UNKNOWN, EventType.UNKNOWN]
        unknown_logs = [r.getMessage() for r in caplog.records if "Unknown event code" in r.getMessage()]
        assert len(unknown_logs) == 1
        assert "119" in unknown_logs[0]
        assert body.hex() in unknown_logs[0]

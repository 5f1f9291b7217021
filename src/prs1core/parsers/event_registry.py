"""
Code-indexed event registry.

Record parsers are looked up by sub-record type in a static table. Types
without a dedicated parser (including the 0xFF whole-payload fallback) go
through the generic parser, which reads an event code, a timestamp and
then either a scalar or a sampled series depending on what the remaining
bytes plausibly hold.

Unrecognized codes become ``EventType.UNKNOWN`` events with their value
preserved; nothing is dropped for being unfamiliar.
"""

import logging

from collections.abc import Callable, Iterable
from datetime import datetime

from prs1core.constants import EventDecodingConstants, RecordDecodingConstants
from prs1core.models.events import Event, EventType
from prs1core.parsers.byte_reader import ByteReader
from prs1core.parsers.checksums import hex_of
from prs1core.parsers.frames import Frame
from prs1core.parsers.records import Record, RecordDecoder

logger = logging.getLogger(__name__)

RecordParser = Callable[[Record, int], list[Event]]
"""Parser signature: (record, fallback_start_epoch_sec) -> events."""

_SCALAR_CODES: dict[int, EventType] = {
    0x01: EventType.OBSTRUCTIVE_APNEA,
    0x02: EventType.CLEAR_AIRWAY,
    0x03: EventType.HYPOPNEA,
    0x10: EventType.FLOW_LIMITATION,
    0x11: EventType.SNORE,
    0x12: EventType.PERIODIC_BREATHING,
    0x13: EventType.RERA,
    0x14: EventType.VIBRATORY_SNORE,
    0x15: EventType.VIBRATORY_SNORE_2,
    0x16: EventType.BREATH_NOT_DETECTED,
    0x20: EventType.LARGE_LEAK,
    0x30: EventType.PRESSURE_CHANGE,
    0x31: EventType.LEAK_SAMPLE,
    0x32: EventType.FLOW_SAMPLE,
}

# Series records differ from scalars only for the pressure code
_SERIES_CODES: dict[int, EventType] = {**_SCALAR_CODES, 0x30: EventType.PRESSURE_SAMPLE}


def map_code(code: int, is_series: bool) -> EventType:
    """Event type for an event code byte; unmapped codes are UNKNOWN."""
    table = _SERIES_CODES if is_series else _SCALAR_CODES
    return table.get(code, EventType.UNKNOWN)


def scale_value(code: int, raw: int) -> float:
    """Scale a raw signed value by the per-code divisor."""
    divisor = EventDecodingConstants.CODE_DIVISORS.get(
        code, EventDecodingConstants.DEFAULT_DIVISOR
    )
    return raw / divisor


def _plausible_unix_seconds(value: int) -> bool:
    return EventDecodingConstants.UNIX_MIN <= value <= EventDecodingConstants.UNIX_MAX


def _looks_like_series(reader: ByteReader) -> bool:
    header = EventDecodingConstants.SERIES_HEADER_BYTES
    if reader.remaining < header:
        return False
    period = reader.peek_uint16(0)
    count = reader.peek_uint16(2)
    return (
        EventDecodingConstants.SERIES_MIN_PERIOD_SEC
        <= period
        <= EventDecodingConstants.SERIES_MAX_PERIOD_SEC
        and EventDecodingConstants.SERIES_MIN_COUNT
        <= count
        <= EventDecodingConstants.SERIES_MAX_COUNT
        and reader.remaining - header >= count * 2
    )


def parse_generic_record(record: Record, fallback_start_sec: int) -> list[Event]:
    """
    Best-effort parser for records without a dedicated parser.

    Layout tried, in order:
        code:u8, unix_seconds:u32 (ignored if outside 2000-2100),
        minute_offset:u16 (only when the absolute time was unusable),
        then either ``period:u16, count:u16, count * s16`` or a single s16.

    Args:
        record: Record to parse
        fallback_start_sec: Session start used with the minute offset

    Returns:
        Zero or more events (a series yields one event per value)
    """
    data = record.data
    if len(data) < EventDecodingConstants.MIN_RECORD_BYTES:
        return []

    reader = ByteReader(data)
    code = reader.read_uint8()

    t_abs: int | None = None
    if reader.remaining >= 4:
        unix_seconds = reader.read_uint32()
        if _plausible_unix_seconds(unix_seconds):
            t_abs = unix_seconds

    if t_abs is not None:
        t = t_abs
    else:
        if reader.remaining < 2:
            return []
        t = fallback_start_sec + reader.read_uint16() * 60

    raw_trimmed = record.raw[: EventDecodingConstants.RAW_TRIM_BYTES]

    def make(t_sec: int, event_type: EventType, value: float | None) -> Event:
        return Event(
            t_epoch_sec=t_sec,
            type=event_type,
            value=value,
            code=code,
            flags=record.flags,
            crc_ok=record.crc_ok,
            source_offset=record.frame_offset,
            raw=raw_trimmed,
        )

    if _looks_like_series(reader):
        period = reader.read_uint16()
        count = reader.read_uint16()
        raw_values = []
        while len(raw_values) < count and reader.remaining >= 2:
            raw_values.append(reader.read_int16())

        event_type = map_code(code, is_series=True)
        if (
            event_type is EventType.UNKNOWN
            and raw_values
            and all(v in EventDecodingConstants.BOOLEAN_RAW_VALUES for v in raw_values)
        ):
            event_type = EventType.RELIEF_ACTIVE_SAMPLE

        if event_type is EventType.RELIEF_ACTIVE_SAMPLE:
            values = [0.0 if v == 0 else 1.0 for v in raw_values]
        else:
            values = [scale_value(code, v) for v in raw_values]

        return [make(t + period * i, event_type, v) for i, v in enumerate(values)]

    value = scale_value(code, reader.read_int16()) if reader.remaining >= 2 else None
    return [make(t, map_code(code, is_series=False), value)]


class EventRegistry:
    """
    Record-type dispatch table.

    Example:
        >>> registry = EventRegistry()
        >>> registry.register(0x42, my_parser)
        >>> events = registry.decode_record(record, fallback_start_sec)
    """

    def __init__(self):
        self._parsers: dict[int, RecordParser] = {
            RecordDecodingConstants.FALLBACK_TYPE: parse_generic_record,
        }

    def register(self, record_type: int, parser: RecordParser) -> None:
        """Register (or replace) the parser for ``record_type``."""
        if not 0 <= record_type <= 0xFF:
            raise ValueError(f"Record type must fit in a byte, got {record_type}")
        self._parsers[record_type] = parser

    def parser_for(self, record_type: int) -> RecordParser:
        return self._parsers.get(record_type, parse_generic_record)

    def decode_record(self, record: Record, fallback_start_sec: int) -> list[Event]:
        """Decode one record with the parser registered for its type."""
        return self.parser_for(record.type)(record, fallback_start_sec)


def decode_frames(
    frames: Iterable[Frame],
    fallback_start: int | datetime,
    registry: EventRegistry | None = None,
    record_decoder: RecordDecoder | None = None,
) -> list[Event]:
    """
    Run frames through record splitting and the registry.

    Args:
        frames: Decoded frames of one blob
        fallback_start: Session start (epoch seconds or aware datetime) used
            for records without an absolute timestamp
        registry: Registry to dispatch with (default registry if omitted)
        record_decoder: Record splitter (default cap if omitted)

    Returns:
        Events sorted by time (stable for equal times)
    """
    registry = registry or EventRegistry()
    record_decoder = record_decoder or RecordDecoder()
    start_sec = (
        int(fallback_start.timestamp())
        if isinstance(fallback_start, datetime)
        else int(fallback_start)
    )

    events: list[Event] = []
    record_count = 0
    for frame in frames:
        for record in record_decoder.decode(frame):
            record_count += 1
            events.extend(registry.decode_record(record, start_sec))

    events.sort(key=lambda e: e.t_epoch_sec)
    unknown = 0
    seen_codes: set[int | None] = set()
    for e in events:
        if e.type is not EventType.UNKNOWN:
            continue
        unknown += 1
        if e.code not in seen_codes:
            seen_codes.add(e.code)
            logger.debug(
                f"Unknown event code {e.code} at {e.t_epoch_sec}: "
                f"{hex_of(e.raw or b'', EventDecodingConstants.HEX_LOG_BYTES)}"
            )
    logger.debug(
        f"Decoded {len(events)} events from {record_count} records "
        f"({unknown} unknown)"
    )
    return events

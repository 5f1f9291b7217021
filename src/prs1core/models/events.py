"""
Decoded event and continuous-sample types.

Events come out of the PRS1 chunk pipeline (frames -> records -> registry);
signal samples come out of 1 Hz binning (``SecondBinAccumulator``) of
EDF channels and of sample-type events. Both use epoch seconds as their
canonical time.
"""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from prs1core.constants import EDFConstants


class EventType(str, Enum):
    """Closed set of event types produced by the event registry."""

    UNKNOWN = "unknown"

    # Respiratory events
    OBSTRUCTIVE_APNEA = "OA"
    CLEAR_AIRWAY = "CA"
    HYPOPNEA = "H"
    FLOW_LIMITATION = "FL"
    SNORE = "SN"
    PERIODIC_BREATHING = "PB"
    RERA = "RE"  # Respiratory Effort Related Arousal
    VIBRATORY_SNORE = "VS"
    VIBRATORY_SNORE_2 = "VS2"
    BREATH_NOT_DETECTED = "BND"

    # Therapy
    LARGE_LEAK = "LL"
    PRESSURE_CHANGE = "PC"

    # Continuous channels carried as event series
    PRESSURE_SAMPLE = "pressure_sample"
    LEAK_SAMPLE = "leak_sample"
    FLOW_SAMPLE = "flow_sample"
    RELIEF_ACTIVE_SAMPLE = "relief_active_sample"

    @property
    def is_sample(self) -> bool:
        return self in SAMPLE_EVENT_TYPES

    @property
    def counts_toward_ahi(self) -> bool:
        return self in AHI_EVENT_TYPES

    @property
    def is_snore_like(self) -> bool:
        return self in SNORE_EVENT_TYPES


AHI_EVENT_TYPES = frozenset(
    {EventType.OBSTRUCTIVE_APNEA, EventType.CLEAR_AIRWAY, EventType.HYPOPNEA}
)
SNORE_EVENT_TYPES = frozenset(
    {EventType.SNORE, EventType.VIBRATORY_SNORE, EventType.VIBRATORY_SNORE_2}
)
SAMPLE_EVENT_TYPES = frozenset(
    {
        EventType.PRESSURE_SAMPLE,
        EventType.LEAK_SAMPLE,
        EventType.FLOW_SAMPLE,
        EventType.RELIEF_ACTIVE_SAMPLE,
    }
)


class SignalKind(str, Enum):
    """Continuous channel kinds."""

    FLOW_RATE = "flow"  # L/min
    PRESSURE = "pressure"  # cmH2O
    EXHALE_PRESSURE = "exhale_pressure"  # cmH2O
    LEAK = "leak"  # L/min
    RELIEF_ACTIVE = "relief_active"  # 0/1


SAMPLE_EVENT_KINDS: dict[EventType, SignalKind] = {
    EventType.PRESSURE_SAMPLE: SignalKind.PRESSURE,
    EventType.LEAK_SAMPLE: SignalKind.LEAK,
    EventType.FLOW_SAMPLE: SignalKind.FLOW_RATE,
    EventType.RELIEF_ACTIVE_SAMPLE: SignalKind.RELIEF_ACTIVE,
}


@dataclass(frozen=True)
class Event:
    """
    A timestamped occurrence or one point of an event-carried series.

    Attributes:
        t_epoch_sec: Absolute time (UNIX seconds)
        type: Decoded event type
        value: Scaled numeric value, if the record carried one
        code: Source event code byte
        flags: Flags byte of the source sub-record
        crc_ok: Whether the source frame passed its CRC check
        source_offset: Offset of the source frame within its file
        raw: Source record bytes, trimmed
    """

    t_epoch_sec: int
    type: EventType
    value: float | None = None
    code: int | None = None
    flags: int | None = None
    crc_ok: bool | None = None
    source_offset: int | None = None
    raw: bytes | None = field(default=None, repr=False, compare=False)

    @property
    def epoch_ms(self) -> int:
        return self.t_epoch_sec * 1000


@dataclass(frozen=True)
class SignalSample:
    """One point of a continuous channel, at epoch-second resolution."""

    t_epoch_sec: int
    value: float
    kind: SignalKind


class SecondBinAccumulator:
    """
    Average a time-ordered sample stream into one value per epoch second.

    Boolean channels are thresholded at 0.5 on the way in and again after
    averaging, so a bin reports the majority state.

    Example:
        >>> acc = SecondBinAccumulator(SignalKind.PRESSURE)
        >>> acc.add(100, 9.0); acc.add(100, 11.0); acc.add(101, 12.0)
        >>> [(s.t_epoch_sec, s.value) for s in acc.flush()]
        [(100, 10.0), (101, 12.0)]
    """

    def __init__(self, kind: SignalKind, is_boolean: bool = False):
        self.kind = kind
        self.is_boolean = is_boolean
        self._current_sec: int | None = None
        self._sum = 0.0
        self._count = 0
        self._out: list[SignalSample] = []

    def _threshold(self, value: float) -> float:
        return 1.0 if value >= EDFConstants.BOOLEAN_THRESHOLD else 0.0

    def _close_bin(self) -> None:
        if self._current_sec is None or self._count == 0:
            return
        avg = self._sum / self._count
        if self.is_boolean:
            avg = self._threshold(avg)
        self._out.append(SignalSample(self._current_sec, avg, self.kind))

    def _add_run(self, epoch_sec: int, total: float, count: int) -> None:
        if epoch_sec == self._current_sec:
            self._sum += total
            self._count += count
            return
        self._close_bin()
        self._current_sec = epoch_sec
        self._sum = total
        self._count = count

    def add(self, epoch_sec: int, value: float) -> None:
        """Add one sample."""
        if self.is_boolean:
            value = self._threshold(value)
        self._add_run(epoch_sec, value, 1)

    def add_many(self, epoch_secs: np.ndarray, values: np.ndarray) -> None:
        """Add a time-ordered batch, summing runs of equal seconds at once."""
        if len(epoch_secs) == 0:
            return
        vals = np.asarray(values, dtype=np.float64)
        if self.is_boolean:
            vals = (vals >= EDFConstants.BOOLEAN_THRESHOLD).astype(np.float64)
        secs = np.asarray(epoch_secs, dtype=np.int64)
        starts = np.concatenate(([0], np.flatnonzero(np.diff(secs)) + 1))
        sums = np.add.reduceat(vals, starts)
        counts = np.diff(np.append(starts, len(secs)))
        for sec, total, count in zip(secs[starts], sums, counts):
            self._add_run(int(sec), float(total), int(count))

    def flush(self) -> list[SignalSample]:
        """Close the pending bin and return every bin produced so far."""
        self._close_bin()
        self._current_sec = None
        self._sum = 0.0
        self._count = 0
        out, self._out = self._out, []
        return out


def samples_from_events(events: list[Event]) -> dict[SignalKind, list[SignalSample]]:
    """
    Convert sample-type events into per-kind signal samples.

    Events without a value are skipped. Several events of one kind at the
    same second collapse into their mean (majority for relief state);
    output lists are sorted by time.
    """
    by_kind: dict[SignalKind, list[tuple[int, float]]] = {}
    for e in events:
        kind = SAMPLE_EVENT_KINDS.get(e.type)
        if kind is None or e.value is None:
            continue
        by_kind.setdefault(kind, []).append((e.t_epoch_sec, e.value))

    out: dict[SignalKind, list[SignalSample]] = {}
    for kind, points in by_kind.items():
        points.sort(key=lambda p: p[0])
        acc = SecondBinAccumulator(kind, is_boolean=kind is SignalKind.RELIEF_ACTIVE)
        for t, value in points:
            acc.add(t, value)
        out[kind] = acc.flush()
    return out

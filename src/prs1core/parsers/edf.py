"""
EDF/EDF+ decoder for CPAP waveform files.

Parses the fixed and per-signal headers, picks the channels of interest by
label keyword, and decodes each into a native-rate ``WaveformChannel`` plus
a 1 Hz ``SignalSample`` series.

EDF layout:
    - 256-byte fixed header (ASCII fields)
    - ns * 256 bytes of per-signal header, stored field-major
    - data records, each holding samples_per_record[i] little-endian int16
      values for every signal i in order
"""

import logging
import math

from datetime import datetime
from zoneinfo import ZoneInfo

import numpy as np

from pydantic import BaseModel, ConfigDict, Field

from prs1core.config import EDFSettings
from prs1core.constants import EDFConstants
from prs1core.models.events import SecondBinAccumulator, SignalKind, SignalSample
from prs1core.models.waveform import WaveformChannel
from prs1core.parsers.base import EDFFormatError
from prs1core.parsers.byte_reader import BytesLike, ByteReader
from prs1core.parsers.formats.types import EDFHeader, EDFSignalInfo

logger = logging.getLogger(__name__)

# (field, width) of the per-signal header block, in file order
_SIGNAL_FIELDS = (
    ("label", 16),
    ("transducer", 80),
    ("physical_dimension", 8),
    ("physical_min", 8),
    ("physical_max", 8),
    ("digital_min", 8),
    ("digital_max", 8),
    ("prefiltering", 80),
    ("samples_per_record", 8),
    ("reserved", 32),
)


class EDFDecodeResult(BaseModel):
    """Decoded EDF header plus the selected channels."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    header: EDFHeader
    signals: list[EDFSignalInfo] = Field(default_factory=list)
    waveforms: dict[SignalKind, WaveformChannel] = Field(default_factory=dict)
    samples: dict[SignalKind, list[SignalSample]] = Field(default_factory=dict)
    records_decoded: int = Field(default=0, ge=0)
    truncated: bool = Field(default=False, description="Data area was short")

    @property
    def start_epoch_sec(self) -> int:
        return self.header.start_epoch_sec

    @property
    def end_epoch_sec(self) -> int:
        total = self.header.total_seconds
        return self.start_epoch_sec + (round(total) if total is not None else 0)

    @property
    def minutes_used(self) -> int | None:
        total = self.header.total_seconds
        return round(total / 60) if total is not None else None


def _parse_edf_datetime(date_str: str, time_str: str, tz: ZoneInfo) -> datetime:
    """Parse ``dd.mm.yy`` and ``hh.mm.ss`` into an aware datetime."""
    d = date_str.split(".")
    t = time_str.split(".")
    if len(d) != 3 or len(t) < 2:
        raise EDFFormatError(f"Bad start date/time: {date_str!r} {time_str!r}")
    try:
        day, month, yy = int(d[0]), int(d[1]), int(d[2])
        hour, minute = int(t[0]), int(t[1])
        second = int(t[2]) if len(t) >= 3 and t[2] else 0
        year = 1900 + yy if yy >= EDFConstants.YEAR_PIVOT else 2000 + yy
        return datetime(year, month, day, hour, minute, second, tzinfo=tz)
    except ValueError as e:
        raise EDFFormatError(f"Bad start date/time: {date_str!r} {time_str!r}") from e


def _parse_int(text: str, name: str) -> int:
    try:
        return int(text)
    except ValueError as e:
        raise EDFFormatError(f"Field {name} is not an integer: {text!r}") from e


def _parse_float(text: str, name: str) -> float:
    try:
        return float(text.replace(",", "."))
    except ValueError as e:
        raise EDFFormatError(f"Field {name} is not a number: {text!r}") from e


def _lenient_int(text: str, name: str, default: int) -> int:
    """Integer field that may be blank or garbled; ``default`` means unknown."""
    try:
        return _parse_int(text, name)
    except EDFFormatError as e:
        logger.debug(f"{e}, using {default}")
        return default


def _lenient_float(text: str, name: str, default: float) -> float:
    try:
        return _parse_float(text, name)
    except EDFFormatError as e:
        logger.debug(f"{e}, using {default}")
        return default


class EDFDecoder:
    """
    Decoder for EDF/EDF+ files held fully in memory.

    Example:
        >>> result = EDFDecoder().decode(data)
        >>> if result is not None:
        ...     flow = result.waveforms.get(SignalKind.FLOW_RATE)
    """

    def __init__(self, settings: EDFSettings | None = None, tz: str = "UTC"):
        """
        Args:
            settings: Channel classification keywords
            tz: IANA time zone the header start time is recorded in
        """
        self.settings = settings or EDFSettings()
        self.tz = ZoneInfo(tz)

    def classify(self, label: str) -> SignalKind | None:
        """Map a channel label to a signal kind; first keyword group wins."""
        lowered = label.lower()
        groups = (
            (SignalKind.FLOW_RATE, self.settings.flow_keywords),
            (SignalKind.PRESSURE, self.settings.pressure_keywords),
            (SignalKind.LEAK, self.settings.leak_keywords),
            (SignalKind.RELIEF_ACTIVE, self.settings.relief_keywords),
        )
        for kind, keywords in groups:
            if any(k.lower() in lowered for k in keywords):
                return kind
        return None

    def parse_header(self, data: BytesLike) -> EDFHeader:
        """
        Parse the 256-byte fixed header.

        Raises:
            EDFFormatError: If the version, start time or header byte count
                is missing or inconsistent
        """
        if len(data) < EDFConstants.FIXED_HEADER_BYTES:
            raise EDFFormatError(f"File too short for EDF header: {len(data)} bytes")

        reader = ByteReader(data)
        version = reader.read_string(8).strip()
        if not version:
            raise EDFFormatError("Empty version field")
        patient = reader.read_string(80).strip()
        recording = reader.read_string(80).strip()
        date_str = reader.read_string(8).strip()
        time_str = reader.read_string(8).strip()
        header_bytes = _parse_int(reader.read_string(8).strip(), "header_bytes")
        reserved = reader.read_string(44).strip()
        # Unreadable counts leave a header-only result rather than no result
        num_records = _lenient_int(reader.read_string(8).strip(), "num_data_records", -1)
        duration = _lenient_float(reader.read_string(8).strip(), "record_duration", 0.0)
        num_signals = _lenient_int(reader.read_string(4).strip(), "num_signals", 0)

        if not EDFConstants.FIXED_HEADER_BYTES <= header_bytes <= len(data):
            raise EDFFormatError(
                f"Header byte count {header_bytes} outside [256, {len(data)}]"
            )
        if num_signals < 0:
            raise EDFFormatError(f"Negative signal count {num_signals}")

        return EDFHeader(
            version=version,
            patient_info=patient,
            recording_info=recording,
            start_datetime=_parse_edf_datetime(date_str, time_str, self.tz),
            header_bytes=header_bytes,
            num_data_records=num_records,
            record_duration=duration,
            num_signals=num_signals,
            is_edf_plus=reserved.startswith(("EDF+C", "EDF+D")),
        )

    def parse_signal_headers(
        self, data: BytesLike, header: EDFHeader
    ) -> list[EDFSignalInfo]:
        """Parse the field-major per-signal header block."""
        ns = header.num_signals
        needed = EDFConstants.FIXED_HEADER_BYTES + ns * EDFConstants.SIGNAL_HEADER_BYTES
        if needed > len(data):
            raise EDFFormatError(
                f"Signal headers need {needed} bytes, file has {len(data)}"
            )

        reader = ByteReader(data, EDFConstants.FIXED_HEADER_BYTES)
        fields: dict[str, list[str]] = {}
        for name, width in _SIGNAL_FIELDS:
            fields[name] = [reader.read_string(width).strip() for _ in range(ns)]

        def number(text: str) -> float:
            try:
                return float(text.replace(",", "."))
            except ValueError:
                return math.nan

        def integer(text: str) -> int:
            try:
                return int(text)
            except ValueError:
                return 0

        return [
            EDFSignalInfo(
                label=fields["label"][i],
                transducer=fields["transducer"][i],
                physical_dimension=fields["physical_dimension"][i],
                physical_min=number(fields["physical_min"][i]),
                physical_max=number(fields["physical_max"][i]),
                digital_min=integer(fields["digital_min"][i]),
                digital_max=integer(fields["digital_max"][i]),
                prefiltering=fields["prefiltering"][i],
                samples_per_record=integer(fields["samples_per_record"][i]),
                signal_index=i,
            )
            for i in range(ns)
        ]

    def select_channels(
        self, signals: list[EDFSignalInfo]
    ) -> dict[SignalKind, EDFSignalInfo]:
        """First channel of each recognised kind with samples per record > 0."""
        selected: dict[SignalKind, EDFSignalInfo] = {}
        for sig in signals:
            kind = self.classify(sig.label)
            if kind is None or sig.samples_per_record <= 0 or kind in selected:
                continue
            selected[kind] = sig
        return selected

    def decode(self, data: BytesLike) -> EDFDecodeResult | None:
        """
        Decode an EDF file.

        Returns:
            Decoded result, or None if ``data`` is not a parseable EDF file
        """
        try:
            header = self.parse_header(data)
            signals = self.parse_signal_headers(data, header)
        except EDFFormatError as e:
            logger.debug(f"Not decoding as EDF: {e}")
            return None

        logger.debug(
            f"EDF header: start={header.start_datetime.isoformat()} "
            f"signals={header.num_signals} records={header.num_data_records} "
            f"duration={header.record_duration}"
        )

        result = EDFDecodeResult(header=header, signals=signals)
        if (
            header.num_signals == 0
            or header.num_data_records <= 0
            or header.record_duration <= 0
        ):
            return result

        selected = self.select_channels(signals)
        if not selected:
            logger.debug("No recognised channels in EDF file")
            return result

        return self._decode_records(data, header, signals, selected, result)

    def _decode_records(
        self,
        data: BytesLike,
        header: EDFHeader,
        signals: list[EDFSignalInfo],
        selected: dict[SignalKind, EDFSignalInfo],
        result: EDFDecodeResult,
    ) -> EDFDecodeResult:
        counts = [max(0, s.samples_per_record) for s in signals]
        record_samples = sum(counts)
        record_bytes = record_samples * EDFConstants.SAMPLE_BYTES
        available = len(data) - header.header_bytes

        num_records = header.num_data_records
        truncated = False
        if header.header_bytes + num_records * record_bytes > len(data):
            num_records = available // record_bytes
            truncated = True
            logger.warning(
                f"EDF data area holds {num_records} of "
                f"{header.num_data_records} declared records, truncating"
            )
            if num_records <= 0:
                return result.model_copy(update={"truncated": True})

        matrix = np.frombuffer(
            bytes(data),
            dtype="<i2",
            count=num_records * record_samples,
            offset=header.header_bytes,
        ).reshape(num_records, record_samples)

        offsets = np.concatenate(([0], np.cumsum(counts)))
        start_sec = header.start_epoch_sec
        start_ms = start_sec * 1000
        duration = header.record_duration

        waveforms: dict[SignalKind, WaveformChannel] = {}
        samples: dict[SignalKind, list[SignalSample]] = {}

        for kind, sig in selected.items():
            n = sig.samples_per_record
            col = sig.signal_index
            digital = matrix[:, offsets[col] : offsets[col] + n].reshape(-1)
            physical = sig.to_physical(digital)

            waveforms[kind] = WaveformChannel(
                start_epoch_ms=start_ms,
                sample_rate_hz=sig.sample_rate_hz(duration),
                samples=physical,
                unit=sig.physical_dimension,
                label=sig.label,
            )

            r = np.repeat(np.arange(num_records, dtype=np.float64), n)
            k = np.tile(np.arange(n, dtype=np.float64), num_records)
            secs = start_sec + np.floor(r * duration + k * duration / n).astype(np.int64)

            acc = SecondBinAccumulator(kind, is_boolean=kind is SignalKind.RELIEF_ACTIVE)
            acc.add_many(secs, physical)
            samples[kind] = acc.flush()

        logger.debug(
            "EDF channels decoded: "
            + ", ".join(f"{k.value}={len(v)}" for k, v in samples.items())
        )

        return result.model_copy(
            update={
                "waveforms": waveforms,
                "samples": samples,
                "records_decoded": num_records,
                "truncated": truncated,
            }
        )

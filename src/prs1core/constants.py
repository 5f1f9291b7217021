"""
Constants for PRS1 chunk and EDF decoding and therapy analytics.

Thresholds and limits used by more than one module live here so the
decoders, analyzers and aggregators agree on a single value.
"""

from pathlib import Path

# ============================================================================
# Binary decoding
# ============================================================================


class FrameDecodingConstants:
    """Constants for length-delimited frame extraction (frames.py)."""

    LENGTH_FIELD_BYTES = 2
    CRC_BYTES = 2
    MIN_FRAME_FOR_CRC = 4
    MAX_FRAMES = 200_000

    CRC16_POLY = 0x1021
    CRC16_INIT = 0xFFFF


class RecordDecodingConstants:
    """Constants for sub-record splitting (records.py)."""

    HEADER_BYTES = 4
    MAX_RECORDS_PER_FRAME = 50_000
    FALLBACK_TYPE = 0xFF


class EventDecodingConstants:
    """Constants for the generic event record parser (event_registry.py)."""

    MIN_RECORD_BYTES = 3

    # Absolute timestamps outside [2000-01-01, 2100-01-01] are treated as absent
    UNIX_MIN = 946_684_800
    UNIX_MAX = 4_102_444_800

    SERIES_HEADER_BYTES = 4
    SERIES_MIN_PERIOD_SEC = 1
    SERIES_MAX_PERIOD_SEC = 60
    SERIES_MIN_COUNT = 1
    SERIES_MAX_COUNT = 6000

    BOOLEAN_RAW_VALUES = frozenset({0, 1, 10})

    # Raw bytes shown when logging an unknown event code
    HEX_LOG_BYTES = 32
    RAW_TRIM_BYTES = 128

    DEFAULT_DIVISOR = 10.0
    CODE_DIVISORS = {
        0x20: 10.0,
        0x30: 10.0,
        0x31: 10.0,
        0x32: 100.0,
        0x33: 10.0,
    }


class EDFConstants:
    """Constants for EDF/EDF+ header and data decoding (edf.py)."""

    FIXED_HEADER_BYTES = 256
    SIGNAL_HEADER_BYTES = 256
    SAMPLE_BYTES = 2

    # Two-digit years at or above the pivot are 1900s
    YEAR_PIVOT = 85

    BOOLEAN_THRESHOLD = 0.5

    FLOW_KEYWORDS = ("flow",)
    PRESSURE_KEYWORDS = ("press",)
    LEAK_KEYWORDS = ("leak",)
    RELIEF_KEYWORDS = ("flex", "epr", "exp", "exhale")


# ============================================================================
# Waveforms
# ============================================================================


class WaveformIndexConstants:
    """Constants for cross-session waveform merging (waveform/index.py)."""

    MAX_OVERLAP_MS_SNAP = 1500
    MAX_GAP_MS_SNAP = 1500


# ============================================================================
# Analysis
# ============================================================================


class BreathAnalysisConstants:
    """Constants for breath segmentation (breath_analyzer.py)."""

    MIN_BREATH_SEC = 1.0
    MAX_BREATH_SEC = 12.0
    MIN_INSP_SEC = 0.3
    ZERO_EPS = 0.01

    LEAK_OVER_THRESHOLD = 24.0
    LEAK_REJECT_FRACTION = 0.5

    BASELINE_SUBSAMPLE_TARGET = 5000
    NOISE_PERCENTILE = 10.0
    NOISE_SCALE = 1.5
    MIN_DEADBAND = 0.05

    LEAK_DEADBAND_SLOPE = 0.02
    LEAK_DEADBAND_MAX_SCALE = 3.0

    FLOW_GAIN = 1.0


class FlowLimitationConstants:
    """Constants for the inspiratory flattening score (flow_limitation.py)."""

    MIN_SAMPLES = 5
    RATIO_LOW = 0.55
    RATIO_HIGH = 0.85

    BAND_MILD = 0.1
    BAND_HIGH = 0.3
    BAND_MISSING = -1
    HIGH_BAND = 2

    EMA_SHORT_MINUTES = 5
    EMA_LONG_MINUTES = 15


class EpisodeConstants:
    """Constants for episode extraction (episodes.py)."""

    LEAK_MIN_DURATION_SEC = 30
    LEAK_GAP_TOLERANCE_SEC = 5
    MINUTE_BAND_MIN_DURATION_SEC = 60
    SNORE_MAX_GAP_SEC = 10
    SNORE_TAIL_MS = 1000
    PEAK_WINDOW_MS = 60_000


class AggregationConstants:
    """Constants for rolling and calendar aggregation (aggregation.py)."""

    MINUTES_PER_DAY = 24 * 60
    LEAK_OVER_THRESHOLD = 24.0
    MIN_SAMPLE_SEGMENT_SECONDS = 1
    ROLLING_WINDOWS_MINUTES = (5, 10, 30)
    PEAK_AHI_WINDOW_MINUTES = 30
    CHUNK_SESSION_TAIL_SEC = 60


# ============================================================================
# File classification
# ============================================================================

EDF_EXTENSIONS = frozenset({".edf"})
SETTINGS_EXTENSIONS = frozenset({".tgt", ".dat"})
EDF_VERSION_MAGIC = b"0       "

# ============================================================================
# Application paths
# ============================================================================

DEFAULT_APP_DIR = Path.home() / ".prs1core"
DEFAULT_CONFIG_FILE = "config.toml"

DEFAULT_LOG_DIR = DEFAULT_APP_DIR / "logs"
DEFAULT_LOG_FILE = "prs1core.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5

DEFAULT_MAX_BUCKETS = 2000
